import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

from backend.core.money import format_amount

logger = logging.getLogger(__name__)


@shared_task(name="installments.tasks.apply_late_fees")
def apply_late_fees():
    """Daily late-fee assessment over open installment plans."""
    from .engine import apply_late_fees as run_sweep

    return run_sweep()


@shared_task(name="installments.tasks.send_installment_reminders")
def send_installment_reminders(days_ahead=3):
    """Email owners of installments that are due soon or overdue."""
    from .engine import upcoming_reminders

    sent = 0
    failed = 0
    for installment in upcoming_reminders(days_ahead=days_ahead):
        plan = installment.plan
        user = plan.user
        message = (
            f"Dear {user.get_full_name() or user.email},\n\n"
            f"Installment {installment.number} of {plan.months} on plan {plan.plan_id} "
            f"is due on {installment.due_date:%Y-%m-%d}.\n"
            f"Outstanding: {format_amount(installment.outstanding_minor, plan.currency)}\n"
            f"Remaining plan balance: {format_amount(plan.remaining_balance_minor, plan.currency)}\n"
        )
        if plan.current_late_fee_minor:
            message += f"Accrued late fee: {format_amount(plan.current_late_fee_minor, plan.currency)}\n"
        message += f"\nPay at {settings.FRONTEND_URL}/installments/{plan.plan_id}\n"
        try:
            send_mail(
                subject=f"AfriMobile installment {installment.number} due {installment.due_date:%d %b}",
                message=message,
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[user.email],
                fail_silently=False,
            )
            sent += 1
        except OSError as e:
            logger.error(f"Failed to send installment reminder to {user.email}: {e}")
            failed += 1

    logger.info(f"Installment reminders: {sent} sent, {failed} failed")
    return {'status': 'success', 'sent': sent, 'failed': failed}
