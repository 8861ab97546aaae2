"""
Payments API: purchase initiation per rail, buyer history, provider
webhooks and the admin back office.
"""
import hashlib
import hmac
import json
import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
from rest_framework import filters, generics, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import APIException
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from backend.apps.accounts.permissions import IsAdmin
from backend.apps.shares import inventory
from backend.core.exceptions import ConflictingStateError, NotFoundError
from backend.core.middleware import get_correlation_id

from . import ledger
from .models import GatewayEventLog, PurchaseTransaction, Rail
from .rails import card, chain, grants, invoice, manual
from .rails.base import mask_sensitive_data
from .reconciliation import requery
from .serializers import (
    AdminDecisionSerializer,
    AdminGrantSerializer,
    AdminPurchaseTransactionSerializer,
    CardVerifySerializer,
    ChainHashSerializer,
    ChainPurchaseSerializer,
    GatewayEventLogSerializer,
    ManualPurchaseSerializer,
    PurchaseRequestSerializer,
    PurchaseTransactionSerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()

MAX_WEBHOOK_SIZE = getattr(settings, 'PAYSTACK_WEBHOOK_MAX_SIZE', 1024 * 100)


def _quote_from(serializer):
    data = serializer.validated_data
    return inventory.quote(data['kind'], data['quantity'], data['currency'])


# ----------------------------------------------------------------------
# PURCHASE INITIATION
# ----------------------------------------------------------------------

class CardPurchaseView(APIView):
    """Start a naira purchase through Paystack hosted checkout."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PurchaseRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = card.begin_purchase(request.user, _quote_from(serializer))
        return Response(result, status=status.HTTP_201_CREATED)


class CardVerifyView(APIView):
    """Browser return from Paystack checkout."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CardVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tx = card.process_verification(serializer.validated_data['reference'], actor=request.user)
        return Response(PurchaseTransactionSerializer(tx).data)


class ChainPurchaseView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ChainPurchaseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = chain.begin_purchase(
            request.user,
            _quote_from(serializer),
            from_address=serializer.validated_data.get('from_address'),
        )
        return Response(result, status=status.HTTP_201_CREATED)


class ChainHashView(APIView):
    """Buyer submits the hash of their USDT transfer."""
    permission_classes = [IsAuthenticated]

    def post(self, request, transaction_id):
        serializer = ChainHashSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tx = chain.submit_transaction_hash(transaction_id, request.user, serializer.validated_data['tx_hash'])
        return Response(PurchaseTransactionSerializer(tx).data, status=status.HTTP_202_ACCEPTED)


class InvoicePurchaseView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PurchaseRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = invoice.begin_purchase(request.user, _quote_from(serializer))
        return Response(result, status=status.HTTP_201_CREATED)


class ManualPurchaseView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ManualPurchaseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = manual.begin_purchase(
            request.user,
            _quote_from(serializer),
            proof_url=data['proof_url'],
            method=data['method'],
            bank_name=data.get('bank_name', ''),
            account_name=data.get('account_name', ''),
            reference=data.get('reference', ''),
        )
        return Response(result, status=status.HTTP_201_CREATED)


class CancelPurchaseView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, transaction_id):
        tx = ledger.get_transaction(transaction_id, user=request.user)
        tx = ledger.cancel(tx.transaction_id, actor=request.user, reason="Cancelled by buyer")
        return Response(PurchaseTransactionSerializer(tx).data)


# ----------------------------------------------------------------------
# BUYER HISTORY
# ----------------------------------------------------------------------

class UserTransactionsView(generics.ListAPIView):
    """Purchase history of the authenticated user."""
    serializer_class = PurchaseTransactionSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['status', 'rail', 'kind']
    ordering_fields = ['created_at', 'amount_minor']

    def get_queryset(self):
        return PurchaseTransaction.objects.filter(user=self.request.user).select_related('installment_plan')


class UserTransactionDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, transaction_id):
        tx = ledger.get_transaction(transaction_id, user=request.user)
        return Response(PurchaseTransactionSerializer(tx).data)


class HoldingsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(ledger.holdings(request.user))


# ----------------------------------------------------------------------
# PROVIDER WEBHOOKS
# ----------------------------------------------------------------------

class BaseWebhookView(APIView):
    """
    Shared handling for signed provider webhooks: size and signature
    checks on the raw body, JSON parsing, and an audit row per delivery.
    """
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'webhook'

    gateway = None
    signature_header = None
    digest = None

    def get_secret(self):
        raise NotImplementedError

    def handle_event(self, payload):
        """Apply a verified payload. Returns ``(event_type, reference, response_body)``."""
        raise NotImplementedError

    def _verify_signature(self, raw_body, signature):
        """Timing-safe HMAC check of the raw body."""
        if not signature:
            return False
        expected = hmac.new(self.get_secret().encode('utf-8'), raw_body, self.digest).hexdigest()
        return hmac.compare_digest(expected, signature)

    def post(self, request):
        correlation_id = get_correlation_id(request)
        logger.info(f"[{correlation_id}] {self.gateway} webhook received")

        raw_body = request.body
        if len(raw_body) > MAX_WEBHOOK_SIZE:
            logger.error(f"[{correlation_id}] {self.gateway} webhook payload too large: {len(raw_body)} bytes")
            return Response({'error': 'Payload too large'}, status=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

        signature = request.headers.get(self.signature_header, '')
        if not self._verify_signature(raw_body, signature):
            logger.warning(f"[{correlation_id}] {self.gateway} webhook with invalid signature")
            self._log_event(None, None, {}, 401, 'Invalid signature', raw_body, correlation_id)
            return Response({'error': 'Invalid signature'}, status=status.HTTP_401_UNAUTHORIZED)

        try:
            payload = json.loads(raw_body)
        except json.JSONDecodeError:
            self._log_event(None, None, {}, 400, 'Invalid JSON', raw_body, correlation_id)
            return Response({'error': 'Invalid JSON'}, status=status.HTTP_400_BAD_REQUEST)

        event_type, reference = None, None
        final_status_code, final_error = 200, None
        try:
            event_type, reference, body = self.handle_event(payload)
            return Response(body, status=status.HTTP_200_OK)
        except APIException as e:
            final_status_code, final_error = e.status_code, str(e.detail)
            logger.error(f"[{correlation_id}] {self.gateway} webhook for {reference}: {final_error}")
            return Response({'error': final_error}, status=e.status_code)
        finally:
            self._log_event(
                event_type, reference, mask_sensitive_data(payload),
                final_status_code, final_error, raw_body, correlation_id,
            )

    def _log_event(self, event_type, reference, payload, status_code, error, raw_payload, correlation_id):
        """Create immutable audit log of webhook event with deduplication."""
        payload_hash = hashlib.sha256(raw_payload).hexdigest() if raw_payload else None
        try:
            with transaction.atomic():
                GatewayEventLog.objects.create(
                    gateway=self.gateway,
                    event_type=event_type or '',
                    reference=reference or '',
                    payload=payload,
                    raw_payload=raw_payload.decode('utf-8', errors='replace') if raw_payload else '',
                    status_code=status_code,
                    error_message=str(error) if error else '',
                    correlation_id=correlation_id,
                    payload_hash=payload_hash,
                )
        except IntegrityError:
            # Same body delivered again; the first delivery is already logged
            logger.debug(f"Duplicate webhook event detected: {payload_hash}")


@extend_schema(exclude=True)
class PaystackWebhookView(BaseWebhookView):
    """``charge.success`` / ``charge.failed`` events signed with HMAC-SHA512."""
    gateway = 'paystack'
    signature_header = 'x-paystack-signature'
    digest = hashlib.sha512

    def get_secret(self):
        return settings.PAYSTACK_SECRET_KEY

    def handle_event(self, payload):
        event = payload.get('event')
        data = payload.get('data') or {}
        reference = data.get('reference')
        if event not in ('charge.success', 'charge.failed'):
            logger.info(f"Paystack webhook ignored: {event}")
            return event, reference, {'status': 'ignored'}
        if not reference:
            raise NotFoundError("Missing reference.")
        tx = card.handle_webhook_event(event, data)
        return event, reference, {'status': 'success', 'transaction_status': tx.status}


@extend_schema(exclude=True)
class CentiivWebhookView(BaseWebhookView):
    """Invoice status notifications signed with HMAC-SHA256."""
    gateway = 'centiiv'
    signature_header = 'X-Centiiv-Signature'
    digest = hashlib.sha256

    def get_secret(self):
        return settings.CENTIIV_WEBHOOK_SECRET

    def handle_event(self, payload):
        data = payload.get('data') if isinstance(payload.get('data'), dict) else payload
        order_id = data.get('orderId') or data.get('order_id')
        provider_status = data.get('status')
        if not order_id:
            raise NotFoundError("Missing orderId.")
        tx = invoice.apply_provider_status(
            order_id, provider_status, payment_id=data.get('paymentId') or '', source='webhook',
        )
        return provider_status, order_id, {'status': 'success', 'transaction_status': tx.status}


@extend_schema(exclude=True)
class CentiivCallbackView(APIView):
    """
    Browser return from a Centiiv invoice (``?id=&status=...``). The query
    string is unsigned, so the order is re-read from Centiiv.
    """
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'webhook'

    def get(self, request):
        order_id = request.query_params.get('id')
        if not order_id:
            raise NotFoundError("Missing order id.")
        logger.info(
            f"[{get_correlation_id(request)}] Centiiv callback for order {order_id} "
            f"(reported status {request.query_params.get('status')})"
        )
        tx = invoice.handle_callback(order_id)
        return Response({'transaction_id': tx.transaction_id, 'status': tx.status})


# ----------------------------------------------------------------------
# ADMIN
# ----------------------------------------------------------------------

class AdminTransactionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Back office view of all purchases with the rail-specific admin actions.
    """
    serializer_class = AdminPurchaseTransactionSerializer
    permission_classes = [IsAdmin]
    lookup_field = 'transaction_id'
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['status', 'rail', 'kind', 'currency']
    search_fields = ['transaction_id', 'user__email', 'card_reference', 'chain_tx_hash', 'invoice_order_id']
    ordering_fields = ['created_at', 'amount_minor', 'completed_at']

    def get_queryset(self):
        qs = PurchaseTransaction.objects.select_related('user', 'verified_by', 'installment_plan') \
            .prefetch_related('status_history')
        if self.request.query_params.get('stuck') == 'true':
            qs = qs.filter(stuck_since__isnull=False, status__in=PurchaseTransaction.OPEN_STATUSES)
        return qs

    def _decision(self, request):
        serializer = AdminDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data['note']

    def _respond(self, tx):
        tx = PurchaseTransaction.objects.get(pk=tx.pk)
        return Response(self.get_serializer(tx).data)

    @action(detail=True, methods=['post'])
    def approve(self, request, transaction_id=None):
        note = self._decision(request)
        tx = self.get_object()
        if tx.rail == Rail.CHAIN:
            tx = chain.admin_approve(tx.transaction_id, request.user, note)
        elif tx.rail in (Rail.MANUAL, Rail.INSTALLMENT) and tx.manual_proof_url:
            tx = manual.approve(tx.transaction_id, request.user, note)
        else:
            raise ConflictingStateError(f"{tx.get_rail_display()} payments are not approved by hand.")
        logger.info(f"Admin {request.user.id} approved {tx.transaction_id}")
        return self._respond(tx)

    @action(detail=True, methods=['post'])
    def reject(self, request, transaction_id=None):
        note = self._decision(request)
        tx = ledger.fail(self.get_object().transaction_id, actor=request.user, reason=note or "Rejected by admin")
        logger.info(f"Admin {request.user.id} rejected {tx.transaction_id}")
        return self._respond(tx)

    @action(detail=True, methods=['post'])
    def refund(self, request, transaction_id=None):
        note = self._decision(request)
        tx = self.get_object()
        if tx.rail == Rail.MANUAL:
            tx = manual.cancel_approval(tx.transaction_id, request.user, note)
        else:
            tx = ledger.refund(tx.transaction_id, actor=request.user, reason=note or "Refunded by admin")
        return self._respond(tx)

    @action(detail=True, methods=['post'])
    def sync(self, request, transaction_id=None):
        """Re-query the rail (Paystack, Centiiv or BSC) for this purchase."""
        tx = requery(self.get_object())
        return self._respond(tx)


class AdminGrantView(APIView):
    """Allocate shares to a user without payment."""
    permission_classes = [IsAdmin]

    def post(self, request):
        serializer = AdminGrantSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            user = User.objects.get(pk=data['user_id'])
        except User.DoesNotExist:
            raise NotFoundError("User does not exist.")
        tx = grants.admin_grant(
            user, data['kind'], data['shares'], request.user,
            note=data['note'], currency=data['currency'],
        )
        return Response(AdminPurchaseTransactionSerializer(tx).data, status=status.HTTP_201_CREATED)


class PurchaseReportView(APIView):
    permission_classes = [IsAdmin]

    def get(self, request):
        return Response(ledger.purchase_report())


class GatewayEventLogViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = GatewayEventLogSerializer
    permission_classes = [IsAdmin]
    queryset = GatewayEventLog.objects.all()
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['gateway', 'status_code', 'reference']
