"""
Installment plan API: preview, create, pay, cancel, and the admin views.
"""
import logging

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, generics, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from backend.apps.accounts.permissions import IsAdmin

from . import engine
from .models import InstallmentPlan
from .serializers import (
    AdminInstallmentPlanSerializer,
    InstallmentPlanSerializer,
    PlanCancelSerializer,
    PlanPaymentSerializer,
    PlanRequestSerializer,
)

logger = logging.getLogger(__name__)


def _plan_queryset():
    return InstallmentPlan.objects.prefetch_related('installments', 'payments')


class PlanCalculatorView(APIView):
    """Preview price, down payment and due dates without creating a plan."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PlanRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return Response(engine.calculate_plan(data['kind'], data['currency'], data['months']))


class PlanListCreateView(generics.ListCreateAPIView):
    serializer_class = InstallmentPlanSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'kind']

    def get_queryset(self):
        return _plan_queryset().filter(user=self.request.user)

    def create(self, request, *args, **kwargs):
        serializer = PlanRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        plan = engine.create_plan(request.user, data['kind'], data['currency'], data['months'])
        plan = _plan_queryset().get(pk=plan.pk)
        return Response(InstallmentPlanSerializer(plan).data, status=status.HTTP_201_CREATED)


class PlanDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, plan_id):
        engine.get_plan(plan_id, user=request.user)
        return Response(InstallmentPlanSerializer(_plan_queryset().get(plan_id=plan_id)).data)


class PlanPaymentView(APIView):
    """
    Pay towards a plan by card (returns a Paystack checkout) or with an
    uploaded proof of transfer (waits for admin approval).
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, plan_id):
        serializer = PlanPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = engine.start_payment(
            plan_id, request.user, data['amount_minor'],
            method=data['method'], proof=data.get('proof'),
        )
        return Response(result, status=status.HTTP_201_CREATED)


class PlanCancelView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, plan_id):
        serializer = PlanCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        plan = engine.cancel_plan(
            plan_id, request.user, serializer.validated_data['reason'] or "Cancelled by owner",
            user=request.user,
        )
        return Response(InstallmentPlanSerializer(_plan_queryset().get(pk=plan.pk)).data)


class AdminPlanViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = AdminInstallmentPlanSerializer
    permission_classes = [IsAdmin]
    lookup_field = 'plan_id'
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['status', 'kind', 'currency', 'user']
    search_fields = ['plan_id', 'user__email']
    ordering_fields = ['created_at', 'total_paid_minor', 'current_late_fee_minor']

    def get_queryset(self):
        return _plan_queryset().select_related('user')

    @action(detail=True, methods=['post'])
    def cancel(self, request, plan_id=None):
        serializer = PlanCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        plan = engine.cancel_plan(plan_id, request.user, serializer.validated_data['reason'] or "Cancelled by admin")
        return Response(self.get_serializer(self.get_queryset().get(pk=plan.pk)).data)

    @action(detail=False, methods=['post'], url_path='apply-late-fees')
    def apply_late_fees(self, request):
        summary = engine.apply_late_fees()
        logger.info(f"Admin {request.user.id} ran the late fee sweep: {summary}")
        return Response(summary)
