"""
Referral API: the buyer's earnings and downline, and the admin tools for
adjusting, rebuilding and reconciling the commission ledger.
"""
import logging

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, generics, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from backend.apps.accounts.permissions import IsAdmin
from backend.core.exceptions import NotFoundError

from . import ledger
from .models import ReferralEntry
from .serializers import (
    AdminReferralEntrySerializer,
    EntryAdjustmentSerializer,
    ManualAdjustmentSerializer,
    ReferralEntrySerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()


class EarningsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        data = ledger.user_earnings(request.user)
        return Response({
            'referral_code': request.user.referral_code,
            'totals': data['totals'],
            'recent_entries': ReferralEntrySerializer(data['recent_entries'], many=True).data,
        })


class ReferralTreeView(APIView):
    """Direct referrals and the two generations below them."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(ledger.referral_tree(request.user))


class UserReferralEntriesView(generics.ListAPIView):
    serializer_class = ReferralEntrySerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['generation', 'status', 'purchase_kind']

    def get_queryset(self):
        return ReferralEntry.objects.filter(beneficiary=self.request.user) \
            .select_related('source_user', 'source_transaction')


# ----------------------------------------------------------------------
# ADMIN
# ----------------------------------------------------------------------

class AdminReferralEntryViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = AdminReferralEntrySerializer
    permission_classes = [IsAdmin]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['status', 'generation', 'purchase_kind', 'currency', 'beneficiary']
    search_fields = ['beneficiary__email', 'source_user__email', 'source_transaction__transaction_id']
    ordering_fields = ['created_at', 'amount_minor']

    def get_queryset(self):
        return ReferralEntry.objects.select_related(
            'beneficiary', 'source_user', 'source_transaction', 'adjusted_by'
        )

    @action(detail=True, methods=['post'])
    def adjust(self, request, pk=None):
        serializer = EntryAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        entry = ledger.adjust_entry(
            self.get_object().pk, request.user, data['reason'],
            amount_minor=data.get('amount_minor'), status=data.get('status'),
        )
        return Response(self.get_serializer(self.get_queryset().get(pk=entry.pk)).data)


class AdminAdjustmentView(APIView):
    """Credit or debit a user's referral earnings outside any purchase."""
    permission_classes = [IsAdmin]

    def post(self, request):
        serializer = ManualAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            beneficiary = User.objects.get(pk=data['user_id'])
        except User.DoesNotExist:
            raise NotFoundError("User does not exist.")
        entry = ledger.create_adjustment(
            beneficiary, data['amount_minor'], data['currency'], request.user,
            data['reason'], generation=int(data['generation']),
        )
        return Response(AdminReferralEntrySerializer(entry).data, status=status.HTTP_201_CREATED)


class AdminSyncView(APIView):
    """Rebuild aggregates from entries for one user (``user_id``) or everyone."""
    permission_classes = [IsAdmin]

    def post(self, request):
        user = None
        user_id = request.data.get('user_id')
        if user_id:
            try:
                user = User.objects.get(pk=user_id)
            except (User.DoesNotExist, DjangoValidationError):
                raise NotFoundError("User does not exist.")
        result = ledger.sync_stats(user)
        logger.info(f"Admin {request.user.id} synced referral stats: {result}")
        return Response(result)


class AdminReconcileView(APIView):
    permission_classes = [IsAdmin]

    def post(self, request):
        result = ledger.reconcile(
            strict=bool(request.data.get('strict', False)),
            repair=bool(request.data.get('repair', False)),
        )
        return Response(result)
