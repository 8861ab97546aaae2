"""
Share inventory views: public availability, quotes and admin pricing.
"""
import logging

from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from backend.apps.accounts.permissions import IsAdmin

from . import inventory
from .models import ShareKind
from .serializers import PricingUpdateSerializer, QuoteRequestSerializer

logger = logging.getLogger(__name__)


class AvailabilityView(APIView):
    """Availability snapshot for regular (default) or co-founder shares."""
    permission_classes = [AllowAny]

    def get(self, request):
        kind = request.query_params.get('kind', ShareKind.REGULAR)
        return Response(inventory.availability(kind))


class QuoteView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        quote = inventory.quote(**serializer.validated_data)
        return Response(quote.as_dict())


class InventoryStatisticsView(APIView):
    permission_classes = [IsAdmin]

    def get(self, request):
        return Response(inventory.inventory_statistics())


class PricingUpdateView(APIView):
    permission_classes = [IsAdmin]

    def post(self, request):
        serializer = PricingUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        inventory.update_pricing(
            data['target'],
            price_naira_minor=data.get('price_naira_minor'),
            price_usdt_minor=data.get('price_usdt_minor'),
            capacity=data.get('capacity'),
            ratio=data.get('share_to_regular_ratio'),
        )
        logger.info("Admin %s updated pricing for %s", request.user.id, data['target'])
        return Response(inventory.inventory_statistics(), status=status.HTTP_200_OK)
