import logging

from django.http import Http404
from rest_framework import viewsets, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter

from apps.needs.exceptions import MarketplaceError
from apps.needs.permissions import IsNotGuest
from apps.needs.views import NeedPagination, UUID_PATTERN, error_response

from .serializers import (
    CardSerializer,
    InitializePaymentSerializer,
    PaymentCallbackSerializer,
    PaymentFilterSerializer,
    PaymentSerializer,
)
from apps.payments.services import (
    initialize_payment,
    verify_callback,
    get_payment,
    list_payments_for_user,
)

logger = logging.getLogger(__name__)


class PaymentViewSet(viewsets.GenericViewSet):
    """
    ViewSet for payments.

    list: Payments made or received by the current user
    create: Start paying for an accepted offer
    retrieve: Get a payment (payer or provider)
    """

    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated, IsNotGuest]
    pagination_class = NeedPagination
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        return list_payments_for_user(user=self.request.user)

    @extend_schema(parameters=[OpenApiParameter('offer', str)])
    def list(self, request):
        filter_serializer = PaymentFilterSerializer(data=request.query_params)
        filter_serializer.is_valid(raise_exception=True)

        payments = list_payments_for_user(
            user=request.user,
            offer_id=filter_serializer.validated_data.get('offer')
        )
        page = self.paginate_queryset(payments)
        if page is not None:
            return self.get_paginated_response(PaymentSerializer(page, many=True).data)
        return Response(PaymentSerializer(payments, many=True).data)

    @extend_schema(request=InitializePaymentSerializer, responses={201: PaymentSerializer})
    def create(self, request):
        """Start a payment; follow three_d_secure_url when present."""
        serializer = InitializePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        idempotency_key = (
            serializer.validated_data.get('idempotency_key')
            or request.headers.get('Idempotency-Key')
        )

        try:
            payment = initialize_payment(
                offer_id=serializer.validated_data['offer_id'],
                acting_user=request.user,
                card=CardSerializer.to_card(serializer.validated_data['card']),
                idempotency_key=idempotency_key,
            )
        except MarketplaceError as e:
            return error_response(e)

        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        try:
            payment = get_payment(payment_id=pk, acting_user=request.user)
        except MarketplaceError as e:
            raise Http404(str(e))
        return Response(PaymentSerializer(payment).data)


@extend_schema(
    parameters=[
        OpenApiParameter('paymentId', str, required=True),
        OpenApiParameter('status', str, required=True),
    ],
    responses={200: PaymentSerializer},
)
@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def payment_callback(request):
    """
    3-D Secure redirect target.

    The parameters only identify the payment; the outcome is confirmed
    with the gateway before anything is marked paid.
    """
    body = request.data if request.method == 'POST' else {}
    serializer = PaymentCallbackSerializer(data={
        'paymentId': body.get('paymentId') or request.query_params.get('paymentId'),
        'status': body.get('status') or request.query_params.get('status'),
    })
    serializer.is_valid(raise_exception=True)

    try:
        payment = verify_callback(
            payment_id=serializer.validated_data['paymentId'],
            status_token=serializer.validated_data['status'],
        )
    except MarketplaceError as e:
        logger.info("Payment callback for %s rejected: %s", serializer.validated_data['paymentId'], e.code)
        return error_response(e)

    return Response(PaymentSerializer(payment).data)
