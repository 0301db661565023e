from django.http import Http404
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated, IsAuthenticatedOrReadOnly
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema, OpenApiParameter

from .models import Category, Need, NeedStatus, Offer
from .serializers import (
    CategorySerializer,
    NeedCreateSerializer,
    NeedFilterSerializer,
    NeedListSerializer,
    NeedSerializer,
    NeedUpdateSerializer,
    OfferCreateSerializer,
    OfferDecisionSerializer,
    OfferRejectSerializer,
    OfferFilterSerializer,
    OfferSerializer,
    OfferStatsSerializer,
    OfferUpdateSerializer,
)
from .permissions import IsNeedOwner, IsNotGuest, IsOfferProvider

from apps.needs.services import (
    create_need,
    update_need,
    cancel_need,
    complete_need,
    list_needs,
    submit_offer,
    update_offer,
    withdraw_offer,
    accept_offer,
    reject_offer,
    get_offer,
    list_offers_for_need,
    list_offers_by_provider,
    get_offer_stats,
    # Exceptions
    MarketplaceError,
    DomainValidationError,
)

UUID_PATTERN = r'[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}'


def error_response(exc: MarketplaceError) -> Response:
    """Convert a domain error into the API's error body."""
    body = {'error': str(exc), 'code': exc.code}
    if isinstance(exc, DomainValidationError) and exc.field:
        body['field'] = exc.field
    return Response(body, status=exc.status_code)


class NeedPagination(PageNumberPagination):
    """Custom pagination for needs and offers."""
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


class CategoryViewSet(viewsets.ReadOnlyModelViewSet):
    """Active categories a need can be filed under."""

    queryset = Category.objects.filter(is_active=True)
    serializer_class = CategorySerializer
    permission_classes = [AllowAny]
    pagination_class = None
    lookup_value_regex = UUID_PATTERN


class NeedViewSet(viewsets.ModelViewSet):
    """
    ViewSet for needs and the owner's decisions on offers.

    All business logic is handled by services.
    Views are thin HTTP handlers only.

    list: Browse needs (active by default)
    create: Post a new need
    retrieve: Get a specific need
    partial_update: Edit an active need (owner only)
    """

    queryset = Need.objects.select_related('owner', 'category')
    serializer_class = NeedSerializer
    permission_classes = [IsAuthenticatedOrReadOnly, IsNotGuest]
    pagination_class = NeedPagination
    lookup_value_regex = UUID_PATTERN
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_queryset(self):
        if self.action != 'list':
            return super().get_queryset()

        filter_serializer = NeedFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        filters = filter_serializer.validated_data

        owner = None
        if filters.get('mine') and self.request.user.is_authenticated:
            owner = self.request.user

        needs_status = filters.get('status')
        if not needs_status and owner is None:
            needs_status = NeedStatus.ACTIVE

        return list_needs(
            status=needs_status,
            category_id=filters.get('category'),
            owner=owner,
            search=filters.get('search'),
        )

    def get_serializer_class(self):
        """Use different serializers for different actions."""
        if self.action == 'list':
            return NeedListSerializer
        elif self.action == 'create':
            return NeedCreateSerializer
        elif self.action == 'partial_update':
            return NeedUpdateSerializer
        return NeedSerializer

    def get_permissions(self):
        """Set permissions based on action."""
        if self.action == 'partial_update':
            return [IsAuthenticated(), IsNotGuest(), IsNeedOwner()]
        if self.action in ['offers', 'offer_stats']:
            return [IsAuthenticated()]
        return super().get_permissions()

    @extend_schema(parameters=[
        OpenApiParameter('status', str, enum=NeedStatus.values),
        OpenApiParameter('category', str),
        OpenApiParameter('mine', bool),
        OpenApiParameter('search', str),
    ])
    def list(self, request, *args, **kwargs):
        return super().list(request, *args, **kwargs)

    @extend_schema(request=NeedCreateSerializer, responses={201: NeedSerializer})
    def create(self, request, *args, **kwargs):
        """Post a new need."""
        serializer = NeedCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            need = create_need(owner=request.user, **serializer.validated_data)
        except MarketplaceError as e:
            return error_response(e)

        output_serializer = NeedSerializer(need, context={'request': request})
        return Response(output_serializer.data, status=status.HTTP_201_CREATED)

    @extend_schema(request=NeedUpdateSerializer, responses={200: NeedSerializer})
    def partial_update(self, request, *args, **kwargs):
        """Edit an active need."""
        need = self.get_object()
        serializer = NeedUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        try:
            need = update_need(need_id=need.id, acting_user=request.user, **serializer.validated_data)
        except MarketplaceError as e:
            return error_response(e)

        return Response(NeedSerializer(need, context={'request': request}).data)

    @extend_schema(request=None, responses={200: NeedSerializer})
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """Cancel a need (owner, or accepted provider once in progress)."""
        try:
            need = cancel_need(need_id=pk, acting_user=request.user)
        except MarketplaceError as e:
            return error_response(e)
        return Response(NeedSerializer(need, context={'request': request}).data)

    @extend_schema(request=None, responses={200: NeedSerializer})
    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        """Confirm delivery of a paid need (owner only)."""
        try:
            need = complete_need(need_id=pk, acting_user=request.user)
        except MarketplaceError as e:
            return error_response(e)
        return Response(NeedSerializer(need, context={'request': request}).data)

    @extend_schema(responses={200: OfferSerializer(many=True)})
    @action(detail=True, methods=['get'])
    def offers(self, request, pk=None):
        """Offers on this need; non-owners only see their own."""
        try:
            offers = list_offers_for_need(need_id=pk, acting_user=request.user)
        except MarketplaceError as e:
            return error_response(e)
        return Response(OfferSerializer(offers, many=True).data)

    @extend_schema(responses={200: OfferStatsSerializer})
    @action(detail=True, methods=['get'])
    def offer_stats(self, request, pk=None):
        """Offer statistics for the owner."""
        try:
            stats = get_offer_stats(need_id=pk, acting_user=request.user)
        except MarketplaceError as e:
            return error_response(e)
        return Response(OfferStatsSerializer(stats).data)

    @extend_schema(request=OfferDecisionSerializer, responses={200: OfferSerializer})
    @action(detail=True, methods=['post'])
    def accept_offer(self, request, pk=None):
        """Accept an offer; all other pending offers are rejected."""
        serializer = OfferDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            offer = accept_offer(
                need_id=pk,
                offer_id=serializer.validated_data['offer_id'],
                acting_user=request.user
            )
        except MarketplaceError as e:
            return error_response(e)

        return Response(OfferSerializer(offer).data)

    @extend_schema(request=OfferRejectSerializer, responses={200: OfferSerializer})
    @action(detail=True, methods=['post'])
    def reject_offer(self, request, pk=None):
        """Reject a single offer, optionally with a reason for the provider."""
        serializer = OfferRejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            offer = reject_offer(
                need_id=pk,
                offer_id=serializer.validated_data['offer_id'],
                acting_user=request.user,
                reason=serializer.validated_data.get('reason')
            )
        except MarketplaceError as e:
            return error_response(e)

        return Response(OfferSerializer(offer).data)


class OfferViewSet(viewsets.GenericViewSet):
    """
    ViewSet for a provider's own offers.

    list: Offers made by the current user
    create: Submit an offer on a need
    retrieve: Get an offer (provider or need owner)
    partial_update: Revise a pending offer (provider only)
    withdraw: Withdraw a pending offer (provider only)
    """

    queryset = Offer.objects.select_related('need', 'provider')
    serializer_class = OfferSerializer
    permission_classes = [IsAuthenticated, IsNotGuest]
    pagination_class = NeedPagination
    lookup_value_regex = UUID_PATTERN

    def get_object(self):
        try:
            offer = get_offer(offer_id=self.kwargs['pk'], acting_user=self.request.user)
        except MarketplaceError as e:
            raise Http404(str(e))
        self.check_object_permissions(self.request, offer)
        return offer

    def get_permissions(self):
        if self.action in ['partial_update', 'withdraw']:
            return [IsAuthenticated(), IsNotGuest(), IsOfferProvider()]
        return super().get_permissions()

    @extend_schema(parameters=[OpenApiParameter('status', str)])
    def list(self, request):
        """Offers made by the current user."""
        filter_serializer = OfferFilterSerializer(data=request.query_params)
        filter_serializer.is_valid(raise_exception=True)

        offers = list_offers_by_provider(
            provider=request.user,
            status=filter_serializer.validated_data.get('status')
        )
        page = self.paginate_queryset(offers)
        if page is not None:
            return self.get_paginated_response(OfferSerializer(page, many=True).data)
        return Response(OfferSerializer(offers, many=True).data)

    @extend_schema(request=OfferCreateSerializer, responses={201: OfferSerializer})
    def create(self, request):
        """Submit an offer on a need."""
        serializer = OfferCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        idempotency_key = data.get('idempotency_key') or request.headers.get('Idempotency-Key')

        try:
            offer = submit_offer(
                need_id=data['need_id'],
                provider=request.user,
                price=data['price'],
                description=data['description'],
                delivery_days=data['delivery_days'],
                currency=data.get('currency'),
                idempotency_key=idempotency_key,
            )
        except MarketplaceError as e:
            return error_response(e)

        return Response(OfferSerializer(offer).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return Response(OfferSerializer(self.get_object()).data)

    @extend_schema(request=OfferUpdateSerializer, responses={200: OfferSerializer})
    def partial_update(self, request, pk=None):
        """Revise a pending offer."""
        offer = self.get_object()
        serializer = OfferUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            offer = update_offer(offer_id=offer.id, acting_user=request.user, **serializer.validated_data)
        except MarketplaceError as e:
            return error_response(e)

        return Response(OfferSerializer(offer).data)

    @extend_schema(request=None, responses={200: OfferSerializer})
    @action(detail=True, methods=['post'])
    def withdraw(self, request, pk=None):
        """Withdraw a pending offer."""
        offer = self.get_object()
        try:
            offer = withdraw_offer(offer_id=offer.id, acting_user=request.user)
        except MarketplaceError as e:
            return error_response(e)
        return Response(OfferSerializer(offer).data)
