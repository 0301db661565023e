from rest_framework import serializers
from .models import Category, Need, NeedStatus, Offer, OfferStatus, Urgency
from apps.accounts.models import User


# =============================================================================
# Input Serializers
# =============================================================================

class NeedFilterSerializer(serializers.Serializer):
    """
    Validate query parameters for need listing.

    Query Parameters:
        status (str): Filter by need status
        category (UUID): Filter by category
        mine (bool): Only needs posted by the current user
        search (str): Match title or description
    """

    status = serializers.ChoiceField(choices=NeedStatus.choices, required=False)
    category = serializers.UUIDField(required=False)
    mine = serializers.BooleanField(required=False, default=False)
    search = serializers.CharField(max_length=100, required=False)


class NeedCreateSerializer(serializers.Serializer):
    """Shape check for posting a need; business rules live in the service."""

    title = serializers.CharField(max_length=200)
    description = serializers.CharField(max_length=2000)
    category_id = serializers.UUIDField()
    min_budget = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    max_budget = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    currency = serializers.CharField(max_length=3, required=False)
    address = serializers.CharField(max_length=500, required=False, allow_blank=True)
    urgency = serializers.ChoiceField(choices=Urgency.choices, required=False)
    expires_at = serializers.DateTimeField(required=False, allow_null=True)


class NeedUpdateSerializer(NeedCreateSerializer):
    """All fields optional for partial updates; currency is fixed at creation."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields.pop('currency')
        for field in self.fields.values():
            field.required = False


class OfferDecisionSerializer(serializers.Serializer):
    """Body of accept_offer."""

    offer_id = serializers.UUIDField()


class OfferRejectSerializer(OfferDecisionSerializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True)


class OfferCreateSerializer(serializers.Serializer):
    need_id = serializers.UUIDField()
    price = serializers.DecimalField(max_digits=12, decimal_places=2)
    description = serializers.CharField(max_length=2000)
    delivery_days = serializers.IntegerField()
    currency = serializers.CharField(max_length=3, required=False)
    idempotency_key = serializers.CharField(max_length=64, required=False, allow_blank=True)


class OfferUpdateSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    description = serializers.CharField(max_length=2000, required=False)
    delivery_days = serializers.IntegerField(required=False)


class OfferFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OfferStatus.choices, required=False)


# =============================================================================
# Output Serializers
# =============================================================================

class UserMinimalSerializer(serializers.ModelSerializer):
    """Minimal user info for nested serialization."""

    display_name = serializers.CharField(source='get_display_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'display_name']


class CategorySerializer(serializers.ModelSerializer):

    class Meta:
        model = Category
        fields = ['id', 'name', 'slug', 'description', 'parent', 'sort_order']
        read_only_fields = fields


class NeedSerializer(serializers.ModelSerializer):
    owner = UserMinimalSerializer(read_only=True)
    category = CategorySerializer(read_only=True)
    offer_count = serializers.SerializerMethodField()
    is_accepting_offers = serializers.BooleanField(read_only=True)

    class Meta:
        model = Need
        fields = [
            'id',
            'owner',
            'category',
            'title',
            'description',
            'min_budget',
            'max_budget',
            'currency',
            'address',
            'urgency',
            'status',
            'is_accepting_offers',
            'offer_count',
            'expires_at',
            'payment_received_at',
            'closed_at',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_offer_count(self, obj):
        return obj.offers.count()


class NeedListSerializer(serializers.ModelSerializer):
    """Lightweight need representation for lists."""

    category_name = serializers.CharField(source='category.name', read_only=True)

    class Meta:
        model = Need
        fields = [
            'id',
            'title',
            'category_name',
            'min_budget',
            'max_budget',
            'currency',
            'urgency',
            'status',
            'expires_at',
            'created_at',
        ]
        read_only_fields = fields


class OfferSerializer(serializers.ModelSerializer):
    provider = UserMinimalSerializer(read_only=True)
    need_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Offer
        fields = [
            'id',
            'need_id',
            'provider',
            'price',
            'currency',
            'description',
            'delivery_days',
            'status',
            'rejection_reason',
            'created_at',
            'updated_at',
            'resolved_at',
        ]
        read_only_fields = fields


class OfferStatsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    pending = serializers.IntegerField()
    accepted = serializers.IntegerField()
    rejected = serializers.IntegerField()
    withdrawn = serializers.IntegerField()
    lowest_price = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    average_price = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    average_delivery_days = serializers.FloatField(allow_null=True)
