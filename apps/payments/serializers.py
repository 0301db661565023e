from django.utils import timezone
from rest_framework import serializers

from .gateway import CardDetails
from .models import Payment


# =============================================================================
# Input Serializers
# =============================================================================

class CardSerializer(serializers.Serializer):
    """
    Validate card input. Write-only; never echoed back or stored.
    """

    holder_name = serializers.CharField(max_length=100)
    number = serializers.RegexField(r'^[0-9 ]{12,23}$', write_only=True)
    expiry_month = serializers.IntegerField(min_value=1, max_value=12)
    expiry_year = serializers.IntegerField(min_value=2000, max_value=2100)
    cvc = serializers.RegexField(r'^[0-9]{3,4}$', write_only=True)

    def validate(self, attrs):
        """Reject expired cards."""
        today = timezone.now().date()
        if (attrs['expiry_year'], attrs['expiry_month']) < (today.year, today.month):
            raise serializers.ValidationError({'expiry_year': 'Card has expired'})
        return attrs

    @staticmethod
    def to_card(data) -> CardDetails:
        return CardDetails(
            holder_name=data['holder_name'],
            number=data['number'].replace(' ', ''),
            expiry_month=data['expiry_month'],
            expiry_year=data['expiry_year'],
            cvc=data['cvc'],
        )


class InitializePaymentSerializer(serializers.Serializer):
    offer_id = serializers.UUIDField()
    card = CardSerializer()
    idempotency_key = serializers.CharField(max_length=64, required=False, allow_blank=True)


class PaymentCallbackSerializer(serializers.Serializer):
    """
    Query parameters of the 3-D Secure redirect.

    Query Parameters:
        paymentId (UUID): Payment being verified
        status (str): Status token issued by the gateway
    """

    paymentId = serializers.UUIDField()
    status = serializers.CharField(max_length=255)


class PaymentFilterSerializer(serializers.Serializer):
    offer = serializers.UUIDField(required=False)


# =============================================================================
# Output Serializers
# =============================================================================

class PaymentSerializer(serializers.ModelSerializer):
    offer_id = serializers.UUIDField(read_only=True)
    payer_id = serializers.UUIDField(read_only=True)
    need_id = serializers.UUIDField(source='offer.need_id', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id',
            'offer_id',
            'need_id',
            'payer_id',
            'amount',
            'currency',
            'status',
            'three_d_secure_url',
            'failure_code',
            'failure_reason',
            'created_at',
            'updated_at',
            'finalized_at',
        ]
        read_only_fields = fields
