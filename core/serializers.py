"""
Serializers for authentication, listings, bids and transactions.
"""

from rest_framework import serializers
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from .models import (
    CONDITION_CHOICES,
    AgentVerification,
    Bid,
    ConfirmationCode,
    Deduction,
    LifecycleEvent,
    Listing,
    ListingPhoto,
    Settlement,
    Transaction,
)
from .lifecycle import submit_listing
from .validators import normalize_phone_number, validate_phone_number
from .verification import outstanding_code

User = get_user_model()


# ============================================================================
# Authentication
# ============================================================================

class UserRegistrationSerializer(serializers.ModelSerializer):
    """
    Serializer for user registration.

    Accounts are passwordless: users log in with a code sent to their
    WhatsApp number. Vendors and agents start unapproved.

    Fields:
    - phone_number: Required, unique after normalization
    - role: Required, one of client, vendor, agent
    - business_name: Required for vendors
    - first_name, last_name, email, city: Optional
    """

    class Meta:
        model = User
        fields = [
            'id', 'phone_number', 'role', 'first_name', 'last_name', 'email',
            'business_name', 'city', 'is_approved', 'created_at'
        ]
        read_only_fields = ['id', 'is_approved', 'created_at']
        extra_kwargs = {
            'phone_number': {'required': True, 'allow_null': False, 'validators': []},
            'role': {'required': True},
        }

    def validate_phone_number(self, value):
        """
        Validate phone number format and uniqueness after normalization.
        """
        validate_phone_number(value)
        value = normalize_phone_number(value)

        if User.objects.filter(phone_number=value).exists():
            raise serializers.ValidationError(
                "A user with that phone number already exists."
            )

        return value

    def validate_role(self, value):
        """
        Admin accounts cannot be self-registered.
        """
        valid_roles = ['client', 'vendor', 'agent']

        if value not in valid_roles:
            raise serializers.ValidationError(
                f"Role must be one of: {', '.join(valid_roles)}."
            )

        return value

    def validate(self, attrs):
        if attrs.get('role') == 'vendor' and not attrs.get('business_name', '').strip():
            raise serializers.ValidationError({
                'business_name': 'Business name is required for vendors.'
            })
        return attrs

    def create(self, validated_data):
        """
        Create a passwordless user.

        The normalized phone number doubles as the username.
        """
        with transaction.atomic():
            user = User(
                username=validated_data['phone_number'],
                is_approved=False,
                **validated_data
            )
            user.set_unusable_password()
            user.save()

        return user


class OTPRequestSerializer(serializers.Serializer):
    """Phone number to send a login code to."""
    phone_number = serializers.CharField(max_length=20)

    def validate_phone_number(self, value):
        validate_phone_number(value)
        return normalize_phone_number(value)


class OTPVerifySerializer(OTPRequestSerializer):
    """Phone number and the login code received on it."""
    code = serializers.RegexField(
        r'^\d{4,10}$',
        error_messages={'invalid': 'Code must contain only digits.'}
    )


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(
        required=True,
        help_text='Refresh token to blacklist'
    )


class UserProfileSerializer(serializers.ModelSerializer):
    """
    Serializer for the authenticated user's profile (read only).
    """

    class Meta:
        model = User
        fields = [
            'id', 'phone_number', 'role', 'first_name', 'last_name', 'email',
            'business_name', 'city', 'is_approved', 'is_available', 'created_at'
        ]
        read_only_fields = fields


class UserProfileUpdateSerializer(serializers.ModelSerializer):
    """
    Profile fields a user may change.

    Phone number, role and approval are managed by admins.
    """

    class Meta:
        model = User
        fields = ['first_name', 'last_name', 'email', 'business_name', 'city', 'is_available']

    def validate_is_available(self, value):
        if not self.instance.is_agent():
            raise serializers.ValidationError(
                "Only agents can change availability."
            )
        return value

    def validate(self, attrs):
        business_name = attrs.get('business_name', self.instance.business_name)
        if self.instance.is_vendor() and not business_name.strip():
            raise serializers.ValidationError({
                'business_name': 'Business name is required for vendors.'
            })
        return attrs


class PartySerializer(serializers.ModelSerializer):
    """Public details of another user in a listing or transaction."""

    class Meta:
        model = User
        fields = ['id', 'first_name', 'last_name', 'role', 'business_name', 'city']
        read_only_fields = fields


# ============================================================================
# Listings
# ============================================================================

class ListingPhotoSerializer(serializers.ModelSerializer):
    """
    Device photo with a full image URL.
    """

    image_url = serializers.SerializerMethodField()

    class Meta:
        model = ListingPhoto
        fields = ['id', 'image', 'image_url', 'photo_type', 'uploaded_at']
        read_only_fields = ['id', 'image_url', 'uploaded_at']
        extra_kwargs = {
            'image': {'write_only': True},
        }

    def get_image_url(self, obj):
        if obj.image:
            request = self.context.get('request')
            if request is not None:
                return request.build_absolute_uri(obj.image.url)
            return obj.image.url
        return None


class ListingCreateSerializer(serializers.ModelSerializer):
    """
    Serializer for submitting a device listing.

    Field validators (IMEI check digit, pincode) come from the model; the
    cross-field rules are repeated here so they surface as 400 responses.
    """

    class Meta:
        model = Listing
        fields = [
            'id', 'brand', 'device_model', 'variant', 'storage_capacity', 'color',
            'condition', 'asking_price', 'description', 'imei1', 'imei2',
            'has_warranty', 'warranty_expires_at', 'pickup_street', 'pickup_city',
            'pickup_state', 'pickup_pincode', 'pickup_landmark', 'status', 'created_at'
        ]
        read_only_fields = ['id', 'status', 'created_at']

    def validate_brand(self, value):
        if not value.strip():
            raise serializers.ValidationError("Brand cannot be empty.")
        return value.strip()

    def validate_asking_price(self, value):
        if value <= 0:
            raise serializers.ValidationError("Asking price must be greater than 0.")
        return value

    def validate(self, attrs):
        if attrs.get('imei2') and attrs.get('imei2') == attrs.get('imei1'):
            raise serializers.ValidationError({
                'imei2': 'Second IMEI must differ from the first.'
            })

        if attrs.get('has_warranty') and not attrs.get('warranty_expires_at'):
            raise serializers.ValidationError({
                'warranty_expires_at': 'Warranty expiry date is required when the device has a warranty.'
            })

        return attrs

    def create(self, validated_data):
        return submit_listing(self.context['request'].user, **validated_data)


class ListingSerializer(serializers.ModelSerializer):
    """
    Listing as shown to buyers, owners and admins.

    highest_bid and bid_count come from search_listings annotations when
    present and are computed otherwise.
    """

    client = PartySerializer(read_only=True)
    photos = ListingPhotoSerializer(many=True, read_only=True)
    highest_bid = serializers.SerializerMethodField()
    bid_count = serializers.SerializerMethodField()
    time_remaining_seconds = serializers.SerializerMethodField()

    class Meta:
        model = Listing
        fields = [
            'id', 'client', 'brand', 'device_model', 'variant', 'storage_capacity',
            'color', 'condition', 'asking_price', 'description', 'has_warranty',
            'warranty_expires_at', 'pickup_city', 'pickup_state', 'status',
            'review_comments', 'rejection_reason', 'bidding_starts_at',
            'bidding_ends_at', 'time_remaining_seconds', 'highest_bid', 'bid_count',
            'photos', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_highest_bid(self, obj):
        if hasattr(obj, 'highest_bid'):
            value = obj.highest_bid
        else:
            top = obj.bids.filter(status__in=['active', 'accepted']).order_by('-amount').first()
            value = top.amount if top else None
        return str(value) if value is not None else None

    def get_bid_count(self, obj):
        if hasattr(obj, 'bid_count'):
            return obj.bid_count
        return obj.bids.count()

    def get_time_remaining_seconds(self, obj):
        if obj.status != 'bidding_active' or obj.bidding_ends_at is None:
            return None
        return max(0, int((obj.bidding_ends_at - timezone.now()).total_seconds()))


class ListingOwnerSerializer(ListingSerializer):
    """Listing with the private fields only its owner and admins see."""

    class Meta(ListingSerializer.Meta):
        fields = ListingSerializer.Meta.fields + [
            'imei1', 'imei2', 'pickup_street', 'pickup_pincode', 'pickup_landmark'
        ]
        read_only_fields = fields


class ListingSearchSerializer(serializers.Serializer):
    """
    Validates listing search query parameters.

    condition and status accept comma separated values.
    """

    SORT_CHOICES = ['price_low', 'price_high', 'newest', 'ending_soon']

    brand = serializers.CharField(required=False, max_length=50)
    device_model = serializers.CharField(required=False, max_length=100)
    condition = serializers.CharField(required=False)
    min_price = serializers.DecimalField(required=False, max_digits=10, decimal_places=2, min_value=0)
    max_price = serializers.DecimalField(required=False, max_digits=10, decimal_places=2, min_value=0)
    city = serializers.CharField(required=False, max_length=100)
    status = serializers.CharField(required=False)
    sort = serializers.ChoiceField(required=False, choices=SORT_CHOICES)
    mine = serializers.BooleanField(required=False, default=False)

    def _split_choices(self, value, choices, label):
        items = [item.strip() for item in value.split(',') if item.strip()]
        valid = dict(choices)
        invalid = [item for item in items if item not in valid]
        if invalid:
            raise serializers.ValidationError(
                f"Invalid {label}: {', '.join(invalid)}. Allowed: {', '.join(valid)}."
            )
        return items

    def validate_condition(self, value):
        return self._split_choices(value, CONDITION_CHOICES, 'condition')

    def validate_status(self, value):
        return self._split_choices(value, Listing.STATUS_CHOICES, 'status')

    def validate(self, attrs):
        min_price = attrs.get('min_price')
        max_price = attrs.get('max_price')
        if min_price is not None and max_price is not None and min_price > max_price:
            raise serializers.ValidationError({
                'min_price': 'min_price cannot be greater than max_price.'
            })
        return attrs


class ListingReviewSerializer(serializers.Serializer):
    """Admin decision on a listing."""

    ACTION_CHOICES = ['start_review', 'approve', 'reject']

    action = serializers.ChoiceField(choices=ACTION_CHOICES)
    comments = serializers.CharField(required=False, allow_blank=True, default='')
    reason = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['action'] == 'reject' and not attrs.get('reason', '').strip():
            raise serializers.ValidationError({
                'reason': 'A rejection reason is required.'
            })
        return attrs


# ============================================================================
# Bids
# ============================================================================

class BidCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    message = serializers.CharField(required=False, allow_blank=True, max_length=500, default='')

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Bid amount must be greater than 0.")
        return value


class BidSerializer(serializers.ModelSerializer):
    vendor = PartySerializer(read_only=True)
    listing_id = serializers.IntegerField(read_only=True)
    transaction_id = serializers.SerializerMethodField()

    class Meta:
        model = Bid
        fields = [
            'id', 'listing_id', 'vendor', 'amount', 'message', 'status',
            'placed_at', 'accepted_at', 'closed_at', 'transaction_id'
        ]
        read_only_fields = fields

    def get_transaction_id(self, obj):
        if obj.status != 'accepted':
            return None
        tx = Transaction.objects.filter(accepted_bid=obj).only('id').first()
        return tx.id if tx else None


class LifecycleEventSerializer(serializers.ModelSerializer):
    """One entry of a listing's progress timeline."""

    title = serializers.CharField(source='get_event_type_display', read_only=True)
    actor = PartySerializer(read_only=True)
    transaction_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = LifecycleEvent
        fields = ['id', 'event_type', 'title', 'actor', 'transaction_id', 'payload', 'created_at']
        read_only_fields = fields


# ============================================================================
# Transactions
# ============================================================================

class AgentVerificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = AgentVerification
        fields = [
            'customer_id_verified', 'id_type', 'id_number_last4', 'identity_verified_at',
            'actual_condition', 'battery_health', 'functional_issues', 'cosmetic_issues',
            'accessories_included', 'photo_refs', 'inspection_notes', 'inspected_at',
            'customer_accepted', 'accepted_at'
        ]
        read_only_fields = fields


class DeductionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Deduction
        fields = ['id', 'category', 'description', 'rate', 'amount', 'severity']
        read_only_fields = fields


class SettlementSerializer(serializers.ModelSerializer):
    class Meta:
        model = Settlement
        fields = [
            'reference', 'final_offer', 'client_payout', 'agent_commission',
            'platform_fee', 'commission_rate', 'fee_rate', 'total_payable',
            'payment_method', 'settled_at'
        ]
        read_only_fields = fields


class ConfirmationStatusSerializer(serializers.ModelSerializer):
    """Outstanding code metadata. Never includes the code."""

    class Meta:
        model = ConfirmationCode
        fields = ['purpose', 'status', 'expires_at', 'created_at']
        read_only_fields = fields


class TransactionSerializer(serializers.ModelSerializer):
    """
    Full transaction state including verification evidence, deductions,
    settlement and the confirmation currently awaited.
    """

    listing = ListingSerializer(read_only=True)
    client = PartySerializer(read_only=True)
    vendor = PartySerializer(read_only=True)
    agent = PartySerializer(read_only=True)
    verification = AgentVerificationSerializer(read_only=True)
    deductions = DeductionSerializer(many=True, read_only=True)
    settlement = serializers.SerializerMethodField()
    pending_confirmation = serializers.SerializerMethodField()

    class Meta:
        model = Transaction
        fields = [
            'id', 'listing', 'client', 'vendor', 'agent', 'accepted_bid',
            'bid_amount', 'total_deductions', 'final_offer', 'phase', 'status',
            'step', 'scheduled_pickup_at', 'handover_photo_ref',
            'vendor_confirmed_at', 'client_confirmed_at', 'dispute_reason',
            'completed_at', 'verification', 'deductions', 'settlement',
            'pending_confirmation', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_settlement(self, obj):
        settlement = Settlement.objects.filter(transaction=obj).first()
        if settlement is None:
            return None
        return SettlementSerializer(settlement).data

    def get_pending_confirmation(self, obj):
        code = outstanding_code(obj)
        if code is None:
            return None
        return ConfirmationStatusSerializer(code).data


class AgentSuggestionSerializer(serializers.ModelSerializer):
    open_pickups = serializers.IntegerField(read_only=True)
    same_city = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'first_name', 'last_name', 'phone_number', 'city', 'open_pickups', 'same_city']
        read_only_fields = fields

    def get_same_city(self, obj):
        return getattr(obj, 'city_rank', 1) == 0


class AssignAgentSerializer(serializers.Serializer):
    agent_id = serializers.IntegerField()

    def validate_agent_id(self, value):
        try:
            agent = User.objects.get(pk=value)
        except User.DoesNotExist:
            raise serializers.ValidationError(f"User with ID {value} does not exist.")
        if not agent.is_agent():
            raise serializers.ValidationError("Selected user is not an agent.")
        return value


class SchedulePickupSerializer(serializers.Serializer):
    scheduled_at = serializers.DateTimeField()


class VerifyIdentitySerializer(serializers.Serializer):
    id_type = serializers.ChoiceField(choices=AgentVerification.ID_TYPE_CHOICES)
    id_number = serializers.CharField(min_length=4, max_length=20)
    id_photo_ref = serializers.CharField(max_length=300)


class InspectionSerializer(serializers.Serializer):
    actual_condition = serializers.ChoiceField(choices=CONDITION_CHOICES)
    battery_health = serializers.IntegerField(min_value=0, max_value=100)
    functional_issues = serializers.ListField(
        child=serializers.CharField(max_length=200), required=False, default=list
    )
    cosmetic_issues = serializers.ListField(
        child=serializers.CharField(max_length=200), required=False, default=list
    )
    accessories_included = serializers.ListField(
        child=serializers.CharField(max_length=50), required=False, default=list
    )
    photo_refs = serializers.ListField(child=serializers.CharField(max_length=300))
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class HandOverSerializer(serializers.Serializer):
    handover_photo_ref = serializers.CharField(max_length=300)


class ConfirmationCodeSerializer(serializers.Serializer):
    code = serializers.RegexField(
        r'^\d{4,10}$',
        error_messages={'invalid': 'Code must contain only digits.'}
    )


class CompletionSerializer(ConfirmationCodeSerializer):
    payment_method = serializers.ChoiceField(
        choices=Settlement.PAYMENT_METHOD_CHOICES, required=False, default='upi'
    )


class ResendCodeSerializer(serializers.Serializer):
    purpose = serializers.ChoiceField(
        choices=[choice for choice in ConfirmationCode.PURPOSE_CHOICES if choice[0] != 'login'],
        required=False
    )


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)

    def validate_reason(self, value):
        if not value.strip():
            raise serializers.ValidationError("Reason cannot be empty.")
        return value.strip()


class DeclineOfferSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=2000, default='')
