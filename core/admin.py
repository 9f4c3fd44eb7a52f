"""
Django admin configuration for the CellFlip marketplace.
"""

from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .exceptions import MarketplaceError
from .models import (
    AgentVerification,
    Bid,
    ConfirmationCode,
    Deduction,
    LifecycleEvent,
    Listing,
    ListingPhoto,
    Settlement,
    Transaction,
    User,
)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Custom admin interface for User model.

    Extends Django's UserAdmin with marketplace role and approval fields.
    """

    list_display = [
        'username',
        'phone_number',
        'role',
        'business_name',
        'city',
        'is_approved',
        'is_available',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'role',
        'is_approved',
        'is_available',
        'is_staff',
        'is_active',
        'created_at',
    ]

    search_fields = [
        'username',
        'phone_number',
        'first_name',
        'last_name',
        'email',
        'business_name',
    ]

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Personal Info'), {
            'fields': (
                'first_name',
                'last_name',
                'email',
                'phone_number',
                'city',
            )
        }),
        (_('Marketplace Role'), {
            'fields': ('role', 'business_name', 'is_approved', 'is_available')
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'groups',
                'user_permissions',
            ),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': (
                'username',
                'phone_number',
                'password1',
                'password2',
                'role',
                'business_name',
                'city',
            ),
        }),
    )

    readonly_fields = ['created_at', 'updated_at', 'last_login', 'date_joined']

    date_hierarchy = 'created_at'

    list_per_page = 25

    actions = ['approve_partners']

    def get_readonly_fields(self, request, obj=None):
        if obj:  # Editing an existing object
            return self.readonly_fields
        return []

    @admin.action(description=_('Approve selected vendors and agents'))
    def approve_partners(self, request, queryset):
        updated = queryset.filter(role__in=['vendor', 'agent']).update(is_approved=True)
        self.message_user(request, f'{updated} account(s) approved.', messages.SUCCESS)


# ============================================================================
# Listing Admin
# ============================================================================

class ListingPhotoInline(admin.TabularInline):
    """Inline admin for listing photos."""
    model = ListingPhoto
    extra = 0
    fields = ['image', 'photo_type', 'uploaded_at']
    readonly_fields = ['uploaded_at']


class BidInline(admin.TabularInline):
    model = Bid
    extra = 0
    fields = ['vendor', 'amount', 'status', 'placed_at']
    readonly_fields = fields
    can_delete = False


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    """
    Admin interface for Listing model.

    Approval and rejection go through the lifecycle functions so the
    bidding window and audit events are set like they are through the API.
    """

    list_display = [
        'id',
        'brand',
        'device_model',
        'client',
        'condition',
        'asking_price',
        'status',
        'bidding_ends_at',
        'created_at',
    ]

    list_filter = [
        'status',
        'condition',
        'brand',
        'pickup_city',
        'created_at',
    ]

    search_fields = [
        'brand',
        'device_model',
        'imei1',
        'imei2',
        'client__phone_number',
        'client__username',
    ]

    readonly_fields = [
        'status', 'reviewed_by', 'reviewed_at', 'bidding_starts_at',
        'bidding_ends_at', 'created_at', 'updated_at'
    ]

    ordering = ['-created_at']

    date_hierarchy = 'created_at'

    list_per_page = 25

    inlines = [ListingPhotoInline, BidInline]

    actions = ['approve_listings']

    fieldsets = (
        (None, {
            'fields': ('client', 'brand', 'device_model', 'variant', 'storage_capacity', 'color')
        }),
        (_('Condition & Price'), {
            'fields': ('condition', 'asking_price', 'description', 'imei1', 'imei2',
                       'has_warranty', 'warranty_expires_at')
        }),
        (_('Pickup Address'), {
            'fields': ('pickup_street', 'pickup_city', 'pickup_state', 'pickup_pincode', 'pickup_landmark')
        }),
        (_('Review & Bidding'), {
            'fields': ('status', 'reviewed_by', 'reviewed_at', 'review_comments',
                       'rejection_reason', 'bidding_starts_at', 'bidding_ends_at')
        }),
        (_('Timestamps'), {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    @admin.action(description=_('Approve selected listings and open bidding'))
    def approve_listings(self, request, queryset):
        from .lifecycle import approve_listing

        approved = 0
        for listing in queryset:
            try:
                approve_listing(listing, request.user)
                approved += 1
            except MarketplaceError as e:
                self.message_user(request, f'Listing {listing.id}: {e.detail}', messages.WARNING)
        if approved:
            self.message_user(request, f'{approved} listing(s) approved.', messages.SUCCESS)


@admin.register(ListingPhoto)
class ListingPhotoAdmin(admin.ModelAdmin):
    list_display = ['listing', 'photo_type', 'uploaded_at']
    list_filter = ['photo_type', 'uploaded_at']
    search_fields = ['listing__brand', 'listing__device_model']
    readonly_fields = ['uploaded_at']
    list_per_page = 50


@admin.register(Bid)
class BidAdmin(admin.ModelAdmin):
    """Admin interface for Bid model. Bids are read only here."""

    list_display = ['id', 'listing', 'vendor', 'amount', 'status', 'placed_at', 'accepted_at']
    list_filter = ['status', 'placed_at']
    search_fields = ['vendor__business_name', 'vendor__phone_number', 'listing__brand']
    readonly_fields = ['listing', 'vendor', 'amount', 'message', 'status',
                       'placed_at', 'accepted_at', 'closed_at']
    ordering = ['-placed_at']
    list_per_page = 50


# ============================================================================
# Transaction Admin
# ============================================================================

class DeductionInline(admin.TabularInline):
    model = Deduction
    extra = 0
    fields = ['category', 'description', 'rate', 'amount', 'severity']
    readonly_fields = fields
    can_delete = False


class AgentVerificationInline(admin.StackedInline):
    model = AgentVerification
    extra = 0
    can_delete = False
    readonly_fields = ['identity_verified_at', 'inspected_at', 'accepted_at']


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """Admin interface for Transaction model."""

    list_display = [
        'id',
        'listing',
        'client',
        'vendor',
        'agent',
        'bid_amount',
        'final_offer',
        'phase',
        'step',
        'status',
        'created_at',
    ]

    list_filter = [
        'status',
        'phase',
        'step',
        'created_at',
    ]

    search_fields = [
        'client__phone_number',
        'vendor__business_name',
        'agent__phone_number',
        'listing__imei1',
    ]

    readonly_fields = [
        'listing', 'client', 'vendor', 'accepted_bid', 'bid_amount',
        'total_deductions', 'final_offer', 'vendor_confirmed_at',
        'client_confirmed_at', 'completed_at', 'created_at', 'updated_at'
    ]

    ordering = ['-created_at']

    date_hierarchy = 'created_at'

    list_per_page = 25

    inlines = [AgentVerificationInline, DeductionInline]


@admin.register(AgentVerification)
class AgentVerificationAdmin(admin.ModelAdmin):
    list_display = ['transaction', 'customer_id_verified', 'actual_condition',
                    'battery_health', 'customer_accepted', 'inspected_at']
    list_filter = ['customer_id_verified', 'customer_accepted', 'actual_condition']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(Deduction)
class DeductionAdmin(admin.ModelAdmin):
    list_display = ['transaction', 'category', 'amount', 'severity', 'created_at']
    list_filter = ['category', 'severity']
    readonly_fields = ['created_at']


@admin.register(ConfirmationCode)
class ConfirmationCodeAdmin(admin.ModelAdmin):
    """Confirmation codes are shown without their hash and cannot be edited."""

    list_display = ['id', 'phone_number', 'purpose', 'transaction', 'status',
                    'attempts', 'expires_at', 'verified_at', 'created_at']
    list_filter = ['purpose', 'status', 'created_at']
    search_fields = ['phone_number']
    exclude = ['code_hash']
    readonly_fields = ['phone_number', 'purpose', 'transaction', 'amount', 'status',
                       'attempts', 'expires_at', 'verified_at', 'created_at']
    ordering = ['-created_at']
    list_per_page = 50

    def has_add_permission(self, request):
        return False


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    list_display = ['reference', 'transaction', 'client_payout', 'agent_commission',
                    'platform_fee', 'total_payable', 'payment_method', 'settled_at']
    list_filter = ['payment_method', 'settled_at']
    search_fields = ['reference']
    readonly_fields = ['transaction', 'final_offer', 'client_payout', 'agent_commission',
                       'platform_fee', 'commission_rate', 'fee_rate', 'total_payable',
                       'reference', 'settled_at']
    date_hierarchy = 'settled_at'

    def has_add_permission(self, request):
        return False


@admin.register(LifecycleEvent)
class LifecycleEventAdmin(admin.ModelAdmin):
    list_display = ['id', 'event_type', 'listing', 'transaction', 'actor', 'created_at']
    list_filter = ['event_type', 'created_at']
    readonly_fields = ['event_type', 'listing', 'transaction', 'actor', 'payload', 'created_at']
    ordering = ['-created_at']
    list_per_page = 100

    def has_add_permission(self, request):
        return False
