"""
Data model for the CellFlip device resale marketplace.

A Listing moves from submission through admin review and bidding. Accepting a
Bid creates a Transaction, which an Agent drives through pickup, verification,
delivery and settlement. ConfirmationCode rows implement the one-time-code
gate used at login and at each two-party handover.
"""

import uuid
from decimal import Decimal

from django.contrib.auth.hashers import check_password
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .validators import (
    normalize_phone_number,
    validate_device_photo,
    validate_imei,
    validate_phone_number,
    validate_pincode,
)


CONDITION_CHOICES = [
    ('excellent', 'Excellent'),
    ('good', 'Good'),
    ('fair', 'Fair'),
    ('poor', 'Poor'),
]


class User(AbstractUser):
    """
    Marketplace user extending Django's AbstractUser.

    Additional fields:
    - role: client, vendor, agent or admin
    - phone_number: WhatsApp number used for code based login
    - business_name: Trading name for vendors
    - city: Operating city, used to suggest agents for a pickup
    - is_approved: Vendors and agents must be approved before acting
    - is_available: Agents can mark themselves unavailable for new pickups
    - created_at / updated_at: Timestamps
    """

    ROLE_CHOICES = [
        ('client', 'Client'),
        ('vendor', 'Vendor'),
        ('agent', 'Agent'),
        ('admin', 'Admin'),
    ]

    role = models.CharField(
        _('role'),
        max_length=10,
        choices=ROLE_CHOICES,
        default='client',
        help_text=_('Marketplace role of the user.')
    )

    phone_number = models.CharField(
        _('WhatsApp number'),
        max_length=20,
        unique=True,
        null=True,
        blank=True,
        validators=[validate_phone_number],
        error_messages={
            'unique': _('A user with that phone number already exists.'),
        },
        help_text=_('WhatsApp number in international format, used for login codes.')
    )

    business_name = models.CharField(
        _('business name'),
        max_length=200,
        blank=True,
        default='',
        help_text=_('Trading name, required for vendors.')
    )

    city = models.CharField(
        _('city'),
        max_length=100,
        blank=True,
        default='',
        help_text=_('City the user operates in.')
    )

    is_approved = models.BooleanField(
        _('approved'),
        default=False,
        help_text=_('Whether an admin has approved this vendor or agent.')
    )

    is_available = models.BooleanField(
        _('available'),
        default=True,
        help_text=_('Whether an agent accepts new pickup assignments.')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['role'], name='core_user_role_idx'),
        ]

    def __str__(self):
        return self.get_full_name() or self.phone_number or self.username

    def is_client(self):
        return self.role == 'client'

    def is_vendor(self):
        return self.role == 'vendor'

    def is_agent(self):
        return self.role == 'agent'

    def is_admin_user(self):
        """Staff accounts count as admins for marketplace purposes."""
        return self.role == 'admin' or self.is_staff

    def clean(self):
        """
        Normalize the phone number and enforce role specific fields.

        Raises:
            ValidationError: If a vendor has no business name
        """
        super().clean()

        self.phone_number = normalize_phone_number(self.phone_number) or None

        if self.role == 'vendor' and not self.business_name.strip():
            raise ValidationError({
                'business_name': _('Business name is required for vendors.')
            })

    def save(self, *args, **kwargs):
        self.phone_number = normalize_phone_number(self.phone_number) or None

        # Validate updates; creation goes straight to the database so a
        # duplicate phone number surfaces as IntegrityError.
        if self.pk is not None:
            self.full_clean()

        super().save(*args, **kwargs)


# ============================================================================
# Listing Models
# ============================================================================

class Listing(models.Model):
    """
    A device submitted by a client for resale through bidding.

    Status lifecycle:
        submitted -> under_review -> approved/rejected -> bidding_active
        -> bidding_ended -> pickup_scheduled -> verification_in_progress
        -> completed

    A listing may be cancelled by its owner until a bid has been accepted,
    or after a window that ended without bids. Once a transaction exists the
    listing follows it: a declined offer or a dispute cancels the listing.
    rejected, completed and cancelled are terminal.
    """

    STATUS_CHOICES = [
        ('submitted', 'Submitted'),
        ('under_review', 'Under Review'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
        ('bidding_active', 'Bidding Active'),
        ('bidding_ended', 'Bidding Ended'),
        ('pickup_scheduled', 'Pickup Scheduled'),
        ('verification_in_progress', 'Verification In Progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    ALLOWED_TRANSITIONS = {
        'submitted': {'under_review', 'approved', 'rejected', 'cancelled'},
        'under_review': {'approved', 'rejected', 'cancelled'},
        'approved': {'bidding_active', 'cancelled'},
        'bidding_active': {'bidding_ended', 'cancelled'},
        'bidding_ended': {'pickup_scheduled', 'cancelled'},
        'pickup_scheduled': {'verification_in_progress', 'cancelled'},
        'verification_in_progress': {'completed', 'cancelled'},
        'rejected': set(),
        'completed': set(),
        'cancelled': set(),
    }

    TERMINAL_STATUSES = {'rejected', 'completed', 'cancelled'}

    client = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='listings',
        help_text=_('Client selling the device')
    )

    brand = models.CharField(_('brand'), max_length=50)
    device_model = models.CharField(_('model'), max_length=100)
    variant = models.CharField(_('variant'), max_length=100, blank=True, default='')
    storage_capacity = models.CharField(_('storage capacity'), max_length=20, blank=True, default='')
    color = models.CharField(_('color'), max_length=50, blank=True, default='')

    condition = models.CharField(
        _('condition'),
        max_length=20,
        choices=CONDITION_CHOICES,
        help_text=_('Condition declared by the client')
    )

    asking_price = models.DecimalField(
        _('asking price'),
        max_digits=10,
        decimal_places=2,
        help_text=_('Price in INR at which bidding closes immediately')
    )

    description = models.TextField(_('description'), blank=True, default='')

    imei1 = models.CharField(_('IMEI 1'), max_length=15, validators=[validate_imei])
    imei2 = models.CharField(
        _('IMEI 2'),
        max_length=15,
        blank=True,
        default='',
        validators=[validate_imei]
    )

    has_warranty = models.BooleanField(_('has warranty'), default=False)
    warranty_expires_at = models.DateField(_('warranty expires at'), null=True, blank=True)

    pickup_street = models.CharField(_('pickup street'), max_length=300)
    pickup_city = models.CharField(_('pickup city'), max_length=100)
    pickup_state = models.CharField(_('pickup state'), max_length=100)
    pickup_pincode = models.CharField(
        _('pickup pincode'),
        max_length=6,
        validators=[validate_pincode]
    )
    pickup_landmark = models.CharField(_('pickup landmark'), max_length=200, blank=True, default='')

    status = models.CharField(
        _('status'),
        max_length=30,
        choices=STATUS_CHOICES,
        default='submitted',
        help_text=_('Current lifecycle status of the listing')
    )

    reviewed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_listings',
        help_text=_('Admin who approved or rejected the listing')
    )
    reviewed_at = models.DateTimeField(_('reviewed at'), null=True, blank=True)
    review_comments = models.TextField(_('review comments'), blank=True, default='')
    rejection_reason = models.TextField(_('rejection reason'), blank=True, default='')

    bidding_starts_at = models.DateTimeField(_('bidding starts at'), null=True, blank=True)
    bidding_ends_at = models.DateTimeField(_('bidding ends at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('listing')
        verbose_name_plural = _('listings')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='core_listing_status_idx'),
            models.Index(fields=['brand'], name='core_listing_brand_idx'),
            models.Index(fields=['bidding_ends_at'], name='core_listing_ends_idx'),
        ]

    def __str__(self):
        return f'{self.brand} {self.device_model} ({self.get_status_display()})'

    def clean(self):
        """
        Validate listing fields.

        Ensures:
        - Listing owner has the client role
        - Asking price is greater than 0
        - The two IMEI numbers differ
        - Warranty expiry is given when the device has a warranty

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.client_id and not self.client.is_client():
            raise ValidationError({
                'client': _('Only clients can list devices.')
            })

        if self.asking_price is not None and self.asking_price <= 0:
            raise ValidationError({
                'asking_price': _('Asking price must be greater than 0.')
            })

        if self.imei2 and self.imei1 == self.imei2:
            raise ValidationError({
                'imei2': _('Second IMEI must differ from the first.')
            })

        if self.has_warranty and not self.warranty_expires_at:
            raise ValidationError({
                'warranty_expires_at': _('Warranty expiry date is required when the device has a warranty.')
            })

    def can_transition_to(self, new_status):
        """
        Check whether the listing may move to ``new_status``.

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        if new_status not in dict(self.STATUS_CHOICES):
            return False, f'Unknown listing status "{new_status}".'

        if self.status in self.TERMINAL_STATUSES:
            return False, f'Listing is {self.status} and can no longer change.'

        if new_status not in self.ALLOWED_TRANSITIONS[self.status]:
            return False, f'Invalid listing transition from {self.status} to {new_status}.'

        return True, None

    def is_bidding_open(self, now=None):
        now = now or timezone.now()
        return (
            self.status == 'bidding_active'
            and self.bidding_ends_at is not None
            and now < self.bidding_ends_at
        )

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


def listing_photo_upload_path(instance, filename):
    """
    Generate upload path for listing photos.

    Path format: listing_photos/{listing_id}/{filename}
    """
    listing_id = instance.listing_id or 'temp'
    return f'listing_photos/{listing_id}/{filename}'


class ListingPhoto(models.Model):
    """Photo of a listed device."""

    PHOTO_TYPE_CHOICES = [
        ('front', 'Front'),
        ('back', 'Back'),
        ('top', 'Top'),
        ('bottom', 'Bottom'),
        ('packaging', 'Packaging'),
        ('accessories', 'Accessories'),
    ]

    REQUIRED_TYPES = ('front', 'back', 'top', 'bottom')

    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='photos'
    )

    image = models.ImageField(
        _('image'),
        upload_to=listing_photo_upload_path,
        validators=[validate_device_photo],
        help_text=_('Device photo (max 5MB, formats: jpg, png, webp)')
    )

    photo_type = models.CharField(_('photo type'), max_length=20, choices=PHOTO_TYPE_CHOICES)

    uploaded_at = models.DateTimeField(_('uploaded at'), auto_now_add=True)

    class Meta:
        verbose_name = _('listing photo')
        verbose_name_plural = _('listing photos')
        ordering = ['uploaded_at', 'id']

    def __str__(self):
        return f'{self.get_photo_type_display()} photo of listing {self.listing_id}'

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


# ============================================================================
# Bidding Models
# ============================================================================

class Bid(models.Model):
    """
    A vendor's monetary offer against a listing.

    Only one bid per listing is active at a time: placing a higher bid marks
    the previous active bid outbid. At most one bid per listing can ever be
    accepted, enforced by a conditional unique constraint.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('outbid', 'Outbid'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
        ('expired', 'Expired'),
    ]

    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='bids'
    )

    vendor = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='bids'
    )

    amount = models.DecimalField(_('amount'), max_digits=10, decimal_places=2)

    message = models.CharField(_('message'), max_length=500, blank=True, default='')

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='active'
    )

    placed_at = models.DateTimeField(_('placed at'), default=timezone.now)
    accepted_at = models.DateTimeField(_('accepted at'), null=True, blank=True)
    closed_at = models.DateTimeField(_('closed at'), null=True, blank=True)

    class Meta:
        verbose_name = _('bid')
        verbose_name_plural = _('bids')
        ordering = ['-amount', 'placed_at', 'id']
        indexes = [
            models.Index(fields=['listing', 'status'], name='core_bid_listing_status_idx'),
            models.Index(fields=['vendor'], name='core_bid_vendor_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['listing'],
                condition=models.Q(status='accepted'),
                name='one_accepted_bid_per_listing'
            )
        ]

    def __str__(self):
        return f'Bid of {self.amount} on listing {self.listing_id} ({self.status})'

    def clean(self):
        super().clean()

        if self.vendor_id and not self.vendor.is_vendor():
            raise ValidationError({
                'vendor': _('Only vendors can place bids.')
            })

        if self.amount is not None and self.amount <= 0:
            raise ValidationError({
                'amount': _('Bid amount must be greater than 0.')
            })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


# ============================================================================
# Transaction Models
# ============================================================================

class Transaction(models.Model):
    """
    The deal created when a bid is accepted.

    ``step`` tracks the pickup, verification and delivery state machine. Each
    step can only be reached from the one before it; see can_advance_to().
    """

    PHASE_CHOICES = [
        ('listing', 'Listing'),
        ('bidding', 'Bidding'),
        ('verification', 'Verification'),
        ('completion', 'Completion'),
    ]

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('disputed', 'Disputed'),
    ]

    STEP_CHOICES = [
        ('awaiting_agent', 'Awaiting Agent'),
        ('agent_assigned', 'Agent Assigned'),
        ('pickup_scheduled', 'Pickup Scheduled'),
        ('identity_verified', 'Identity Verified'),
        ('device_inspected', 'Device Inspected'),
        ('deductions_calculated', 'Deductions Calculated'),
        ('final_offer_sent', 'Final Offer Sent'),
        ('customer_accepted', 'Customer Accepted'),
        ('handed_over_to_vendor', 'Handed Over To Vendor'),
        ('vendor_confirmed', 'Vendor Confirmed'),
        ('paid', 'Paid'),
    ]

    STEP_ORDER = [value for value, _label in STEP_CHOICES]

    TERMINAL_STATUSES = {'completed', 'cancelled', 'disputed'}

    listing = models.OneToOneField(
        Listing,
        on_delete=models.CASCADE,
        related_name='transaction'
    )

    client = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='client_transactions'
    )

    vendor = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='vendor_transactions'
    )

    agent = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='agent_transactions'
    )

    accepted_bid = models.OneToOneField(
        Bid,
        on_delete=models.PROTECT,
        related_name='transaction'
    )

    bid_amount = models.DecimalField(_('bid amount'), max_digits=10, decimal_places=2)

    total_deductions = models.DecimalField(
        _('total deductions'),
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00')
    )

    final_offer = models.DecimalField(
        _('final offer'),
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_('Bid amount less deductions, set after inspection')
    )

    phase = models.CharField(_('phase'), max_length=20, choices=PHASE_CHOICES, default='bidding')
    status = models.CharField(_('status'), max_length=20, choices=STATUS_CHOICES, default='pending')
    step = models.CharField(_('step'), max_length=30, choices=STEP_CHOICES, default='awaiting_agent')

    scheduled_pickup_at = models.DateTimeField(_('scheduled pickup at'), null=True, blank=True)
    handover_photo_ref = models.CharField(_('handover photo'), max_length=300, blank=True, default='')
    vendor_confirmed_at = models.DateTimeField(_('vendor confirmed at'), null=True, blank=True)
    client_confirmed_at = models.DateTimeField(_('client confirmed at'), null=True, blank=True)
    dispute_reason = models.TextField(_('dispute reason'), blank=True, default='')
    completed_at = models.DateTimeField(_('completed at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('transaction')
        verbose_name_plural = _('transactions')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='core_tx_status_idx'),
            models.Index(fields=['step'], name='core_tx_step_idx'),
        ]

    def __str__(self):
        return f'Transaction {self.pk} for listing {self.listing_id} ({self.step})'

    def clean(self):
        super().clean()

        if self.agent_id and not self.agent.is_agent():
            raise ValidationError({
                'agent': _('Assigned user must have the agent role.')
            })

        if self.final_offer is not None and self.final_offer < 0:
            raise ValidationError({
                'final_offer': _('Final offer cannot be negative.')
            })

        if self.total_deductions is not None and self.bid_amount is not None:
            if self.total_deductions > self.bid_amount:
                raise ValidationError({
                    'total_deductions': _('Deductions cannot exceed the bid amount.')
                })

    def can_advance_to(self, new_step):
        """
        Check whether the transaction may move to ``new_step``.

        Steps must be taken in order; the only valid target is the step
        immediately after the current one.

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        if self.status in self.TERMINAL_STATUSES:
            return False, f'Transaction is {self.status} and can no longer change.'

        if new_step not in self.STEP_ORDER:
            return False, f'Unknown step "{new_step}".'

        current_index = self.STEP_ORDER.index(self.step)
        target_index = self.STEP_ORDER.index(new_step)

        if target_index <= current_index:
            return False, f'Transaction has already passed {new_step}.'

        if target_index != current_index + 1:
            expected = self.STEP_ORDER[current_index + 1]
            return False, f'Cannot skip to {new_step}; next step is {expected}.'

        return True, None

    def is_party(self, user):
        return user.id in (self.client_id, self.vendor_id, self.agent_id)

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class AgentVerification(models.Model):
    """
    Evidence gathered by the agent at pickup.

    Created together with its transaction. Becomes read-only once the
    customer accepts the final offer.
    """

    ID_TYPE_CHOICES = [
        ('aadhaar', 'Aadhaar'),
        ('pan', 'PAN'),
        ('driving_license', 'Driving License'),
    ]

    transaction = models.OneToOneField(
        Transaction,
        on_delete=models.CASCADE,
        related_name='verification'
    )

    customer_id_verified = models.BooleanField(_('customer ID verified'), default=False)
    id_type = models.CharField(_('ID type'), max_length=20, choices=ID_TYPE_CHOICES, blank=True, default='')
    id_number_last4 = models.CharField(_('ID number (last 4)'), max_length=4, blank=True, default='')
    id_photo_ref = models.CharField(_('ID photo'), max_length=300, blank=True, default='')
    identity_verified_at = models.DateTimeField(_('identity verified at'), null=True, blank=True)

    actual_condition = models.CharField(
        _('actual condition'),
        max_length=20,
        choices=CONDITION_CHOICES,
        blank=True,
        default=''
    )
    battery_health = models.PositiveSmallIntegerField(
        _('battery health'),
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    functional_issues = models.JSONField(_('functional issues'), default=list, blank=True)
    cosmetic_issues = models.JSONField(_('cosmetic issues'), default=list, blank=True)
    accessories_included = models.JSONField(_('accessories included'), default=list, blank=True)
    photo_refs = models.JSONField(_('verification photos'), default=list, blank=True)
    inspection_notes = models.TextField(_('inspection notes'), blank=True, default='')
    inspected_at = models.DateTimeField(_('inspected at'), null=True, blank=True)

    customer_accepted = models.BooleanField(_('customer accepted'), default=False)
    accepted_at = models.DateTimeField(_('accepted at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('agent verification')
        verbose_name_plural = _('agent verifications')

    def __str__(self):
        return f'Verification for transaction {self.transaction_id}'

    @property
    def is_final(self):
        return self.customer_accepted


class Deduction(models.Model):
    """A price reduction applied after inspection."""

    CATEGORY_CHOICES = [
        ('cosmetic', 'Cosmetic Damage'),
        ('functional', 'Functional Issue'),
        ('missing_accessory', 'Missing Accessory'),
        ('condition_mismatch', 'Condition Mismatch'),
        ('other', 'Other'),
    ]

    SEVERITY_CHOICES = [
        ('minor', 'Minor'),
        ('moderate', 'Moderate'),
        ('major', 'Major'),
    ]

    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.CASCADE,
        related_name='deductions'
    )

    category = models.CharField(_('category'), max_length=30, choices=CATEGORY_CHOICES)
    description = models.CharField(_('description'), max_length=300)
    rate = models.DecimalField(_('rate'), max_digits=5, decimal_places=4)
    amount = models.DecimalField(_('amount'), max_digits=10, decimal_places=2)
    severity = models.CharField(_('severity'), max_length=10, choices=SEVERITY_CHOICES)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('deduction')
        verbose_name_plural = _('deductions')
        ordering = ['id']

    def __str__(self):
        return f'{self.get_category_display()}: -{self.amount}'


# ============================================================================
# Confirmation Gate
# ============================================================================

class ConfirmationCode(models.Model):
    """
    A single-use confirmation code bound to a phone number and purpose.

    States: issued -> verified | expired | failed. Only the hash of the code is
    stored. Optional transaction and amount narrow the binding so a code
    issued for one handover cannot confirm another.
    """

    PURPOSE_CHOICES = [
        ('login', 'Login'),
        ('offer_acceptance', 'Offer Acceptance'),
        ('vendor_receipt', 'Vendor Receipt Confirmation'),
        ('transaction_completion', 'Transaction Completion'),
    ]

    STATUS_CHOICES = [
        ('issued', 'Issued'),
        ('verified', 'Verified'),
        ('expired', 'Expired'),
        ('failed', 'Failed'),
    ]

    phone_number = models.CharField(_('phone number'), max_length=20)
    purpose = models.CharField(_('purpose'), max_length=30, choices=PURPOSE_CHOICES)

    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='confirmation_codes'
    )

    amount = models.DecimalField(_('amount'), max_digits=10, decimal_places=2, null=True, blank=True)

    code_hash = models.CharField(_('code hash'), max_length=128)
    status = models.CharField(_('status'), max_length=10, choices=STATUS_CHOICES, default='issued')
    attempts = models.PositiveSmallIntegerField(_('failed attempts'), default=0)

    expires_at = models.DateTimeField(_('expires at'))
    verified_at = models.DateTimeField(_('verified at'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), default=timezone.now)

    class Meta:
        verbose_name = _('confirmation code')
        verbose_name_plural = _('confirmation codes')
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['phone_number', 'purpose', 'status'], name='core_code_binding_idx'),
        ]

    def __str__(self):
        return f'{self.get_purpose_display()} code for {self.phone_number} ({self.status})'

    def is_expired(self, now=None):
        now = now or timezone.now()
        return now >= self.expires_at

    def matches(self, raw_code):
        return check_password(raw_code, self.code_hash)


class Settlement(models.Model):
    """
    Computed split of a completed transaction.

    client_payout equals the final offer; agent commission and platform fee
    are percentages of the final offer collected on top from the vendor, so
    total_payable is the sum of all three.
    """

    PAYMENT_METHOD_CHOICES = [
        ('upi', 'UPI'),
        ('bank_transfer', 'Bank Transfer'),
        ('cash', 'Cash'),
    ]

    transaction = models.OneToOneField(
        Transaction,
        on_delete=models.CASCADE,
        related_name='settlement'
    )

    final_offer = models.DecimalField(_('final offer'), max_digits=10, decimal_places=2)
    client_payout = models.DecimalField(_('client payout'), max_digits=10, decimal_places=2)
    agent_commission = models.DecimalField(_('agent commission'), max_digits=10, decimal_places=2)
    platform_fee = models.DecimalField(_('platform fee'), max_digits=10, decimal_places=2)
    commission_rate = models.DecimalField(_('commission rate'), max_digits=5, decimal_places=4)
    fee_rate = models.DecimalField(_('fee rate'), max_digits=5, decimal_places=4)
    total_payable = models.DecimalField(_('total payable'), max_digits=12, decimal_places=2)

    payment_method = models.CharField(
        _('payment method'),
        max_length=20,
        choices=PAYMENT_METHOD_CHOICES,
        default='upi'
    )
    reference = models.UUIDField(_('reference'), default=uuid.uuid4, editable=False, unique=True)
    settled_at = models.DateTimeField(_('settled at'), default=timezone.now)

    class Meta:
        verbose_name = _('settlement')
        verbose_name_plural = _('settlements')
        ordering = ['-settled_at']

    def __str__(self):
        return f'Settlement {self.reference} for transaction {self.transaction_id}'


class LifecycleEvent(models.Model):
    """Audit trail entry for a listing or transaction state change."""

    EVENT_TYPE_CHOICES = [
        ('listing_submitted', 'Listing Submitted'),
        ('listing_review_started', 'Listing Review Started'),
        ('listing_approved', 'Listing Approved'),
        ('listing_rejected', 'Listing Rejected'),
        ('listing_cancelled', 'Listing Cancelled'),
        ('bid_placed', 'Bid Placed'),
        ('bid_accepted', 'Bid Accepted'),
        ('bid_rejected', 'Bid Rejected'),
        ('bidding_ended', 'Bidding Ended'),
        ('agent_assigned', 'Agent Assigned'),
        ('verification_step', 'Verification Step'),
        ('final_offer_sent', 'Final Offer Sent'),
        ('offer_accepted', 'Offer Accepted'),
        ('vendor_confirmed', 'Vendor Confirmed'),
        ('payment_settled', 'Payment Settled'),
        ('dispute_raised', 'Dispute Raised'),
    ]

    event_type = models.CharField(_('event type'), max_length=40, choices=EVENT_TYPE_CHOICES)

    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='events'
    )

    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='events'
    )

    actor = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='lifecycle_events'
    )

    payload = models.JSONField(_('payload'), default=dict, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('lifecycle event')
        verbose_name_plural = _('lifecycle events')
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['event_type'], name='core_event_type_idx'),
        ]

    def __str__(self):
        return f'{self.get_event_type_display()} at {self.created_at}'
