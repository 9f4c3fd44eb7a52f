import core.models
import core.validators
import decimal
import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
import uuid
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('role', models.CharField(choices=[('client', 'Client'), ('vendor', 'Vendor'), ('agent', 'Agent'), ('admin', 'Admin')], default='client', help_text='Marketplace role of the user.', max_length=10, verbose_name='role')),
                ('phone_number', models.CharField(blank=True, error_messages={'unique': 'A user with that phone number already exists.'}, help_text='WhatsApp number in international format, used for login codes.', max_length=20, null=True, unique=True, validators=[core.validators.validate_phone_number], verbose_name='WhatsApp number')),
                ('business_name', models.CharField(blank=True, default='', help_text='Trading name, required for vendors.', max_length=200, verbose_name='business name')),
                ('city', models.CharField(blank=True, default='', help_text='City the user operates in.', max_length=100, verbose_name='city')),
                ('is_approved', models.BooleanField(default=False, help_text='Whether an admin has approved this vendor or agent.', verbose_name='approved')),
                ('is_available', models.BooleanField(default=True, help_text='Whether an agent accepts new pickup assignments.', verbose_name='available')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['role'], name='core_user_role_idx')],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Listing',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('brand', models.CharField(max_length=50, verbose_name='brand')),
                ('device_model', models.CharField(max_length=100, verbose_name='model')),
                ('variant', models.CharField(blank=True, default='', max_length=100, verbose_name='variant')),
                ('storage_capacity', models.CharField(blank=True, default='', max_length=20, verbose_name='storage capacity')),
                ('color', models.CharField(blank=True, default='', max_length=50, verbose_name='color')),
                ('condition', models.CharField(choices=[('excellent', 'Excellent'), ('good', 'Good'), ('fair', 'Fair'), ('poor', 'Poor')], help_text='Condition declared by the client', max_length=20, verbose_name='condition')),
                ('asking_price', models.DecimalField(decimal_places=2, help_text='Price in INR at which bidding closes immediately', max_digits=10, verbose_name='asking price')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('imei1', models.CharField(max_length=15, validators=[core.validators.validate_imei], verbose_name='IMEI 1')),
                ('imei2', models.CharField(blank=True, default='', max_length=15, validators=[core.validators.validate_imei], verbose_name='IMEI 2')),
                ('has_warranty', models.BooleanField(default=False, verbose_name='has warranty')),
                ('warranty_expires_at', models.DateField(blank=True, null=True, verbose_name='warranty expires at')),
                ('pickup_street', models.CharField(max_length=300, verbose_name='pickup street')),
                ('pickup_city', models.CharField(max_length=100, verbose_name='pickup city')),
                ('pickup_state', models.CharField(max_length=100, verbose_name='pickup state')),
                ('pickup_pincode', models.CharField(max_length=6, validators=[core.validators.validate_pincode], verbose_name='pickup pincode')),
                ('pickup_landmark', models.CharField(blank=True, default='', max_length=200, verbose_name='pickup landmark')),
                ('status', models.CharField(choices=[('submitted', 'Submitted'), ('under_review', 'Under Review'), ('approved', 'Approved'), ('rejected', 'Rejected'), ('bidding_active', 'Bidding Active'), ('bidding_ended', 'Bidding Ended'), ('pickup_scheduled', 'Pickup Scheduled'), ('verification_in_progress', 'Verification In Progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='submitted', help_text='Current lifecycle status of the listing', max_length=30, verbose_name='status')),
                ('reviewed_at', models.DateTimeField(blank=True, null=True, verbose_name='reviewed at')),
                ('review_comments', models.TextField(blank=True, default='', verbose_name='review comments')),
                ('rejection_reason', models.TextField(blank=True, default='', verbose_name='rejection reason')),
                ('bidding_starts_at', models.DateTimeField(blank=True, null=True, verbose_name='bidding starts at')),
                ('bidding_ends_at', models.DateTimeField(blank=True, null=True, verbose_name='bidding ends at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('client', models.ForeignKey(help_text='Client selling the device', on_delete=django.db.models.deletion.CASCADE, related_name='listings', to=settings.AUTH_USER_MODEL)),
                ('reviewed_by', models.ForeignKey(blank=True, help_text='Admin who approved or rejected the listing', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reviewed_listings', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'listing',
                'verbose_name_plural': 'listings',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='core_listing_status_idx'),
                    models.Index(fields=['brand'], name='core_listing_brand_idx'),
                    models.Index(fields=['bidding_ends_at'], name='core_listing_ends_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Bid',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='amount')),
                ('message', models.CharField(blank=True, default='', max_length=500, verbose_name='message')),
                ('status', models.CharField(choices=[('active', 'Active'), ('outbid', 'Outbid'), ('accepted', 'Accepted'), ('rejected', 'Rejected'), ('expired', 'Expired')], default='active', max_length=20, verbose_name='status')),
                ('placed_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='placed at')),
                ('accepted_at', models.DateTimeField(blank=True, null=True, verbose_name='accepted at')),
                ('closed_at', models.DateTimeField(blank=True, null=True, verbose_name='closed at')),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='bids', to='core.listing')),
                ('vendor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='bids', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'bid',
                'verbose_name_plural': 'bids',
                'ordering': ['-amount', 'placed_at', 'id'],
                'indexes': [
                    models.Index(fields=['listing', 'status'], name='core_bid_listing_status_idx'),
                    models.Index(fields=['vendor'], name='core_bid_vendor_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'accepted')), fields=('listing',), name='one_accepted_bid_per_listing'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Transaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('bid_amount', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='bid amount')),
                ('total_deductions', models.DecimalField(decimal_places=2, default=decimal.Decimal('0.00'), max_digits=10, verbose_name='total deductions')),
                ('final_offer', models.DecimalField(blank=True, decimal_places=2, help_text='Bid amount less deductions, set after inspection', max_digits=10, null=True, verbose_name='final offer')),
                ('phase', models.CharField(choices=[('listing', 'Listing'), ('bidding', 'Bidding'), ('verification', 'Verification'), ('completion', 'Completion')], default='bidding', max_length=20, verbose_name='phase')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('in_progress', 'In Progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('disputed', 'Disputed')], default='pending', max_length=20, verbose_name='status')),
                ('step', models.CharField(choices=[('awaiting_agent', 'Awaiting Agent'), ('agent_assigned', 'Agent Assigned'), ('pickup_scheduled', 'Pickup Scheduled'), ('identity_verified', 'Identity Verified'), ('device_inspected', 'Device Inspected'), ('deductions_calculated', 'Deductions Calculated'), ('final_offer_sent', 'Final Offer Sent'), ('customer_accepted', 'Customer Accepted'), ('handed_over_to_vendor', 'Handed Over To Vendor'), ('vendor_confirmed', 'Vendor Confirmed'), ('paid', 'Paid')], default='awaiting_agent', max_length=30, verbose_name='step')),
                ('scheduled_pickup_at', models.DateTimeField(blank=True, null=True, verbose_name='scheduled pickup at')),
                ('handover_photo_ref', models.CharField(blank=True, default='', max_length=300, verbose_name='handover photo')),
                ('vendor_confirmed_at', models.DateTimeField(blank=True, null=True, verbose_name='vendor confirmed at')),
                ('client_confirmed_at', models.DateTimeField(blank=True, null=True, verbose_name='client confirmed at')),
                ('dispute_reason', models.TextField(blank=True, default='', verbose_name='dispute reason')),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='completed at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('accepted_bid', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='transaction', to='core.bid')),
                ('agent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='agent_transactions', to=settings.AUTH_USER_MODEL)),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='client_transactions', to=settings.AUTH_USER_MODEL)),
                ('listing', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='transaction', to='core.listing')),
                ('vendor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='vendor_transactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'transaction',
                'verbose_name_plural': 'transactions',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='core_tx_status_idx'),
                    models.Index(fields=['step'], name='core_tx_step_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AgentVerification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('customer_id_verified', models.BooleanField(default=False, verbose_name='customer ID verified')),
                ('id_type', models.CharField(blank=True, choices=[('aadhaar', 'Aadhaar'), ('pan', 'PAN'), ('driving_license', 'Driving License')], default='', max_length=20, verbose_name='ID type')),
                ('id_number_last4', models.CharField(blank=True, default='', max_length=4, verbose_name='ID number (last 4)')),
                ('id_photo_ref', models.CharField(blank=True, default='', max_length=300, verbose_name='ID photo')),
                ('identity_verified_at', models.DateTimeField(blank=True, null=True, verbose_name='identity verified at')),
                ('actual_condition', models.CharField(blank=True, choices=[('excellent', 'Excellent'), ('good', 'Good'), ('fair', 'Fair'), ('poor', 'Poor')], default='', max_length=20, verbose_name='actual condition')),
                ('battery_health', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)], verbose_name='battery health')),
                ('functional_issues', models.JSONField(blank=True, default=list, verbose_name='functional issues')),
                ('cosmetic_issues', models.JSONField(blank=True, default=list, verbose_name='cosmetic issues')),
                ('accessories_included', models.JSONField(blank=True, default=list, verbose_name='accessories included')),
                ('photo_refs', models.JSONField(blank=True, default=list, verbose_name='verification photos')),
                ('inspection_notes', models.TextField(blank=True, default='', verbose_name='inspection notes')),
                ('inspected_at', models.DateTimeField(blank=True, null=True, verbose_name='inspected at')),
                ('customer_accepted', models.BooleanField(default=False, verbose_name='customer accepted')),
                ('accepted_at', models.DateTimeField(blank=True, null=True, verbose_name='accepted at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('transaction', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='verification', to='core.transaction')),
            ],
            options={
                'verbose_name': 'agent verification',
                'verbose_name_plural': 'agent verifications',
            },
        ),
        migrations.CreateModel(
            name='Deduction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('category', models.CharField(choices=[('cosmetic', 'Cosmetic Damage'), ('functional', 'Functional Issue'), ('missing_accessory', 'Missing Accessory'), ('condition_mismatch', 'Condition Mismatch'), ('other', 'Other')], max_length=30, verbose_name='category')),
                ('description', models.CharField(max_length=300, verbose_name='description')),
                ('rate', models.DecimalField(decimal_places=4, max_digits=5, verbose_name='rate')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='amount')),
                ('severity', models.CharField(choices=[('minor', 'Minor'), ('moderate', 'Moderate'), ('major', 'Major')], max_length=10, verbose_name='severity')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('transaction', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='deductions', to='core.transaction')),
            ],
            options={
                'verbose_name': 'deduction',
                'verbose_name_plural': 'deductions',
                'ordering': ['id'],
            },
        ),
        migrations.CreateModel(
            name='ConfirmationCode',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('phone_number', models.CharField(max_length=20, verbose_name='phone number')),
                ('purpose', models.CharField(choices=[('login', 'Login'), ('offer_acceptance', 'Offer Acceptance'), ('vendor_receipt', 'Vendor Receipt Confirmation'), ('transaction_completion', 'Transaction Completion')], max_length=30, verbose_name='purpose')),
                ('amount', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True, verbose_name='amount')),
                ('code_hash', models.CharField(max_length=128, verbose_name='code hash')),
                ('status', models.CharField(choices=[('issued', 'Issued'), ('verified', 'Verified'), ('expired', 'Expired'), ('failed', 'Failed')], default='issued', max_length=10, verbose_name='status')),
                ('attempts', models.PositiveSmallIntegerField(default=0, verbose_name='failed attempts')),
                ('expires_at', models.DateTimeField(verbose_name='expires at')),
                ('verified_at', models.DateTimeField(blank=True, null=True, verbose_name='verified at')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='created at')),
                ('transaction', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='confirmation_codes', to='core.transaction')),
            ],
            options={
                'verbose_name': 'confirmation code',
                'verbose_name_plural': 'confirmation codes',
                'ordering': ['-created_at', '-id'],
                'indexes': [models.Index(fields=['phone_number', 'purpose', 'status'], name='core_code_binding_idx')],
            },
        ),
        migrations.CreateModel(
            name='ListingPhoto',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('image', models.ImageField(help_text='Device photo (max 5MB, formats: jpg, png, webp)', upload_to=core.models.listing_photo_upload_path, validators=[core.validators.validate_device_photo], verbose_name='image')),
                ('photo_type', models.CharField(choices=[('front', 'Front'), ('back', 'Back'), ('top', 'Top'), ('bottom', 'Bottom'), ('packaging', 'Packaging'), ('accessories', 'Accessories')], max_length=20, verbose_name='photo type')),
                ('uploaded_at', models.DateTimeField(auto_now_add=True, verbose_name='uploaded at')),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='photos', to='core.listing')),
            ],
            options={
                'verbose_name': 'listing photo',
                'verbose_name_plural': 'listing photos',
                'ordering': ['uploaded_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='Settlement',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('final_offer', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='final offer')),
                ('client_payout', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='client payout')),
                ('agent_commission', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='agent commission')),
                ('platform_fee', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='platform fee')),
                ('commission_rate', models.DecimalField(decimal_places=4, max_digits=5, verbose_name='commission rate')),
                ('fee_rate', models.DecimalField(decimal_places=4, max_digits=5, verbose_name='fee rate')),
                ('total_payable', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='total payable')),
                ('payment_method', models.CharField(choices=[('upi', 'UPI'), ('bank_transfer', 'Bank Transfer'), ('cash', 'Cash')], default='upi', max_length=20, verbose_name='payment method')),
                ('reference', models.UUIDField(default=uuid.uuid4, editable=False, unique=True, verbose_name='reference')),
                ('settled_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='settled at')),
                ('transaction', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='settlement', to='core.transaction')),
            ],
            options={
                'verbose_name': 'settlement',
                'verbose_name_plural': 'settlements',
                'ordering': ['-settled_at'],
            },
        ),
        migrations.CreateModel(
            name='LifecycleEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(choices=[('listing_submitted', 'Listing Submitted'), ('listing_review_started', 'Listing Review Started'), ('listing_approved', 'Listing Approved'), ('listing_rejected', 'Listing Rejected'), ('listing_cancelled', 'Listing Cancelled'), ('bid_placed', 'Bid Placed'), ('bid_accepted', 'Bid Accepted'), ('bid_rejected', 'Bid Rejected'), ('bidding_ended', 'Bidding Ended'), ('agent_assigned', 'Agent Assigned'), ('verification_step', 'Verification Step'), ('final_offer_sent', 'Final Offer Sent'), ('offer_accepted', 'Offer Accepted'), ('vendor_confirmed', 'Vendor Confirmed'), ('payment_settled', 'Payment Settled'), ('dispute_raised', 'Dispute Raised')], max_length=40, verbose_name='event type')),
                ('payload', models.JSONField(blank=True, default=dict, verbose_name='payload')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='lifecycle_events', to=settings.AUTH_USER_MODEL)),
                ('listing', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='events', to='core.listing')),
                ('transaction', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='events', to='core.transaction')),
            ],
            options={
                'verbose_name': 'lifecycle event',
                'verbose_name_plural': 'lifecycle events',
                'ordering': ['created_at', 'id'],
                'indexes': [models.Index(fields=['event_type'], name='core_event_type_idx')],
            },
        ),
    ]
