"""
API views for the CellFlip marketplace.
"""

import logging
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.generics import ListAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from django.db.models import Q
from django.contrib.auth import get_user_model

from . import bidding, confirmation, lifecycle, verification
from .conf import marketplace_setting
from .exceptions import MarketplaceError, ResendCooldown
from .models import Bid, Listing, Transaction
from .permissions import HasRole, IsApprovedPartner, IsListingOwner, IsTransactionParty
from .serializers import (
    AgentSuggestionSerializer,
    AssignAgentSerializer,
    BidCreateSerializer,
    BidSerializer,
    CompletionSerializer,
    ConfirmationCodeSerializer,
    DeclineOfferSerializer,
    HandOverSerializer,
    InspectionSerializer,
    LifecycleEventSerializer,
    ListingCreateSerializer,
    ListingOwnerSerializer,
    ListingPhotoSerializer,
    ListingReviewSerializer,
    ListingSearchSerializer,
    ListingSerializer,
    LogoutSerializer,
    OTPRequestSerializer,
    OTPVerifySerializer,
    ReasonSerializer,
    ResendCodeSerializer,
    SchedulePickupSerializer,
    TransactionSerializer,
    UserProfileSerializer,
    UserProfileUpdateSerializer,
    UserRegistrationSerializer,
    VerifyIdentitySerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)


# Listings visible to users other than their owner and admins.
PUBLIC_LISTING_STATUSES = [
    'bidding_active',
    'bidding_ended',
    'pickup_scheduled',
    'verification_in_progress',
    'completed',
]


def get_client_ip(request):
    """
    Get client IP address from request.
    Handles proxy headers for accurate IP detection.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0]
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip


def marketplace_error_response(error):
    """Translate a MarketplaceError into its HTTP response."""
    data = error.as_response_data()
    if isinstance(error, ResendCooldown):
        data['retry_after'] = error.seconds_remaining
    return Response(data, status=error.status_code)


def django_validation_response(error):
    if hasattr(error, 'message_dict'):
        return Response(error.message_dict, status=status.HTTP_400_BAD_REQUEST)
    return Response({'detail': error.messages}, status=status.HTTP_400_BAD_REQUEST)


# ============================================================================
# Authentication Views
# ============================================================================

class UserRegistrationView(generics.CreateAPIView):
    """
    API endpoint for user registration.

    Accepts POST requests with the phone number and role. Accounts are
    passwordless; log in through the OTP endpoints afterwards.
    Handles concurrent registration attempts with database-level uniqueness.
    """
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]

    def create(self, request, *args, **kwargs):
        """
        Handle user registration with proper error handling.
        Catches IntegrityError for concurrent duplicate phone numbers.
        """
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            self.perform_create(serializer)
        except IntegrityError:
            # Another request registered the same number first
            return Response(
                {'phone_number': ['A user with that phone number already exists.']},
                status=status.HTTP_400_BAD_REQUEST
            )

        logger.info(
            f"User registered. "
            f"User ID: {serializer.instance.id}, Role: {serializer.instance.role}, "
            f"IP: {get_client_ip(request)}"
        )
        headers = self.get_success_headers(serializer.data)
        return Response(serializer.data, status=status.HTTP_201_CREATED, headers=headers)


class OTPRequestView(APIView):
    """
    API endpoint that sends a login code to a registered WhatsApp number.

    Security features:
    - Rate limiting per IP (otp_request scope)
    - Resend cooldown per phone number
    - Same response for unknown numbers to prevent user enumeration

    POST /api/auth/otp/request/
    Request body: {"phone_number": "+919876543210"}

    Success response (200): {"detail": "...", "expires_in": 600}
    Error responses:
    - 400: Invalid phone number
    - 429: Code requested again within the cooldown
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'otp_request'

    def post(self, request, *args, **kwargs):
        serializer = OTPRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        phone_number = serializer.validated_data['phone_number']
        client_ip = get_client_ip(request)

        user = User.objects.filter(phone_number=phone_number, is_active=True).first()
        if user is None:
            logger.warning(
                f"Login code requested for unknown number. "
                f"Phone: {phone_number}, IP: {client_ip}"
            )
        else:
            try:
                confirmation.issue_code(phone_number, 'login')
            except ResendCooldown as e:
                return marketplace_error_response(e)

            logger.info(f"Login code sent. User ID: {user.id}, IP: {client_ip}")

        return Response(
            {
                'detail': 'If this number is registered, a login code has been sent.',
                'expires_in': marketplace_setting('CONFIRMATION_CODE_TTL_SECONDS'),
            },
            status=status.HTTP_200_OK
        )


class OTPVerifyView(APIView):
    """
    API endpoint that exchanges a login code for JWT tokens.

    POST /api/auth/otp/verify/
    Request body: {"phone_number": "+919876543210", "code": "123456"}

    Success response (200):
    {
        "access": "<jwt_access_token>",
        "refresh": "<jwt_refresh_token>",
        "user": {...}
    }

    Error responses:
    - 400: Wrong code
    - 401: Unknown or inactive account
    - 403: Too many wrong attempts
    - 404: No code was requested
    - 409: Code already used
    - 410: Code expired
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'otp_verify'

    def post(self, request, *args, **kwargs):
        serializer = OTPVerifySerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        phone_number = serializer.validated_data['phone_number']
        client_ip = get_client_ip(request)

        user = User.objects.filter(phone_number=phone_number).first()
        if user is None or not user.is_active:
            logger.warning(
                f"Failed login attempt for unknown or inactive account. "
                f"Phone: {phone_number}, IP: {client_ip}"
            )
            return Response(
                {'detail': 'Invalid credentials'},
                status=status.HTTP_401_UNAUTHORIZED
            )

        try:
            confirmation.verify_code(phone_number, 'login', serializer.validated_data['code'])
        except MarketplaceError as e:
            logger.warning(
                f"Failed login attempt. User ID: {user.id}, Reason: {e.code}, IP: {client_ip}"
            )
            return marketplace_error_response(e)

        refresh = RefreshToken.for_user(user)

        logger.info(f"Successful login. User ID: {user.id}, IP: {client_ip}")

        return Response({
            'access': str(refresh.access_token),
            'refresh': str(refresh),
            'user': UserProfileSerializer(user).data,
        }, status=status.HTTP_200_OK)


class LogoutView(APIView):
    """
    API endpoint that blacklists a refresh token.

    POST /api/auth/logout/
    Request body: {"refresh": "<jwt_refresh_token>"}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = LogoutSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            token = RefreshToken(serializer.validated_data['refresh'])
            if str(token.get('user_id')) != str(request.user.pk):
                return Response(
                    {'detail': 'Token does not belong to this user.'},
                    status=status.HTTP_400_BAD_REQUEST
                )
            token.blacklist()
        except TokenError as e:
            logger.warning(
                f"Logout with invalid token. User ID: {request.user.id}, Error: {e}, "
                f"IP: {get_client_ip(request)}"
            )
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        logger.info(f"User logged out. User ID: {request.user.id}, IP: {get_client_ip(request)}")
        return Response(status=status.HTTP_205_RESET_CONTENT)


class UserProfileView(APIView):
    """
    API endpoint for retrieving and updating the authenticated user's profile.

    GET /api/auth/profile/
    PATCH /api/auth/profile/
    Body: {"first_name": "...", "city": "...", "is_available": false}
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        serializer = UserProfileSerializer(request.user)
        return Response(serializer.data, status=status.HTTP_200_OK)

    def patch(self, request, *args, **kwargs):
        serializer = UserProfileUpdateSerializer(request.user, data=request.data, partial=True)

        if not serializer.is_valid():
            logger.warning(
                f"Profile update validation failed. "
                f"User ID: {request.user.id}, Errors: {serializer.errors}"
            )
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        serializer.save()
        logger.info(
            f"Profile updated successfully. "
            f"User ID: {request.user.id}, Fields: {sorted(serializer.validated_data)}"
        )
        return Response(UserProfileSerializer(request.user).data, status=status.HTTP_200_OK)


# ============================================================================
# Listing Views
# ============================================================================

class ListingListCreateView(APIView):
    """
    API endpoint for browsing and submitting listings.

    GET /api/listings/
    Query Parameters:
    - brand, device_model, city: Text filters
    - condition: Comma separated conditions
    - min_price, max_price: Asking price range
    - status: Comma separated statuses (admins, or with mine=true)
    - sort: price_low, price_high, newest, ending_soon
    - mine: true to list the client's own listings in any status
    - page, page_size: Pagination

    POST /api/listings/ (clients only)
    Returns 201 with the submitted listing.
    """
    permission_classes = [IsAuthenticated, HasRole]
    allowed_roles = {'POST': ('client',)}
    pagination_class = PageNumberPagination

    def get(self, request, *args, **kwargs):
        search = ListingSearchSerializer(data=request.query_params)
        if not search.is_valid():
            return Response(search.errors, status=status.HTTP_400_BAD_REQUEST)

        filters = dict(search.validated_data)
        user = request.user

        if filters.pop('mine', False):
            for expired in bidding.expired_listings().filter(client=user):
                bidding.close_expired_bidding(expired)
            filters.setdefault('status', [choice for choice, _label in Listing.STATUS_CHOICES])
            queryset = lifecycle.search_listings(filters).filter(client=user)
        else:
            if not user.is_admin_user():
                requested = filters.get('status') or ['bidding_active']
                filters['status'] = [s for s in requested if s in PUBLIC_LISTING_STATUSES]
                if not filters['status']:
                    return Response(
                        {'status': ['Only public listing statuses can be searched.']},
                        status=status.HTTP_400_BAD_REQUEST
                    )
            queryset = lifecycle.search_listings(filters)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(queryset.prefetch_related('photos'), request, view=self)
        serializer = ListingSerializer(page, many=True, context={'request': request})
        return paginator.get_paginated_response(serializer.data)

    def post(self, request, *args, **kwargs):
        serializer = ListingCreateSerializer(data=request.data, context={'request': request})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            listing = serializer.save()
        except MarketplaceError as e:
            return marketplace_error_response(e)
        except DjangoValidationError as e:
            return django_validation_response(e)

        logger.info(
            f"Listing created via API. "
            f"Listing ID: {listing.id}, Client ID: {request.user.id}, IP: {get_client_ip(request)}"
        )
        return Response(
            ListingOwnerSerializer(listing, context={'request': request}).data,
            status=status.HTTP_201_CREATED
        )


class ListingObjectMixin:
    """Loads a listing by pk and builds a 404 response when it is missing."""

    def get_listing(self, pk, lock=False):
        queryset = Listing.objects.select_for_update() if lock else Listing.objects.all()
        try:
            return queryset.get(pk=pk)
        except Listing.DoesNotExist:
            return None

    def get_current_listing(self, pk):
        """Like get_listing, but a bidding window that has passed is closed first."""
        listing = self.get_listing(pk)
        if listing is not None and listing.status == 'bidding_active':
            bidding.close_expired_bidding(listing)
            listing.refresh_from_db()
        return listing

    def listing_not_found(self, pk):
        return Response(
            {'detail': f'Listing with ID {pk} does not exist.'},
            status=status.HTTP_404_NOT_FOUND
        )

    def can_view(self, user, listing):
        if listing.client_id == user.id or user.is_admin_user():
            return True
        return listing.status in PUBLIC_LISTING_STATUSES


class ListingDetailView(ListingObjectMixin, APIView):
    """
    GET /api/listings/<id>/

    Owners and admins see IMEI and full pickup address; other users only see
    listings that are open or past bidding.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, pk, *args, **kwargs):
        listing = self.get_current_listing(pk)
        if listing is None or not self.can_view(request.user, listing):
            return self.listing_not_found(pk)

        if listing.client_id == request.user.id or request.user.is_admin_user():
            serializer_class = ListingOwnerSerializer
        else:
            serializer_class = ListingSerializer

        return Response(
            serializer_class(listing, context={'request': request}).data,
            status=status.HTTP_200_OK
        )


class ListingReviewView(ListingObjectMixin, APIView):
    """
    Admin review of a listing.

    POST /api/listings/<id>/review/
    Request body:
    - {"action": "start_review"}
    - {"action": "approve", "comments": "..."}  opens bidding for 24 hours
    - {"action": "reject", "reason": "..."}

    Error responses:
    - 403: Not an admin
    - 404: Listing not found
    - 409: Listing is not awaiting review
    """
    permission_classes = [IsAuthenticated, HasRole]
    allowed_roles = ('admin',)

    def post(self, request, pk, *args, **kwargs):
        serializer = ListingReviewSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        listing = self.get_listing(pk)
        if listing is None:
            return self.listing_not_found(pk)

        action = serializer.validated_data['action']
        old_status = listing.status

        try:
            if action == 'start_review':
                listing = lifecycle.start_review(listing, request.user)
            elif action == 'approve':
                listing = lifecycle.approve_listing(
                    listing, request.user, comments=serializer.validated_data['comments']
                )
            else:
                listing = lifecycle.reject_listing(
                    listing, request.user, serializer.validated_data['reason']
                )
        except MarketplaceError as e:
            logger.warning(
                f"Listing review refused. "
                f"Listing ID: {pk}, Action: {action}, Reason: {e.detail}, "
                f"Admin: {request.user.id}, IP: {get_client_ip(request)}"
            )
            return marketplace_error_response(e)

        logger.info(
            f"Listing reviewed. "
            f"Listing ID: {pk}, Old Status: {old_status}, New Status: {listing.status}, "
            f"Admin: {request.user.id}, IP: {get_client_ip(request)}"
        )
        return Response(
            ListingOwnerSerializer(listing, context={'request': request}).data,
            status=status.HTTP_200_OK
        )


class ListingCancelView(ListingObjectMixin, APIView):
    """
    POST /api/listings/<id>/cancel/

    Owner cancels a listing before any bid has been accepted.
    """
    permission_classes = [IsAuthenticated, HasRole]
    allowed_roles = ('client',)

    def post(self, request, pk, *args, **kwargs):
        listing = self.get_listing(pk)
        if listing is None:
            return self.listing_not_found(pk)

        try:
            listing = lifecycle.cancel_listing(listing, request.user)
        except MarketplaceError as e:
            logger.warning(
                f"Listing cancellation refused. "
                f"Listing ID: {pk}, Reason: {e.detail}, User: {request.user.id}, "
                f"IP: {get_client_ip(request)}"
            )
            return marketplace_error_response(e)

        return Response(
            ListingOwnerSerializer(listing, context={'request': request}).data,
            status=status.HTTP_200_OK
        )


class ListingPhotoUploadView(ListingObjectMixin, APIView):
    """
    POST /api/listings/<id>/photos/ (multipart)

    Owner uploads a device photo while the listing awaits review.
    Body: image=<file>, photo_type=front|back|top|bottom|packaging|accessories
    """
    permission_classes = [IsAuthenticated, HasRole, IsListingOwner]
    allowed_roles = ('client',)
    parser_classes = [MultiPartParser, FormParser]

    EDITABLE_STATUSES = ('submitted', 'under_review')

    def post(self, request, pk, *args, **kwargs):
        listing = self.get_listing(pk)
        if listing is None:
            return self.listing_not_found(pk)

        self.check_object_permissions(request, listing)

        if listing.status not in self.EDITABLE_STATUSES:
            return Response(
                {'detail': 'Photos can only be added before the listing is approved.', 'code': 'invalid_transition'},
                status=status.HTTP_409_CONFLICT
            )

        serializer = ListingPhotoSerializer(data=request.data, context={'request': request})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            photo = serializer.save(listing=listing)
        except DjangoValidationError as e:
            return django_validation_response(e)

        logger.info(
            f"Listing photo uploaded. "
            f"Listing ID: {listing.id}, Photo ID: {photo.id}, Type: {photo.photo_type}, "
            f"IP: {get_client_ip(request)}"
        )
        return Response(
            ListingPhotoSerializer(photo, context={'request': request}).data,
            status=status.HTTP_201_CREATED
        )


class ListingBidsView(ListingObjectMixin, APIView):
    """
    Bids on a listing.

    GET /api/listings/<id>/bids/
    The owner and admins see every bid; vendors see their own.

    POST /api/listings/<id>/bids/ (approved vendors)
    Request body: {"amount": "58000.00", "message": "..."}

    Success response (201): the bid. Its status is "accepted" when the amount
    reached the asking price, and transaction_id is set.

    Error responses:
    - 400: Amount not above the current highest bid
    - 403: Not an approved vendor
    - 409: Bidding is not open
    """
    permission_classes = [IsAuthenticated, HasRole, IsApprovedPartner]
    allowed_roles = {'POST': ('vendor',)}
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'bids'

    def get(self, request, pk, *args, **kwargs):
        listing = self.get_current_listing(pk)
        if listing is None or not self.can_view(request.user, listing):
            return self.listing_not_found(pk)

        bids = Bid.objects.filter(listing=listing).select_related('vendor')
        if listing.client_id != request.user.id and not request.user.is_admin_user():
            bids = bids.filter(vendor=request.user)

        return Response(BidSerializer(bids, many=True).data, status=status.HTTP_200_OK)

    def post(self, request, pk, *args, **kwargs):
        serializer = BidCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        listing = self.get_listing(pk)
        if listing is None or not self.can_view(request.user, listing):
            return self.listing_not_found(pk)

        try:
            bid = bidding.place_bid(
                listing,
                request.user,
                serializer.validated_data['amount'],
                message=serializer.validated_data['message'],
            )
        except MarketplaceError as e:
            logger.warning(
                f"Bid refused. "
                f"Listing ID: {pk}, Vendor: {request.user.id}, Reason: {e.code}, "
                f"IP: {get_client_ip(request)}"
            )
            return marketplace_error_response(e)

        logger.info(
            f"Bid placed via API. "
            f"Bid ID: {bid.id}, Listing ID: {pk}, Amount: {bid.amount}, Status: {bid.status}, "
            f"Vendor: {request.user.id}, IP: {get_client_ip(request)}"
        )
        return Response(BidSerializer(bid).data, status=status.HTTP_201_CREATED)


class BidDecisionView(ListingObjectMixin, APIView):
    """
    Base view for the listing owner's decision on the active bid.

    POST /api/listings/<id>/bids/<bid_id>/accept/
    POST /api/listings/<id>/bids/<bid_id>/reject/

    Success response (200): the bid. An accepted bid carries transaction_id.

    Error responses:
    - 403: Not the owner of the listing
    - 404: Listing or bid not found
    - 409: Bidding is not open, or the bid is no longer active
    """
    permission_classes = [IsAuthenticated, HasRole]
    allowed_roles = ('client',)
    decision = None

    def decide(self, bid, user):
        raise NotImplementedError

    def post(self, request, pk, bid_id, *args, **kwargs):
        listing = self.get_listing(pk)
        if listing is None:
            return self.listing_not_found(pk)

        try:
            bid = Bid.objects.select_related('listing').get(pk=bid_id, listing=listing)
        except Bid.DoesNotExist:
            return Response(
                {'detail': f'Bid with ID {bid_id} does not exist on this listing.'},
                status=status.HTTP_404_NOT_FOUND
            )

        try:
            self.decide(bid, request.user)
        except MarketplaceError as e:
            logger.warning(
                f"Bid decision refused. "
                f"Listing ID: {pk}, Bid ID: {bid_id}, Decision: {self.decision}, "
                f"Reason: {e.code}, User: {request.user.id}, IP: {get_client_ip(request)}"
            )
            return marketplace_error_response(e)

        bid.refresh_from_db()
        logger.info(
            f"Bid decided via API. "
            f"Bid ID: {bid.id}, Listing ID: {pk}, Decision: {self.decision}, "
            f"Client: {request.user.id}, IP: {get_client_ip(request)}"
        )
        return Response(BidSerializer(bid).data, status=status.HTTP_200_OK)


class AcceptBidView(BidDecisionView):
    decision = 'accept'

    def decide(self, bid, user):
        return bidding.accept_bid_by_client(bid, user)


class RejectBidView(BidDecisionView):
    decision = 'reject'

    def decide(self, bid, user):
        return bidding.reject_bid(bid, user)


class ListingTimelineView(ListingObjectMixin, APIView):
    """
    GET /api/listings/<id>/timeline/

    Progress of a listing for its owner and admins: every recorded event,
    oldest first, including those of its transaction.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, pk, *args, **kwargs):
        listing = self.get_current_listing(pk)
        if listing is None:
            return self.listing_not_found(pk)

        if listing.client_id != request.user.id and not request.user.is_admin_user():
            return Response(
                {'detail': 'Only the owner of this listing can view its timeline.'},
                status=status.HTTP_403_FORBIDDEN
            )

        events = listing.events.select_related('actor').order_by('created_at', 'id')
        return Response(
            {
                'listing_id': listing.id,
                'status': listing.status,
                'bidding_ends_at': listing.bidding_ends_at,
                'events': LifecycleEventSerializer(events, many=True).data,
            },
            status=status.HTTP_200_OK
        )


class MyBidsView(ListAPIView):
    """
    GET /api/bids/mine/?status=active

    The authenticated vendor's bids, newest first.
    """
    permission_classes = [IsAuthenticated, HasRole]
    allowed_roles = ('vendor',)
    pagination_class = PageNumberPagination
    serializer_class = BidSerializer

    def get_queryset(self):
        queryset = Bid.objects.filter(vendor=self.request.user).select_related('vendor')

        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        return queryset.order_by('-placed_at', '-id')


# ============================================================================
# Transaction Views
# ============================================================================

class TransactionObjectMixin:
    """Loads a transaction and applies IsTransactionParty."""

    def get_transaction(self, request, pk):
        try:
            tx = Transaction.objects.select_related(
                'listing', 'client', 'vendor', 'agent'
            ).get(pk=pk)
        except Transaction.DoesNotExist:
            return None
        self.check_object_permissions(request, tx)
        return tx

    def transaction_not_found(self, pk):
        return Response(
            {'detail': f'Transaction with ID {pk} does not exist.'},
            status=status.HTTP_404_NOT_FOUND
        )

    def transaction_response(self, request, tx, status_code=status.HTTP_200_OK):
        tx = Transaction.objects.get(pk=tx.pk)
        return Response(
            TransactionSerializer(tx, context={'request': request}).data,
            status=status_code
        )


class TransactionListView(ListAPIView):
    """
    GET /api/transactions/?status=in_progress

    Transactions the user is a party to. Admins see all of them.
    """
    permission_classes = [IsAuthenticated]
    pagination_class = PageNumberPagination
    serializer_class = TransactionSerializer

    def get_queryset(self):
        user = self.request.user
        queryset = Transaction.objects.select_related('listing', 'client', 'vendor', 'agent')

        if not user.is_admin_user():
            queryset = queryset.filter(Q(client=user) | Q(vendor=user) | Q(agent=user))

        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        return queryset.order_by('-created_at', '-id')


class TransactionDetailView(TransactionObjectMixin, APIView):
    """
    GET /api/transactions/<id>/

    Full transaction state for its parties and admins.
    """
    permission_classes = [IsAuthenticated, IsTransactionParty]

    def get(self, request, pk, *args, **kwargs):
        tx = self.get_transaction(request, pk)
        if tx is None:
            return self.transaction_not_found(pk)
        return self.transaction_response(request, tx)


class AgentSuggestionView(TransactionObjectMixin, APIView):
    """
    GET /api/transactions/<id>/agents/

    Admin view of available agents, nearest and least busy first.
    """
    permission_classes = [IsAuthenticated, HasRole]
    allowed_roles = ('admin',)

    def get(self, request, pk, *args, **kwargs):
        tx = self.get_transaction(request, pk)
        if tx is None:
            return self.transaction_not_found(pk)

        agents = lifecycle.suggest_agents(tx)
        return Response(AgentSuggestionSerializer(agents, many=True).data, status=status.HTTP_200_OK)


class TransactionStepView(TransactionObjectMixin, APIView):
    """
    Base view for a single workflow step on a transaction.

    Subclasses set ``serializer_class`` (or None for steps without input),
    ``allowed_roles`` and implement perform_step(). Domain errors become
    responses with their own status code.
    """
    permission_classes = [IsAuthenticated, HasRole, IsTransactionParty]
    serializer_class = None
    step_name = None

    def perform_step(self, request, tx, data):
        raise NotImplementedError

    def build_response(self, request, tx, result):
        return self.transaction_response(request, tx)

    def post(self, request, pk, *args, **kwargs):
        data = {}
        if self.serializer_class is not None:
            serializer = self.serializer_class(data=request.data)
            if not serializer.is_valid():
                return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
            data = serializer.validated_data

        tx = self.get_transaction(request, pk)
        if tx is None:
            return self.transaction_not_found(pk)

        old_step = tx.step

        try:
            result = self.perform_step(request, tx, data)
        except MarketplaceError as e:
            logger.warning(
                f"Transaction step refused. "
                f"Transaction ID: {pk}, Step: {self.step_name}, Current Step: {old_step}, "
                f"Reason: {e.code}, User: {request.user.id}, IP: {get_client_ip(request)}"
            )
            return marketplace_error_response(e)
        except DjangoValidationError as e:
            return django_validation_response(e)

        logger.info(
            f"Transaction step completed. "
            f"Transaction ID: {pk}, Step: {self.step_name}, Old Step: {old_step}, "
            f"User: {request.user.id}, IP: {get_client_ip(request)}"
        )
        return self.build_response(request, tx, result)


class AssignAgentView(TransactionStepView):
    allowed_roles = ('admin',)
    serializer_class = AssignAgentSerializer
    step_name = 'assign_agent'

    def perform_step(self, request, tx, data):
        agent = User.objects.get(pk=data['agent_id'])
        return lifecycle.assign_agent(tx, agent, request.user)


class SchedulePickupView(TransactionStepView):
    allowed_roles = ('agent',)
    serializer_class = SchedulePickupSerializer
    step_name = 'schedule_pickup'

    def perform_step(self, request, tx, data):
        return verification.schedule_pickup(tx, request.user, data['scheduled_at'])


class VerifyIdentityView(TransactionStepView):
    allowed_roles = ('agent',)
    serializer_class = VerifyIdentitySerializer
    step_name = 'verify_identity'

    def perform_step(self, request, tx, data):
        return verification.verify_identity(
            tx, request.user, data['id_type'], data['id_number'], data['id_photo_ref']
        )


class InspectDeviceView(TransactionStepView):
    allowed_roles = ('agent',)
    serializer_class = InspectionSerializer
    step_name = 'inspect_device'

    def perform_step(self, request, tx, data):
        return verification.inspect_device(
            tx,
            request.user,
            actual_condition=data['actual_condition'],
            battery_health=data['battery_health'],
            functional_issues=data['functional_issues'],
            cosmetic_issues=data['cosmetic_issues'],
            accessories_included=data['accessories_included'],
            photo_refs=data['photo_refs'],
            notes=data['notes'],
        )


class CalculateDeductionsView(TransactionStepView):
    allowed_roles = ('agent',)
    step_name = 'calculate_deductions'

    def perform_step(self, request, tx, data):
        return verification.calculate_deductions(tx, request.user)


class SendOfferView(TransactionStepView):
    allowed_roles = ('agent',)
    step_name = 'send_final_offer'

    def perform_step(self, request, tx, data):
        return verification.send_final_offer(tx, request.user)


class AcceptOfferView(TransactionStepView):
    allowed_roles = ('client',)
    serializer_class = ConfirmationCodeSerializer
    step_name = 'accept_final_offer'

    def perform_step(self, request, tx, data):
        return verification.accept_final_offer(tx, request.user, data['code'])


class DeclineOfferView(TransactionStepView):
    allowed_roles = ('client',)
    serializer_class = DeclineOfferSerializer
    step_name = 'decline_final_offer'

    def perform_step(self, request, tx, data):
        return verification.decline_final_offer(tx, request.user, reason=data['reason'])


class HandOverView(TransactionStepView):
    allowed_roles = ('agent',)
    serializer_class = HandOverSerializer
    step_name = 'hand_over_to_vendor'

    def perform_step(self, request, tx, data):
        return verification.hand_over_to_vendor(tx, request.user, data['handover_photo_ref'])


class ConfirmReceiptView(TransactionStepView):
    allowed_roles = ('vendor',)
    serializer_class = ConfirmationCodeSerializer
    step_name = 'confirm_vendor_receipt'

    def perform_step(self, request, tx, data):
        return verification.confirm_vendor_receipt(tx, request.user, data['code'])


class ConfirmCompletionView(TransactionStepView):
    allowed_roles = ('client',)
    serializer_class = CompletionSerializer
    step_name = 'confirm_completion'

    def perform_step(self, request, tx, data):
        return verification.confirm_completion(
            tx, request.user, data['code'], payment_method=data['payment_method']
        )


class ResendCodeView(TransactionStepView):
    """
    POST /api/transactions/<id>/resend-code/

    Returns 429 with retry_after while the resend cooldown is running.
    """
    allowed_roles = ('client', 'vendor', 'agent')
    serializer_class = ResendCodeSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'otp_request'
    step_name = 'resend_code'

    def perform_step(self, request, tx, data):
        return verification.resend_code(tx, request.user, purpose=data.get('purpose'))

    def build_response(self, request, tx, result):
        return Response(
            {
                'detail': 'A new confirmation code has been sent.',
                'purpose': result.purpose,
                'expires_at': result.expires_at,
            },
            status=status.HTTP_200_OK
        )


class DisputeView(TransactionStepView):
    allowed_roles = ('client', 'vendor', 'agent', 'admin')
    serializer_class = ReasonSerializer
    step_name = 'raise_dispute'

    def perform_step(self, request, tx, data):
        return lifecycle.raise_dispute(tx, request.user, data['reason'])
