"""
URL configuration for cellflip_marketplace project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView
from core.views import (
    UserRegistrationView,
    OTPRequestView,
    OTPVerifyView,
    LogoutView,
    UserProfileView,
    ListingListCreateView,
    ListingDetailView,
    ListingReviewView,
    ListingCancelView,
    ListingPhotoUploadView,
    ListingBidsView,
    AcceptBidView,
    RejectBidView,
    ListingTimelineView,
    MyBidsView,
    TransactionListView,
    TransactionDetailView,
    AgentSuggestionView,
    AssignAgentView,
    SchedulePickupView,
    VerifyIdentityView,
    InspectDeviceView,
    CalculateDeductionsView,
    SendOfferView,
    AcceptOfferView,
    DeclineOfferView,
    HandOverView,
    ConfirmReceiptView,
    ConfirmCompletionView,
    ResendCodeView,
    DisputeView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Authentication endpoints
    path('api/auth/register/', UserRegistrationView.as_view(), name='user_register'),
    path('api/auth/otp/request/', OTPRequestView.as_view(), name='otp_request'),
    path('api/auth/otp/verify/', OTPVerifyView.as_view(), name='otp_verify'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/auth/logout/', LogoutView.as_view(), name='user_logout'),
    path('api/auth/profile/', UserProfileView.as_view(), name='user_profile'),

    # Listing endpoints
    path('api/listings/', ListingListCreateView.as_view(), name='listing_list'),
    path('api/listings/<int:pk>/', ListingDetailView.as_view(), name='listing_detail'),
    path('api/listings/<int:pk>/review/', ListingReviewView.as_view(), name='listing_review'),
    path('api/listings/<int:pk>/cancel/', ListingCancelView.as_view(), name='listing_cancel'),
    path('api/listings/<int:pk>/photos/', ListingPhotoUploadView.as_view(), name='listing_photos'),
    path('api/listings/<int:pk>/bids/', ListingBidsView.as_view(), name='listing_bids'),
    path('api/listings/<int:pk>/bids/<int:bid_id>/accept/', AcceptBidView.as_view(), name='bid_accept'),
    path('api/listings/<int:pk>/bids/<int:bid_id>/reject/', RejectBidView.as_view(), name='bid_reject'),
    path('api/listings/<int:pk>/timeline/', ListingTimelineView.as_view(), name='listing_timeline'),

    # Bid endpoints
    path('api/bids/mine/', MyBidsView.as_view(), name='my_bids'),

    # Transaction endpoints
    path('api/transactions/', TransactionListView.as_view(), name='transaction_list'),
    path('api/transactions/<int:pk>/', TransactionDetailView.as_view(), name='transaction_detail'),
    path('api/transactions/<int:pk>/agents/', AgentSuggestionView.as_view(), name='transaction_agents'),
    path('api/transactions/<int:pk>/assign-agent/', AssignAgentView.as_view(), name='transaction_assign_agent'),
    path('api/transactions/<int:pk>/schedule-pickup/', SchedulePickupView.as_view(), name='transaction_schedule_pickup'),
    path('api/transactions/<int:pk>/verify-identity/', VerifyIdentityView.as_view(), name='transaction_verify_identity'),
    path('api/transactions/<int:pk>/inspect/', InspectDeviceView.as_view(), name='transaction_inspect'),
    path('api/transactions/<int:pk>/deductions/', CalculateDeductionsView.as_view(), name='transaction_deductions'),
    path('api/transactions/<int:pk>/send-offer/', SendOfferView.as_view(), name='transaction_send_offer'),
    path('api/transactions/<int:pk>/accept-offer/', AcceptOfferView.as_view(), name='transaction_accept_offer'),
    path('api/transactions/<int:pk>/decline-offer/', DeclineOfferView.as_view(), name='transaction_decline_offer'),
    path('api/transactions/<int:pk>/hand-over/', HandOverView.as_view(), name='transaction_hand_over'),
    path('api/transactions/<int:pk>/confirm-receipt/', ConfirmReceiptView.as_view(), name='transaction_confirm_receipt'),
    path('api/transactions/<int:pk>/confirm-completion/', ConfirmCompletionView.as_view(), name='transaction_confirm_completion'),
    path('api/transactions/<int:pk>/resend-code/', ResendCodeView.as_view(), name='transaction_resend_code'),
    path('api/transactions/<int:pk>/dispute/', DisputeView.as_view(), name='transaction_dispute'),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
