from lendloop.services.audit_service import AuditService
from lendloop.services.auth_service import AuthService
from lendloop.services.booking_service import BookingService
from lendloop.services.listing_service import ListingService
from lendloop.services.notification_service import NotificationService
from lendloop.services.payment_service import PaymentService
from lendloop.services.payout_service import PayoutService
from lendloop.services.platform_service import PlatformService

__all__ = [
    "AuditService",
    "AuthService",
    "BookingService",
    "ListingService",
    "NotificationService",
    "PaymentService",
    "PayoutService",
    "PlatformService",
]
