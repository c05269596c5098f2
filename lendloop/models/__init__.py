from lendloop.models.admin_action import AdminAction
from lendloop.models.booking import Booking
from lendloop.models.listing import Listing
from lendloop.models.notification import Notification
from lendloop.models.payment import PaymentRecord
from lendloop.models.platform_setting import PlatformSetting
from lendloop.models.profile import Profile

__all__ = [
    "AdminAction",
    "Booking",
    "Listing",
    "Notification",
    "PaymentRecord",
    "PlatformSetting",
    "Profile",
]
