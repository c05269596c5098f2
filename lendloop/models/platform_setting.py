from lendloop.extensions import db
from lendloop.models.base import TimestampMixin

RATE_SETTING_KEYS = ("service_fee_rate", "commission_rate", "insurance_rate")


class PlatformSetting(TimestampMixin, db.Model):
    __tablename__ = "platform_settings"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.String(255), nullable=False)
