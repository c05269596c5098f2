from lendloop.extensions import db
from lendloop.models.base import Money, PKType, TimestampMixin

PAYMENT_STATUSES = {"pending", "processing", "succeeded", "failed", "refunded"}


class PaymentRecord(TimestampMixin, db.Model):
    __tablename__ = "payments"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    amount = db.Column(Money, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="aud")
    stripe_payment_intent_id = db.Column(db.String(64), nullable=True, unique=True)

    platform_fee = db.Column(Money, nullable=False, default=0)
    processor_fee = db.Column(Money, nullable=False, default=0)
    net_amount = db.Column(Money, nullable=False, default=0)

    payout_id = db.Column(db.String(64), nullable=True)
    payout_date = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_id = db.Column(db.String(64), nullable=True)
    refund_amount = db.Column(Money, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    booking = db.relationship("Booking", back_populates="payment")
