from lendloop.extensions import db
from lendloop.models.base import Money, PKType, TimestampMixin, as_utc

BOOKING_STATUSES = (
    "pending",
    "confirmed",
    "rejected",
    "cancelled",
    "in_progress",
    "return_pending",
    "completed",
    "disputed",
    "released",
)
TERMINAL_STATUSES = {"released", "cancelled", "rejected"}
ACTIVE_STATUSES = {"pending", "confirmed", "in_progress", "return_pending"}


class Booking(TimestampMixin, db.Model):
    __tablename__ = "bookings"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    listing_id = db.Column(PKType, db.ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    renter_id = db.Column(PKType, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = db.Column(PKType, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    rental_days = db.Column(db.Integer, nullable=False)

    daily_rate = db.Column(db.Numeric(10, 2), nullable=False)
    subtotal = db.Column(Money, nullable=False)
    service_fee = db.Column(Money, nullable=False, default=0)
    platform_commission = db.Column(Money, nullable=False, default=0)
    insurance_fee = db.Column(Money, nullable=False, default=0)
    delivery_fee = db.Column(Money, nullable=False, default=0)
    deposit_amount = db.Column(Money, nullable=False, default=0)
    total_amount = db.Column(Money, nullable=False)
    owner_payout = db.Column(Money, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="aud")

    service_fee_rate = db.Column(db.Numeric(5, 4), nullable=False)
    commission_rate = db.Column(db.Numeric(5, 4), nullable=False)
    insurance_rate = db.Column(db.Numeric(5, 4), nullable=False)
    include_insurance = db.Column(db.Boolean, nullable=False, default=False)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    pickup_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    owner_receipt_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    disputed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_released_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    stripe_transfer_id = db.Column(db.String(64), nullable=True)
    payout_attempts = db.Column(db.Integer, nullable=False, default=0)
    deposit_refund_id = db.Column(db.String(64), nullable=True)
    deposit_refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    released_by_id = db.Column(PKType, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    dispute_reason = db.Column(db.Text, nullable=True)
    disputed_from = db.Column(db.String(24), nullable=True)
    renter_note = db.Column(db.Text, nullable=True)
    owner_note = db.Column(db.Text, nullable=True)

    listing = db.relationship("Listing", back_populates="bookings")
    renter = db.relationship("Profile", back_populates="rentals", foreign_keys=[renter_id])
    owner = db.relationship("Profile", back_populates="owner_bookings", foreign_keys=[owner_id])
    released_by = db.relationship("Profile", foreign_keys=[released_by_id])
    payment = db.relationship("PaymentRecord", back_populates="booking", uselist=False)

    __table_args__ = (
        db.Index("ix_bookings_renter_status", "renter_id", "status"),
        db.Index("ix_bookings_listing_status", "listing_id", "status"),
        db.CheckConstraint("rental_days > 0", name="ck_booking_days_positive"),
        db.CheckConstraint("end_date >= start_date", name="ck_booking_window"),
    )

    @property
    def return_confirmed_at(self):
        """Instant the payout holding period starts from."""
        return as_utc(self.owner_receipt_confirmed_at or self.completed_at)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def is_released(self):
        return self.admin_released_at is not None or self.status == "released"
