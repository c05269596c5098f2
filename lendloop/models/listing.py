from lendloop.extensions import db
from lendloop.models.base import PKType, TimestampMixin

APPROVAL_STATUSES = {"pending", "approved", "rejected"}


class Listing(TimestampMixin, db.Model):
    __tablename__ = "listings"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    owner_id = db.Column(PKType, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(140), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=False, default="other", index=True)

    price_per_day = db.Column(db.Numeric(10, 2), nullable=False)
    price_per_hour = db.Column(db.Numeric(10, 2), nullable=True)
    price_per_week = db.Column(db.Numeric(10, 2), nullable=True)
    price_per_month = db.Column(db.Numeric(10, 2), nullable=True)
    deposit_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    insurance_enabled = db.Column(db.Boolean, nullable=False, default=False)
    delivery_available = db.Column(db.Boolean, nullable=False, default=False)
    delivery_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    approval_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    images = db.Column(db.JSON, nullable=False, default=list)

    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True, index=True)
    state = db.Column(db.String(64), nullable=True)
    postcode = db.Column(db.String(10), nullable=True, index=True)
    latitude = db.Column(db.Numeric(10, 7), nullable=True)
    longitude = db.Column(db.Numeric(10, 7), nullable=True)

    owner = db.relationship("Profile", back_populates="listings")
    bookings = db.relationship("Booking", back_populates="listing", lazy="dynamic")

    __table_args__ = (
        db.Index("ix_listings_owner_active", "owner_id", "is_active"),
        db.Index("ix_listings_status_active", "approval_status", "is_active"),
        db.CheckConstraint("price_per_day > 0", name="ck_listing_price_positive"),
    )

    @property
    def is_bookable(self):
        return self.approval_status == "approved" and self.is_active
