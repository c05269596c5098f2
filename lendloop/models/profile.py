from flask_login import UserMixin

from lendloop.extensions import db
from lendloop.models.base import PKType, TimestampMixin

ROLES = {"user", "admin"}


class Profile(UserMixin, TimestampMixin, db.Model):
    __tablename__ = "profiles"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    full_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(20), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default="user", index=True)

    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    identity_verified = db.Column(db.Boolean, nullable=False, default=False, index=True)
    rating_average = db.Column(db.Numeric(3, 2), nullable=False, default=0)
    rating_count = db.Column(db.Integer, nullable=False, default=0)

    stripe_account_id = db.Column(db.String(64), nullable=True)
    is_active_user = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    listings = db.relationship("Listing", back_populates="owner", lazy="dynamic")
    rentals = db.relationship("Booking", back_populates="renter", lazy="dynamic", foreign_keys="Booking.renter_id")
    owner_bookings = db.relationship("Booking", back_populates="owner", lazy="dynamic", foreign_keys="Booking.owner_id")
    notifications = db.relationship("Notification", back_populates="profile", lazy="dynamic")

    @property
    def is_admin(self):
        return self.role == "admin"
