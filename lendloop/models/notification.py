from lendloop.extensions import db
from lendloop.models.base import PKType, TimestampMixin


class Notification(TimestampMixin, db.Model):
    __tablename__ = "notifications"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    profile_id = db.Column(PKType, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = db.Column(db.String(48), nullable=False, default="general", index=True)
    title = db.Column(db.String(180), nullable=False)
    message = db.Column(db.Text, nullable=False)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)

    profile = db.relationship("Profile", back_populates="notifications")
