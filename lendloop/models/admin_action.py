from lendloop.extensions import db
from lendloop.models.base import PKType, TimestampMixin


class AdminAction(TimestampMixin, db.Model):
    """Audit trail of admin mutations (payout releases, moderation, disputes)."""

    __tablename__ = "admin_actions"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    admin_id = db.Column(PKType, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    action_type = db.Column(db.String(48), nullable=False, index=True)
    resource_type = db.Column(db.String(32), nullable=False)
    resource_id = db.Column(PKType, nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)

    admin = db.relationship("Profile")

    __table_args__ = (db.Index("ix_admin_actions_resource", "resource_type", "resource_id"),)
