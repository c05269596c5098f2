from lendloop.extensions import db
from lendloop.models import Notification


class NotificationService:
    @staticmethod
    def push(profile_id, title, message, kind="general", booking_id=None):
        notification = Notification(
            profile_id=profile_id,
            title=title,
            message=message,
            kind=kind,
            booking_id=booking_id,
        )
        db.session.add(notification)
        db.session.flush()
        return notification

    @staticmethod
    def unread_count(profile_id):
        return Notification.query.filter_by(profile_id=profile_id, is_read=False).count()

    @staticmethod
    def latest_for_profile(profile_id, limit=20):
        return (
            Notification.query.filter_by(profile_id=profile_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def mark_all_read(profile_id):
        Notification.query.filter_by(profile_id=profile_id, is_read=False).update({"is_read": True})
        db.session.commit()
