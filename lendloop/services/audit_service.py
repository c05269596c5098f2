from lendloop.extensions import db
from lendloop.models import AdminAction


class AuditService:
    @staticmethod
    def record(admin, action_type, resource_type, resource_id, details=None):
        # Joins the caller's transaction; the caller commits.
        action = AdminAction(
            admin_id=getattr(admin, "id", admin),
            action_type=action_type,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
        )
        db.session.add(action)
        return action

    @staticmethod
    def history(resource_type, resource_id):
        return (
            AdminAction.query.filter_by(resource_type=resource_type, resource_id=resource_id)
            .order_by(AdminAction.created_at.asc(), AdminAction.id.asc())
            .all()
        )
