from functools import wraps

from flask import current_app, request
from flask_login import current_user

from lendloop.errors import AppError


def role_required(*roles):
    """Allow only signed-in, active profiles whose role is in ``roles``."""

    def decorator(view):
        @wraps(view)
        def guarded(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AppError("Sign in required.", 401)
            if not current_user.is_active_user or current_user.role not in roles:
                current_app.logger.warning("Profile %s refused %s %s", current_user.id, request.method, request.path)
                raise AppError(f"Requires role: {', '.join(roles)}.", 403)
            return view(*args, **kwargs)

        return guarded

    return decorator


admin_required = role_required("admin")
