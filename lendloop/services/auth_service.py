import re

from sqlalchemy.exc import IntegrityError

from lendloop.errors import AppError
from lendloop.extensions import bcrypt, db
from lendloop.models import Profile
from lendloop.models.base import utcnow

EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
MIN_PASSWORD_LENGTH = 8


class AuthService:
    @staticmethod
    def _normalize_email(email):
        return (email or "").strip().lower()

    @staticmethod
    def register_profile(full_name, email, password, phone=None, role="user"):
        if role not in {"user", "admin"}:
            raise AppError("Invalid role.", 400)

        normalized_email = AuthService._normalize_email(email)
        full_name = (full_name or "").strip()
        if not full_name or not normalized_email or not password:
            raise AppError("Name, email, and password are required.", 400)
        if not EMAIL_PATTERN.fullmatch(normalized_email):
            raise AppError("Please enter a valid email address.", 400)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AppError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", 400)

        if Profile.query.filter_by(email=normalized_email).first():
            raise AppError("Email already registered.", 409)

        profile = Profile(
            full_name=full_name,
            email=normalized_email,
            phone=(phone or "").strip() or None,
            role=role,
            password_hash=bcrypt.generate_password_hash(password).decode("utf-8"),
        )
        try:
            db.session.add(profile)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise AppError("Email already registered.", 409) from exc
        return profile

    @staticmethod
    def authenticate(email, password):
        profile = Profile.query.filter_by(email=AuthService._normalize_email(email)).first()
        if not profile:
            raise AppError("Invalid credentials.", 401)

        try:
            is_valid = bcrypt.check_password_hash(profile.password_hash, password or "")
        except ValueError:
            is_valid = False

        if not is_valid:
            raise AppError("Invalid credentials.", 401)
        if not profile.is_active_user:
            raise AppError("User account is inactive.", 403)
        profile.last_login = utcnow()
        db.session.commit()
        return profile
