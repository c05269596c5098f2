from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from lendloop.extensions import limiter
from lendloop.services import AuthService

api_auth_bp = Blueprint("api_auth", __name__)


def serialize_profile(profile):
    return {
        "id": profile.id,
        "full_name": profile.full_name,
        "email": profile.email,
        "role": profile.role,
        "identity_verified": profile.identity_verified,
        "has_stripe_account": bool(profile.stripe_account_id),
    }


@api_auth_bp.post("/register")
@limiter.limit("15 per minute")
def api_register():
    payload = request.get_json(silent=True) or {}
    profile = AuthService.register_profile(
        full_name=payload.get("full_name", ""),
        email=payload.get("email", ""),
        password=payload.get("password", ""),
        phone=payload.get("phone"),
    )
    login_user(profile)
    return jsonify(serialize_profile(profile)), 201


@api_auth_bp.post("/login")
@limiter.limit("20 per minute")
def api_login():
    payload = request.get_json(silent=True) or {}
    profile = AuthService.authenticate(payload.get("email", ""), payload.get("password", ""))
    login_user(profile)
    return jsonify(serialize_profile(profile))


@api_auth_bp.post("/logout")
@login_required
def api_logout():
    logout_user()
    return jsonify({"ok": True})


@api_auth_bp.get("/me")
@login_required
def api_me():
    return jsonify(serialize_profile(current_user))
