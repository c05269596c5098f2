from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from lendloop.decorators import admin_required
from lendloop.errors import AppError
from lendloop.extensions import db
from lendloop.models import Booking
from lendloop.models.base import utcnow
from lendloop.routes.api.v1.bookings import serialize_booking
from lendloop.routes.api.v1.listings import serialize_listing
from lendloop.services import BookingService, ListingService, PaymentService, PayoutService, PlatformService

api_admin_bp = Blueprint("api_admin", __name__)


def _payload():
    return request.get_json(silent=True) or {}


def _get_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise AppError("Booking not found.", 404)
    return booking


@api_admin_bp.get("/payouts")
@login_required
@admin_required
def list_payouts():
    return jsonify(PayoutService.list_releases(utcnow(), badge=request.args.get("badge")))


@api_admin_bp.post("/payouts/<int:booking_id>/release")
@login_required
@admin_required
def release_payout(booking_id):
    return jsonify(PayoutService.release(booking_id, current_user, utcnow()))


@api_admin_bp.post("/payouts/release")
@login_required
@admin_required
def release_payouts():
    payload = _payload()
    if payload.get("action", "release") != "release":
        raise AppError('Invalid action. Only "release" is supported.', 400)
    return jsonify(PayoutService.release_many(payload.get("booking_ids"), current_user, utcnow()))


@api_admin_bp.post("/bookings/<int:booking_id>/dispute")
@login_required
@admin_required
def dispute_booking(booking_id):
    booking = BookingService.dispute(_get_booking(booking_id), current_user, reason=_payload().get("reason"))
    return jsonify(serialize_booking(booking))


@api_admin_bp.post("/bookings/<int:booking_id>/resolve")
@login_required
@admin_required
def resolve_dispute(booking_id):
    booking = BookingService.resolve_dispute(_get_booking(booking_id), current_user, note=_payload().get("note"))
    return jsonify(serialize_booking(booking))


@api_admin_bp.post("/payments/<int:booking_id>")
@login_required
@admin_required
def record_payment(booking_id):
    payload = _payload()
    payment = PaymentService.record_payment_status(
        _get_booking(booking_id),
        payload.get("status"),
        admin=current_user,
        stripe_payment_intent_id=payload.get("stripe_payment_intent_id"),
        processor_fee=payload.get("processor_fee"),
        refund_id=payload.get("refund_id"),
        refund_amount=payload.get("refund_amount"),
    )
    return jsonify(PaymentService.serialize(payment))


@api_admin_bp.get("/listings/pending")
@login_required
@admin_required
def pending_listings():
    return jsonify([serialize_listing(item, include_moderation=True) for item in ListingService.pending_moderation()])


@api_admin_bp.post("/listings/<int:listing_id>/approve")
@login_required
@admin_required
def approve_listing(listing_id):
    listing = ListingService.moderate(listing_id, current_user, approve=True)
    return jsonify(serialize_listing(listing, include_moderation=True))


@api_admin_bp.post("/listings/<int:listing_id>/reject")
@login_required
@admin_required
def reject_listing(listing_id):
    listing = ListingService.moderate(listing_id, current_user, approve=False, reason=_payload().get("reason"))
    return jsonify(serialize_listing(listing, include_moderation=True))


@api_admin_bp.get("/settings")
@login_required
@admin_required
def get_settings():
    return jsonify(PlatformService.settings_snapshot())


@api_admin_bp.put("/settings")
@login_required
@admin_required
def update_settings():
    PlatformService.update_settings(_payload(), admin=current_user)
    return jsonify(PlatformService.settings_snapshot())
