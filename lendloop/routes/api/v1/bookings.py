from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import or_

from lendloop.errors import AppError
from lendloop.extensions import db
from lendloop.models import Booking, Listing
from lendloop.services import BookingService, PaymentService

api_booking_bp = Blueprint("api_booking", __name__)


def serialize_booking(booking):
    return {
        "id": booking.id,
        "status": booking.status,
        "listing_id": booking.listing_id,
        "listing_title": booking.listing.title if booking.listing else None,
        "renter_id": booking.renter_id,
        "owner_id": booking.owner_id,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "rental_days": booking.rental_days,
        "total_amount": str(booking.total_amount),
        "owner_payout": str(booking.owner_payout),
        "currency": booking.currency,
        "completed_at": booking.completed_at.isoformat() if booking.completed_at else None,
        "owner_receipt_confirmed_at": (
            booking.owner_receipt_confirmed_at.isoformat() if booking.owner_receipt_confirmed_at else None
        ),
        "admin_released_at": booking.admin_released_at.isoformat() if booking.admin_released_at else None,
        "deposit_refund_id": booking.deposit_refund_id,
        "payment": PaymentService.serialize(booking.payment),
    }


def _payload():
    return request.get_json(silent=True) or {}


@api_booking_bp.post("/quote")
def quote_booking():
    payload = _payload()
    listing = db.session.get(Listing, payload.get("listing_id") or 0)
    if not listing or not listing.is_bookable:
        raise AppError("Listing unavailable.", 409)
    quote = BookingService.quote(
        listing,
        payload.get("start_date"),
        payload.get("end_date"),
        include_insurance=bool(payload.get("include_insurance")),
        with_delivery=bool(payload.get("with_delivery")),
    )
    return jsonify(
        {
            "listing_id": listing.id,
            "rental_days": quote["rental_days"],
            "deposit_amount": str(quote["deposit_amount"]),
            "rates": quote["rates"].as_dict(),
            **quote["fees"].as_dict(),
        }
    )


@api_booking_bp.post("")
@login_required
def create_booking():
    payload = _payload()
    booking = BookingService.create_booking(
        renter=current_user,
        listing_id=payload.get("listing_id"),
        start_date=payload.get("start_date"),
        end_date=payload.get("end_date"),
        include_insurance=bool(payload.get("include_insurance")),
        with_delivery=bool(payload.get("with_delivery")),
        renter_note=payload.get("renter_note"),
    )
    return jsonify(serialize_booking(booking)), 201


@api_booking_bp.get("/me")
@login_required
def my_bookings():
    role = request.args.get("as", "any")
    query = Booking.query
    if role == "renter":
        query = query.filter(Booking.renter_id == current_user.id)
    elif role == "owner":
        query = query.filter(Booking.owner_id == current_user.id)
    else:
        query = query.filter(or_(Booking.renter_id == current_user.id, Booking.owner_id == current_user.id))
    rows = query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()
    return jsonify([serialize_booking(b) for b in rows])


@api_booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    return jsonify(serialize_booking(booking))


@api_booking_bp.get("/<int:booking_id>/breakdown")
@login_required
def booking_breakdown(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    return jsonify(BookingService.payment_breakdown(booking))


@api_booking_bp.post("/<int:booking_id>/approve")
@login_required
def approve_booking(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    return jsonify(serialize_booking(BookingService.approve(booking, current_user)))


@api_booking_bp.post("/<int:booking_id>/reject")
@login_required
def reject_booking(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    booking = BookingService.reject(booking, current_user, reason=_payload().get("reason"))
    return jsonify(serialize_booking(booking))


@api_booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    return jsonify(serialize_booking(BookingService.cancel(booking, current_user)))


@api_booking_bp.post("/<int:booking_id>/confirm-pickup")
@login_required
def confirm_pickup(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    return jsonify(serialize_booking(BookingService.confirm_pickup(booking, current_user)))


@api_booking_bp.post("/<int:booking_id>/mark-returned")
@login_required
def mark_returned(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    return jsonify(serialize_booking(BookingService.mark_returned(booking, current_user)))


@api_booking_bp.post("/<int:booking_id>/confirm-return")
@login_required
def confirm_return(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    return jsonify(serialize_booking(BookingService.confirm_return(booking, current_user)))


@api_booking_bp.post("/<int:booking_id>/confirm-receipt")
@login_required
def confirm_receipt(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    booking = BookingService.confirm_receipt(booking, current_user, note=_payload().get("note"))
    return jsonify(serialize_booking(booking))


@api_booking_bp.post("/<int:booking_id>/dispute")
@login_required
def dispute_booking(booking_id):
    booking = BookingService.get_for_participant(booking_id, current_user)
    booking = BookingService.dispute(booking, current_user, reason=_payload().get("reason"))
    return jsonify(serialize_booking(booking))
