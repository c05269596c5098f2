from datetime import date

from flask import current_app

from lendloop.errors import AppError, InvalidTransitionError
from lendloop.extensions import db
from lendloop.models import Booking, Listing
from lendloop.models.base import utcnow
from lendloop.models.booking import ACTIVE_STATUSES
from lendloop.services.audit_service import AuditService
from lendloop.services.notification_service import NotificationService
from lendloop.services.payout_calculator import compute_fees, compute_rental_days, compute_subtotal
from lendloop.services.platform_service import PlatformService

BOOKING_TRANSITIONS = {
    "pending": {"confirmed", "rejected", "cancelled"},
    "confirmed": {"in_progress", "cancelled"},
    "in_progress": {"return_pending", "disputed"},
    "return_pending": {"completed", "disputed"},
    "completed": {"released", "disputed"},
    "disputed": {"in_progress", "return_pending", "completed"},
    "released": set(),
    "cancelled": set(),
    "rejected": set(),
}


class BookingService:
    @staticmethod
    def _parse_date(value, label):
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat((value or "").strip())
        except (AttributeError, ValueError) as exc:
            raise AppError(f"{label} must be a date in YYYY-MM-DD format.", 400) from exc

    @staticmethod
    def quote(listing, start_date, end_date, include_insurance=False, with_delivery=False):
        start_date = BookingService._parse_date(start_date, "Start date")
        end_date = BookingService._parse_date(end_date, "End date")
        if include_insurance and not listing.insurance_enabled:
            raise AppError("Insurance is not offered for this listing.", 400)
        if with_delivery and not listing.delivery_available:
            raise AppError("Delivery is not offered for this listing.", 400)

        rental_days = compute_rental_days(start_date, end_date)
        if rental_days > current_app.config["MAX_BOOKING_DAYS"]:
            raise AppError(f"Bookings cannot exceed {current_app.config['MAX_BOOKING_DAYS']} days.", 400)

        rates = PlatformService.get_fee_rates()
        fees = compute_fees(
            compute_subtotal(listing.price_per_day, start_date, end_date),
            rates,
            include_insurance=include_insurance,
            delivery_fee=listing.delivery_fee if with_delivery else None,
        )
        return {
            "start_date": start_date,
            "end_date": end_date,
            "rental_days": rental_days,
            "rates": rates,
            "fees": fees,
            "deposit_amount": listing.deposit_amount,
        }

    @staticmethod
    def _has_conflict(listing_id, start_date, end_date):
        return (
            Booking.query.filter(Booking.listing_id == listing_id)
            .filter(Booking.status.in_(ACTIVE_STATUSES))
            .filter(Booking.start_date <= end_date, Booking.end_date >= start_date)
            .first()
            is not None
        )

    @staticmethod
    def create_booking(
        renter,
        listing_id,
        start_date,
        end_date,
        include_insurance=False,
        with_delivery=False,
        renter_note=None,
        today=None,
    ):
        listing = db.session.get(Listing, listing_id) if listing_id is not None else None
        if not listing or not listing.is_bookable:
            raise AppError("Listing unavailable.", 409)
        if listing.owner_id == renter.id:
            raise AppError("You cannot book your own listing.", 400)

        quote = BookingService.quote(listing, start_date, end_date, include_insurance, with_delivery)
        if quote["start_date"] < (today or utcnow().date()):
            raise AppError("Bookings cannot start in the past.", 400)
        if BookingService._has_conflict(listing.id, quote["start_date"], quote["end_date"]):
            raise AppError("Listing already booked for the selected dates.", 409)

        fees = quote["fees"]
        rates = quote["rates"]
        booking = Booking(
            listing_id=listing.id,
            renter_id=renter.id,
            owner_id=listing.owner_id,
            status="pending",
            start_date=quote["start_date"],
            end_date=quote["end_date"],
            rental_days=quote["rental_days"],
            daily_rate=listing.price_per_day,
            subtotal=fees.subtotal,
            service_fee=fees.service_fee,
            platform_commission=fees.platform_commission,
            insurance_fee=fees.insurance_fee,
            delivery_fee=fees.delivery_fee,
            deposit_amount=listing.deposit_amount or 0,
            total_amount=fees.total_charged,
            owner_payout=fees.owner_payout,
            currency=current_app.config["PAYOUT_CURRENCY"],
            service_fee_rate=rates.service_fee_rate,
            commission_rate=rates.commission_rate,
            insurance_rate=rates.insurance_rate,
            include_insurance=bool(include_insurance),
            renter_note=(renter_note or "").strip() or None,
        )
        db.session.add(booking)
        db.session.flush()

        NotificationService.push(
            listing.owner_id,
            "New booking request",
            f"{renter.full_name} requested {listing.title} from {booking.start_date} to {booking.end_date}.",
            kind="booking_requested",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def get_for_participant(booking_id, actor):
        booking = db.session.get(Booking, booking_id)
        if not booking:
            raise AppError("Booking not found.", 404)
        if not actor.is_admin and actor.id not in {booking.renter_id, booking.owner_id}:
            raise AppError("Not authorized for this booking.", 403)
        return booking

    @staticmethod
    def ensure_transition(booking, new_status):
        current = booking.status
        if booking.is_terminal:
            raise InvalidTransitionError(current, new_status)
        if new_status not in BOOKING_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(current, new_status)

    @staticmethod
    def _require_owner(booking, actor):
        if booking.owner_id != actor.id:
            raise AppError("Only the listing owner can do this.", 403)

    @staticmethod
    def _require_renter(booking, actor):
        if booking.renter_id != actor.id:
            raise AppError("Only the renter can do this.", 403)

    @staticmethod
    def approve(booking, actor, now=None):
        BookingService._require_owner(booking, actor)
        BookingService.ensure_transition(booking, "confirmed")
        booking.status = "confirmed"
        booking.approved_at = now or utcnow()
        NotificationService.push(
            booking.renter_id,
            "Booking confirmed",
            f"Your booking for {booking.listing.title} was approved.",
            kind="booking_confirmed",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def reject(booking, actor, reason=None, now=None):
        BookingService._require_owner(booking, actor)
        BookingService.ensure_transition(booking, "rejected")
        booking.status = "rejected"
        booking.rejected_at = now or utcnow()
        booking.owner_note = (reason or "").strip() or None
        NotificationService.push(
            booking.renter_id,
            "Booking declined",
            f"Your booking for {booking.listing.title} was declined.",
            kind="booking_rejected",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def cancel(booking, actor, now=None):
        if actor.id not in {booking.renter_id, booking.owner_id}:
            raise AppError("Not authorized for this booking.", 403)
        BookingService.ensure_transition(booking, "cancelled")
        booking.status = "cancelled"
        booking.cancelled_at = now or utcnow()
        other_party = booking.owner_id if actor.id == booking.renter_id else booking.renter_id
        NotificationService.push(
            other_party,
            "Booking cancelled",
            f"The booking for {booking.listing.title} was cancelled.",
            kind="booking_cancelled",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def confirm_pickup(booking, actor, now=None):
        BookingService._require_owner(booking, actor)
        BookingService.ensure_transition(booking, "in_progress")
        booking.status = "in_progress"
        booking.pickup_confirmed_at = now or utcnow()
        NotificationService.push(
            booking.renter_id,
            "Pickup confirmed",
            f"Enjoy your rental of {booking.listing.title}.",
            kind="pickup_confirmed",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def mark_returned(booking, actor, now=None):
        BookingService._require_renter(booking, actor)
        BookingService.ensure_transition(booking, "return_pending")
        booking.status = "return_pending"
        booking.return_requested_at = now or utcnow()
        NotificationService.push(
            booking.owner_id,
            "Item returned",
            f"{booking.renter.full_name} marked {booking.listing.title} as returned. Please confirm.",
            kind="return_pending",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def confirm_return(booking, actor, now=None):
        BookingService._require_owner(booking, actor)
        BookingService.ensure_transition(booking, "completed")
        booking.status = "completed"
        booking.completed_at = now or utcnow()
        NotificationService.push(
            booking.renter_id,
            "Rental completed",
            f"The owner confirmed the return of {booking.listing.title}.",
            kind="booking_completed",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def confirm_receipt(booking, actor, note=None, now=None):
        BookingService._require_owner(booking, actor)
        if booking.status != "completed":
            raise AppError("Receipt can only be confirmed once the return is confirmed.", 400)
        if booking.owner_receipt_confirmed_at is not None:
            raise AppError("Receipt already confirmed for this booking.", 400)
        booking.owner_receipt_confirmed_at = now or utcnow()
        if note:
            booking.owner_note = note.strip()
        hold_days = PlatformService.get_hold_days()
        NotificationService.push(
            booking.owner_id,
            "Payout scheduled",
            f"Your payout for booking #{booking.id} can be released after {hold_days} working days.",
            kind="payout_scheduled",
            booking_id=booking.id,
        )
        db.session.commit()
        return booking

    @staticmethod
    def dispute(booking, actor, reason, now=None):
        if not actor.is_admin and actor.id not in {booking.renter_id, booking.owner_id}:
            raise AppError("Not authorized for this booking.", 403)
        reason = (reason or "").strip()
        if not reason:
            raise AppError("A dispute reason is required.", 400)
        BookingService.ensure_transition(booking, "disputed")
        booking.disputed_from = booking.status
        booking.status = "disputed"
        booking.disputed_at = now or utcnow()
        booking.dispute_reason = reason
        if actor.is_admin:
            AuditService.record(actor, "mark_disputed", "booking", booking.id, {"reason": reason})
        for party in {booking.renter_id, booking.owner_id} - {actor.id}:
            NotificationService.push(
                party,
                "Booking disputed",
                f"Booking #{booking.id} is under dispute: {reason}",
                kind="booking_disputed",
                booking_id=booking.id,
            )
        db.session.commit()
        return booking

    @staticmethod
    def resolve_dispute(booking, admin, note=None):
        if booking.status != "disputed":
            raise AppError("Booking is not under dispute.", 400)
        # Resume the rental where it was when the dispute was raised.
        target = booking.disputed_from or "completed"
        BookingService.ensure_transition(booking, target)
        booking.status = target
        booking.disputed_from = None
        if target == "completed":
            booking.completed_at = booking.completed_at or utcnow()
        details = {"note": (note or "").strip(), "resumed_status": target}
        AuditService.record(admin, "resolve_dispute", "booking", booking.id, details)
        for party in (booking.renter_id, booking.owner_id):
            NotificationService.push(
                party,
                "Dispute resolved",
                f"The dispute on booking #{booking.id} has been resolved.",
                kind="dispute_resolved",
                booking_id=booking.id,
            )
        db.session.commit()
        return booking

    @staticmethod
    def payment_breakdown(booking):
        return {
            "booking_id": booking.id,
            "rental_days": booking.rental_days,
            "daily_rate": str(booking.daily_rate),
            "subtotal": str(booking.subtotal),
            "service_fee": str(booking.service_fee),
            "service_fee_rate": str(booking.service_fee_rate),
            "insurance_fee": str(booking.insurance_fee),
            "delivery_fee": str(booking.delivery_fee),
            "deposit_amount": str(booking.deposit_amount),
            "total_amount": str(booking.total_amount),
            "platform_commission": str(booking.platform_commission),
            "commission_rate": str(booking.commission_rate),
            "owner_payout": str(booking.owner_payout),
            "currency": booking.currency,
        }
