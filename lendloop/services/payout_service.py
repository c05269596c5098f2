from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from lendloop.errors import AppError, PayoutCalculationError, PayoutTransferError
from lendloop.extensions import db
from lendloop.models import Booking
from lendloop.models.base import as_utc
from lendloop.services.audit_service import AuditService
from lendloop.services.booking_service import BookingService
from lendloop.services.notification_service import NotificationService
from lendloop.services.payout_calculator import (
    FeeRates,
    compute_days_until_eligible,
    compute_eligibility,
    compute_eligible_at,
    compute_fees,
    to_cents,
    to_decimal,
)
from lendloop.services.platform_service import PlatformService
from lendloop.services.transfer_gateway import get_transfer_gateway

RELEASE_LISTING_STATUSES = ("in_progress", "return_pending", "completed", "disputed", "released")

BADGE_RELEASED = "Released"
BADGE_READY = "Ready for Release"
BADGE_PENDING = "Pending"
BADGE_AWAITING_RECEIPT = "Awaiting Receipt"
BADGE_AWAITING_PAYMENT = "Awaiting Payment"
BADGE_AWAITING_COMPLETION = "Awaiting Completion"
BADGE_DISPUTED = "Disputed"
BADGE_ERROR = "Error"


@dataclass(frozen=True)
class PayoutRow:
    """Flat view of a booking and its joined rows, built once per booking."""

    booking_id: int
    status: str
    listing_title: str
    renter_name: str
    owner_id: int
    owner_name: str
    owner_email: str
    owner_stripe_account_id: str
    subtotal: Optional[Decimal]
    platform_commission: Optional[Decimal]
    owner_payout: Optional[Decimal]
    insurance_fee: Optional[Decimal]
    delivery_fee: Optional[Decimal]
    deposit_amount: Optional[Decimal]
    include_insurance: bool
    rates: Tuple[Decimal, Decimal, Decimal]
    currency: str
    completed_at: Optional[datetime]
    owner_receipt_confirmed_at: Optional[datetime]
    return_confirmed_at: Optional[datetime]
    admin_released_at: Optional[datetime]
    is_released: bool
    stripe_transfer_id: Optional[str]
    payment_status: str

    @classmethod
    def from_booking(cls, booking):
        listing = booking.listing
        renter = booking.renter
        owner = booking.owner
        payment = booking.payment
        return cls(
            booking_id=booking.id,
            status=booking.status,
            listing_title=listing.title if listing else "Unknown listing",
            renter_name=renter.full_name if renter else "Unknown renter",
            owner_id=booking.owner_id,
            owner_name=owner.full_name if owner else "Unknown owner",
            owner_email=owner.email if owner else "",
            owner_stripe_account_id=(owner.stripe_account_id or "") if owner else "",
            subtotal=booking.subtotal,
            platform_commission=booking.platform_commission,
            owner_payout=booking.owner_payout,
            insurance_fee=booking.insurance_fee,
            delivery_fee=booking.delivery_fee,
            deposit_amount=booking.deposit_amount,
            include_insurance=bool(booking.include_insurance),
            rates=(booking.service_fee_rate, booking.commission_rate, booking.insurance_rate),
            currency=booking.currency,
            completed_at=as_utc(booking.completed_at),
            owner_receipt_confirmed_at=as_utc(booking.owner_receipt_confirmed_at),
            return_confirmed_at=booking.return_confirmed_at,
            admin_released_at=as_utc(booking.admin_released_at),
            is_released=booking.is_released,
            stripe_transfer_id=booking.stripe_transfer_id,
            payment_status=payment.status if payment else "no_payment",
        )

    def fees(self):
        """Recompute the fee split from the stored subtotal and rates, checking it against stored amounts."""
        service_rate, commission_rate, insurance_rate = self.rates
        fees = compute_fees(
            self.subtotal,
            FeeRates(service_rate, commission_rate, insurance_rate),
            include_insurance=self.include_insurance,
            delivery_fee=self.delivery_fee,
        )
        if to_decimal(self.owner_payout, "owner payout") != fees.owner_payout:
            raise PayoutCalculationError(f"Stored payout for booking #{self.booking_id} does not match its fees.")
        return fees

    def deposit(self):
        return to_cents(to_decimal(self.deposit_amount or 0, "deposit amount"))


class PayoutService:
    @staticmethod
    def badge_for(row, now, hold_days):
        if row.is_released:
            return BADGE_RELEASED
        if row.status == "disputed":
            return BADGE_DISPUTED
        if row.status != "completed":
            return BADGE_AWAITING_COMPLETION
        if row.owner_receipt_confirmed_at is None:
            return BADGE_AWAITING_RECEIPT
        if row.payment_status != "succeeded":
            return BADGE_AWAITING_PAYMENT
        if compute_eligibility(row.return_confirmed_at, now, hold_days):
            return BADGE_READY
        return BADGE_PENDING

    @staticmethod
    def evaluate(row, now, hold_days):
        result = {
            "booking_id": row.booking_id,
            "status": row.status,
            "listing_title": row.listing_title,
            "renter_name": row.renter_name,
            "owner_name": row.owner_name,
            "owner_email": row.owner_email,
            "has_stripe_account": bool(row.owner_stripe_account_id),
            "payment_status": row.payment_status,
            "currency": row.currency,
            "completed_at": row.completed_at.isoformat() if row.completed_at else None,
            "owner_receipt_confirmed_at": (
                row.owner_receipt_confirmed_at.isoformat() if row.owner_receipt_confirmed_at else None
            ),
            "admin_released_at": row.admin_released_at.isoformat() if row.admin_released_at else None,
            "stripe_transfer_id": row.stripe_transfer_id,
            "eligible_at": None,
            "days_until_eligible": None,
            "eligible": False,
            "error": None,
        }
        try:
            result.update(row.fees().as_dict())
            result["deposit_amount"] = str(row.deposit())
            result["badge"] = PayoutService.badge_for(row, now, hold_days)
            if row.return_confirmed_at is not None:
                result["eligible_at"] = compute_eligible_at(row.return_confirmed_at, hold_days).isoformat()
                result["days_until_eligible"] = compute_days_until_eligible(row.return_confirmed_at, now, hold_days)
            result["eligible"] = result["badge"] == BADGE_READY
        except PayoutCalculationError as exc:
            result["badge"] = BADGE_ERROR
            result["error"] = exc.message
        return result

    @staticmethod
    def list_releases(now, badge=None):
        hold_days = PlatformService.get_hold_days()
        bookings = (
            Booking.query.options(
                joinedload(Booking.listing),
                joinedload(Booking.renter),
                joinedload(Booking.owner),
                joinedload(Booking.payment),
            )
            .filter(Booking.status.in_(RELEASE_LISTING_STATUSES))
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .all()
        )
        rows = [PayoutService.evaluate(PayoutRow.from_booking(b), now, hold_days) for b in bookings]
        if badge:
            rows = [row for row in rows if row["badge"] == badge]

        eligible = [row for row in rows if row["eligible"]]
        return {
            "total_pending": sum(1 for row in rows if row["badge"] != BADGE_RELEASED),
            "eligible_for_release": len(eligible),
            "eligible_payout_total": str(sum((Decimal(row["owner_payout"]) for row in eligible), Decimal("0.00"))),
            "hold_working_days": hold_days,
            "bookings": rows,
        }

    @staticmethod
    def _refund_deposit(booking, deposit, gateway):
        payment_intent_id = booking.payment.stripe_payment_intent_id
        if gateway is None or not payment_intent_id:
            current_app.logger.warning("Deposit of %s for booking %s needs a manual refund", deposit, booking.id)
            return None
        try:
            return gateway.refund_deposit(deposit, payment_intent_id, booking.id)
        except PayoutTransferError:
            # The owner payout stands; the deposit is left for a manual refund.
            current_app.logger.warning("Deposit refund for booking %s left for manual follow-up", booking.id)
            return None

    @staticmethod
    def release(booking_id, admin, now, gateway=None):
        booking = db.session.get(Booking, booking_id)
        if not booking:
            raise AppError(f"Booking #{booking_id} not found.", 404)
        if booking.is_released:
            raise AppError("Payout already released for this booking.", 409)
        BookingService.ensure_transition(booking, "released")
        if booking.owner_receipt_confirmed_at is None:
            raise PayoutCalculationError("Owner has not confirmed receipt of the returned item.")
        if booking.payment is None or booking.payment.status != "succeeded":
            raise AppError("The renter's payment has not succeeded for this booking.", 409)

        hold_days = PlatformService.get_hold_days()
        row = PayoutRow.from_booking(booking)
        fees = row.fees()
        deposit = row.deposit()
        if not compute_eligibility(row.return_confirmed_at, now, hold_days):
            eligible_at = compute_eligible_at(row.return_confirmed_at, hold_days)
            raise AppError(f"Payout is not eligible for release until {eligible_at.isoformat()}.", 409)

        amount = fees.owner_payout
        gateway = gateway or get_transfer_gateway()
        transfer_id = None
        if gateway is not None and row.owner_stripe_account_id and amount > 0:
            # Persist the attempt number first so a retry after a reversal never reuses its key.
            booking.payout_attempts = (booking.payout_attempts or 0) + 1
            attempt = booking.payout_attempts
            db.session.commit()
            transfer_id = gateway.transfer(
                amount,
                row.owner_stripe_account_id,
                booking.id,
                attempt=attempt,
                metadata={"admin_id": str(admin.id), "owner_id": str(booking.owner_id)},
            )
            message = f"Stripe payout completed: {transfer_id}"
        elif not row.owner_stripe_account_id:
            current_app.logger.warning(
                "Owner %s has no Stripe account; booking %s released manually", row.owner_id, booking.id
            )
            message = "No Stripe account connected - manual payout release"
        else:
            message = "Manual payout release"

        deposit_refund_id = PayoutService._refund_deposit(booking, deposit, gateway) if deposit > 0 else None

        try:
            booking.status = "released"
            booking.admin_released_at = now
            booking.released_by_id = admin.id
            booking.stripe_transfer_id = transfer_id
            if deposit_refund_id:
                booking.deposit_refund_id = deposit_refund_id
                booking.deposit_refunded_at = now
            booking.payment.payout_id = transfer_id
            booking.payment.payout_date = now
            NotificationService.push(
                booking.owner_id,
                "Payment released",
                f"Your payout of {amount} {booking.currency.upper()} for booking #{booking.id} has been released.",
                kind="funds_released",
                booking_id=booking.id,
            )
            if deposit_refund_id:
                NotificationService.push(
                    booking.renter_id,
                    "Deposit refunded",
                    f"Your deposit of {deposit} {booking.currency.upper()} for booking #{booking.id} is on its way.",
                    kind="deposit_refunded",
                    booking_id=booking.id,
                )
            AuditService.record(
                admin,
                "release_funds",
                "booking",
                booking.id,
                {
                    "transfer_id": transfer_id,
                    "owner_payout": str(amount),
                    "platform_commission": str(fees.platform_commission),
                    "deposit_amount": str(deposit),
                    "deposit_refund_id": deposit_refund_id,
                },
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Payout release for booking %s failed to persist", booking_id)
            if deposit_refund_id:
                current_app.logger.warning(
                    "Deposit refund %s for booking %s stands; a retry will reuse it", deposit_refund_id, booking_id
                )
            if transfer_id:
                gateway.reverse(transfer_id)
            raise

        current_app.logger.info("Released payout of %s for booking %s (%s)", amount, booking.id, message)
        return {
            "booking_id": booking.id,
            "success": True,
            "payout_id": transfer_id,
            "amount": str(amount),
            "deposit_refund_id": deposit_refund_id,
            "message": message,
        }

    @staticmethod
    def release_many(booking_ids, admin, now, gateway=None):
        if not isinstance(booking_ids, list) or not booking_ids:
            raise AppError("booking_ids array is required.", 400)

        results = []
        for booking_id in booking_ids:
            if isinstance(booking_id, bool) or not isinstance(booking_id, int):
                results.append({"booking_id": booking_id, "success": False, "message": "Invalid booking id."})
                continue
            booking = db.session.get(Booking, booking_id)
            if booking is not None and booking.is_released:
                results.append(
                    {
                        "booking_id": booking_id,
                        "success": True,
                        "payout_id": booking.stripe_transfer_id,
                        "amount": str(booking.owner_payout),
                        "message": "Already released",
                    }
                )
                continue
            try:
                results.append(PayoutService.release(booking_id, admin, now, gateway=gateway))
            except AppError as exc:
                db.session.rollback()
                results.append({"booking_id": booking_id, "success": False, "message": exc.message})
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("Bulk payout release failed for booking %s", booking_id)
                results.append(
                    {"booking_id": booking_id, "success": False, "message": "Could not save the release. Try again."}
                )
        return {
            "released": sum(1 for item in results if item["success"]),
            "failed": sum(1 for item in results if not item["success"]),
            "results": results,
        }
