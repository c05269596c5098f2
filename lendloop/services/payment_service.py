from decimal import Decimal

from lendloop.errors import AppError
from lendloop.extensions import db
from lendloop.models import PaymentRecord
from lendloop.models.base import utcnow
from lendloop.models.payment import PAYMENT_STATUSES
from lendloop.services.audit_service import AuditService
from lendloop.services.payout_calculator import to_cents, to_decimal

PAYMENT_TRANSITIONS = {
    "pending": {"processing", "succeeded", "failed"},
    "processing": {"succeeded", "failed"},
    "failed": {"processing", "succeeded"},
    "succeeded": {"refunded"},
    "refunded": set(),
}


class PaymentService:
    @staticmethod
    def record_payment_status(
        booking,
        status,
        admin=None,
        stripe_payment_intent_id=None,
        processor_fee=None,
        refund_id=None,
        refund_amount=None,
        now=None,
    ):
        status = (status or "").strip().lower()
        if status not in PAYMENT_STATUSES:
            raise AppError(f"Unknown payment status: {status or 'empty'}.", 400)
        if booking.status in {"cancelled", "rejected"} and status == "succeeded":
            raise AppError("Cannot record a successful payment on a closed booking.", 409)

        payment = booking.payment
        if payment is None:
            payment = PaymentRecord(
                booking_id=booking.id,
                status="pending",
                amount=booking.total_amount,
                currency=booking.currency,
            )
            db.session.add(payment)
            booking.payment = payment

        if status != payment.status and status not in PAYMENT_TRANSITIONS[payment.status]:
            raise AppError(f"Payment cannot move from {payment.status} to {status}.", 400)

        if stripe_payment_intent_id:
            payment.stripe_payment_intent_id = stripe_payment_intent_id
        if processor_fee is not None:
            fee = to_cents(to_decimal(processor_fee, "processor fee"))
            if fee < 0:
                raise AppError("Processor fee cannot be negative.", 400)
            payment.processor_fee = fee

        if status == "succeeded":
            # The platform keeps the renter's service fee and the owner's commission.
            payment.platform_fee = Decimal(booking.service_fee) + Decimal(booking.platform_commission)
            payment.net_amount = booking.owner_payout
        elif status == "refunded":
            amount = payment.amount if refund_amount is None else to_cents(to_decimal(refund_amount, "refund amount"))
            if amount <= 0 or amount > payment.amount:
                raise AppError("Refund amount must be positive and no more than the amount paid.", 400)
            payment.refund_id = refund_id
            payment.refund_amount = amount
            payment.refunded_at = now or utcnow()

        payment.status = status
        if admin is not None:
            AuditService.record(admin, "record_payment", "booking", booking.id, {"status": status})
        db.session.commit()
        return payment

    @staticmethod
    def serialize(payment):
        if payment is None:
            return None
        return {
            "id": payment.id,
            "status": payment.status,
            "amount": str(payment.amount),
            "currency": payment.currency,
            "platform_fee": str(payment.platform_fee),
            "processor_fee": str(payment.processor_fee),
            "net_amount": str(payment.net_amount),
            "payout_id": payment.payout_id,
            "refund_amount": str(payment.refund_amount) if payment.refund_amount is not None else None,
        }
