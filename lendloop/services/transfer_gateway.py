import stripe
from flask import current_app

from lendloop.errors import PayoutTransferError


class StripeTransferGateway:
    """Moves owner payouts to Stripe Connect accounts and returns renter deposits."""

    def __init__(self, api_key, currency):
        self.api_key = api_key
        self.currency = currency

    @staticmethod
    def to_minor_units(amount):
        return int((amount * 100).to_integral_value())

    def transfer(self, amount, destination, booking_id, attempt=1, metadata=None):
        # A reversed transfer must not be replayed on retry, so every attempt gets its own key.
        try:
            transfer = stripe.Transfer.create(
                amount=self.to_minor_units(amount),
                currency=self.currency,
                destination=destination,
                description=f"Payout for booking {booking_id}",
                metadata={"booking_id": str(booking_id), "attempt": str(attempt), **(metadata or {})},
                api_key=self.api_key,
                idempotency_key=f"payout-booking-{booking_id}-{attempt}",
            )
        except stripe.StripeError as exc:
            current_app.logger.warning("Stripe transfer failed for booking %s: %s", booking_id, exc)
            raise PayoutTransferError(f"Payment processor rejected the payout: {exc.user_message or exc}") from exc
        return transfer.id

    def reverse(self, transfer_id):
        try:
            stripe.Transfer.create_reversal(transfer_id, api_key=self.api_key)
        except stripe.StripeError:
            current_app.logger.exception("Could not reverse Stripe transfer %s", transfer_id)
            raise

    def refund_deposit(self, amount, payment_intent_id, booking_id):
        # Deposit refunds are never undone, so retries replay the first one.
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=self.to_minor_units(amount),
                reason="requested_by_customer",
                metadata={"booking_id": str(booking_id), "type": "security_deposit_refund"},
                api_key=self.api_key,
                idempotency_key=f"deposit-refund-booking-{booking_id}",
            )
        except stripe.StripeError as exc:
            current_app.logger.warning("Stripe deposit refund failed for booking %s: %s", booking_id, exc)
            raise PayoutTransferError(f"Payment processor rejected the deposit refund: {exc.user_message or exc}") from exc
        return refund.id


def get_transfer_gateway():
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        return None
    return StripeTransferGateway(api_key, current_app.config["PAYOUT_CURRENCY"])
