"""
Integration tests for the admin payout queue and fund release.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import stripe
from sqlalchemy.exc import SQLAlchemyError

from lendloop.errors import AppError, InvalidTransitionError, PayoutCalculationError, PayoutTransferError
from lendloop.extensions import db
from lendloop.models import AdminAction, Booking, Notification
from lendloop.services import NotificationService, PayoutService
from lendloop.services.payout_service import (
    BADGE_AWAITING_COMPLETION,
    BADGE_AWAITING_PAYMENT,
    BADGE_AWAITING_RECEIPT,
    BADGE_DISPUTED,
    BADGE_ERROR,
    BADGE_PENDING,
    BADGE_READY,
    BADGE_RELEASED,
)
from lendloop.services.transfer_gateway import StripeTransferGateway, get_transfer_gateway

FRIDAY_5PM = datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc)
TUESDAY_5PM = datetime(2024, 3, 5, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def ready_booking(listing, renter, make_booking):
    return make_booking(
        listing,
        renter,
        completed_at=FRIDAY_5PM - timedelta(hours=2),
        owner_receipt_confirmed_at=FRIDAY_5PM,
        payment_status="succeeded",
    )


@pytest.mark.integration
def test_badges_cover_each_state(listing, renter, make_booking) -> None:
    """Each booking shown to admins gets exactly one badge."""
    released = make_booking(listing, renter, status="released", completed_at=FRIDAY_5PM)
    released.admin_released_at = FRIDAY_5PM
    ready = make_booking(
        listing, renter, completed_at=FRIDAY_5PM, owner_receipt_confirmed_at=FRIDAY_5PM, payment_status="succeeded"
    )
    pending = make_booking(
        listing, renter, completed_at=TUESDAY_5PM, owner_receipt_confirmed_at=TUESDAY_5PM, payment_status="succeeded"
    )
    unpaid = make_booking(
        listing, renter, completed_at=FRIDAY_5PM, owner_receipt_confirmed_at=FRIDAY_5PM, payment_status="failed"
    )
    awaiting_receipt = make_booking(listing, renter, completed_at=FRIDAY_5PM)
    in_progress = make_booking(listing, renter, status="in_progress")
    disputed = make_booking(listing, renter, status="disputed", completed_at=FRIDAY_5PM)
    broken = make_booking(listing, renter, completed_at=FRIDAY_5PM, owner_receipt_confirmed_at=FRIDAY_5PM)
    broken.owner_payout = Decimal("1.00")
    make_booking(listing, renter, status="pending")
    db.session.commit()

    result = PayoutService.list_releases(TUESDAY_5PM + timedelta(hours=1))
    badges = {row["booking_id"]: row["badge"] for row in result["bookings"]}

    assert badges == {
        released.id: BADGE_RELEASED,
        ready.id: BADGE_READY,
        pending.id: BADGE_PENDING,
        unpaid.id: BADGE_AWAITING_PAYMENT,
        awaiting_receipt.id: BADGE_AWAITING_RECEIPT,
        in_progress.id: BADGE_AWAITING_COMPLETION,
        disputed.id: BADGE_DISPUTED,
        broken.id: BADGE_ERROR,
    }
    assert result["total_pending"] == 7
    assert result["eligible_for_release"] == 1
    assert result["eligible_payout_total"] == "240.00"
    assert result["hold_working_days"] == 2


@pytest.mark.integration
def test_listing_row_carries_fees_and_countdown(ready_booking) -> None:
    result = PayoutService.list_releases(FRIDAY_5PM + timedelta(days=1))
    row = result["bookings"][0]

    assert row["badge"] == BADGE_PENDING
    assert row["owner_payout"] == "240.00"
    assert row["platform_commission"] == "60.00"
    assert row["eligible_at"] == TUESDAY_5PM.isoformat()
    assert row["days_until_eligible"] == 3
    assert row["eligible"] is False
    assert row["error"] is None
    assert row["has_stripe_account"] is True


@pytest.mark.integration
def test_listing_reports_calculation_errors_per_row(listing, renter, make_booking) -> None:
    broken = make_booking(listing, renter, completed_at=FRIDAY_5PM, owner_receipt_confirmed_at=FRIDAY_5PM)
    broken.owner_payout = Decimal("1.00")
    db.session.commit()

    row = PayoutService.list_releases(TUESDAY_5PM)["bookings"][0]

    assert row["badge"] == BADGE_ERROR
    assert "does not match" in row["error"]
    assert row["eligible"] is False


@pytest.mark.integration
def test_listing_can_filter_by_badge(ready_booking, listing, renter, make_booking) -> None:
    make_booking(listing, renter, status="in_progress")

    result = PayoutService.list_releases(TUESDAY_5PM, badge=BADGE_READY)

    assert [row["booking_id"] for row in result["bookings"]] == [ready_booking.id]


@pytest.mark.integration
def test_release_without_stripe_is_manual(ready_booking, admin, owner) -> None:
    result = PayoutService.release(ready_booking.id, admin, TUESDAY_5PM)

    assert result["success"] is True
    assert result["payout_id"] is None
    assert result["amount"] == "240.00"
    assert "manual" in result["message"].lower()

    booking = db.session.get(Booking, ready_booking.id)
    assert booking.status == "released"
    assert booking.admin_released_at is not None
    assert booking.released_by_id == admin.id
    assert booking.payment.payout_date is not None
    assert Notification.query.filter_by(profile_id=owner.id, kind="funds_released").count() == 1
    action = AdminAction.query.filter_by(action_type="release_funds").one()
    assert action.resource_id == ready_booking.id
    assert action.details["owner_payout"] == "240.00"


@pytest.mark.integration
def test_release_transfers_through_gateway(ready_booking, admin) -> None:
    gateway = Mock()
    gateway.transfer.return_value = "tr_123"

    result = PayoutService.release(ready_booking.id, admin, TUESDAY_5PM, gateway=gateway)

    gateway.transfer.assert_called_once()
    args = gateway.transfer.call_args.args
    assert args[:3] == (Decimal("240.00"), "acct_owner", ready_booking.id)
    assert result["payout_id"] == "tr_123"
    booking = db.session.get(Booking, ready_booking.id)
    assert booking.stripe_transfer_id == "tr_123"
    assert booking.payment.payout_id == "tr_123"


@pytest.mark.integration
def test_release_before_hold_period_is_refused(ready_booking, admin) -> None:
    gateway = Mock()

    with pytest.raises(AppError) as excinfo:
        PayoutService.release(ready_booking.id, admin, TUESDAY_5PM - timedelta(minutes=1), gateway=gateway)

    assert excinfo.value.status_code == 409
    assert TUESDAY_5PM.isoformat() in excinfo.value.message
    gateway.transfer.assert_not_called()
    assert db.session.get(Booking, ready_booking.id).status == "completed"


@pytest.mark.integration
def test_release_requires_owner_receipt(listing, renter, admin, make_booking) -> None:
    booking = make_booking(listing, renter, completed_at=FRIDAY_5PM)

    with pytest.raises(PayoutCalculationError):
        PayoutService.release(booking.id, admin, TUESDAY_5PM + timedelta(days=7))


@pytest.mark.integration
def test_release_requires_completed_booking(listing, renter, admin, make_booking) -> None:
    booking = make_booking(
        listing,
        renter,
        status="disputed",
        completed_at=FRIDAY_5PM,
        owner_receipt_confirmed_at=FRIDAY_5PM,
    )

    with pytest.raises(InvalidTransitionError):
        PayoutService.release(booking.id, admin, TUESDAY_5PM + timedelta(days=7))


@pytest.mark.integration
def test_release_twice_is_refused(ready_booking, admin) -> None:
    PayoutService.release(ready_booking.id, admin, TUESDAY_5PM)

    with pytest.raises(AppError) as excinfo:
        PayoutService.release(ready_booking.id, admin, TUESDAY_5PM)

    assert excinfo.value.status_code == 409


@pytest.mark.integration
def test_release_unknown_booking(admin) -> None:
    with pytest.raises(AppError) as excinfo:
        PayoutService.release(9999, admin, TUESDAY_5PM)

    assert excinfo.value.status_code == 404


def _commit_failing_after(successes):
    """Return a commit stand-in that lets the first `successes` commits through, then fails."""
    real_commit = db.session.commit
    calls = {"n": 0}

    def _commit():
        calls["n"] += 1
        if calls["n"] > successes:
            raise SQLAlchemyError("disk full")
        real_commit()

    return _commit


@pytest.mark.integration
def test_failed_commit_reverses_transfer(ready_booking, admin) -> None:
    gateway = Mock()
    gateway.transfer.return_value = "tr_456"

    with patch.object(db.session, "commit", side_effect=_commit_failing_after(1)):
        with pytest.raises(SQLAlchemyError):
            PayoutService.release(ready_booking.id, admin, TUESDAY_5PM, gateway=gateway)

    gateway.reverse.assert_called_once_with("tr_456")
    booking = db.session.get(Booking, ready_booking.id)
    assert booking.status == "completed"
    assert booking.admin_released_at is None
    assert booking.payout_attempts == 1


@pytest.mark.integration
def test_retry_after_reversal_uses_new_attempt(ready_booking, admin) -> None:
    """A reversed transfer is never replayed: the retry sends a fresh attempt number."""
    gateway = Mock()
    gateway.transfer.side_effect = ["tr_first", "tr_second"]

    with patch.object(db.session, "commit", side_effect=_commit_failing_after(1)):
        with pytest.raises(SQLAlchemyError):
            PayoutService.release(ready_booking.id, admin, TUESDAY_5PM, gateway=gateway)

    result = PayoutService.release(ready_booking.id, admin, TUESDAY_5PM, gateway=gateway)

    assert [c.kwargs["attempt"] for c in gateway.transfer.call_args_list] == [1, 2]
    gateway.reverse.assert_called_once_with("tr_first")
    assert result["payout_id"] == "tr_second"
    booking = db.session.get(Booking, ready_booking.id)
    assert booking.status == "released"
    assert booking.stripe_transfer_id == "tr_second"
    assert booking.payout_attempts == 2


@pytest.mark.integration
@pytest.mark.parametrize("payment_status", ["refunded", "failed", None])
def test_release_requires_succeeded_payment(listing, renter, admin, make_booking, payment_status) -> None:
    """Refunded, failed or missing renter payments block the owner payout."""
    booking = make_booking(
        listing,
        renter,
        completed_at=FRIDAY_5PM,
        owner_receipt_confirmed_at=FRIDAY_5PM,
        payment_status=payment_status,
    )
    gateway = Mock()

    with pytest.raises(AppError) as excinfo:
        PayoutService.release(booking.id, admin, TUESDAY_5PM, gateway=gateway)

    assert excinfo.value.status_code == 409
    gateway.transfer.assert_not_called()
    gateway.refund_deposit.assert_not_called()
    assert db.session.get(Booking, booking.id).status == "completed"
    row = PayoutService.list_releases(TUESDAY_5PM)["bookings"][0]
    assert row["badge"] == BADGE_AWAITING_PAYMENT
    assert row["eligible"] is False


@pytest.mark.integration
def test_release_refunds_renter_deposit(listing, renter, admin, make_booking) -> None:
    booking = make_booking(
        listing,
        renter,
        completed_at=FRIDAY_5PM,
        owner_receipt_confirmed_at=FRIDAY_5PM,
        payment_status="succeeded",
        deposit_amount="50.00",
    )
    gateway = Mock()
    gateway.transfer.return_value = "tr_1"
    gateway.refund_deposit.return_value = "re_1"

    result = PayoutService.release(booking.id, admin, TUESDAY_5PM, gateway=gateway)

    gateway.refund_deposit.assert_called_once_with(Decimal("50.00"), f"pi_test_{booking.id}", booking.id)
    assert result["deposit_refund_id"] == "re_1"
    booking = db.session.get(Booking, booking.id)
    assert booking.deposit_refund_id == "re_1"
    assert booking.deposit_refunded_at is not None
    assert Notification.query.filter_by(profile_id=renter.id, kind="deposit_refunded").count() == 1
    action = AdminAction.query.filter_by(action_type="release_funds").one()
    assert action.details["deposit_refund_id"] == "re_1"


@pytest.mark.integration
def test_failed_deposit_refund_still_releases_payout(listing, renter, admin, make_booking) -> None:
    booking = make_booking(
        listing,
        renter,
        completed_at=FRIDAY_5PM,
        owner_receipt_confirmed_at=FRIDAY_5PM,
        payment_status="succeeded",
        deposit_amount="50.00",
    )
    gateway = Mock()
    gateway.transfer.return_value = "tr_1"
    gateway.refund_deposit.side_effect = PayoutTransferError("charge already refunded")

    result = PayoutService.release(booking.id, admin, TUESDAY_5PM, gateway=gateway)

    assert result["success"] is True
    assert result["deposit_refund_id"] is None
    booking = db.session.get(Booking, booking.id)
    assert booking.status == "released"
    assert booking.deposit_refund_id is None
    assert booking.deposit_refunded_at is None
    assert Notification.query.filter_by(profile_id=renter.id, kind="deposit_refunded").count() == 0


@pytest.mark.integration
def test_release_without_deposit_skips_refund(ready_booking, admin) -> None:
    gateway = Mock()
    gateway.transfer.return_value = "tr_1"

    PayoutService.release(ready_booking.id, admin, TUESDAY_5PM, gateway=gateway)

    gateway.refund_deposit.assert_not_called()


@pytest.mark.integration
def test_failed_transfer_leaves_booking_untouched(ready_booking, admin) -> None:
    gateway = Mock()
    gateway.transfer.side_effect = PayoutTransferError("declined")

    with pytest.raises(PayoutTransferError):
        PayoutService.release(ready_booking.id, admin, TUESDAY_5PM, gateway=gateway)

    assert db.session.get(Booking, ready_booking.id).admin_released_at is None


@pytest.mark.integration
def test_bulk_release_reports_each_booking(ready_booking, listing, renter, admin, make_booking) -> None:
    not_ready = make_booking(
        listing, renter, completed_at=TUESDAY_5PM, owner_receipt_confirmed_at=TUESDAY_5PM, payment_status="succeeded"
    )

    result = PayoutService.release_many([ready_booking.id, not_ready.id, "abc", 9999], admin, TUESDAY_5PM)

    assert result["released"] == 1
    assert result["failed"] == 3
    by_id = {item["booking_id"]: item for item in result["results"]}
    assert by_id[ready_booking.id]["success"] is True
    assert "not eligible" in by_id[not_ready.id]["message"]
    assert by_id["abc"]["message"] == "Invalid booking id."
    assert db.session.get(Booking, not_ready.id).status == "completed"


@pytest.mark.integration
def test_bulk_release_survives_database_error_mid_batch(listing, renter, admin, make_booking) -> None:
    """A database failure on one booking is reported and the rest of the batch still runs."""
    first, broken, last = (
        make_booking(
            listing,
            renter,
            completed_at=FRIDAY_5PM,
            owner_receipt_confirmed_at=FRIDAY_5PM,
            payment_status="succeeded",
        )
        for _ in range(3)
    )
    real_push = NotificationService.push

    def push(*args, **kwargs):
        if kwargs.get("booking_id") == broken.id:
            raise SQLAlchemyError("constraint failed")
        return real_push(*args, **kwargs)

    with patch.object(NotificationService, "push", side_effect=push):
        result = PayoutService.release_many([first.id, broken.id, last.id], admin, TUESDAY_5PM)

    assert result["released"] == 2
    assert result["failed"] == 1
    by_id = {item["booking_id"]: item for item in result["results"]}
    assert by_id[broken.id]["success"] is False
    assert by_id[broken.id]["message"] == "Could not save the release. Try again."
    assert db.session.get(Booking, first.id).status == "released"
    assert db.session.get(Booking, broken.id).status == "completed"
    assert db.session.get(Booking, broken.id).admin_released_at is None
    assert db.session.get(Booking, last.id).status == "released"


@pytest.mark.integration
def test_bulk_release_is_idempotent(ready_booking, admin) -> None:
    PayoutService.release_many([ready_booking.id], admin, TUESDAY_5PM)

    result = PayoutService.release_many([ready_booking.id], admin, TUESDAY_5PM)

    assert result["released"] == 1
    assert result["results"][0]["message"] == "Already released"
    assert AdminAction.query.filter_by(action_type="release_funds").count() == 1


@pytest.mark.integration
@pytest.mark.parametrize("booking_ids", [None, [], "1,2"])
def test_bulk_release_requires_ids(admin, booking_ids) -> None:
    with pytest.raises(AppError) as excinfo:
        PayoutService.release_many(booking_ids, admin, TUESDAY_5PM)

    assert excinfo.value.status_code == 400


@pytest.mark.integration
def test_gateway_disabled_without_stripe_key(app) -> None:
    assert get_transfer_gateway() is None


@pytest.mark.integration
def test_stripe_gateway_sends_minor_units(app) -> None:
    gateway = StripeTransferGateway("sk_test_123", "aud")

    with patch("stripe.Transfer.create", return_value=Mock(id="tr_789")) as create:
        transfer_id = gateway.transfer(Decimal("240.00"), "acct_owner", 7)

    assert transfer_id == "tr_789"
    kwargs = create.call_args.kwargs
    assert kwargs["amount"] == 24000
    assert kwargs["currency"] == "aud"
    assert kwargs["destination"] == "acct_owner"
    assert kwargs["idempotency_key"] == "payout-booking-7-1"


@pytest.mark.integration
def test_stripe_gateway_wraps_processor_errors(app) -> None:
    gateway = StripeTransferGateway("sk_test_123", "aud")

    with patch("stripe.Transfer.create", side_effect=stripe.StripeError("account closed")):
        with pytest.raises(PayoutTransferError) as excinfo:
            gateway.transfer(Decimal("10.00"), "acct_owner", 8)

    assert excinfo.value.status_code == 502


@pytest.mark.integration
def test_stripe_gateway_keys_each_attempt_separately(app) -> None:
    gateway = StripeTransferGateway("sk_test_123", "aud")

    with patch("stripe.Transfer.create", return_value=Mock(id="tr_789")) as create:
        gateway.transfer(Decimal("240.00"), "acct_owner", 7, attempt=1)
        gateway.transfer(Decimal("240.00"), "acct_owner", 7, attempt=2)

    keys = [c.kwargs["idempotency_key"] for c in create.call_args_list]
    assert keys == ["payout-booking-7-1", "payout-booking-7-2"]
    assert create.call_args.kwargs["metadata"]["attempt"] == "2"


@pytest.mark.integration
def test_stripe_gateway_refunds_deposit_in_minor_units(app) -> None:
    gateway = StripeTransferGateway("sk_test_123", "aud")

    with patch("stripe.Refund.create", return_value=Mock(id="re_42")) as create:
        refund_id = gateway.refund_deposit(Decimal("50.00"), "pi_abc", 7)

    assert refund_id == "re_42"
    kwargs = create.call_args.kwargs
    assert kwargs["payment_intent"] == "pi_abc"
    assert kwargs["amount"] == 5000
    assert kwargs["idempotency_key"] == "deposit-refund-booking-7"
    assert kwargs["metadata"]["type"] == "security_deposit_refund"


@pytest.mark.integration
def test_stripe_gateway_wraps_refund_errors(app) -> None:
    gateway = StripeTransferGateway("sk_test_123", "aud")

    with patch("stripe.Refund.create", side_effect=stripe.StripeError("charge already refunded")):
        with pytest.raises(PayoutTransferError):
            gateway.refund_deposit(Decimal("50.00"), "pi_abc", 7)
