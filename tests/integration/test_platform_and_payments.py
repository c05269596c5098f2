"""
Integration tests for platform rate settings and payment records.
"""

from decimal import Decimal

import pytest

from lendloop.errors import AppError
from lendloop.extensions import db
from lendloop.models import AdminAction, PlatformSetting
from lendloop.services import PaymentService, PlatformService
from lendloop.services.platform_service import CONFIG_KEYS


@pytest.mark.integration
def test_settings_default_to_config(app) -> None:
    assert PlatformService.settings_snapshot() == {
        "service_fee_rate": "0.15",
        "commission_rate": "0.20",
        "insurance_rate": "0.10",
        "payout_hold_working_days": 2,
    }


@pytest.mark.integration
def test_config_keys_cover_every_setting(app) -> None:
    for key in CONFIG_KEYS.values():
        assert key in app.config


@pytest.mark.integration
def test_update_settings_overrides_and_audits(admin) -> None:
    PlatformService.update_settings({"service_fee_rate": "0.12", "payout_hold_working_days": 3}, admin=admin)

    rates = PlatformService.get_fee_rates()
    assert rates.service_fee_rate == Decimal("0.12")
    assert rates.commission_rate == Decimal("0.20")
    assert PlatformService.get_hold_days() == 3
    action = AdminAction.query.filter_by(action_type="update_settings").one()
    assert action.details == {"service_fee_rate": "0.12", "payout_hold_working_days": "3"}


@pytest.mark.integration
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"commission_rate": "1.5"},
        {"commission_rate": "-0.1"},
        {"insurance_rate": "lots"},
        {"payout_hold_working_days": 0},
        {"payout_hold_working_days": "two"},
    ],
)
def test_update_settings_rejects_bad_values(admin, payload) -> None:
    with pytest.raises(AppError) as excinfo:
        PlatformService.update_settings(payload, admin=admin)

    assert excinfo.value.status_code == 400
    assert PlatformSetting.query.count() == 0


@pytest.mark.integration
def test_corrupt_stored_setting_falls_back_to_default(app) -> None:
    PlatformService.set_setting("commission_rate", "twenty percent")
    db.session.commit()

    assert PlatformService.get_fee_rates().commission_rate == Decimal("0.20")


@pytest.mark.integration
def test_payment_success_records_platform_fee(listing, renter, admin, make_booking) -> None:
    booking = make_booking(listing, renter, status="confirmed")

    payment = PaymentService.record_payment_status(
        booking, "succeeded", admin=admin, stripe_payment_intent_id="pi_1", processor_fee="1.75"
    )

    assert payment.amount == Decimal("345.00")
    assert payment.platform_fee == Decimal("105.00")
    assert payment.net_amount == Decimal("240.00")
    assert payment.processor_fee == Decimal("1.75")
    assert PaymentService.serialize(payment)["status"] == "succeeded"


@pytest.mark.integration
def test_payment_refund_is_bounded(listing, renter, make_booking) -> None:
    booking = make_booking(listing, renter, status="cancelled", payment_status="succeeded")

    with pytest.raises(AppError):
        PaymentService.record_payment_status(booking, "refunded", refund_amount="500.00")

    payment = PaymentService.record_payment_status(booking, "refunded", refund_id="re_1", refund_amount="100")
    assert payment.refund_amount == Decimal("100.00")
    assert payment.refunded_at is not None


@pytest.mark.integration
def test_payment_status_transitions(listing, renter, make_booking) -> None:
    booking = make_booking(listing, renter, status="confirmed", payment_status="refunded")

    with pytest.raises(AppError):
        PaymentService.record_payment_status(booking, "succeeded")
    with pytest.raises(AppError):
        PaymentService.record_payment_status(booking, "teleported")


@pytest.mark.integration
def test_closed_booking_cannot_be_paid(listing, renter, make_booking) -> None:
    booking = make_booking(listing, renter, status="rejected")

    with pytest.raises(AppError) as excinfo:
        PaymentService.record_payment_status(booking, "succeeded")

    assert excinfo.value.status_code == 409
