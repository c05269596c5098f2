"""
Shared fixtures: an app bound to an in-memory database, plus small factories
for profiles, listings and bookings.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from lendloop import create_app
from lendloop.extensions import db
from lendloop.models import Booking, Listing, PaymentRecord
from lendloop.services import AuthService
from lendloop.services.payout_calculator import DEFAULT_FEE_RATES, compute_fees, compute_subtotal

PASSWORD = "correct-horse-1"

# Friday 1 March 2024, 17:00 UTC.
FRIDAY_5PM = datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_profile(app):
    counter = {"n": 0}

    def _make(full_name=None, role="user", stripe_account_id=None, email=None):
        counter["n"] += 1
        profile = AuthService.register_profile(
            full_name or f"Person {counter['n']}",
            email or f"person{counter['n']}@example.com",
            PASSWORD,
            role=role,
        )
        if stripe_account_id:
            profile.stripe_account_id = stripe_account_id
            db.session.commit()
        return profile

    return _make


@pytest.fixture
def owner(make_profile):
    return make_profile("Olive Owner", stripe_account_id="acct_owner")


@pytest.fixture
def renter(make_profile):
    return make_profile("Remy Renter")


@pytest.fixture
def admin(make_profile):
    return make_profile("Ada Admin", role="admin")


@pytest.fixture
def make_listing(app):
    def _make(owner, price_per_day="100.00", approval_status="approved", **fields):
        listing = Listing(
            owner_id=owner.id,
            title=fields.pop("title", "Cordless drill"),
            category=fields.pop("category", "tools"),
            price_per_day=Decimal(price_per_day),
            approval_status=approval_status,
            is_active=True,
            images=[],
            **fields,
        )
        db.session.add(listing)
        db.session.commit()
        return listing

    return _make


@pytest.fixture
def listing(make_listing, owner):
    return make_listing(owner)


@pytest.fixture
def make_booking(app):
    """Insert a booking directly in the given state, priced at the default rates."""

    def _make(
        listing,
        renter,
        status="completed",
        start_date=date(2024, 2, 26),
        end_date=date(2024, 2, 28),
        completed_at=None,
        owner_receipt_confirmed_at=None,
        include_insurance=False,
        payment_status=None,
        deposit_amount="0.00",
    ):
        subtotal = compute_subtotal(listing.price_per_day, start_date, end_date)
        fees = compute_fees(subtotal, DEFAULT_FEE_RATES, include_insurance=include_insurance)
        booking = Booking(
            listing_id=listing.id,
            renter_id=renter.id,
            owner_id=listing.owner_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            rental_days=(end_date - start_date).days + 1,
            daily_rate=listing.price_per_day,
            subtotal=fees.subtotal,
            service_fee=fees.service_fee,
            platform_commission=fees.platform_commission,
            insurance_fee=fees.insurance_fee,
            delivery_fee=fees.delivery_fee,
            deposit_amount=Decimal(deposit_amount),
            total_amount=fees.total_charged,
            owner_payout=fees.owner_payout,
            currency="aud",
            service_fee_rate=DEFAULT_FEE_RATES.service_fee_rate,
            commission_rate=DEFAULT_FEE_RATES.commission_rate,
            insurance_rate=DEFAULT_FEE_RATES.insurance_rate,
            include_insurance=include_insurance,
            completed_at=completed_at,
            owner_receipt_confirmed_at=owner_receipt_confirmed_at,
        )
        db.session.add(booking)
        db.session.flush()
        if payment_status:
            db.session.add(
                PaymentRecord(
                    booking_id=booking.id,
                    status=payment_status,
                    amount=fees.total_charged,
                    currency="aud",
                    stripe_payment_intent_id=f"pi_test_{booking.id}",
                )
            )
        db.session.commit()
        return booking

    return _make


@pytest.fixture
def login(client):
    def _login(profile):
        response = client.post("/api/v1/auth/login", json={"email": profile.email, "password": PASSWORD})
        assert response.status_code == 200, response.get_json()
        return client

    return _login
