import re
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import joinedload

from lendloop.errors import AppError
from lendloop.extensions import db
from lendloop.models import Listing
from lendloop.services.audit_service import AuditService
from lendloop.services.notification_service import NotificationService


class ListingService:
    CATEGORIES = {"tools", "outdoor", "electronics", "sports", "party", "vehicles", "home", "other"}
    PRICE_FIELDS = ("price_per_day", "price_per_hour", "price_per_week", "price_per_month")
    EDITABLE_FIELDS = {
        "title",
        "description",
        "category",
        "price_per_day",
        "price_per_hour",
        "price_per_week",
        "price_per_month",
        "deposit_amount",
        "insurance_enabled",
        "delivery_available",
        "delivery_fee",
        "images",
        "address",
        "city",
        "state",
        "postcode",
        "latitude",
        "longitude",
    }

    @staticmethod
    def _parse_amount(value, label, required=False, allow_zero=True):
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                raise AppError(f"{label} is required.", 400)
            return None
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise AppError(f"{label} must be a number.", 400) from exc
        if amount < 0 or (amount == 0 and not allow_zero):
            raise AppError(f"{label} must be a positive number.", 400)
        return amount.quantize(Decimal("0.01"))

    @staticmethod
    def _parse_coordinate(value, label):
        raw = str(value).strip() if value is not None else ""
        if not raw:
            return None
        try:
            return Decimal(raw)
        except InvalidOperation as exc:
            raise AppError(f"Invalid {label} value.", 400) from exc

    @staticmethod
    def _parse_images(value):
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise AppError("Images must be a list of URLs.", 400)
        return [item.strip() for item in value if item.strip()]

    @staticmethod
    def _apply(listing, payload):
        for field in ListingService.EDITABLE_FIELDS & payload.keys():
            value = payload[field]
            if field == "title":
                value = (value or "").strip()
                if not value:
                    raise AppError("Listing title is required.", 400)
            elif field == "category":
                value = (value or "other").strip().lower()
                if value not in ListingService.CATEGORIES:
                    raise AppError("Invalid category.", 400)
            elif field == "price_per_day":
                value = ListingService._parse_amount(value, "Daily price", required=True, allow_zero=False)
            elif field in ListingService.PRICE_FIELDS:
                value = ListingService._parse_amount(value, field.replace("_", " ").capitalize(), allow_zero=False)
            elif field in {"deposit_amount", "delivery_fee"}:
                value = ListingService._parse_amount(value, field.replace("_", " ").capitalize()) or Decimal("0.00")
            elif field in {"insurance_enabled", "delivery_available"}:
                value = bool(value)
            elif field == "images":
                value = ListingService._parse_images(value)
            elif field in {"latitude", "longitude"}:
                value = ListingService._parse_coordinate(value, field)
            elif field == "postcode":
                value = str(value or "").strip() or None
                if value and not re.fullmatch(r"\d{4,6}", value):
                    raise AppError("Postcode must be 4 to 6 digits.", 400)
            else:
                value = str(value or "").strip() or None
            setattr(listing, field, value)

    @staticmethod
    def create_listing(owner_id, payload):
        if not (payload.get("title") or "").strip() or payload.get("price_per_day") is None:
            raise AppError("Listing title and daily price are required.", 400)

        listing = Listing(owner_id=owner_id, approval_status="pending", is_active=True, images=[])
        ListingService._apply(listing, {"category": "other", **payload})
        db.session.add(listing)
        db.session.commit()
        return listing

    @staticmethod
    def get_owned(listing_id, owner_id):
        listing = Listing.query.filter_by(id=listing_id, owner_id=owner_id).first()
        if not listing:
            raise AppError("Listing not found.", 404)
        return listing

    @staticmethod
    def update_listing(listing_id, owner_id, payload):
        listing = ListingService.get_owned(listing_id, owner_id)
        ListingService._apply(listing, payload)
        if listing.approval_status == "rejected":
            # Edited listings go back into the moderation queue.
            listing.approval_status = "pending"
            listing.rejection_reason = None
        db.session.commit()
        return listing

    @staticmethod
    def deactivate(listing_id, owner_id):
        listing = ListingService.get_owned(listing_id, owner_id)
        listing.is_active = False
        db.session.commit()
        return listing

    @staticmethod
    def search(page=1, per_page=12, category=None, city=None, min_price=None, max_price=None, text=None):
        query = (
            Listing.query.options(joinedload(Listing.owner))
            .filter(Listing.approval_status == "approved", Listing.is_active.is_(True))
            .order_by(Listing.created_at.desc(), Listing.id.desc())
        )
        if category:
            query = query.filter(Listing.category == category.strip().lower())
        if city:
            query = query.filter(Listing.city.ilike(city.strip()))
        if min_price is not None:
            query = query.filter(Listing.price_per_day >= min_price)
        if max_price is not None:
            query = query.filter(Listing.price_per_day <= max_price)
        if text:
            query = query.filter(Listing.title.ilike(f"%{text.strip()}%"))
        return query.paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def pending_moderation():
        return Listing.query.filter_by(approval_status="pending").order_by(Listing.created_at.asc()).all()

    @staticmethod
    def moderate(listing_id, admin, approve, reason=None):
        listing = db.session.get(Listing, listing_id)
        if not listing:
            raise AppError("Listing not found.", 404)
        reason = (reason or "").strip() or None
        if not approve and not reason:
            raise AppError("A rejection reason is required.", 400)

        listing.approval_status = "approved" if approve else "rejected"
        listing.rejection_reason = None if approve else reason
        AuditService.record(
            admin,
            "approve_listing" if approve else "reject_listing",
            "listing",
            listing.id,
            {"reason": reason} if reason else {},
        )
        if approve:
            NotificationService.push(
                listing.owner_id,
                "Listing approved",
                f"Your listing {listing.title} is now live.",
                kind="listing_approved",
            )
        else:
            NotificationService.push(
                listing.owner_id,
                "Listing rejected",
                f"Your listing {listing.title} was rejected: {reason}",
                kind="listing_rejected",
            )
        db.session.commit()
        return listing
