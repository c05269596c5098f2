from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from lendloop.errors import AppError
from lendloop.extensions import cache, db
from lendloop.models import Listing
from lendloop.services import ListingService

api_listing_bp = Blueprint("api_listing", __name__)


def serialize_listing(listing, include_moderation=False):
    data = {
        "id": listing.id,
        "title": listing.title,
        "description": listing.description,
        "category": listing.category,
        "price_per_day": str(listing.price_per_day),
        "price_per_hour": str(listing.price_per_hour) if listing.price_per_hour is not None else None,
        "price_per_week": str(listing.price_per_week) if listing.price_per_week is not None else None,
        "price_per_month": str(listing.price_per_month) if listing.price_per_month is not None else None,
        "deposit_amount": str(listing.deposit_amount),
        "insurance_enabled": listing.insurance_enabled,
        "delivery_available": listing.delivery_available,
        "delivery_fee": str(listing.delivery_fee),
        "images": listing.images or [],
        "city": listing.city,
        "state": listing.state,
        "postcode": listing.postcode,
        "owner_id": listing.owner_id,
        "owner_name": listing.owner.full_name if listing.owner else None,
    }
    if include_moderation:
        data.update(
            {
                "approval_status": listing.approval_status,
                "rejection_reason": listing.rejection_reason,
                "is_active": listing.is_active,
            }
        )
    return data


@api_listing_bp.get("")
@cache.cached(timeout=60, query_string=True)
def list_listings():
    page = request.args.get("page", default=1, type=int)
    per_page = request.args.get("per_page", default=12, type=int)
    paginated = ListingService.search(
        page=page,
        per_page=max(1, min(per_page, 50)),
        category=request.args.get("category"),
        city=request.args.get("city"),
        min_price=request.args.get("min_price", type=float),
        max_price=request.args.get("max_price", type=float),
        text=request.args.get("q"),
    )
    return jsonify(
        {
            "items": [serialize_listing(item) for item in paginated.items],
            "meta": {
                "page": paginated.page,
                "pages": paginated.pages,
                "total": paginated.total,
                "has_next": paginated.has_next,
                "has_prev": paginated.has_prev,
            },
        }
    )


@api_listing_bp.get("/<int:listing_id>")
def get_listing(listing_id):
    listing = db.session.get(Listing, listing_id)
    if not listing:
        raise AppError("Listing not found.", 404)
    is_owner = current_user.is_authenticated and (current_user.id == listing.owner_id or current_user.is_admin)
    if not listing.is_bookable and not is_owner:
        raise AppError("Listing not found.", 404)
    return jsonify(serialize_listing(listing, include_moderation=is_owner))


@api_listing_bp.post("")
@login_required
def create_listing():
    payload = request.get_json(silent=True) or {}
    listing = ListingService.create_listing(current_user.id, payload)
    return jsonify(serialize_listing(listing, include_moderation=True)), 201


@api_listing_bp.patch("/<int:listing_id>")
@login_required
def update_listing(listing_id):
    payload = request.get_json(silent=True) or {}
    listing = ListingService.update_listing(listing_id, current_user.id, payload)
    return jsonify(serialize_listing(listing, include_moderation=True))


@api_listing_bp.post("/<int:listing_id>/deactivate")
@login_required
def deactivate_listing(listing_id):
    listing = ListingService.deactivate(listing_id, current_user.id)
    return jsonify({"id": listing.id, "is_active": listing.is_active})
