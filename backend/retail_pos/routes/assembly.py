# Overview: Flask API routes for assembly offers; parses input and returns JSON responses.

# backend/retail_pos/routes/assembly.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import InvalidRequestError, SaleError
from ..models._types import as_number
from ..services import assembly_service
from ..validation import parse_int, parse_money, parse_quantity

assembly_bp = Blueprint("assembly", __name__, url_prefix="/api/assembly-offers")


def _is_super_admin() -> bool:
    return any(ur.role.name == "SuperAdmin" for ur in g.current_user.user_roles)


@assembly_bp.get("")
@require_auth
@require_role("SuperAdmin", "StoreManager", "Cashier")
def list_offers_route():
    """Offers visible to the operator's store, with buildable unit counts."""
    store_id = None if _is_super_admin() else g.current_user.store_id
    if store_id is None and not _is_super_admin():
        return jsonify({"error": "You are not assigned to any store"}), 403

    include_inactive = request.args.get("include_inactive") == "true"
    offers = assembly_service.list_offers_for_store(store_id, include_inactive=include_inactive)

    payload = []
    for offer in offers:
        item = offer.to_dict()
        if store_id is not None:
            item["available_units"] = as_number(assembly_service.max_sellable_units(offer, store_id))
        payload.append(item)
    return jsonify({"assembly_offers": payload}), 200


@assembly_bp.post("")
@require_auth
@require_role("SuperAdmin", "StoreManager")
def create_offer_route():
    """
    Create an assembly offer.

    Body: {name, batch_quantity, sale_price, unit?, description?, store_id?,
           materials: [{raw_product_id, required_quantity, unit?, notes?}]}
    StoreManagers can only create offers for their own store.
    """
    try:
        data = request.get_json(silent=True) or {}

        if _is_super_admin():
            store_id = data.get("store_id")
            store_id = parse_int(store_id, "store_id") if store_id is not None else None
        else:
            store_id = g.current_user.store_id
            if store_id is None:
                return jsonify({"error": "You are not assigned to any store"}), 403

        raw_materials = data.get("materials") or []
        if not isinstance(raw_materials, list):
            raise InvalidRequestError("materials must be a list")
        materials = []
        for i, entry in enumerate(raw_materials):
            if not isinstance(entry, dict):
                raise InvalidRequestError(f"materials[{i}] must be an object", details={"line": i})
            materials.append({
                "raw_product_id": parse_int(entry.get("raw_product_id"), f"materials[{i}].raw_product_id"),
                "required_quantity": parse_quantity(entry.get("required_quantity"), f"materials[{i}].required_quantity"),
                "unit": entry.get("unit"),
                "notes": entry.get("notes"),
            })

        offer = assembly_service.create_offer(
            name=(data.get("name") or "").strip(),
            batch_quantity=parse_quantity(data.get("batch_quantity", 1), "batch_quantity"),
            sale_price=parse_money(data.get("sale_price"), "sale_price", required=False),
            materials=materials,
            store_id=store_id,
            unit=data.get("unit"),
            description=data.get("description"),
            created_by_user_id=g.current_user.id,
        )
        current_app.logger.info("Assembly offer %s created by user %s", offer.id, g.current_user.id)
        return jsonify({"assembly_offer": offer.to_dict()}), 201

    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create assembly offer")
        return jsonify({"error": "Internal server error"}), 500
