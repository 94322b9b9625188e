# Overview: Flask API routes for store inventory; parses input and returns JSON responses.

# backend/retail_pos/routes/inventory.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import SaleError
from ..services import inventory_service
from ..services.inventory_service import InventoryError
from ..validation import parse_int, parse_quantity

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MANAGE_ROLES = ("SuperAdmin", "StoreManager")


def _store_id(data: dict | None = None):
    """Operator's own store; SuperAdmin may name another with store_id."""
    user = g.current_user
    requested = (data or {}).get("store_id", request.args.get("store_id"))
    if requested is not None and any(ur.role.name == "SuperAdmin" for ur in user.user_roles):
        return parse_int(requested, "store_id")
    return user.store_id


@inventory_bp.get("")
@require_auth
@require_role("SuperAdmin", "StoreManager", "Cashier")
def list_inventory_route():
    try:
        store_id = _store_id()
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    if store_id is None:
        return jsonify({"error": "You are not assigned to any store"}), 403

    records = inventory_service.list_inventory(store_id)
    return jsonify({"inventory": [r.to_dict() for r in records]}), 200


@inventory_bp.get("/low-stock")
@require_auth
@require_role(*MANAGE_ROLES)
def low_stock_route():
    try:
        store_id = _store_id()
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    if store_id is None:
        return jsonify({"error": "You are not assigned to any store"}), 403

    records = inventory_service.list_low_stock(store_id)
    return jsonify({"inventory": [r.to_dict() for r in records]}), 200


@inventory_bp.post("/receive")
@require_auth
@require_role(*MANAGE_ROLES)
def receive_route():
    """Receive stock into the storeroom. Body: {product_id, quantity, minimum_stock_level?}"""
    try:
        data = request.get_json(silent=True) or {}
        store_id = _store_id(data)
        if store_id is None:
            return jsonify({"error": "You are not assigned to any store"}), 403

        record = inventory_service.receive_stock(
            store_id=store_id,
            product_id=parse_int(data.get("product_id"), "product_id"),
            quantity=parse_quantity(data.get("quantity"), "quantity"),
            minimum_stock_level=parse_quantity(data.get("minimum_stock_level"), "minimum_stock_level", required=False),
            maximum_stock_level=parse_quantity(data.get("maximum_stock_level"), "maximum_stock_level", required=False),
        )
        current_app.logger.info(
            "Stock received: store=%s product=%s quantity=%s by user=%s",
            store_id, record.product_id, data.get("quantity"), g.current_user.id,
        )
        return jsonify({"inventory": record.to_dict()}), 201

    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfer-to-pos")
@require_auth
@require_role(*MANAGE_ROLES)
def transfer_to_pos_route():
    """Move stock from the storeroom to the POS floor. Body: {product_id, quantity}"""
    try:
        data = request.get_json(silent=True) or {}
        store_id = _store_id(data)
        if store_id is None:
            return jsonify({"error": "You are not assigned to any store"}), 403

        record = inventory_service.transfer_to_pos(
            store_id=store_id,
            product_id=parse_int(data.get("product_id"), "product_id"),
            quantity=parse_quantity(data.get("quantity"), "quantity"),
        )
        return jsonify({"inventory": record.to_dict()}), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 409 if "available" in e.details else 400
    except Exception:
        current_app.logger.exception("Failed to transfer stock to POS")
        return jsonify({"error": "Internal server error"}), 500
