# Overview: Flask API routes for the POS terminal; parses input and returns JSON responses.

# backend/retail_pos/routes/pos.py
"""POS API routes: checkout, catalogue, receipts and sales history"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import SaleError
from ..extensions import db
from ..models import InventoryRecord, Product
from ..models._types import as_number
from ..services import assembly_service, customer_service, sales_service
from ..services.sales_service import OperatorContext
from ..validation import AssemblyItem, encode_legacy_id, parse_sale_request

pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")

SALE_ROLES = ("SuperAdmin", "Cashier")
VIEW_ROLES = ("SuperAdmin", "StoreManager", "Cashier")


def _operator() -> OperatorContext:
    return OperatorContext.from_user(g.current_user)


def _sale_error_response(e: SaleError):
    return jsonify(e.to_dict()), e.status_code


@pos_bp.post("/sale")
@require_auth
@require_role(*SALE_ROLES)
def process_sale_route():
    """
    Ring up a cart as one completed sale.

    Available to: SuperAdmin, Cashier with an assigned store
    """
    try:
        sale_request = parse_sale_request(
            request.get_json(silent=True),
            offer_id_offset=current_app.config["ASSEMBLY_OFFER_ID_OFFSET"],
        )
        receipt = sales_service.process_sale(_operator(), sale_request)
        return jsonify(receipt), 201

    except SaleError as e:
        if e.status_code >= 500:
            current_app.logger.error("Sale failed: %s (%s)", e, e.details)
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process sale")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.get("/products")
@require_auth
@require_role(*SALE_ROLES)
def list_pos_products_route():
    """
    Sellable catalogue for the operator's store.

    Plain products report POS-floor stock; assembly offers report how many
    units the storeroom can build. Offers carry their legacy id as well.
    """
    try:
        store_id = sales_service.require_sale_store(_operator())
        offset = current_app.config["ASSEMBLY_OFFER_ID_OFFSET"]

        rows = (
            db.session.query(Product, InventoryRecord)
            .join(InventoryRecord, InventoryRecord.product_id == Product.id)
            .filter(
                InventoryRecord.store_id == store_id,
                Product.is_active.is_(True),
                InventoryRecord.pos_quantity > 0,
            )
            .order_by(Product.name.asc())
            .all()
        )
        products = [
            {
                "id": product.id,
                "itemType": "PRODUCT",
                "productOrOfferId": product.id,
                "name": product.name,
                "sku": product.sku,
                "unitPrice": as_number(product.unit_price),
                "unit": product.unit,
                "category": product.category.name if product.category else None,
                "availableQuantity": as_number(record.pos_quantity),
            }
            for product, record in rows
        ]

        offers = []
        for offer in assembly_service.list_offers_for_store(store_id):
            available = assembly_service.max_sellable_units(offer, store_id)
            if available <= 0:
                continue
            offers.append({
                "id": offer.id,
                "itemType": "ASSEMBLY",
                "productOrOfferId": encode_legacy_id(AssemblyItem(offer.id), offset),
                "name": offer.name,
                "unitPrice": as_number(offer.sale_price),
                "unit": offer.unit,
                "batchQuantity": as_number(offer.batch_quantity),
                "availableQuantity": as_number(available),
            })

        return jsonify({"products": products, "assemblyOffers": offers}), 200

    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load POS products")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.get("/sales-history")
@require_auth
@require_role(*VIEW_ROLES)
def sales_history_route():
    try:
        limit = min(max(request.args.get("limit", 50, type=int), 1), 50)
        sales = sales_service.list_sales_history(_operator(), limit=limit)
        return jsonify({"sales": sales}), 200
    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sales history")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.get("/sales/<int:sale_id>")
@require_auth
@require_role(*VIEW_ROLES)
def get_sale_route(sale_id: int):
    try:
        return jsonify(sales_service.get_sale_receipt(_operator(), sale_id)), 200
    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.get("/customers/lookup")
@require_auth
@require_role(*SALE_ROLES)
def lookup_customer_route():
    phone = customer_service.normalize_phone(request.args.get("phone"))
    if not phone:
        return jsonify({"error": "phone is required"}), 400

    try:
        customer = customer_service.find_active_customer(phone)
        if not customer:
            return jsonify({"error": "Customer not found"}), 404
        return jsonify({"customer": customer.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to look up customer")
        return jsonify({"error": "Internal server error"}), 500
