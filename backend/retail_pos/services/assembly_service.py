# Overview: Assembly offer lookup and bill-of-materials expansion.

"""
Assembly offers are bundles sold as one line item. Selling Q units of an
offer whose batch size is B consumes, for every BoM entry with per-batch
requirement R, exactly R x B x Q of the raw product from the storeroom.

All three factors matter: an earlier version multiplied only R x Q and
under-deducted inventory for any offer with B != 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR

from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..errors import InvalidRequestError, NotFoundError
from ..models import AssemblyOffer, BillOfMaterial, InventoryRecord, Product
from ..models._types import MONEY_SCALE, QUANTITY_SCALE, fits_scale


@dataclass(frozen=True)
class MaterialRequirement:
    raw_product_id: int
    required_quantity: Decimal


def resolve_requirements(offer, sale_quantity: Decimal) -> list[MaterialRequirement]:
    """
    Expand an offer into raw-product requirements for a sale.

    Pure: reads offer.batch_quantity and offer.materials only. Entries that
    reference the same raw product are summed, keeping the position of the
    first occurrence so checks still run in stored BoM order.
    """
    batch_quantity = Decimal(offer.batch_quantity)
    totals: dict[int, Decimal] = {}
    for material in offer.materials:
        required = Decimal(material.required_quantity) * batch_quantity * Decimal(sale_quantity)
        totals[material.raw_product_id] = totals.get(material.raw_product_id, Decimal("0")) + required
    return [MaterialRequirement(pid, qty) for pid, qty in totals.items()]


def get_offer_for_store(offer_id: int, store_id: int) -> AssemblyOffer:
    """
    Load a sellable offer with its materials, or raise NotFoundError.

    Inactive offers and offers scoped to another store count as missing.
    """
    offer = (
        db.session.query(AssemblyOffer)
        .options(selectinload(AssemblyOffer.materials))
        .filter_by(id=offer_id)
        .first()
    )
    if offer is None or not offer.is_active or not offer.is_available_in(store_id):
        raise NotFoundError(
            f"Assembly offer {offer_id} not found or inactive",
            details={"assembly_offer_id": offer_id},
        )
    return offer


def list_offers_for_store(store_id: int | None, *, include_inactive: bool = False) -> list[AssemblyOffer]:
    query = db.session.query(AssemblyOffer).options(selectinload(AssemblyOffer.materials))
    if store_id is not None:
        query = query.filter(or_(AssemblyOffer.store_id.is_(None), AssemblyOffer.store_id == store_id))
    if not include_inactive:
        query = query.filter(AssemblyOffer.is_active.is_(True))
    return query.order_by(AssemblyOffer.name.asc(), AssemblyOffer.id.asc()).all()


def max_sellable_units(offer: AssemblyOffer, store_id: int) -> Decimal:
    """
    Whole offer units the store's storeroom can currently supply.
    """
    per_unit = resolve_requirements(offer, Decimal("1"))
    if not per_unit:
        return Decimal("0")

    product_ids = [req.raw_product_id for req in per_unit]
    stock = dict(
        db.session.query(InventoryRecord.product_id, InventoryRecord.storeroom_quantity)
        .filter(InventoryRecord.store_id == store_id, InventoryRecord.product_id.in_(product_ids))
        .all()
    )

    units = None
    for req in per_unit:
        if req.required_quantity <= 0:
            continue
        available = Decimal(stock.get(req.raw_product_id) or 0)
        possible = (available / req.required_quantity).to_integral_value(rounding=ROUND_FLOOR)
        units = possible if units is None else min(units, possible)
    if units is None:
        return Decimal("0")
    return max(units, Decimal("0"))


def create_offer(
    *,
    name: str,
    batch_quantity: Decimal,
    sale_price: Decimal | None,
    materials: list[dict],
    store_id: int | None = None,
    unit: str | None = None,
    description: str | None = None,
    created_by_user_id: int | None = None,
) -> AssemblyOffer:
    """
    Create an offer with its bill of materials.

    materials: [{"raw_product_id": int, "required_quantity": Decimal, ...}]
    """
    if not name:
        raise InvalidRequestError("name is required")
    if batch_quantity <= 0:
        raise InvalidRequestError("batch_quantity must be positive")
    if not fits_scale(batch_quantity, QUANTITY_SCALE):
        raise InvalidRequestError(f"batch_quantity allows at most {QUANTITY_SCALE} decimal places")
    if sale_price is not None and sale_price <= 0:
        raise InvalidRequestError("sale_price must be positive")
    if sale_price is not None and not fits_scale(sale_price, MONEY_SCALE):
        raise InvalidRequestError(f"sale_price allows at most {MONEY_SCALE} decimal places")
    if not materials:
        raise InvalidRequestError("An assembly offer needs at least one material")

    offer = AssemblyOffer(
        name=name,
        description=description,
        batch_quantity=batch_quantity,
        sale_price=sale_price,
        unit=unit,
        store_id=store_id,
        created_by_user_id=created_by_user_id,
        status="ACTIVE",
        is_active=True,
    )

    for i, entry in enumerate(materials):
        raw_product_id = entry.get("raw_product_id")
        required = entry.get("required_quantity")
        if required is None or required <= 0:
            raise InvalidRequestError(
                f"materials[{i}].required_quantity must be positive",
                details={"line": i},
            )
        if not fits_scale(required, QUANTITY_SCALE):
            raise InvalidRequestError(
                f"materials[{i}].required_quantity allows at most {QUANTITY_SCALE} decimal places",
                details={"line": i, "required_quantity": str(required)},
            )
        if not db.session.get(Product, raw_product_id):
            raise NotFoundError(
                f"Raw product {raw_product_id} not found",
                details={"line": i, "product_id": raw_product_id},
            )
        offer.materials.append(
            BillOfMaterial(
                raw_product_id=raw_product_id,
                required_quantity=required,
                unit=entry.get("unit"),
                notes=entry.get("notes"),
            )
        )

    db.session.add(offer)
    db.session.commit()
    return offer
