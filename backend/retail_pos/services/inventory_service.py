# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/retail_pos/services/inventory_service.py

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update

from ..extensions import db
from ..models import InventoryRecord, Product, Store
from ..models._types import QUANTITY_SCALE, fits_scale
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Invariants (authoritative)

- One InventoryRecord per (product, store).
- storeroom_quantity and pos_quantity are never negative.
- Decrements are conditional updates ("subtract N where current >= N").
  A read-then-write without the recheck would let two concurrent sales
  both pass validation and push the row negative.
- Plain POS sales draw from pos_quantity; assembly offers draw their raw
  materials from storeroom_quantity.
- Quantities are stored as whole thousandths; finer amounts are rejected,
  never rounded, so SQL-side comparisons match Python-side checks exactly.
"""

STOREROOM = "storeroom_quantity"
POS_FLOOR = "pos_quantity"


class InventoryError(Exception):
    """Raised for inventory operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InventoryConflictError(InventoryError):
    """A conditional decrement matched no row: stock moved underneath us."""


def _check_quantity(quantity: Decimal) -> None:
    if quantity <= 0:
        raise InventoryError("quantity must be positive", details={"quantity": str(quantity)})
    if not fits_scale(quantity, QUANTITY_SCALE):
        raise InventoryError(
            f"quantity allows at most {QUANTITY_SCALE} decimal places",
            details={"quantity": str(quantity)},
        )


def get_inventory_record(store_id: int, product_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(store_id=store_id, product_id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def list_inventory(store_id: int) -> list[InventoryRecord]:
    return (
        db.session.query(InventoryRecord)
        .join(Product, Product.id == InventoryRecord.product_id)
        .filter(InventoryRecord.store_id == store_id)
        .order_by(Product.name.asc(), InventoryRecord.id.asc())
        .all()
    )


def list_low_stock(store_id: int) -> list[InventoryRecord]:
    """Records whose storeroom + POS floor total is below the minimum level."""
    total = InventoryRecord.storeroom_quantity + InventoryRecord.pos_quantity
    return (
        db.session.query(InventoryRecord)
        .filter(
            InventoryRecord.store_id == store_id,
            InventoryRecord.minimum_stock_level.isnot(None),
            total < InventoryRecord.minimum_stock_level,
        )
        .order_by(InventoryRecord.product_id.asc())
        .all()
    )


def _conditional_decrement(*, store_id: int, product_id: int, bucket: str, quantity: Decimal) -> None:
    column = getattr(InventoryRecord, bucket)
    stmt = (
        update(InventoryRecord)
        .where(
            InventoryRecord.store_id == store_id,
            InventoryRecord.product_id == product_id,
            column >= quantity,
        )
        .values({bucket: column - quantity, "updated_at": utcnow()})
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise InventoryConflictError(
            f"Stock for product {product_id} changed before it could be deducted",
            details={
                "product_id": product_id,
                "store_id": store_id,
                "bucket": bucket,
                "requested_quantity": str(quantity),
            },
        )


def decrement_pos_quantity(*, store_id: int, product_id: int, quantity: Decimal) -> None:
    """Deduct POS floor stock. No commit; runs inside the caller's transaction."""
    _conditional_decrement(store_id=store_id, product_id=product_id, bucket=POS_FLOOR, quantity=quantity)


def decrement_storeroom_quantity(*, store_id: int, product_id: int, quantity: Decimal) -> None:
    """Deduct storeroom stock. No commit; runs inside the caller's transaction."""
    _conditional_decrement(store_id=store_id, product_id=product_id, bucket=STOREROOM, quantity=quantity)


def receive_stock(
    *,
    store_id: int,
    product_id: int,
    quantity: Decimal,
    minimum_stock_level: Decimal | None = None,
    maximum_stock_level: Decimal | None = None,
) -> InventoryRecord:
    """
    Add storeroom stock, creating the inventory record on first receipt.
    """
    _check_quantity(quantity)

    def _op():
        if not db.session.get(Store, store_id):
            raise InventoryError("Store not found", details={"store_id": store_id})
        product = db.session.get(Product, product_id)
        if not product:
            raise InventoryError("Product not found", details={"product_id": product_id})

        record = get_inventory_record(store_id, product_id, lock=True)
        if record is None:
            record = InventoryRecord(
                store_id=store_id,
                product_id=product_id,
                storeroom_quantity=Decimal("0"),
                pos_quantity=Decimal("0"),
            )
            db.session.add(record)

        record.storeroom_quantity = (record.storeroom_quantity or Decimal("0")) + quantity
        if minimum_stock_level is not None:
            record.minimum_stock_level = minimum_stock_level
        if maximum_stock_level is not None:
            record.maximum_stock_level = maximum_stock_level

        db.session.commit()
        return record

    return run_with_retry(_op)


def transfer_to_pos(*, store_id: int, product_id: int, quantity: Decimal) -> InventoryRecord:
    """
    Move stock from the storeroom to the POS floor.
    """
    _check_quantity(quantity)

    def _op():
        record = get_inventory_record(store_id, product_id, lock=True)
        if record is None:
            raise InventoryError(
                f"No inventory for product {product_id} in store {store_id}",
                details={"product_id": product_id, "store_id": store_id},
            )
        available = record.storeroom_quantity
        try:
            decrement_storeroom_quantity(store_id=store_id, product_id=product_id, quantity=quantity)
        except InventoryConflictError:
            db.session.rollback()
            raise InventoryError(
                f"Only {available} in storeroom for product {product_id}, requested {quantity}",
                details={
                    "product_id": product_id,
                    "required": str(quantity),
                    "available": str(available),
                },
            )
        db.session.execute(
            update(InventoryRecord)
            .where(InventoryRecord.id == record.id)
            .values(pos_quantity=InventoryRecord.pos_quantity + quantity)
        )
        db.session.commit()
        db.session.refresh(record)
        return record

    return run_with_retry(_op)
