"""
POS Sales Service - validate-then-commit sale processing

WHY: A cart either becomes one completed sales order with every inventory
deduction applied, or leaves no trace at all.

Two phases:
1. Validation (read-only): every line is checked against current stock
   before anything is written. A shortfall on the last line fails the cart
   with nothing deducted for the earlier ones.
2. Atomic commit: order number, customer, order header, lines and
   conditional inventory decrements run in one transaction. Any failure
   rolls the whole thing back and surfaces TransactionFailedError.

Revenue ledger notification happens after commit and can never undo it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidRequestError,
    NotFoundError,
    SaleError,
    TransactionFailedError,
)
from ..models import Product, SalesItem, SalesOrder, Store, User
from ..models._types import QUANTITY_SCALE, as_number, fits_scale
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    TOTAL_TOLERANCE,
    AssemblyItem,
    CartLine,
    ProductItem,
    SaleRequest,
    encode_legacy_id,
    money,
)
from .assembly_service import MaterialRequirement, get_offer_for_store, resolve_requirements
from .audit_service import append_audit
from .concurrency import apply_transaction_timeout, run_with_retry
from .customer_service import resolve_customer
from .document_service import next_order_number
from .inventory_service import (
    POS_FLOOR,
    STOREROOM,
    InventoryConflictError,
    decrement_pos_quantity,
    decrement_storeroom_quantity,
    get_inventory_record,
)
from .revenue_service import notify_sale_committed

SALE_ROLES = frozenset({"SuperAdmin", "Cashier"})
HISTORY_ROLES = frozenset({"SuperAdmin", "StoreManager", "Cashier"})
WALK_IN_CUSTOMER = "Walk-in Customer"


@dataclass(frozen=True)
class OperatorContext:
    """Who is ringing up the sale, passed explicitly into every operation."""
    user_id: int
    store_id: int | None
    display_name: str
    roles: frozenset[str] = frozenset()

    @classmethod
    def from_user(cls, user: User) -> "OperatorContext":
        return cls(
            user_id=user.id,
            store_id=user.store_id,
            display_name=user.display_name,
            roles=frozenset(ur.role.name for ur in user.user_roles),
        )


@dataclass
class ValidatedLine:
    position: int
    line: CartLine
    item_name: str
    product_id: int | None = None
    offer_id: int | None = None
    requirements: list[MaterialRequirement] = field(default_factory=list)

    @property
    def is_assembly(self) -> bool:
        return self.offer_id is not None


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    final: Decimal


def _fmt(value: Decimal) -> str:
    return format(Decimal(value).normalize(), "f")


def require_sale_store(operator: OperatorContext) -> int:
    """Store the operator may sell from, or ForbiddenError."""
    if not (operator.roles & SALE_ROLES):
        raise ForbiddenError(
            "You don't have permission to process sales",
            details={"required_roles": sorted(SALE_ROLES)},
        )
    if operator.store_id is None:
        raise ForbiddenError("You are not assigned to any store", details={"user_id": operator.user_id})
    return operator.store_id


def compute_totals(sale_request: SaleRequest) -> SaleTotals:
    """
    Subtotal from the lines, final = subtotal - discount + tax.

    Client-sent totalAmount/finalAmount are cross-checks only; the server
    figures are what get stored.
    """
    subtotal = money(sum((line.total_price for line in sale_request.lines), Decimal("0")))
    final = money(subtotal - sale_request.discount_amount + sale_request.tax_amount)

    if final < 0:
        raise InvalidRequestError(
            "Discount exceeds the sale total",
            details={"subtotal": as_number(subtotal), "discount": as_number(sale_request.discount_amount)},
        )
    if sale_request.total_amount is not None and abs(sale_request.total_amount - subtotal) > TOTAL_TOLERANCE:
        raise InvalidRequestError(
            "totalAmount does not match the sum of the line totals",
            details={"total_amount": as_number(sale_request.total_amount), "expected": as_number(subtotal)},
        )
    if sale_request.final_amount is not None and abs(sale_request.final_amount - final) > TOTAL_TOLERANCE:
        raise InvalidRequestError(
            "finalAmount does not match total - discount + tax",
            details={"final_amount": as_number(sale_request.final_amount), "expected": as_number(final)},
        )

    return SaleTotals(
        subtotal=subtotal,
        discount=money(sale_request.discount_amount),
        tax=money(sale_request.tax_amount),
        final=final,
    )


# =============================================================================
# Phase 1: validation (no writes)
# =============================================================================

def _validate_product_line(
    position: int,
    line: CartLine,
    store_id: int,
    available: dict[tuple[str, int], Decimal],
    names: dict[int, str],
) -> ValidatedLine:
    product_id = line.item.product_id
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise NotFoundError(
            f"Product {product_id} not found or inactive",
            details={"line": position, "product_id": product_id},
        )
    names[product.id] = product.name

    record = get_inventory_record(store_id, product_id)
    if record is None:
        raise NotFoundError(
            f"Product {product.name} (id {product_id}) is not stocked in this store",
            details={"line": position, "product_id": product_id, "store_id": store_id},
        )

    on_floor = Decimal(record.pos_quantity)
    available[(POS_FLOOR, product_id)] = on_floor
    if on_floor < line.quantity:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name} (id {product_id}): "
            f"required {_fmt(line.quantity)}, available {_fmt(on_floor)}",
            details={
                "line": position,
                "product_id": product_id,
                "product_name": product.name,
                "required": as_number(line.quantity),
                "available": as_number(on_floor),
            },
        )

    return ValidatedLine(position=position, line=line, item_name=product.name, product_id=product_id)


def _validate_assembly_line(
    position: int,
    line: CartLine,
    store_id: int,
    available: dict[tuple[str, int], Decimal],
    names: dict[int, str],
) -> ValidatedLine:
    offer = get_offer_for_store(line.item.offer_id, store_id)
    requirements = resolve_requirements(offer, line.quantity)
    material_names = {m.raw_product_id: m.raw_product.name for m in offer.materials if m.raw_product}
    names.update(material_names)

    for req in requirements:
        if not fits_scale(req.required_quantity, QUANTITY_SCALE):
            raise InvalidRequestError(
                f"Quantity {_fmt(line.quantity)} of {offer.name} needs "
                f"{_fmt(req.required_quantity)} of product {req.raw_product_id}, "
                f"finer than {QUANTITY_SCALE} decimal places",
                details={
                    "line": position,
                    "assembly_offer_id": offer.id,
                    "product_id": req.raw_product_id,
                    "required": str(req.required_quantity),
                },
            )
        record = get_inventory_record(store_id, req.raw_product_id)
        in_storeroom = Decimal(record.storeroom_quantity) if record is not None else Decimal("0")
        available[(STOREROOM, req.raw_product_id)] = in_storeroom
        if in_storeroom < req.required_quantity:
            raw_name = material_names.get(req.raw_product_id, f"product {req.raw_product_id}")
            raise InsufficientStockError(
                f"Insufficient stock for {offer.name}: {raw_name} "
                f"required {_fmt(req.required_quantity)}, available {_fmt(in_storeroom)}",
                details={
                    "line": position,
                    "assembly_offer_id": offer.id,
                    "assembly_offer_name": offer.name,
                    "product_id": req.raw_product_id,
                    "product_name": raw_name,
                    "required": as_number(req.required_quantity),
                    "available": as_number(in_storeroom),
                },
            )

    return ValidatedLine(
        position=position,
        line=line,
        item_name=offer.name,
        offer_id=offer.id,
        requirements=requirements,
    )


def validate_cart(sale_request: SaleRequest, store_id: int) -> list[ValidatedLine]:
    """
    Check every line against current stock without writing anything.

    Lines are checked one by one in cart order, then the whole cart's demand
    per (bucket, product) is checked so two lines cannot each pass on the
    same units.
    """
    if not sale_request.lines:
        raise InvalidRequestError("Sale must contain at least one item")

    available: dict[tuple[str, int], Decimal] = {}
    names: dict[int, str] = {}
    validated: list[ValidatedLine] = []

    for position, line in enumerate(sale_request.lines):
        if line.quantity <= 0 or not fits_scale(line.quantity, QUANTITY_SCALE):
            raise InvalidRequestError(
                f"items[{position}].quantity must be positive with at most {QUANTITY_SCALE} decimal places",
                details={"line": position, "quantity": str(line.quantity)},
            )
        if isinstance(line.item, AssemblyItem):
            validated.append(_validate_assembly_line(position, line, store_id, available, names))
        elif isinstance(line.item, ProductItem):
            validated.append(_validate_product_line(position, line, store_id, available, names))
        else:
            raise InvalidRequestError(f"items[{position}] has an unknown item type", details={"line": position})

    demand: dict[tuple[str, int], Decimal] = {}
    for v in validated:
        if v.is_assembly:
            for req in v.requirements:
                key = (STOREROOM, req.raw_product_id)
                demand[key] = demand.get(key, Decimal("0")) + req.required_quantity
        else:
            key = (POS_FLOOR, v.product_id)
            demand[key] = demand.get(key, Decimal("0")) + v.line.quantity

    for (bucket, product_id), required in demand.items():
        on_hand = available[(bucket, product_id)]
        if on_hand < required:
            name = names.get(product_id, f"product {product_id}")
            where = "storeroom" if bucket == STOREROOM else "POS floor"
            raise InsufficientStockError(
                f"Insufficient stock for {name} (id {product_id}) across the cart: "
                f"required {_fmt(required)} on the {where}, available {_fmt(on_hand)}",
                details={
                    "product_id": product_id,
                    "product_name": name,
                    "bucket": bucket,
                    "required": as_number(required),
                    "available": as_number(on_hand),
                },
            )

    return validated


# =============================================================================
# Phase 2: atomic commit
# =============================================================================

def _rollback_quietly() -> None:
    try:
        db.session.rollback()
    except Exception:
        current_app.logger.exception("Error during sale transaction rollback")


def _write_sale(
    operator: OperatorContext,
    store_id: int,
    sale_request: SaleRequest,
    validated: list[ValidatedLine],
    totals: SaleTotals,
) -> SalesOrder:
    apply_transaction_timeout(current_app.config["SALE_TRANSACTION_TIMEOUT_SECONDS"])

    now = utcnow()
    order_number = next_order_number(prefix=current_app.config["ORDER_NUMBER_PREFIX"], when=now)

    customer = resolve_customer(
        phone=sale_request.customer_phone,
        name=sale_request.customer_name,
        email=sale_request.customer_email,
        address=sale_request.customer_address,
        actor_user_id=operator.user_id,
    )

    order = SalesOrder(
        order_number=order_number,
        store_id=store_id,
        customer_id=customer.id if customer else None,
        customer_name=sale_request.customer_name,
        customer_phone=sale_request.customer_phone,
        customer_email=sale_request.customer_email,
        customer_address=sale_request.customer_address,
        subtotal_amount=totals.subtotal,
        discount_amount=totals.discount,
        tax_amount=totals.tax,
        total_amount=totals.final,
        payment_method=sale_request.payment_method,
        status="COMPLETED",
        payment_status="PAID",
        notes=sale_request.notes,
        created_by_user_id=operator.user_id,
        created_at=now,
    )
    db.session.add(order)
    db.session.flush()

    for v in validated:
        db.session.add(SalesItem(
            sales_order_id=order.id,
            store_id=store_id,
            product_id=v.product_id,
            assembly_offer_id=v.offer_id,
            item_name=v.item_name,
            quantity=v.line.quantity,
            unit_price=v.line.unit_price,
            total_price=v.line.total_price,
            created_at=now,
        ))
        if v.is_assembly:
            for req in v.requirements:
                decrement_storeroom_quantity(
                    store_id=store_id,
                    product_id=req.raw_product_id,
                    quantity=req.required_quantity,
                )
        else:
            decrement_pos_quantity(store_id=store_id, product_id=v.product_id, quantity=v.line.quantity)

    db.session.flush()

    append_audit(
        entity="SalesOrder",
        entity_id=order.id,
        action="CREATE",
        actor_user_id=operator.user_id,
        after={
            "id": order.id,
            "order_number": order.order_number,
            "store_id": store_id,
            "customer_name": order.customer_name,
            "total_amount": str(order.total_amount),
            "status": order.status,
            "payment_status": order.payment_status,
        },
    )

    db.session.commit()
    return order


def _commit_sale(
    operator: OperatorContext,
    store_id: int,
    sale_request: SaleRequest,
    validated: list[ValidatedLine],
    totals: SaleTotals,
) -> SalesOrder:
    def _op():
        try:
            return _write_sale(operator, store_id, sale_request, validated, totals)
        except (OperationalError, StaleDataError):
            # Transient lock trouble: let run_with_retry roll back and try again
            raise
        except InventoryConflictError as exc:
            _rollback_quietly()
            raise TransactionFailedError(
                f"Sale rolled back: {exc}",
                details={"reason": "inventory_changed", **exc.details},
            ) from exc
        except SaleError:
            _rollback_quietly()
            raise
        except Exception as exc:
            _rollback_quietly()
            raise TransactionFailedError(
                "Sale rolled back: the transaction could not be completed",
                details={"reason": type(exc).__name__},
            ) from exc

    try:
        return run_with_retry(_op)
    except (OperationalError, StaleDataError) as exc:
        _rollback_quietly()
        raise TransactionFailedError(
            "Sale rolled back: inventory is busy, please retry",
            details={"reason": type(exc).__name__},
        ) from exc


def process_sale(operator: OperatorContext, sale_request: SaleRequest) -> dict:
    """
    Validate the cart, commit the sale atomically and return the receipt.

    Raises ForbiddenError, InvalidRequestError, NotFoundError,
    InsufficientStockError (nothing written) or TransactionFailedError
    (everything rolled back).
    """
    store_id = require_sale_store(operator)
    if not sale_request.lines:
        raise InvalidRequestError("Sale must contain at least one item")
    totals = compute_totals(sale_request)
    validated = validate_cart(sale_request, store_id)

    order = _commit_sale(operator, store_id, sale_request, validated, totals)

    current_app.logger.info(
        "Sale %s committed: store=%s lines=%d total=%s operator=%s",
        order.order_number, store_id, len(validated), order.total_amount, operator.user_id,
    )

    receipt = build_receipt(order, cashier_name=operator.display_name)

    notify_sale_committed(sales_order_id=order.id, store_id=store_id, amount=order.total_amount)

    return receipt


# =============================================================================
# Receipts and history
# =============================================================================

def build_receipt(order: SalesOrder, *, cashier_name: str | None = None) -> dict:
    offset = current_app.config["ASSEMBLY_OFFER_ID_OFFSET"]
    store = db.session.get(Store, order.store_id)

    items = []
    for item in order.items:
        ref = AssemblyItem(item.assembly_offer_id) if item.assembly_offer_id is not None else ProductItem(item.product_id)
        items.append({
            "productId": encode_legacy_id(ref, offset),
            "itemType": item.item_type,
            "assemblyOfferId": item.assembly_offer_id,
            "productName": item.item_name,
            "quantity": as_number(item.quantity),
            "unitPrice": as_number(item.unit_price),
            "totalPrice": as_number(item.total_price),
        })

    if cashier_name is None:
        cashier_name = order.created_by.display_name if order.created_by else None

    return {
        "saleNumber": order.order_number,
        "saleId": order.id,
        "customerName": order.customer_name or WALK_IN_CUSTOMER,
        "customerId": order.customer_id,
        "totalAmount": as_number(order.subtotal_amount),
        "discountAmount": as_number(order.discount_amount),
        "taxAmount": as_number(order.tax_amount),
        "finalAmount": as_number(order.total_amount),
        "paymentMethod": order.payment_method,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "items": items,
        "saleDate": to_utc_z(order.created_at),
        "cashierName": cashier_name,
        "storeName": store.name if store else "Unknown Store",
    }


def _can_see_all_stores(operator: OperatorContext) -> bool:
    return "SuperAdmin" in operator.roles


def get_sale_receipt(operator: OperatorContext, sale_id: int) -> dict:
    order = db.session.get(SalesOrder, sale_id)
    if order is None or (not _can_see_all_stores(operator) and order.store_id != operator.store_id):
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return build_receipt(order)


def list_sales_history(operator: OperatorContext, *, limit: int = 50) -> list[dict]:
    """
    Most recent sales: all stores for SuperAdmin, the operator's own store
    otherwise. Operators without a store see nothing.
    """
    if not (operator.roles & HISTORY_ROLES):
        raise ForbiddenError("You don't have permission to view sales history")

    query = db.session.query(SalesOrder)
    if not _can_see_all_stores(operator):
        if operator.store_id is None:
            current_app.logger.warning(
                "User %s is not assigned to any store, returning empty sales history", operator.user_id
            )
            return []
        query = query.filter(SalesOrder.store_id == operator.store_id)

    orders = query.order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc()).limit(limit).all()
    return [
        {
            "saleId": order.id,
            "saleNumber": order.order_number,
            "storeId": order.store_id,
            "customerName": order.customer_name or WALK_IN_CUSTOMER,
            "totalAmount": as_number(order.subtotal_amount),
            "finalAmount": as_number(order.total_amount),
            "paymentMethod": order.payment_method,
            "saleDate": to_utc_z(order.created_at),
            "cashierName": order.created_by.display_name if order.created_by else None,
            "itemCount": len(order.items),
        }
        for order in orders
    ]
