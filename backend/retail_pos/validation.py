"""
Request payload parsing for the POS API.

Carts arrive as JSON; this module turns them into immutable request objects
with Decimal amounts and a tagged item reference per line, so nothing
downstream has to guess whether a number names a product or an offer.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Union

from .errors import InvalidRequestError
from .models._types import MONEY_SCALE, QUANTITY_SCALE, fits_scale

CENT = Decimal("0.01")

# Client-side rounding slack when cross-checking totals
TOTAL_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ProductItem:
    """Cart line selling a plain product off the POS floor."""
    product_id: int


@dataclass(frozen=True)
class AssemblyItem:
    """Cart line selling an assembly offer built from storeroom stock."""
    offer_id: int


ItemRef = Union[ProductItem, AssemblyItem]


@dataclass(frozen=True)
class CartLine:
    item: ItemRef
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    product_name: str | None = None


@dataclass(frozen=True)
class SaleRequest:
    lines: tuple[CartLine, ...]
    payment_method: str
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    customer_address: str | None = None
    discount_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal | None = None
    final_amount: Decimal | None = None
    notes: str | None = None


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(
    value: Any,
    field: str,
    *,
    required: bool = True,
    places: int | None = None,
) -> Decimal | None:
    """
    Coerce a JSON number or numeric string to Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans are rejected even
    though they are ints in Python. With `places`, values finer than that
    many decimal places are rejected rather than rounded, since they could
    not be stored exactly.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise InvalidRequestError(f"{field} is required", details={"field": field})
        return None
    if isinstance(value, bool):
        raise InvalidRequestError(f"{field} must be a number", details={"field": field})
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidRequestError(f"{field} must be a number", details={"field": field})
    if not result.is_finite():
        raise InvalidRequestError(f"{field} must be a finite number", details={"field": field})
    if places is not None and not fits_scale(result, places):
        raise InvalidRequestError(
            f"{field} allows at most {places} decimal places",
            details={"field": field, "value": str(result)},
        )
    return result


def parse_quantity(value: Any, field: str, *, required: bool = True) -> Decimal | None:
    return parse_decimal(value, field, required=required, places=QUANTITY_SCALE)


def parse_money(value: Any, field: str, *, required: bool = True) -> Decimal | None:
    return parse_decimal(value, field, required=required, places=MONEY_SCALE)


def parse_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidRequestError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InvalidRequestError(f"{field} must be an integer", details={"field": field})


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_item_ref(entry: dict, *, offer_id_offset: int, position: int) -> ItemRef:
    """
    Resolve which thing a cart line sells.

    Tagged forms win: assemblyOfferId, or itemType "PRODUCT"/"ASSEMBLY" with
    a raw id. Untagged ids (productId, productOrOfferId) use the legacy
    encoding where offers sit above offer_id_offset; it is decoded here, at
    the boundary, and nowhere else.
    """
    offer_id = _pick(entry, "assemblyOfferId", "assembly_offer_id")
    if offer_id is not None:
        return AssemblyItem(parse_int(offer_id, f"items[{position}].assemblyOfferId"))

    raw_id = _pick(entry, "productId", "product_id", "productOrOfferId", "product_or_offer_id")
    if raw_id is None:
        raise InvalidRequestError(
            f"items[{position}] must name a productId or assemblyOfferId",
            details={"line": position},
        )
    raw_id = parse_int(raw_id, f"items[{position}].productId")

    item_type = _clean_str(_pick(entry, "itemType", "item_type"))
    if item_type is not None:
        item_type = item_type.upper()
        if item_type == "ASSEMBLY":
            return AssemblyItem(raw_id)
        if item_type == "PRODUCT":
            return ProductItem(raw_id)
        raise InvalidRequestError(
            f"items[{position}].itemType must be PRODUCT or ASSEMBLY",
            details={"line": position, "item_type": item_type},
        )

    if raw_id > offer_id_offset:
        return AssemblyItem(raw_id - offer_id_offset)
    return ProductItem(raw_id)


def encode_legacy_id(item: ItemRef, offer_id_offset: int) -> int:
    """Inverse of the legacy decoding, for clients that still expect it."""
    if isinstance(item, AssemblyItem):
        return item.offer_id + offer_id_offset
    return item.product_id


def _parse_line(entry: Any, *, offer_id_offset: int, position: int) -> CartLine:
    if not isinstance(entry, dict):
        raise InvalidRequestError(f"items[{position}] must be an object", details={"line": position})

    item = parse_item_ref(entry, offer_id_offset=offer_id_offset, position=position)

    quantity = parse_quantity(entry.get("quantity"), f"items[{position}].quantity")
    if quantity <= 0:
        raise InvalidRequestError(
            f"items[{position}].quantity must be positive",
            details={"line": position, "quantity": str(quantity)},
        )

    unit_price = parse_money(_pick(entry, "unitPrice", "unit_price"), f"items[{position}].unitPrice")
    if unit_price <= 0:
        raise InvalidRequestError(
            f"items[{position}].unitPrice must be positive",
            details={"line": position, "unit_price": str(unit_price)},
        )

    expected_total = money(unit_price * quantity)
    total_price = parse_decimal(
        _pick(entry, "totalPrice", "total_price"),
        f"items[{position}].totalPrice",
        required=False,
    )
    if total_price is None:
        total_price = expected_total
    elif abs(total_price - expected_total) > TOTAL_TOLERANCE:
        raise InvalidRequestError(
            f"items[{position}].totalPrice does not match unitPrice x quantity",
            details={
                "line": position,
                "total_price": str(total_price),
                "expected": str(expected_total),
            },
        )

    return CartLine(
        item=item,
        quantity=quantity,
        unit_price=unit_price,
        total_price=money(total_price),
        product_name=_clean_str(_pick(entry, "productName", "product_name")),
    )


def parse_sale_request(payload: Any, *, offer_id_offset: int) -> SaleRequest:
    """Validate a POS sale payload. Raises InvalidRequestError."""
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    items = payload.get("items")
    if not items:
        raise InvalidRequestError("Sale must contain at least one item")
    if not isinstance(items, list):
        raise InvalidRequestError("items must be a list")

    lines = tuple(
        _parse_line(entry, offer_id_offset=offer_id_offset, position=i)
        for i, entry in enumerate(items)
    )

    payment_method = _clean_str(_pick(payload, "paymentMethod", "payment_method"))
    if not payment_method:
        raise InvalidRequestError("paymentMethod is required")

    discount = parse_decimal(_pick(payload, "discountAmount", "discount_amount"), "discountAmount", required=False)
    tax = parse_decimal(_pick(payload, "taxAmount", "tax_amount"), "taxAmount", required=False)
    if discount is not None and discount < 0:
        raise InvalidRequestError("discountAmount cannot be negative")
    if tax is not None and tax < 0:
        raise InvalidRequestError("taxAmount cannot be negative")

    return SaleRequest(
        lines=lines,
        payment_method=payment_method,
        customer_name=_clean_str(_pick(payload, "customerName", "customer_name")),
        customer_phone=_clean_str(_pick(payload, "customerPhone", "customer_phone")),
        customer_email=_clean_str(_pick(payload, "customerEmail", "customer_email")),
        customer_address=_clean_str(_pick(payload, "customerAddress", "customer_address")),
        discount_amount=money(discount or Decimal("0")),
        tax_amount=money(tax or Decimal("0")),
        total_amount=parse_decimal(_pick(payload, "totalAmount", "total_amount"), "totalAmount", required=False),
        final_amount=parse_decimal(_pick(payload, "finalAmount", "final_amount"), "finalAmount", required=False),
        notes=_clean_str(payload.get("notes")),
    )
