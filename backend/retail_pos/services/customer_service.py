# Overview: Looks up or lazily creates the customer attached to a sale.

"""
Customer resolution at checkout, in order:

1. An active customer with the phone number is reused.
2. Otherwise the most recent sales order with that phone seeds a new
   customer (order snapshot first, current request for blank fields).
3. Otherwise, if a name was given, a brand-new customer is created.
4. Otherwise the sale proceeds without a customer link.

Without a phone number nothing is looked up or created; the order keeps
only its snapshot fields.

The partial unique index on active phones is the final arbiter when two
checkouts race for the same new phone: the loser's insert fails inside a
savepoint and it re-fetches the winner's row.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, SalesOrder
from .audit_service import append_audit

UNKNOWN_CUSTOMER_NAME = "Unknown Customer"


def normalize_phone(phone: str | None) -> str | None:
    if phone is None:
        return None
    phone = phone.strip()
    return phone or None


def find_active_customer(phone: str) -> Customer | None:
    return (
        db.session.query(Customer)
        .filter(Customer.phone == phone, Customer.is_active.is_(True))
        .order_by(Customer.id.asc())
        .first()
    )


def latest_order_for_phone(phone: str) -> SalesOrder | None:
    return (
        db.session.query(SalesOrder)
        .filter(SalesOrder.customer_phone == phone)
        .order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc())
        .first()
    )


def _insert_customer(customer: Customer, actor_user_id: int | None) -> Customer:
    try:
        with db.session.begin_nested():
            db.session.add(customer)
    except IntegrityError:
        existing = find_active_customer(customer.phone)
        if existing is None:
            raise
        return existing

    append_audit(
        entity="Customer",
        entity_id=customer.id,
        action="CREATE",
        actor_user_id=actor_user_id,
        after=customer.to_dict(),
    )
    return customer


def resolve_customer(
    *,
    phone: str | None,
    name: str | None = None,
    email: str | None = None,
    address: str | None = None,
    actor_user_id: int | None = None,
) -> Customer | None:
    """
    Return the customer to attach to a new order, or None.

    Runs inside the sale transaction; does not commit.
    """
    phone = normalize_phone(phone)
    if not phone:
        return None

    customer = find_active_customer(phone)
    if customer is not None:
        return customer

    previous = latest_order_for_phone(phone)
    if previous is not None:
        customer = Customer(
            full_name=previous.customer_name or name or UNKNOWN_CUSTOMER_NAME,
            phone=phone,
            email=previous.customer_email or email,
            address=previous.customer_address or address,
            created_at=previous.created_at,
            is_active=True,
        )
        return _insert_customer(customer, actor_user_id)

    if name:
        customer = Customer(
            full_name=name,
            phone=phone,
            email=email,
            address=address,
            is_active=True,
        )
        return _insert_customer(customer, actor_user_id)

    return None
