"""
Customer resolution tests.

Verifies:
- Without a phone nothing is looked up or created
- An active customer with the phone is reused
- A previous order's snapshot seeds a new customer
- A losing concurrent insert falls back to the winner's row
"""

from datetime import datetime
from decimal import Decimal

from retail_pos.extensions import db
from retail_pos.models import AuditLog, Customer, SalesOrder
from retail_pos.services import customer_service


def _order(store, user, phone, name=None, email=None, number="POS202601010001", created_at=None):
    order = SalesOrder(
        order_number=number,
        store_id=store.id,
        customer_name=name,
        customer_phone=phone,
        customer_email=email,
        subtotal_amount=Decimal("10"),
        total_amount=Decimal("10"),
        payment_method="Cash",
        created_by_user_id=user.id,
        created_at=created_at or datetime(2026, 1, 1, 9, 30),
    )
    db.session.add(order)
    db.session.commit()
    return order


def test_no_phone_returns_none(db_session):
    assert customer_service.resolve_customer(phone=None, name="Ann") is None
    assert customer_service.resolve_customer(phone="   ", name="Ann") is None
    assert db.session.query(Customer).count() == 0


def test_existing_active_customer_reused(db_session):
    existing = Customer(full_name="Ann Lee", phone="555-0100", is_active=True)
    db.session.add(existing)
    db.session.commit()

    customer = customer_service.resolve_customer(phone=" 555-0100 ", name="Someone Else")

    assert customer.id == existing.id
    assert db.session.query(Customer).count() == 1


def test_inactive_customer_not_reused(db_session):
    db.session.add(Customer(full_name="Old Ann", phone="555-0100", is_active=False))
    db.session.commit()

    customer = customer_service.resolve_customer(phone="555-0100", name="New Ann")
    db.session.commit()

    assert customer.full_name == "New Ann"
    assert customer.is_active is True
    assert db.session.query(Customer).count() == 2


def test_previous_order_seeds_customer(db_session, store, cashier):
    first_seen = datetime(2026, 1, 1, 9, 30)
    _order(store, cashier, "555-0199", name="Bo Park", email="bo@example.com", created_at=first_seen)

    customer = customer_service.resolve_customer(
        phone="555-0199", name="Ignored", email="new@example.com", address="1 Main St", actor_user_id=cashier.id
    )
    db.session.commit()

    assert customer.full_name == "Bo Park"
    assert customer.email == "bo@example.com"
    assert customer.address == "1 Main St"
    assert customer.created_at.replace(tzinfo=None) == first_seen


def test_previous_order_without_name_uses_placeholder(db_session, store, cashier):
    _order(store, cashier, "555-0123")

    customer = customer_service.resolve_customer(phone="555-0123")
    db.session.commit()

    assert customer.full_name == customer_service.UNKNOWN_CUSTOMER_NAME


def test_new_customer_needs_name(db_session):
    assert customer_service.resolve_customer(phone="555-0111") is None

    customer = customer_service.resolve_customer(phone="555-0111", name="Cy", actor_user_id=None)
    db.session.commit()

    assert customer.id is not None
    audit = db.session.query(AuditLog).filter_by(entity="Customer").one()
    assert audit.entity_id == str(customer.id)
    assert audit.action == "CREATE"


def test_concurrent_insert_falls_back_to_existing(db_session, monkeypatch):
    winner = Customer(full_name="Winner", phone="555-0777", is_active=True)
    db.session.add(winner)
    db.session.commit()

    real_find = customer_service.find_active_customer
    calls = []

    def stale_first_lookup(phone):
        # First lookup misses, as if the other checkout had not committed yet
        calls.append(phone)
        if len(calls) == 1:
            return None
        return real_find(phone)

    monkeypatch.setattr(customer_service, "find_active_customer", stale_first_lookup)

    customer = customer_service.resolve_customer(phone="555-0777", name="Loser")
    db.session.commit()

    assert customer.id == winner.id
    assert len(calls) == 2
    assert db.session.query(Customer).filter_by(phone="555-0777").count() == 1
