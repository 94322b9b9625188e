"""Order numbering tests."""

from datetime import datetime
from decimal import Decimal

import pytest

from retail_pos.extensions import db
from retail_pos.models import DocumentSequence, SalesOrder
from retail_pos.services.document_service import DocumentSequenceError, next_order_number

DAY = datetime(2026, 10, 17, 12, 0)


def test_sequence_per_day(db_session):
    assert next_order_number(prefix="POS", when=DAY) == "POS202610170001"
    assert next_order_number(prefix="POS", when=DAY) == "POS202610170002"
    assert next_order_number(prefix="POS", when=datetime(2026, 10, 18)) == "POS202610180001"
    db.session.commit()


def test_rollback_releases_number(db_session):
    assert next_order_number(prefix="POS", when=DAY) == "POS202610170001"
    db.session.rollback()

    assert next_order_number(prefix="POS", when=DAY) == "POS202610170001"
    db.session.commit()


def test_continues_after_orders_numbered_without_counter(db_session, store, cashier):
    for n in (1, 2, 3):
        db.session.add(SalesOrder(
            order_number=f"POS2026101700{n:02d}",
            store_id=store.id,
            subtotal_amount=Decimal("1"),
            total_amount=Decimal("1"),
            payment_method="Cash",
            created_by_user_id=cashier.id,
        ))
    db.session.commit()

    assert next_order_number(prefix="POS", when=DAY) == "POS202610170004"
    db.session.commit()
    assert db.session.query(DocumentSequence).filter_by(namespace="POS20261017").one().next_number == 5


def test_prefix_required(db_session):
    with pytest.raises(DocumentSequenceError):
        next_order_number(prefix="", when=DAY)
