# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence, SalesOrder
from ..time_utils import date_stamp


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def order_namespace(prefix: str, when: datetime | None = None) -> str:
    """Per-day namespace, e.g. POS20261017."""
    return f"{prefix}{date_stamp(when)}"


def _current_value(namespace: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(namespace=namespace)
        .scalar()
    )


def _allocate(namespace: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.namespace == namespace)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    # The UPDATE takes the row lock; concurrent allocators queue behind it.
    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_value(namespace) - 1

    # First allocation in this namespace. Orders numbered before the counter
    # existed still count, so the sequence continues after them.
    existing = (
        db.session.query(func.count(SalesOrder.id))
        .filter(SalesOrder.order_number.like(f"{namespace}%"))
        .scalar()
    ) or 0
    first = existing + 1

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(namespace=namespace, next_number=first + 1))
        return first
    except IntegrityError:
        # Another transaction created the counter first; take the next value from it
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise DocumentSequenceError(f"Sequence {namespace} could not be allocated")
        return _current_value(namespace) - 1


def next_order_number(*, prefix: str, when: datetime | None = None, pad: int = 4) -> str:
    """
    Allocate the next order number inside the caller's transaction.

    Format: <prefix><YYYYMMDD><zero-padded sequence>. The counter increment
    commits or rolls back with the sale, so a failed sale does not burn a
    number.
    """
    if not prefix:
        raise DocumentSequenceError("prefix is required")
    namespace = order_namespace(prefix, when)
    return f"{namespace}{_allocate(namespace):0{pad}d}"
