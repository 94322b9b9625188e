# Overview: Realized-revenue ledger updated after a sale commits.

"""
Revenue ledger (best-effort, post-commit).

A committed sale is final whatever happens here: notification failures are
logged and swallowed, never surfaced to the caller and never retried
synchronously. Recording is idempotent per sales order, so a later
reconciliation pass may safely re-send.
"""

from __future__ import annotations

import threading
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import RevenueEntry


def record_revenue(*, sales_order_id: int, store_id: int, amount: Decimal) -> RevenueEntry:
    existing = db.session.query(RevenueEntry).filter_by(sales_order_id=sales_order_id).first()
    if existing:
        return existing

    entry = RevenueEntry(sales_order_id=sales_order_id, store_id=store_id, amount=amount)
    db.session.add(entry)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return db.session.query(RevenueEntry).filter_by(sales_order_id=sales_order_id).one()
    return entry


def get_total_revenue(store_id: int | None = None) -> Decimal:
    query = db.session.query(func.coalesce(func.sum(RevenueEntry.amount), 0))
    if store_id is not None:
        query = query.filter(RevenueEntry.store_id == store_id)
    return Decimal(str(query.scalar() or 0))


def _notify(sales_order_id: int, store_id: int, amount: Decimal) -> None:
    try:
        record_revenue(sales_order_id=sales_order_id, store_id=store_id, amount=amount)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Revenue ledger update failed for sales order %s (amount %s)", sales_order_id, amount
        )


def _notify_in_app_context(app, sales_order_id: int, store_id: int, amount: Decimal) -> None:
    with app.app_context():
        try:
            _notify(sales_order_id, store_id, amount)
        finally:
            db.session.remove()


def notify_sale_committed(*, sales_order_id: int, store_id: int, amount: Decimal) -> None:
    """
    Fire-and-forget revenue update for a committed sale.

    With REVENUE_LEDGER_ASYNC the update runs on a daemon thread with its
    own app context and session; otherwise inline, still swallowing errors.
    """
    app = current_app._get_current_object()
    if not app.config.get("REVENUE_LEDGER_ASYNC", True):
        _notify(sales_order_id, store_id, amount)
        return

    thread = threading.Thread(
        target=_notify_in_app_context,
        args=(app, sales_order_id, store_id, amount),
        name=f"revenue-ledger-{sales_order_id}",
        daemon=True,
    )
    thread.start()
