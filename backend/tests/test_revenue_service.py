"""
Revenue ledger tests.

Verifies:
- Recording is idempotent per sales order
- A ledger failure after commit is logged and never undoes the sale
"""

import logging
from decimal import Decimal
from types import SimpleNamespace

from retail_pos.extensions import db
from retail_pos.models import RevenueEntry, SalesOrder
from retail_pos.services import revenue_service
from retail_pos.services.sales_service import process_sale
from retail_pos.validation import parse_sale_request


def _sell(operator, quantity=1):
    payload = {
        "items": [{"productId": 7, "quantity": quantity, "unitPrice": 10}],
        "paymentMethod": "Card",
    }
    return process_sale(operator, parse_sale_request(payload, offer_id_offset=10000))


def _stock_soap(make_product, stock, store):
    soap = make_product("Soap", product_id=7)
    stock(store, soap, pos="10")
    return soap


def test_record_revenue_is_idempotent(db_session, operator, store, make_product, stock):
    _stock_soap(make_product, stock, store)
    receipt = _sell(operator, quantity=2)

    again = revenue_service.record_revenue(
        sales_order_id=receipt["saleId"], store_id=store.id, amount=Decimal("20")
    )

    assert db.session.query(RevenueEntry).count() == 1
    assert again.sales_order_id == receipt["saleId"]
    assert revenue_service.get_total_revenue(store.id) == Decimal("20")
    assert revenue_service.get_total_revenue() == Decimal("20")


def test_ledger_failure_does_not_undo_sale(db_session, app, operator, store, make_product, stock, monkeypatch, caplog):
    _stock_soap(make_product, stock, store)

    def ledger_down(**kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(revenue_service, "record_revenue", ledger_down)

    with caplog.at_level(logging.ERROR, logger=app.logger.name):
        receipt = _sell(operator, quantity=3)

    assert receipt["finalAmount"] == 30
    order = db.session.get(SalesOrder, receipt["saleId"])
    assert order is not None
    assert db.session.query(RevenueEntry).count() == 0
    assert "Revenue ledger update failed" in caplog.text


def test_async_notification_runs_on_thread(db_session, app, monkeypatch):
    seen = []

    def fake_in_context(app_obj, sales_order_id, store_id, amount):
        seen.append((sales_order_id, store_id, amount))

    class InlineThread:
        def __init__(self, target, args, name, daemon):
            self.target, self.args = target, args
            assert daemon is True

        def start(self):
            self.target(*self.args)

    monkeypatch.setattr(revenue_service, "_notify_in_app_context", fake_in_context)
    monkeypatch.setattr(revenue_service, "threading", SimpleNamespace(Thread=InlineThread))
    monkeypatch.setitem(app.config, "REVENUE_LEDGER_ASYNC", True)

    revenue_service.notify_sale_committed(sales_order_id=41, store_id=2, amount=Decimal("9.99"))

    assert seen == [(41, 2, Decimal("9.99"))]
