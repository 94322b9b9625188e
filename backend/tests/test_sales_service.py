"""
Sale transaction engine tests.

Verifies:
- Plain products draw from the POS floor, assembly offers from the storeroom
- Assembly deductions are R x B x Q
- A failing line leaves no order, no items and no stock change
- Failures inside the commit phase roll everything back
- Order numbers are sequential per day and not burned by failed sales
- Customers are resolved by phone and attached to the order
- Fractional quantities are stored and deducted exactly; finer ones are rejected
"""

import re
from decimal import Decimal

import pytest
from sqlalchemy import update

from retail_pos.errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidRequestError,
    NotFoundError,
    TransactionFailedError,
)
from retail_pos.extensions import db
from retail_pos.models import (
    AuditLog,
    Customer,
    DocumentSequence,
    InventoryRecord,
    RevenueEntry,
    SalesItem,
    SalesOrder,
)
from retail_pos.services import sales_service
from retail_pos.services.sales_service import OperatorContext, process_sale
from retail_pos.validation import SaleRequest, parse_sale_request

from conftest import inventory_of

ORDER_NUMBER = re.compile(r"^POS\d{8}(\d{4})$")


def _line(product_id, quantity, unit_price, total_price=None, **extra):
    line = {"productId": product_id, "quantity": quantity, "unitPrice": unit_price}
    if total_price is not None:
        line["totalPrice"] = total_price
    line.update(extra)
    return line


def _request(*items, **extra):
    payload = {"items": list(items), "paymentMethod": "Cash"}
    payload.update(extra)
    return parse_sale_request(payload, offer_id_offset=10000)


def _assert_nothing_written():
    assert db.session.query(SalesOrder).count() == 0
    assert db.session.query(SalesItem).count() == 0
    assert db.session.query(DocumentSequence).count() == 0
    assert db.session.query(AuditLog).filter_by(entity="SalesOrder").count() == 0


@pytest.fixture
def soap(make_product, store, stock):
    product = make_product("Soap", price="10.00", product_id=7)
    stock(store, product, storeroom="10", pos="5")
    return product


@pytest.fixture
def towel(make_product, store, stock):
    product = make_product("Towel", price="4.00", product_id=8)
    stock(store, product, storeroom="0", pos="3")
    return product


class TestPlainProductSales:

    def test_sells_entire_pos_floor(self, db_session, operator, store, soap, towel):
        receipt = process_sale(operator, _request(_line(7, 5, 10, 50)))

        assert inventory_of(store, soap).pos_quantity == Decimal("0")
        assert inventory_of(store, soap).storeroom_quantity == Decimal("10")
        assert inventory_of(store, towel).pos_quantity == Decimal("3")

        order = db.session.query(SalesOrder).one()
        assert order.total_amount == Decimal("50")
        assert order.status == "COMPLETED"
        assert order.payment_status == "PAID"
        assert order.store_id == store.id

        assert ORDER_NUMBER.match(receipt["saleNumber"]).group(1) == "0001"
        assert receipt["saleId"] == order.id
        assert receipt["finalAmount"] == 50
        assert receipt["customerName"] == "Walk-in Customer"
        assert receipt["cashierName"] == "Casey Cashier"
        assert receipt["storeName"] == "Downtown"
        assert receipt["items"] == [{
            "productId": 7,
            "itemType": "PRODUCT",
            "assemblyOfferId": None,
            "productName": "Soap",
            "quantity": 5,
            "unitPrice": 10,
            "totalPrice": 50,
        }]

    def test_insufficient_stock_names_product(self, db_session, operator, store, soap):
        with pytest.raises(InsufficientStockError) as exc:
            process_sale(operator, _request(_line(7, 6, 10, 60)))

        assert "Soap" in str(exc.value)
        assert exc.value.details["product_id"] == 7
        assert exc.value.details["required"] == 6
        assert exc.value.details["available"] == 5
        _assert_nothing_written()
        assert inventory_of(store, soap).pos_quantity == Decimal("5")

    def test_same_product_on_two_lines_is_checked_in_total(self, db_session, operator, store, soap):
        with pytest.raises(InsufficientStockError) as exc:
            process_sale(operator, _request(_line(7, 3, 10), _line(7, 3, 10)))

        assert exc.value.details["required"] == 6
        assert exc.value.details["available"] == 5
        _assert_nothing_written()

    def test_unknown_product(self, db_session, operator, soap):
        with pytest.raises(NotFoundError):
            process_sale(operator, _request(_line(99, 1, 10)))
        _assert_nothing_written()

    def test_product_not_stocked_in_store(self, db_session, operator, make_product):
        make_product("Candle", product_id=12)
        with pytest.raises(NotFoundError) as exc:
            process_sale(operator, _request(_line(12, 1, 3)))
        assert exc.value.details["product_id"] == 12

    def test_inactive_product(self, db_session, operator, store, make_product, stock):
        product = make_product("Retired", product_id=13, is_active=False)
        stock(store, product, pos="10")
        with pytest.raises(NotFoundError):
            process_sale(operator, _request(_line(13, 1, 3)))

    def test_first_failing_line_is_reported(self, db_session, operator, soap):
        with pytest.raises(NotFoundError):
            process_sale(operator, _request(_line(99, 1, 1), _line(7, 50, 10)))


class TestAssemblySales:

    def test_offer_deducts_r_times_b_times_q(self, db_session, operator, store, make_product, make_offer, stock):
        raw = make_product("Bread", product_id=7)
        stock(store, raw, storeroom="10", pos="2")
        make_offer("Sandwich Tray", [(raw, "1")], batch_quantity="2", sale_price="20.00", offer_id=3)

        receipt = process_sale(operator, _request(_line(10003, 3, 20, 60)))

        record = inventory_of(store, raw)
        assert record.storeroom_quantity == Decimal("4")
        assert record.pos_quantity == Decimal("2")

        item = db.session.query(SalesItem).one()
        assert item.assembly_offer_id == 3
        assert item.product_id is None
        assert item.item_name == "Sandwich Tray"

        assert receipt["items"][0]["productId"] == 10003
        assert receipt["items"][0]["itemType"] == "ASSEMBLY"
        assert receipt["items"][0]["assemblyOfferId"] == 3

    def test_tagged_assembly_reference(self, db_session, operator, store, make_product, make_offer, stock):
        raw = make_product("Bread")
        stock(store, raw, storeroom="5")
        offer = make_offer("Toast", [(raw, "1")])

        process_sale(operator, _request({"assemblyOfferId": offer.id, "quantity": 2, "unitPrice": 3}))

        assert inventory_of(store, raw).storeroom_quantity == Decimal("3")

    def test_shortfall_names_offer_and_raw_product(self, db_session, operator, store, make_product, make_offer, stock):
        raw = make_product("Bread", product_id=7)
        stock(store, raw, storeroom="5")
        make_offer("Sandwich Tray", [(raw, "1")], batch_quantity="2", offer_id=3)

        with pytest.raises(InsufficientStockError) as exc:
            process_sale(operator, _request(_line(10003, 3, 20)))

        assert "Sandwich Tray" in str(exc.value)
        assert "Bread" in str(exc.value)
        assert exc.value.details["assembly_offer_id"] == 3
        assert exc.value.details["product_id"] == 7
        assert exc.value.details["required"] == 6
        assert exc.value.details["available"] == 5
        _assert_nothing_written()

    def test_duplicate_bom_entries_are_summed(self, db_session, operator, store, make_product, make_offer, stock):
        raw = make_product("Cheese")
        record = stock(store, raw, storeroom="5")
        offer = make_offer("Cheese Board", [(raw, "1"), (raw, "2")])

        with pytest.raises(InsufficientStockError):
            process_sale(operator, _request({"assemblyOfferId": offer.id, "quantity": 2, "unitPrice": 9}))

        record.storeroom_quantity = Decimal("6")
        db.session.commit()

        process_sale(operator, _request({"assemblyOfferId": offer.id, "quantity": 2, "unitPrice": 9}))
        assert inventory_of(store, raw).storeroom_quantity == Decimal("0")

    def test_raw_product_without_inventory_is_shortfall(self, db_session, operator, make_product, make_offer):
        raw = make_product("Saffron")
        offer = make_offer("Paella", [(raw, "1")])

        with pytest.raises(InsufficientStockError) as exc:
            process_sale(operator, _request({"assemblyOfferId": offer.id, "quantity": 1, "unitPrice": 9}))
        assert exc.value.details["available"] == 0

    def test_inactive_offer_not_found(self, db_session, operator, store, make_product, make_offer, stock):
        raw = make_product("Bread")
        stock(store, raw, storeroom="5")
        offer = make_offer("Old Tray", [(raw, "1")], is_active=False)

        with pytest.raises(NotFoundError):
            process_sale(operator, _request({"assemblyOfferId": offer.id, "quantity": 1, "unitPrice": 9}))

    def test_mixed_cart(self, db_session, operator, store, soap, make_product, make_offer, stock):
        raw = make_product("Bread")
        stock(store, raw, storeroom="4")
        offer = make_offer("Toast", [(raw, "2")])

        process_sale(operator, _request(
            _line(7, 2, 10),
            {"assemblyOfferId": offer.id, "quantity": 2, "unitPrice": 3},
        ))

        assert inventory_of(store, soap).pos_quantity == Decimal("3")
        assert inventory_of(store, raw).storeroom_quantity == Decimal("0")
        assert db.session.query(SalesItem).count() == 2


class TestFractionalQuantities:

    def test_repeated_fractional_sales_reach_exactly_zero(self, db_session, operator, store, make_product, stock):
        cloth = make_product("Cloth", product_id=9)
        stock(store, cloth, pos="0.3")

        process_sale(operator, _request(_line(9, "0.1", 10, "1.00")))
        process_sale(operator, _request(_line(9, "0.2", 10, "2.00")))

        assert inventory_of(store, cloth).pos_quantity == Decimal("0")
        quantities = sorted(item.quantity for item in db.session.query(SalesItem).all())
        assert quantities == [Decimal("0.1"), Decimal("0.2")]

        with pytest.raises(InsufficientStockError):
            process_sale(operator, _request(_line(9, "0.001", 10, "0.01")))

    def test_sub_cent_bom_requirement_is_deducted_exactly(
        self, db_session, operator, store, make_product, make_offer, stock
    ):
        spice = make_product("Spice")
        stock(store, spice, storeroom="10")
        offer = make_offer("Spice Jar", [(spice, "0.125")], batch_quantity="1")

        process_sale(operator, _request({"assemblyOfferId": offer.id, "quantity": 8, "unitPrice": 2}))

        assert inventory_of(store, spice).storeroom_quantity == Decimal("9")

    def test_three_decimal_quantity_is_stored_as_sent(self, db_session, operator, store, make_product, stock):
        rope = make_product("Rope", product_id=9)
        stock(store, rope, pos="1")

        receipt = process_sale(operator, _request(_line(9, "0.333", 3)))

        assert db.session.query(SalesItem).one().quantity == Decimal("0.333")
        assert inventory_of(store, rope).pos_quantity == Decimal("0.667")
        assert receipt["items"][0]["quantity"] == 0.333
        assert receipt["items"][0]["totalPrice"] == 1.0

    @pytest.mark.parametrize("quantity", ["0.0001", "1.2345"])
    def test_quantity_finer_than_thousandths_is_rejected(self, db_session, operator, soap, quantity):
        with pytest.raises(InvalidRequestError) as exc:
            _request(_line(7, quantity, 10))
        assert "decimal places" in str(exc.value)

    def test_unit_price_finer_than_cents_is_rejected(self, db_session, soap):
        with pytest.raises(InvalidRequestError):
            _request(_line(7, 1, "10.005"))

    def test_bom_deduction_finer_than_thousandths_is_rejected(
        self, db_session, operator, store, make_product, make_offer, stock
    ):
        spice = make_product("Spice")
        stock(store, spice, storeroom="10")
        offer = make_offer("Spice Jar", [(spice, "0.125")])

        with pytest.raises(InvalidRequestError) as exc:
            process_sale(operator, _request({"assemblyOfferId": offer.id, "quantity": "0.5", "unitPrice": 2}))

        assert exc.value.details["product_id"] == spice.id
        assert Decimal(exc.value.details["required"]) == Decimal("0.0625")
        _assert_nothing_written()
        assert inventory_of(store, spice).storeroom_quantity == Decimal("10")


class TestAtomicity:

    def test_last_line_validation_failure_writes_nothing(self, db_session, operator, store, soap, towel):
        with pytest.raises(InsufficientStockError) as exc:
            process_sale(operator, _request(_line(7, 5, 10), _line(8, 4, 4)))

        assert exc.value.details["product_id"] == 8
        _assert_nothing_written()
        assert inventory_of(store, soap).pos_quantity == Decimal("5")
        assert inventory_of(store, towel).pos_quantity == Decimal("3")

    def test_failure_during_commit_rolls_back_everything(
        self, db_session, operator, store, soap, towel, monkeypatch
    ):
        real_decrement = sales_service.decrement_pos_quantity
        calls = []

        def failing_on_last_line(**kwargs):
            calls.append(kwargs["product_id"])
            if len(calls) == 2:
                raise RuntimeError("disk full")
            real_decrement(**kwargs)

        monkeypatch.setattr(sales_service, "decrement_pos_quantity", failing_on_last_line)

        with pytest.raises(TransactionFailedError):
            process_sale(operator, _request(
                _line(7, 5, 10), _line(8, 1, 4),
                customerName="Dana", customerPhone="555-0101",
            ))

        assert calls == [7, 8]
        _assert_nothing_written()
        assert db.session.query(Customer).count() == 0
        assert inventory_of(store, soap).pos_quantity == Decimal("5")
        assert inventory_of(store, towel).pos_quantity == Decimal("3")

        monkeypatch.setattr(sales_service, "decrement_pos_quantity", real_decrement)
        receipt = process_sale(operator, _request(_line(7, 1, 10)))
        assert ORDER_NUMBER.match(receipt["saleNumber"]).group(1) == "0001"

    def test_stock_taken_after_validation_fails_the_sale(self, db_session, operator, store, soap, monkeypatch):
        real_validate = sales_service.validate_cart

        def validate_then_concurrent_sale(sale_request, store_id):
            validated = real_validate(sale_request, store_id)
            db.session.execute(
                update(InventoryRecord)
                .where(InventoryRecord.product_id == 7, InventoryRecord.store_id == store_id)
                .values(pos_quantity=Decimal("1"))
            )
            db.session.commit()
            return validated

        monkeypatch.setattr(sales_service, "validate_cart", validate_then_concurrent_sale)

        with pytest.raises(TransactionFailedError) as exc:
            process_sale(operator, _request(_line(7, 5, 10)))

        assert exc.value.details["reason"] == "inventory_changed"
        assert exc.value.details["product_id"] == 7
        assert db.session.query(SalesOrder).count() == 0
        assert inventory_of(store, soap).pos_quantity == Decimal("1")


class TestOrderNumbers:

    def test_sequential_sales_same_day(self, db_session, operator, soap):
        numbers = [process_sale(operator, _request(_line(7, 1, 10)))["saleNumber"] for _ in range(3)]

        prefixes = {n[:-4] for n in numbers}
        suffixes = [ORDER_NUMBER.match(n).group(1) for n in numbers]
        assert len(prefixes) == 1
        assert suffixes == ["0001", "0002", "0003"]


class TestCustomers:

    def test_sale_creates_and_reuses_customer(self, db_session, operator, soap):
        first = process_sale(operator, _request(_line(7, 1, 10), customerName="Eve", customerPhone="555-0142"))
        second = process_sale(operator, _request(_line(7, 1, 10), customerPhone="555-0142"))

        customer = db.session.query(Customer).one()
        orders = db.session.query(SalesOrder).order_by(SalesOrder.id).all()
        assert [o.customer_id for o in orders] == [customer.id, customer.id]
        assert first["customerName"] == "Eve"
        assert second["customerId"] == customer.id

    def test_name_without_phone_creates_no_customer(self, db_session, operator, soap):
        receipt = process_sale(operator, _request(_line(7, 1, 10), customerName="Fay"))

        assert db.session.query(Customer).count() == 0
        assert receipt["customerName"] == "Fay"
        assert db.session.query(SalesOrder).one().customer_id is None


class TestTotalsAndOperator:

    def test_discount_and_tax(self, db_session, operator, soap):
        receipt = process_sale(operator, _request(
            _line(7, 2, 10, 20),
            discountAmount=5, taxAmount=1.5, totalAmount=20, finalAmount=16.5,
        ))

        order = db.session.query(SalesOrder).one()
        assert order.subtotal_amount == Decimal("20")
        assert order.total_amount == Decimal("16.5")
        assert receipt["totalAmount"] == 20
        assert receipt["discountAmount"] == 5
        assert receipt["taxAmount"] == 1.5
        assert receipt["finalAmount"] == 16.5

    def test_mismatched_final_amount(self, db_session, operator, soap):
        with pytest.raises(InvalidRequestError):
            process_sale(operator, _request(_line(7, 1, 10), finalAmount=99))
        _assert_nothing_written()

    def test_empty_cart(self, db_session, operator):
        with pytest.raises(InvalidRequestError):
            process_sale(operator, SaleRequest(lines=(), payment_method="Cash"))

    def test_empty_cart_with_discount_reports_missing_items(self, db_session, operator):
        with pytest.raises(InvalidRequestError) as exc:
            process_sale(operator, SaleRequest(lines=(), payment_method="Cash", discount_amount=Decimal("5")))
        assert "at least one item" in str(exc.value)
        _assert_nothing_written()

    def test_operator_without_store(self, db_session, make_user, soap):
        floater = make_user("floater", "Cashier")
        with pytest.raises(ForbiddenError):
            process_sale(OperatorContext.from_user(floater), _request(_line(7, 1, 10)))
        _assert_nothing_written()

    def test_store_manager_cannot_sell(self, db_session, make_user, store, soap):
        manager = make_user("manager", "StoreManager", store_id=store.id)
        with pytest.raises(ForbiddenError):
            process_sale(OperatorContext.from_user(manager), _request(_line(7, 1, 10)))


def test_side_records(db_session, operator, soap):
    receipt = process_sale(operator, _request(_line(7, 2, 10)))

    audit = db.session.query(AuditLog).filter_by(entity="SalesOrder").one()
    assert audit.entity_id == str(receipt["saleId"])
    assert audit.actor_user_id == operator.user_id

    entry = db.session.query(RevenueEntry).one()
    assert entry.sales_order_id == receipt["saleId"]
    assert entry.amount == Decimal("20")


def test_history_and_receipt(db_session, operator, make_user, store, other_store, soap):
    first = process_sale(operator, _request(_line(7, 1, 10)))
    second = process_sale(operator, _request(_line(7, 2, 10)))

    history = sales_service.list_sales_history(operator)
    assert [h["saleId"] for h in history] == [second["saleId"], first["saleId"]]
    assert history[0]["itemCount"] == 1

    assert sales_service.get_sale_receipt(operator, first["saleId"])["saleNumber"] == first["saleNumber"]

    outsider = make_user("outsider", "Cashier", store_id=other_store.id)
    with pytest.raises(NotFoundError):
        sales_service.get_sale_receipt(OperatorContext.from_user(outsider), first["saleId"])
    assert sales_service.list_sales_history(OperatorContext.from_user(outsider)) == []
