from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ._types import Money, Quantity, as_number


class SalesOrder(db.Model):
    """
    A completed POS sale.

    Customer name/phone/email are snapshots taken at checkout, not a join
    through customer_id, so the receipt keeps showing what was true then.
    Orders are written once and never updated.
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_sales_orders_order_number"),
        db.Index("ix_sales_orders_store_created", "store_id", "created_at"),
        db.Index("ix_sales_orders_customer_phone", "customer_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(100), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)

    subtotal_amount = db.Column(Money, nullable=False)
    discount_amount = db.Column(Money, nullable=False, default=0)
    tax_amount = db.Column(Money, nullable=False, default=0)
    # Final amount charged (subtotal - discount + tax)
    total_amount = db.Column(Money, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="PAID")
    notes = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("sales_orders", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales_orders", lazy=True))
    created_by = db.relationship("User")
    items = db.relationship("SalesItem", back_populates="sales_order", order_by="SalesItem.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "subtotal_amount": as_number(self.subtotal_amount),
            "discount_amount": as_number(self.discount_amount),
            "tax_amount": as_number(self.tax_amount),
            "total_amount": as_number(self.total_amount),
            "payment_method": self.payment_method,
            "status": self.status,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SalesItem(db.Model):
    """
    One line of a sales order.

    A line sells either a plain product or an assembly offer, never both.
    item_name is the display name at the time of sale.
    """
    __tablename__ = "sales_items"
    __table_args__ = (
        db.CheckConstraint(
            "(product_id IS NOT NULL AND assembly_offer_id IS NULL)"
            " OR (product_id IS NULL AND assembly_offer_id IS NOT NULL)",
            name="ck_sales_items_single_target",
        ),
        db.CheckConstraint("quantity > 0", name="ck_sales_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    assembly_offer_id = db.Column(db.Integer, db.ForeignKey("assembly_offers.id"), nullable=True, index=True)
    item_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(Quantity, nullable=False)
    unit_price = db.Column(Money, nullable=False)
    total_price = db.Column(Money, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sales_order = db.relationship("SalesOrder", back_populates="items")
    product = db.relationship("Product")
    assembly_offer = db.relationship("AssemblyOffer")

    @property
    def item_type(self) -> str:
        return "ASSEMBLY" if self.assembly_offer_id is not None else "PRODUCT"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_order_id": self.sales_order_id,
            "store_id": self.store_id,
            "item_type": self.item_type,
            "product_id": self.product_id,
            "assembly_offer_id": self.assembly_offer_id,
            "item_name": self.item_name,
            "quantity": as_number(self.quantity),
            "unit_price": as_number(self.unit_price),
            "total_price": as_number(self.total_price),
            "created_at": to_utc_z(self.created_at),
        }
