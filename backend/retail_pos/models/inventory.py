from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ._types import Money, Quantity, as_number


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_categories_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    Products are global; stock lives per store in InventoryRecord.
    Once a product appears on a sales item only price and is_active are
    expected to change.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    unit_price = db.Column(Money, nullable=False)
    unit = db.Column(db.String(50), nullable=False, default="unit")

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit_price": as_number(self.unit_price),
            "unit": self.unit,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryRecord(db.Model):
    """
    Stock of one product in one store.

    Two buckets:
    - storeroom_quantity: back-stock, consumed by assembly offers
    - pos_quantity: stock on the sales floor, consumed by plain POS sales

    Quantities never go negative. The check constraints are the last line of
    defence; services decrement with conditional updates so a shortfall is
    detected before the constraint fires.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "store_id", name="uq_inventory_product_store"),
        db.CheckConstraint("storeroom_quantity >= 0", name="ck_inventory_storeroom_nonneg"),
        db.CheckConstraint("pos_quantity >= 0", name="ck_inventory_pos_nonneg"),
        db.Index("ix_inventory_store", "store_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    storeroom_quantity = db.Column(Quantity, nullable=False, default=0)
    pos_quantity = db.Column(Quantity, nullable=False, default=0)

    minimum_stock_level = db.Column(Quantity, nullable=True)
    maximum_stock_level = db.Column(Quantity, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory_records", lazy=True))
    store = db.relationship("Store", backref=db.backref("inventory_records", lazy=True))

    @property
    def total_quantity(self):
        return (self.storeroom_quantity or 0) + (self.pos_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "store_id": self.store_id,
            "storeroom_quantity": as_number(self.storeroom_quantity),
            "pos_quantity": as_number(self.pos_quantity),
            "minimum_stock_level": as_number(self.minimum_stock_level),
            "maximum_stock_level": as_number(self.maximum_stock_level),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
