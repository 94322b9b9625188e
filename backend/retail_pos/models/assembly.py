from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ._types import Money, Quantity, as_number


class AssemblyOffer(db.Model):
    """
    A combo/bundle sold as a single line item.

    One unit of the offer consumes batch_quantity sets of its bill of
    materials from the storeroom. store_id=NULL means the offer is
    available in every store.
    """
    __tablename__ = "assembly_offers"
    __table_args__ = (
        db.CheckConstraint("batch_quantity > 0", name="ck_assembly_batch_positive"),
        db.Index("ix_assembly_offers_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)

    batch_quantity = db.Column(Quantity, nullable=False, default=1)
    unit = db.Column(db.String(50), nullable=True)
    sale_price = db.Column(Money, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store")
    # Stored order is the order BoM checks run in
    materials = db.relationship(
        "BillOfMaterial",
        back_populates="offer",
        order_by="BillOfMaterial.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def is_available_in(self, store_id: int) -> bool:
        return self.store_id is None or self.store_id == store_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "batch_quantity": as_number(self.batch_quantity),
            "unit": self.unit,
            "sale_price": as_number(self.sale_price),
            "status": self.status,
            "is_active": self.is_active,
            "store_id": self.store_id,
            "materials": [m.to_dict() for m in self.materials],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BillOfMaterial(db.Model):
    """Raw product quantity consumed by one batch of an assembly offer."""
    __tablename__ = "bill_of_materials"
    __table_args__ = (
        db.CheckConstraint("required_quantity > 0", name="ck_bom_required_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    assembly_offer_id = db.Column(db.Integer, db.ForeignKey("assembly_offers.id"), nullable=False, index=True)
    raw_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    required_quantity = db.Column(Quantity, nullable=False)
    unit = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    offer = db.relationship("AssemblyOffer", back_populates="materials")
    raw_product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assembly_offer_id": self.assembly_offer_id,
            "raw_product_id": self.raw_product_id,
            "raw_product_name": self.raw_product.name if self.raw_product else None,
            "required_quantity": as_number(self.required_quantity),
            "unit": self.unit,
            "notes": self.notes,
        }
