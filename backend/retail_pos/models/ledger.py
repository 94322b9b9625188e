from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ._types import Money, as_number


class RevenueEntry(db.Model):
    """
    Realized revenue per committed sales order (append-only).

    Written after the sale commits, outside its transaction. The unique
    sales_order_id makes a repeated notification a no-op.
    """
    __tablename__ = "revenue_entries"
    __table_args__ = (
        db.UniqueConstraint("sales_order_id", name="uq_revenue_entries_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    amount = db.Column(Money, nullable=False)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_order_id": self.sales_order_id,
            "store_id": self.store_id,
            "amount": as_number(self.amount),
            "recorded_at": to_utc_z(self.recorded_at),
        }


class AuditLog(db.Model):
    """
    Append-only audit trail.

    Rows are written in the same DB transaction as the change they record,
    so a rolled-back sale leaves no audit row either.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    entity = db.Column(db.String(100), nullable=False)
    entity_id = db.Column(db.String(50), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    after = db.Column(db.Text, nullable=True)

    at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "action": self.action,
            "after": self.after,
            "at": to_utc_z(self.at),
        }
