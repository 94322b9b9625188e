from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-namespace document counters.

    WHY: Order numbers are "<prefix><YYYYMMDD><seq>". Counting existing
    orders at insert time races under concurrent same-day sales; a locked
    counter row per namespace does not.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("namespace", name="uq_doc_sequences_namespace"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    namespace = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "namespace": self.namespace,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
