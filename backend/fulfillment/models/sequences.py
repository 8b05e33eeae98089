from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-day document counters.

    WHY: Prevent race conditions when generating order and receipt numbers.
    Counting today's rows at generation time hands the same number to two
    concurrent requests; a single counter row bumped with
    UPDATE ... SET next_number = next_number + 1 does not.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "sequence_date", name="uq_doc_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)  # ORDER, RECEIPT
    sequence_date = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "sequence_date": self.sequence_date,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
