from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Return(db.Model):
    """
    Customer return of previously sold or credited parts.

    LIFECYCLE:
    1. REQUESTED: Return created, lines being added, awaiting a decision
    2. APPROVED:  Every line reversed into its original lots (terminal)
    3. REJECTED:  Nothing touched (terminal)

    DESIGN PRINCIPLES:
    - References the original sale/credit by (reference_type, reference_id)
    - Lines weak-reference the Consumption (allocation record) they undo
    - Approval and all lot re-credits commit together or not at all
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_returns_docnum"),
        db.Index("ix_returns_reference", "reference_type", "reference_id"),
        db.Index("ix_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "DEV-000012")
    document_number = db.Column(db.String(64), nullable=False)

    # Reference to original sale/credit
    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="REQUESTED", index=True)  # REQUESTED, APPROVED, REJECTED

    reason = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    requested_by = db.Column(db.String(255), nullable=True)
    processed_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("ReturnLine", backref="return_doc", lazy=True, order_by="ReturnLine.id")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "status": self.status,
            "reason": self.reason,
            "rejection_reason": self.rejection_reason,
            "refund_amount_cents": self.refund_amount_cents,
            "requested_by": self.requested_by,
            "processed_by": self.processed_by,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "version_id": self.version_id,
        }


class ReturnLine(db.Model):
    """
    One returned quantity of a Consumption.

    CRITICAL: Stock goes back to the lots recorded on the consumption,
    never to whichever lot happens to be newest.
    """
    __tablename__ = "return_lines"
    __table_args__ = (
        db.UniqueConstraint("return_id", "consumption_id", name="uq_return_lines_consumption"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    consumption_id = db.Column(db.Integer, db.ForeignKey("consumptions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=True)
    line_refund_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    consumption = db.relationship("Consumption")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "consumption_id": self.consumption_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_refund_cents": self.line_refund_cents,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerEvent(db.Model):
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., stock.consumed, stock.reversed, intake.posted
    entity_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., consumption, return, stock_intake
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    # Cross references
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    consumption_id = db.Column(db.Integer, db.ForeignKey("consumptions.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)
    intake_id = db.Column(db.Integer, db.ForeignKey("stock_intakes.id"), nullable=True, index=True)

    actor = db.Column(db.String(255), nullable=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Optional structured metadata (JSON text; keep small)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "product_id": self.product_id,
            "consumption_id": self.consumption_id,
            "return_id": self.return_id,
            "intake_id": self.intake_id,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences (intakes, returns, adjustments, quotations, credits).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
