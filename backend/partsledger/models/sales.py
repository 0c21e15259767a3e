from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Quotation(db.Model):
    """
    Price quotation for a customer, convertible into a sale.

    LIFECYCLE:
    1. DRAFT:     Lines being added or removed, no stock reserved
    2. PENDING:   Offered to the customer, lines frozen
    3. CONFIRMED: Converted into a SALE referencing this document number;
                  every line consumed stock (terminal)
    4. CANCELLED: Dropped, nothing touched (terminal)
    """
    __tablename__ = "quotations"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_quotations_docnum"),
        db.Index("ix_quotations_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "COT-000007"); the sale it
    # becomes uses the same number as its reference_id
    document_number = db.Column(db.String(64), nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_document = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)  # DRAFT, PENDING, CONFIRMED, CANCELLED

    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    valid_until = db.Column(db.Date, nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(255), nullable=True)
    processed_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("QuotationLine", backref="quotation", lazy=True, order_by="QuotationLine.id")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "customer_name": self.customer_name,
            "customer_document": self.customer_document,
            "status": self.status,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "total_cents": self.total_cents,
            "created_by": self.created_by,
            "processed_by": self.processed_by,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "version_id": self.version_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class QuotationLine(db.Model):
    """
    One quoted product. lot_id pins the line to an operator-chosen lot;
    without it the line is consumed FIFO on confirmation.
    """
    __tablename__ = "quotation_lines"
    __table_args__ = (
        db.UniqueConstraint("quotation_id", "product_id", name="uq_quotation_lines_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quotation_id": self.quotation_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Credit(db.Model):
    """
    Credit sale (parts handed over now, paid later).

    LIFECYCLE:
    1. TEMPORARY: Being assembled; lines change freely and stock is NOT consumed
    2. ACTIVE:    Registered; every line consumed FIFO under reference
                  CREDIT <document_number> (terminal)
    3. DISCARDED: Abandoned before registration (terminal)
    """
    __tablename__ = "credits"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_credits_docnum"),
        db.Index("ix_credits_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_document = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="TEMPORARY", index=True)  # TEMPORARY, ACTIVE, DISCARDED

    due_on = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(255), nullable=True)
    activated_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    discarded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("CreditLine", backref="credit", lazy=True, order_by="CreditLine.id")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "customer_name": self.customer_name,
            "customer_document": self.customer_document,
            "status": self.status,
            "due_on": self.due_on.isoformat() if self.due_on else None,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "created_by": self.created_by,
            "activated_by": self.activated_by,
            "created_at": to_utc_z(self.created_at),
            "activated_at": to_utc_z(self.activated_at) if self.activated_at else None,
            "discarded_at": to_utc_z(self.discarded_at) if self.discarded_at else None,
            "version_id": self.version_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class CreditLine(db.Model):
    __tablename__ = "credit_lines"
    __table_args__ = (
        db.UniqueConstraint("credit_id", "product_id", name="uq_credit_lines_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("credits.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_id": self.credit_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
