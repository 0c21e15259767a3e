from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockIntake(db.Model):
    """
    Stock intake document (goods received from a supplier).

    One intake creates one Lot per line. Posting is immediate: the intake
    exists only if its lots, product aggregates and audit rows were committed
    in the same transaction.
    """
    __tablename__ = "stock_intakes"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_stock_intakes_docnum"),
        db.Index("ix_stock_intakes_supplier", "supplier_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)

    # Supplier invoice / receipt number
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Business time of the receipt; lots inherit it as their FIFO timestamp
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    received_by = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier", backref=db.backref("intakes", lazy=True))

    def __repr__(self) -> str:
        return f"<StockIntake id={self.id} doc_num={self.document_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "supplier_id": self.supplier_id,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "received_at": to_utc_z(self.received_at),
            "total_cost_cents": self.total_cost_cents,
            "received_by": self.received_by,
            "created_at": to_utc_z(self.created_at),
            "lot_count": len(self.lots),
        }


class Lot(db.Model):
    """
    A batch of received stock for one product.

    INVARIANTS:
    - 0 <= remaining_quantity <= received_quantity
    - status == ACTIVE  iff remaining_quantity > 0
    - FIFO order is (received_at, id) ascending

    Created once on intake (or positive adjustment); decremented only by
    consumption and incremented only by reversal. Never deleted.
    """
    __tablename__ = "lots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "lot_number", name="uq_lots_product_lot_number"),
        db.Index("ix_lots_fifo", "product_id", "status", "received_at", "id"),
        db.CheckConstraint("remaining_quantity >= 0", name="ck_lots_remaining_non_negative"),
        db.CheckConstraint("remaining_quantity <= received_quantity", name="ck_lots_remaining_bounded"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    intake_id = db.Column(db.Integer, db.ForeignKey("stock_intakes.id"), nullable=True, index=True)

    lot_number = db.Column(db.String(64), nullable=False)

    received_quantity = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_on = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product", backref=db.backref("lots", lazy=True))
    intake = db.relationship("StockIntake", backref=db.backref("lots", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Lot id={self.id} lot_number={self.lot_number!r} "
            f"remaining={self.remaining_quantity}/{self.received_quantity} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "intake_id": self.intake_id,
            "lot_number": self.lot_number,
            "received_quantity": self.received_quantity,
            "remaining_quantity": self.remaining_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "received_at": to_utc_z(self.received_at),
            "expires_on": self.expires_on.isoformat() if self.expires_on else None,
            "status": self.status,
            "version_id": self.version_id,
        }


class Consumption(db.Model):
    """
    Allocation record: one product line of a sale, credit, outflow or adjustment.

    Immutable once written. Its lines say exactly which lots were drawn and
    at what cost, which is what a later reversal reads back.
    """
    __tablename__ = "consumptions"
    __table_args__ = (
        db.Index("ix_consumptions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    # SALE, CREDIT, OUTFLOW, ADJUSTMENT
    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.String(64), nullable=False)
    reference_line = db.Column(db.String(64), nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    actor = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    lines = db.relationship(
        "ConsumptionLine",
        backref="consumption",
        lazy=True,
        order_by="ConsumptionLine.sequence",
    )

    @property
    def reversed_quantity(self) -> int:
        return sum(line.reversed_quantity for line in self.lines)

    @property
    def reversible_quantity(self) -> int:
        return self.quantity - self.reversed_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_line": self.reference_line,
            "unit_price_cents": self.unit_price_cents,
            "total_cost_cents": self.total_cost_cents,
            "reversed_quantity": self.reversed_quantity,
            "actor": self.actor,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class ConsumptionLine(db.Model):
    """One (lot, quantity taken, unit cost at the time) tuple of a Consumption."""
    __tablename__ = "consumption_lines"
    __table_args__ = (
        db.UniqueConstraint("consumption_id", "lot_id", name="uq_consumption_lines_lot"),
        db.CheckConstraint("reversed_quantity <= quantity", name="ck_consumption_lines_reversed_bounded"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    consumption_id = db.Column(db.Integer, db.ForeignKey("consumptions.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=False, index=True)

    # Position in FIFO order within the consumption
    sequence = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    # Units already credited back by reversals
    reversed_quantity = db.Column(db.Integer, nullable=False, default=0)

    lot = db.relationship("Lot")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lot_id": self.lot_id,
            "lot_number": self.lot.lot_number if self.lot else None,
            "sequence": self.sequence,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "reversed_quantity": self.reversed_quantity,
        }


class StockMovement(db.Model):
    """
    Per-lot audit row for every committed stock change.

    movement_type: INTAKE, CONSUMPTION, REVERSAL, ADJUSTMENT_IN
    quantity is signed (negative when stock leaves the lot).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_lot", "lot_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    lot_remaining_before = db.Column(db.Integer, nullable=False)
    lot_remaining_after = db.Column(db.Integer, nullable=False)

    consumption_id = db.Column(db.Integer, db.ForeignKey("consumptions.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)
    intake_id = db.Column(db.Integer, db.ForeignKey("stock_intakes.id"), nullable=True, index=True)

    actor = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "lot_remaining_before": self.lot_remaining_before,
            "lot_remaining_after": self.lot_remaining_after,
            "consumption_id": self.consumption_id,
            "return_id": self.return_id,
            "intake_id": self.intake_id,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
