# Overview: Stock intakes from suppliers and direct stock corrections, posted through the ledger.

"""
Parts Ledger Intake & Time Semantics (authoritative)

Canonical time handling:
- All internal datetimes are UTC-naive (tzinfo=None).
- received_at / occurred_at accept ISO-8601 with 'Z' or offsets and are
  normalized to UTC-naive; values in the future (beyond a small clock-skew
  tolerance) are rejected.

Intake:
- One intake line creates exactly one Lot with remaining == received.
- Lot numbers are unique within an intake and per product.
- Product stock aggregate, supplier statistics, effective unit cost, stock
  movements and the ledger event are written in the same transaction as
  the lots.

Adjustment:
- A positive delta creates an adjustment lot (numbered like the adjustment
  document) at the given unit cost, or the current effective cost.
- A negative delta is a FIFO consumption with reference type ADJUSTMENT.
- Stock is never edited directly; every change has a lot behind it.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Lot, ProductSupplier, StockIntake, StockMovement, Supplier
from ..time_utils import normalize_business_time
from ..validation import MAX_PRICE_CENTS, MAX_QUANTITY, coerce_int, parse_optional_date
from .allocation_service import get_active_lots, get_product, plan_fifo
from .concurrency import execute_atomically
from .consumption_service import _apply_plan
from .cost_service import _recalculate_cost_inner
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import LotStatus, OperationState


def _parse_received_at(value, field: str = "received_at"):
    tolerance = int(current_app.config.get("LEDGER_FUTURE_TOLERANCE_MINUTES", 2))
    try:
        return normalize_business_time(value, tolerance_minutes=tolerance)
    except ValueError as exc:
        raise ValidationError(f"{field}: {exc}")


def _normalize_intake_lines(lines) -> list[dict]:
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("lines must be a non-empty list")

    normalized = []
    lot_numbers = set()
    for i, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{i}] must be an object")
        for key in ("product_id", "quantity", "unit_cost_cents"):
            if raw.get(key) is None:
                raise ValidationError(f"lines[{i}].{key} is required")

        quantity = coerce_int(raw["quantity"], f"lines[{i}].quantity")
        if quantity <= 0:
            raise ValidationError(f"lines[{i}].quantity must be positive")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"lines[{i}].quantity cannot exceed {MAX_QUANTITY}")

        unit_cost = coerce_int(raw["unit_cost_cents"], f"lines[{i}].unit_cost_cents")
        if unit_cost < 0 or unit_cost > MAX_PRICE_CENTS:
            raise ValidationError(f"lines[{i}].unit_cost_cents must be between 0 and {MAX_PRICE_CENTS}")

        lot_number = raw.get("lot_number")
        lot_number = str(lot_number).strip() if lot_number is not None else ""
        if len(lot_number) > 64:
            raise ValidationError(f"lines[{i}].lot_number exceeds max length 64")
        if lot_number:
            if lot_number in lot_numbers:
                raise ValidationError(f"Lot number {lot_number} appears more than once in the intake")
            lot_numbers.add(lot_number)

        normalized.append({
            "product_id": coerce_int(raw["product_id"], f"lines[{i}].product_id"),
            "quantity": quantity,
            "unit_cost_cents": unit_cost,
            "lot_number": lot_number or None,
            "expires_on": parse_optional_date(raw.get("expires_on"), f"lines[{i}].expires_on"),
        })
    return normalized


def _update_supplier_stats(supplier_id: int, product_id: int, quantity: int, cost_cents: int, received_at) -> None:
    """Record the intake on the (product, supplier) purchase statistics."""
    stats = (
        db.session.query(ProductSupplier)
        .filter_by(product_id=product_id, supplier_id=supplier_id)
        .first()
    )
    if stats is None:
        stats = ProductSupplier(product_id=product_id, supplier_id=supplier_id, total_quantity_received=0)
        db.session.add(stats)

    stats.last_intake_at = received_at
    # Average unit cost of this intake, half-up to the cent
    stats.last_unit_cost_cents = (2 * cost_cents + quantity) // (2 * quantity)
    stats.total_quantity_received = (stats.total_quantity_received or 0) + quantity


def create_intake(
    *,
    supplier_id: int,
    lines,
    reference_number: str | None = None,
    notes: str | None = None,
    received_at=None,
    received_by: str | None = None,
) -> StockIntake:
    """
    Post a stock intake: one new lot per line, all-or-nothing.

    Each line is a dict: product_id, quantity, unit_cost_cents and optional
    lot_number (defaults to "<document number>-<line>") and expires_on.

    Raises:
        NotFoundError: supplier or product missing
        ValidationError: bad lines, duplicate lot number, future received_at
    """
    normalized = _normalize_intake_lines(lines)
    when = _parse_received_at(received_at)

    def _work(op) -> StockIntake:
        supplier = db.session.get(Supplier, supplier_id)
        if supplier is None:
            raise NotFoundError("Supplier", supplier_id)
        if not supplier.is_active:
            raise ValidationError(f"Supplier {supplier_id} is inactive")

        products = {}
        for line in normalized:
            if line["product_id"] not in products:
                products[line["product_id"]] = get_product(line["product_id"], lock=True)

            if line["lot_number"] is not None:
                exists = (
                    db.session.query(Lot.id)
                    .filter_by(product_id=line["product_id"], lot_number=line["lot_number"])
                    .first()
                )
                if exists is not None:
                    raise ValidationError(
                        f"Lot number {line['lot_number']} already exists for product {line['product_id']}"
                    )

        op.advance(OperationState.VALIDATING)

        document_number = next_document_number(document_type="intake")
        intake = StockIntake(
            document_number=document_number,
            supplier_id=supplier.id,
            reference_number=reference_number,
            notes=notes,
            received_at=when,
            total_cost_cents=sum(ln["quantity"] * ln["unit_cost_cents"] for ln in normalized),
            received_by=received_by,
        )
        db.session.add(intake)
        db.session.flush()

        per_product: dict[int, list[int]] = {}
        for index, line in enumerate(normalized, start=1):
            product = products[line["product_id"]]
            lot = Lot(
                product_id=product.id,
                intake_id=intake.id,
                lot_number=line["lot_number"] or f"{document_number}-{index}",
                received_quantity=line["quantity"],
                remaining_quantity=line["quantity"],
                unit_cost_cents=line["unit_cost_cents"],
                received_at=when,
                expires_on=line["expires_on"],
                status=LotStatus.ACTIVE.value,
            )
            db.session.add(lot)
            db.session.flush()

            db.session.add(StockMovement(
                movement_type="INTAKE",
                product_id=product.id,
                lot_id=lot.id,
                quantity=line["quantity"],
                unit_cost_cents=line["unit_cost_cents"],
                lot_remaining_before=0,
                lot_remaining_after=line["quantity"],
                intake_id=intake.id,
                actor=received_by,
                occurred_at=when,
            ))

            product.stock_quantity += line["quantity"]
            totals = per_product.setdefault(product.id, [0, 0])
            totals[0] += line["quantity"]
            totals[1] += line["quantity"] * line["unit_cost_cents"]

        db.session.flush()
        for product_id, (quantity, cost) in per_product.items():
            _update_supplier_stats(supplier.id, product_id, quantity, cost, when)
            _recalculate_cost_inner(products[product_id])

        append_ledger_event(
            event_type="intake.posted",
            entity_type="stock_intake",
            entity_id=intake.id,
            intake_id=intake.id,
            actor=received_by,
            occurred_at=when,
            note=f"Intake {document_number} from {supplier.name}",
            payload={
                "lines": len(normalized),
                "total_cost_cents": intake.total_cost_cents,
                "products": sorted(per_product),
            },
        )
        return intake

    return execute_atomically("create_intake", _work)


def get_intake(intake_id: int) -> StockIntake:
    intake = db.session.get(StockIntake, intake_id)
    if intake is None:
        raise NotFoundError("StockIntake", intake_id)
    return intake


def list_intakes(*, supplier_id: int | None = None, limit: int = 100) -> list[StockIntake]:
    q = db.session.query(StockIntake)
    if supplier_id is not None:
        q = q.filter(StockIntake.supplier_id == supplier_id)
    return q.order_by(StockIntake.received_at.desc(), StockIntake.id.desc()).limit(limit).all()


def adjust_stock(
    product_id: int,
    quantity_delta: int,
    *,
    reason: str,
    unit_cost_cents: int | None = None,
    occurred_at=None,
    actor: str | None = None,
) -> dict:
    """
    Correct a product's stock through the ledger.

    Positive deltas add an adjustment lot; negative deltas consume FIFO.

    Returns:
        {"document_number", "quantity_delta", "lot" | None, "consumption" | None}

    Raises:
        ValidationError: zero delta, missing reason, unit cost on a negative delta
        InsufficientStockError: negative delta larger than the stock
    """
    delta = coerce_int(quantity_delta, "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    if abs(delta) > MAX_QUANTITY:
        raise ValidationError(f"quantity_delta cannot exceed {MAX_QUANTITY} units")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required for stock adjustments")
    if unit_cost_cents is not None:
        if delta < 0:
            raise ValidationError("unit_cost_cents must be omitted for negative adjustments")
        unit_cost_cents = coerce_int(unit_cost_cents, "unit_cost_cents")
        if unit_cost_cents < 0 or unit_cost_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"unit_cost_cents must be between 0 and {MAX_PRICE_CENTS}")
    when = _parse_received_at(occurred_at, "occurred_at")

    def _work(op) -> dict:
        product = get_product(product_id, lock=True)

        if delta > 0:
            op.advance(OperationState.VALIDATING)
            document_number = next_document_number(document_type="adjustment")
            cost = unit_cost_cents if unit_cost_cents is not None else product.unit_cost_cents
            lot = Lot(
                product_id=product.id,
                lot_number=document_number,
                received_quantity=delta,
                remaining_quantity=delta,
                unit_cost_cents=cost,
                received_at=when,
                status=LotStatus.ACTIVE.value,
            )
            db.session.add(lot)
            db.session.flush()
            db.session.add(StockMovement(
                movement_type="ADJUSTMENT_IN",
                product_id=product.id,
                lot_id=lot.id,
                quantity=delta,
                unit_cost_cents=cost,
                lot_remaining_before=0,
                lot_remaining_after=delta,
                actor=actor,
                occurred_at=when,
            ))
            product.stock_quantity += delta
            db.session.flush()
            _recalculate_cost_inner(product)
            consumption = None
        else:
            lots = get_active_lots(product.id, lock=True)
            plan = plan_fifo(product.id, -delta, lots)
            op.advance(OperationState.VALIDATING)
            document_number = next_document_number(document_type="adjustment")
            consumption = _apply_plan(
                product, {lot.id: lot for lot in lots}, plan,
                reference_type="ADJUSTMENT",
                reference_id=document_number,
                reference_line=None,
                unit_price_cents=None,
                actor=actor,
                note=reason,
            )
            lot = None

        append_ledger_event(
            event_type="stock.adjusted",
            entity_type="product",
            entity_id=product.id,
            product_id=product.id,
            consumption_id=consumption.id if consumption is not None else None,
            actor=actor,
            occurred_at=when,
            note=reason,
            payload={"document_number": document_number, "quantity_delta": delta},
        )

        return {
            "document_number": document_number,
            "quantity_delta": delta,
            "lot": lot.to_dict() if lot is not None else None,
            "consumption": consumption.to_dict() if consumption is not None else None,
        }

    return execute_atomically("adjust_stock", _work)
