# Overview: Commits FIFO allocation plans: decrements lots and writes allocation records.

"""
Consumption

Every way stock leaves the shop (sale, credit activation, manual outflow,
negative adjustment) goes through here. A consumption:

1. Re-reads the lots a plan names, under lock, and compares each lot's
   version_id with the one snapshotted at planning time. Any difference
   raises ConflictError before anything is written.
2. Decrements each lot, moving emptied lots to EXHAUSTED.
3. Decrements the product's stock aggregate.
4. Writes the Consumption (allocation record) with one line per lot, one
   StockMovement per lot and one ledger event.
5. Recalculates the product's effective unit cost.

All of it is one transaction (execute_atomically): either every row above
is written or none is.
"""

from __future__ import annotations

from flask import current_app

from ..errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    PriceFloorError,
    ValidationError,
)
from ..extensions import db
from ..models import Consumption, ConsumptionLine, Lot, Product, StockMovement
from ..validation import MAX_PRICE_CENTS, MAX_QUANTITY, coerce_int
from .allocation_service import (
    AllocationPlan,
    allocate,
    get_active_lots,
    get_lot,
    get_product,
    plan_fifo,
    plan_from_lot,
    require_positive_quantity,
)
from .concurrency import execute_atomically, lock_for_update
from .cost_service import _recalculate_cost_inner
from .ledger_service import append_ledger_event
from .lifecycle_service import LotStatus, OperationState, sync_lot_status


REFERENCE_TYPES = ("SALE", "CREDIT", "OUTFLOW", "ADJUSTMENT")

# Reference types whose unit price is checked against the product's floor
PRICED_REFERENCE_TYPES = ("SALE", "CREDIT")


def _normalize_reference(reference_type: str, reference_id) -> tuple[str, str]:
    ref_type = (reference_type or "").strip().upper()
    if ref_type not in REFERENCE_TYPES:
        raise ValidationError(f"reference_type must be one of: {', '.join(REFERENCE_TYPES)}")
    ref_id = str(reference_id).strip() if reference_id is not None else ""
    if not ref_id:
        raise ValidationError("reference_id is required")
    if len(ref_id) > 64:
        raise ValidationError("reference_id exceeds max length 64")
    return ref_type, ref_id


def _coerce_unit_price(unit_price_cents) -> int:
    price = coerce_int(unit_price_cents, "unit_price_cents")
    if price < 0 or price > MAX_PRICE_CENTS:
        raise ValidationError(f"unit_price_cents must be between 0 and {MAX_PRICE_CENTS}")
    return price


def _check_unit_price(product: Product, unit_price_cents, reference_type: str) -> int | None:
    if unit_price_cents is None:
        return None
    price = _coerce_unit_price(unit_price_cents)
    if reference_type in PRICED_REFERENCE_TYPES and price < product.min_sale_price_cents:
        raise PriceFloorError(product.id, price, product.min_sale_price_cents)
    return price


def _lock_plan_lots(plan: AllocationPlan) -> dict[int, Lot]:
    """
    Re-read the plan's lots under lock and verify nothing moved since planning.

    Raises:
        ConflictError: a lot's version differs from the plan's snapshot
    """
    if not plan.slices:
        raise ValidationError("Allocation plan has no lots")

    query = db.session.query(Lot).filter(Lot.id.in_(plan.lot_ids)).populate_existing()
    lots = {lot.id: lot for lot in lock_for_update(query).all()}

    for s in plan.slices:
        lot = lots.get(s.lot_id)
        if lot is None:
            raise NotFoundError("Lot", s.lot_id)
        if lot.product_id != plan.product_id:
            raise ValidationError(f"Lot {lot.id} does not belong to product {plan.product_id}")
        if lot.version_id != s.lot_version:
            raise ConflictError(
                f"Lot {lot.lot_number} changed since the allocation was planned "
                f"(version {s.lot_version} -> {lot.version_id})"
            )
        if lot.remaining_quantity < s.quantity:
            raise ConflictError(f"Lot {lot.lot_number} no longer holds {s.quantity} units")
    return lots


def _apply_plan(
    product: Product,
    lots: dict[int, Lot],
    plan: AllocationPlan,
    *,
    reference_type: str,
    reference_id: str,
    reference_line: str | None,
    unit_price_cents: int | None,
    actor: str | None,
    note: str | None,
) -> Consumption:
    """Write a validated plan. No commit."""
    consumption = Consumption(
        product_id=product.id,
        quantity=plan.quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_line=reference_line,
        unit_price_cents=unit_price_cents,
        total_cost_cents=plan.total_cost_cents,
        actor=actor,
        note=note[:255] if note else None,
    )
    db.session.add(consumption)
    db.session.flush()

    for sequence, s in enumerate(plan.slices, start=1):
        lot = lots[s.lot_id]
        before = lot.remaining_quantity
        lot.remaining_quantity = before - s.quantity
        sync_lot_status(lot)

        db.session.add(ConsumptionLine(
            consumption_id=consumption.id,
            lot_id=lot.id,
            sequence=sequence,
            quantity=s.quantity,
            unit_cost_cents=s.unit_cost_cents,
            reversed_quantity=0,
        ))
        db.session.add(StockMovement(
            movement_type="CONSUMPTION",
            product_id=product.id,
            lot_id=lot.id,
            quantity=-s.quantity,
            unit_cost_cents=s.unit_cost_cents,
            lot_remaining_before=before,
            lot_remaining_after=lot.remaining_quantity,
            consumption_id=consumption.id,
            actor=actor,
        ))

    product.stock_quantity -= plan.quantity
    db.session.flush()
    _recalculate_cost_inner(product)

    append_ledger_event(
        event_type="stock.consumed",
        entity_type="consumption",
        entity_id=consumption.id,
        product_id=product.id,
        consumption_id=consumption.id,
        actor=actor,
        note=f"{reference_type} {reference_id}",
        payload={
            "quantity": plan.quantity,
            "total_cost_cents": plan.total_cost_cents,
            "lots": [[s.lot_id, s.quantity, s.unit_cost_cents] for s in plan.slices],
        },
    )
    return consumption


def commit_consumption(
    plan: AllocationPlan,
    *,
    reference_type: str,
    reference_id,
    reference_line: str | None = None,
    unit_price_cents: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> Consumption:
    """
    Atomically apply a plan produced by allocate().

    Raises:
        ConflictError: a planned lot changed since planning (nothing applied)
        PriceFloorError: unit price below the product's minimum sale price
        ValidationError: bad reference or price
    """
    ref_type, ref_id = _normalize_reference(reference_type, reference_id)

    def _work(op) -> Consumption:
        product = get_product(plan.product_id, lock=True)
        price = _check_unit_price(product, unit_price_cents, ref_type)
        lots = _lock_plan_lots(plan)
        op.advance(OperationState.VALIDATING)

        return _apply_plan(
            product, lots, plan,
            reference_type=ref_type,
            reference_id=ref_id,
            reference_line=reference_line,
            unit_price_cents=price,
            actor=actor,
            note=note,
        )

    return execute_atomically("commit_consumption", _work)


def consume(
    product_id: int,
    quantity: int,
    *,
    reference_type: str,
    reference_id,
    reference_line: str | None = None,
    unit_price_cents: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> Consumption:
    """
    Allocate and commit in one call, re-planning when a lot moved underneath.

    A ConflictError from commit means another operation consumed or
    restocked one of the planned lots; the request is planned again against
    the fresh lots. If the fresh lots can no longer cover it, the
    InsufficientStockError from planning is raised.
    """
    attempts = max(1, int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)))
    last_conflict: ConflictError | None = None

    for attempt in range(attempts):
        plan = allocate(product_id, quantity)
        try:
            return commit_consumption(
                plan,
                reference_type=reference_type,
                reference_id=reference_id,
                reference_line=reference_line,
                unit_price_cents=unit_price_cents,
                actor=actor,
                note=note,
            )
        except ConflictError as exc:
            last_conflict = exc
            current_app.logger.warning(
                "Re-planning consumption of product %s (attempt %s/%s): %s",
                product_id, attempt + 1, attempts, exc,
            )

    raise last_conflict


def _normalize_lines(lines) -> list[dict]:
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("lines must be a non-empty list")

    normalized = []
    seen = set()
    for i, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{i}] must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"lines[{i}].product_id is required")
        product_id = coerce_int(raw["product_id"], f"lines[{i}].product_id")
        if raw.get("quantity") is None:
            raise ValidationError(f"lines[{i}].quantity is required")
        quantity = require_positive_quantity(
            coerce_int(raw["quantity"], f"lines[{i}].quantity"), f"lines[{i}].quantity"
        )
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"lines[{i}].quantity cannot exceed {MAX_QUANTITY}")
        lot_id = None
        if raw.get("lot_id") is not None:
            lot_id = coerce_int(raw["lot_id"], f"lines[{i}].lot_id")
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once")
        seen.add(product_id)
        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": raw.get("unit_price_cents"),
            "lot_id": lot_id,
        })
    return normalized


def _plan_line(product: Product, line: dict, *, lock: bool) -> tuple[dict[int, Lot], AllocationPlan]:
    """Plan one normalized line: against its pinned lot, or FIFO across active lots."""
    if line["lot_id"] is not None:
        lot = get_lot(line["lot_id"], lock=lock)
        return {lot.id: lot}, plan_from_lot(product.id, line["quantity"], lot)

    lots = get_active_lots(product.id, lock=lock)
    return {lot.id: lot for lot in lots}, plan_fifo(product.id, line["quantity"], lots)


def _consume_lines_inner(
    op,
    *,
    reference_type: str,
    reference_id: str,
    lines: list[dict],
    actor: str | None = None,
    note: str | None = None,
) -> list[Consumption]:
    """
    Plan and stage every line of one document on the current session. No commit.

    `lines` must come from _normalize_lines and the reference from
    _normalize_reference. Advances op to VALIDATING once every line is planned.
    """
    planned = []
    for line in lines:
        product = get_product(line["product_id"], lock=True)
        price = _check_unit_price(product, line["unit_price_cents"], reference_type)
        lots, plan = _plan_line(product, line, lock=True)
        planned.append((product, lots, plan, price))

    op.advance(OperationState.VALIDATING)

    consumptions = []
    for index, (product, lots, plan, price) in enumerate(planned, start=1):
        consumptions.append(_apply_plan(
            product, lots, plan,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_line=str(index),
            unit_price_cents=price,
            actor=actor,
            note=note,
        ))
    return consumptions


def consume_lines(
    *,
    reference_type: str,
    reference_id,
    lines,
    actor: str | None = None,
    note: str | None = None,
) -> list[Consumption]:
    """
    Consume several products for one document, all-or-nothing.

    Used for sales, credit activation and outflows. Every line is planned
    (and checked against stock and the price floor) before any lot is
    touched; one failing line fails the whole document.

    Each line is a dict: product_id, quantity, optional unit_price_cents and
    optional lot_id. A line with lot_id takes its whole quantity from that
    lot; reversing it later credits the same lot.
    """
    ref_type, ref_id = _normalize_reference(reference_type, reference_id)
    normalized = _normalize_lines(lines)

    def _work(op) -> list[Consumption]:
        return _consume_lines_inner(
            op,
            reference_type=ref_type,
            reference_id=ref_id,
            lines=normalized,
            actor=actor,
            note=note,
        )

    return execute_atomically("consume_lines", _work)


def quote_lines(lines) -> dict:
    """
    Price a quotation without touching stock.

    Plans each line against current lots (or its pinned lot) and reports
    availability, FIFO cost, sale total and margin. Lines that cannot be
    covered report their shortfall instead of failing the quote.
    """
    normalized = _normalize_lines(lines)

    quoted = []
    total_sale = 0
    total_cost = 0
    for line in normalized:
        product = get_product(line["product_id"])
        if line["lot_id"] is not None:
            lot = get_lot(line["lot_id"])
            if lot.product_id != product.id:
                raise ValidationError(f"Lot {lot.id} does not belong to product {product.id}")
            lots = [lot] if lot.status == LotStatus.ACTIVE.value else []
        else:
            lots = get_active_lots(product.id)
        available = sum(lot.remaining_quantity for lot in lots)

        unit_price = line["unit_price_cents"]
        if unit_price is None:
            unit_price = product.sale_price_cents
        unit_price = _coerce_unit_price(unit_price)

        try:
            plan = plan_fifo(product.id, line["quantity"], lots)
            shortfall = 0
        except InsufficientStockError as exc:
            shortfall = exc.shortfall
            plan = plan_fifo(product.id, available, lots) if available > 0 else None

        cost = plan.total_cost_cents if plan is not None else 0
        sale_total = unit_price * line["quantity"]
        total_sale += sale_total
        total_cost += cost

        quoted.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "lot_id": line["lot_id"],
            "quantity": line["quantity"],
            "available": available,
            "shortfall": shortfall,
            "unit_price_cents": unit_price,
            "below_price_floor": unit_price < product.min_sale_price_cents,
            "sale_total_cents": sale_total,
            "cost_cents": cost,
            "margin_cents": sale_total - cost,
            "allocation": plan.to_dict()["slices"] if plan is not None else [],
        })

    return {
        "lines": quoted,
        "total_sale_cents": total_sale,
        "total_cost_cents": total_cost,
        "total_margin_cents": total_sale - total_cost,
        "fulfillable": all(q["shortfall"] == 0 for q in quoted),
    }


def get_consumption(consumption_id: int) -> Consumption:
    consumption = db.session.get(Consumption, consumption_id)
    if consumption is None:
        raise NotFoundError("Consumption", consumption_id)
    return consumption


def list_consumptions(
    *,
    product_id: int | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    limit: int = 200,
) -> list[Consumption]:
    q = db.session.query(Consumption)
    if product_id is not None:
        q = q.filter(Consumption.product_id == product_id)
    if reference_type:
        q = q.filter(Consumption.reference_type == reference_type.upper())
    if reference_id:
        q = q.filter(Consumption.reference_id == reference_id)
    return q.order_by(Consumption.id.desc()).limit(limit).all()
