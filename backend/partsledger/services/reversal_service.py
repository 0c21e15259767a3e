# Overview: Credits consumed units back to the exact lots they were taken from.

"""
Reversal

A reversal reads the allocation record (Consumption + lines) and puts the
units back into the same lots, at the cost recorded on the line. It never
picks a different lot and never clamps.

PARTIAL REVERSALS:
- Units are credited to the newest slice of the allocation first (highest
  sequence), so the oldest lot is the last to be refilled.
- ConsumptionLine.reversed_quantity tracks what each slice already got
  back; asking for more than the unreversed remainder raises
  ReversalQuantityError.

OVERFLOW:
- If crediting a lot would push remaining_quantity above the quantity the
  lot was received with, LotOverflowError is raised and nothing is applied.
  The excess is never spilled into another lot.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import LotOverflowError, NotFoundError, ReversalQuantityError
from ..extensions import db
from ..models import Consumption, ConsumptionLine, Lot, StockMovement
from .allocation_service import get_product, require_positive_quantity
from .concurrency import execute_atomically, lock_for_update
from .cost_service import _recalculate_cost_inner
from .ledger_service import append_ledger_event
from .lifecycle_service import OperationState, sync_lot_status


@dataclass(frozen=True)
class ReversedSlice:
    lot_id: int
    quantity: int
    unit_cost_cents: int

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
        }


@dataclass(frozen=True)
class ReversalResult:
    consumption_id: int
    product_id: int
    quantity: int
    return_id: int | None = None
    slices: tuple[ReversedSlice, ...] = field(default_factory=tuple)

    @property
    def cost_cents(self) -> int:
        return sum(s.quantity * s.unit_cost_cents for s in self.slices)

    def to_dict(self) -> dict:
        return {
            "consumption_id": self.consumption_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "return_id": self.return_id,
            "cost_cents": self.cost_cents,
            "slices": [s.to_dict() for s in self.slices],
        }


def _load_consumption(consumption_id: int) -> Consumption:
    consumption = db.session.get(Consumption, consumption_id)
    if consumption is None:
        raise NotFoundError("Consumption", consumption_id)
    return consumption


def _distribute(lines: list[ConsumptionLine], quantity: int) -> list[tuple[ConsumptionLine, int]]:
    """Split quantity across lines, newest slice first."""
    parts = []
    pending = quantity
    for line in sorted(lines, key=lambda ln: ln.sequence, reverse=True):
        if pending <= 0:
            break
        open_qty = line.quantity - line.reversed_quantity
        if open_qty <= 0:
            continue
        take = min(pending, open_qty)
        parts.append((line, take))
        pending -= take
    return parts


def _reverse_inner(
    consumption: Consumption,
    quantity: int | None,
    *,
    return_id: int | None = None,
    actor: str | None = None,
    note: str | None = None,
    op=None,
) -> ReversalResult:
    """
    Validate and stage a reversal on the current session. No commit.

    Every lot is checked for overflow before any of them is credited. When
    the caller passes its operation, it moves to VALIDATING once those
    checks pass.
    """
    lines = lock_for_update(
        db.session.query(ConsumptionLine).filter_by(consumption_id=consumption.id)
    ).all()
    reversible = sum(line.quantity - line.reversed_quantity for line in lines)

    if quantity is None:
        quantity = reversible
        if quantity <= 0:
            raise ReversalQuantityError(consumption.id, consumption.quantity, 0)
    else:
        require_positive_quantity(quantity)
        if quantity > reversible:
            raise ReversalQuantityError(consumption.id, quantity, reversible)

    product = get_product(consumption.product_id, lock=True)
    parts = _distribute(lines, quantity)

    lot_ids = [line.lot_id for line, _ in parts]
    lots = {
        lot.id: lot
        for lot in lock_for_update(db.session.query(Lot).filter(Lot.id.in_(lot_ids))).all()
    }

    for line, take in parts:
        lot = lots.get(line.lot_id)
        if lot is None:
            raise NotFoundError("Lot", line.lot_id)
        if lot.remaining_quantity + take > lot.received_quantity:
            raise LotOverflowError(lot.id, lot.received_quantity, lot.remaining_quantity, take)

    if op is not None:
        op.advance(OperationState.VALIDATING)

    slices = []
    for line, take in parts:
        lot = lots[line.lot_id]
        before = lot.remaining_quantity
        lot.remaining_quantity = before + take
        sync_lot_status(lot)
        line.reversed_quantity += take

        db.session.add(StockMovement(
            movement_type="REVERSAL",
            product_id=product.id,
            lot_id=lot.id,
            quantity=take,
            unit_cost_cents=line.unit_cost_cents,
            lot_remaining_before=before,
            lot_remaining_after=lot.remaining_quantity,
            consumption_id=consumption.id,
            return_id=return_id,
            actor=actor,
        ))
        slices.append(ReversedSlice(lot_id=lot.id, quantity=take, unit_cost_cents=line.unit_cost_cents))

    product.stock_quantity += quantity
    db.session.flush()
    _recalculate_cost_inner(product)

    result = ReversalResult(
        consumption_id=consumption.id,
        product_id=product.id,
        quantity=quantity,
        return_id=return_id,
        slices=tuple(slices),
    )

    append_ledger_event(
        event_type="stock.reversed",
        entity_type="consumption",
        entity_id=consumption.id,
        product_id=product.id,
        consumption_id=consumption.id,
        return_id=return_id,
        actor=actor,
        note=note,
        payload={
            "quantity": quantity,
            "cost_cents": result.cost_cents,
            "lots": [[s.lot_id, s.quantity, s.unit_cost_cents] for s in slices],
        },
    )
    return result


def reverse_consumption(
    consumption_id: int,
    quantity: int | None = None,
    *,
    return_id: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> ReversalResult:
    """
    Reverse all (quantity=None) or part of a consumption, atomically.

    Raises:
        NotFoundError: consumption does not exist
        ReversalQuantityError: more than the unreversed quantity requested
        LotOverflowError: a lot would exceed its received quantity
    """
    def _work(op) -> ReversalResult:
        consumption = _load_consumption(consumption_id)
        return _reverse_inner(consumption, quantity, return_id=return_id, actor=actor, note=note, op=op)

    return execute_atomically("reverse_consumption", _work)
