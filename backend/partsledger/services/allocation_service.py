# Overview: FIFO allocator; turns a product + quantity into an ordered lot allocation plan.

"""
FIFO Allocation

Planning is side-effect free. A plan lists, oldest lot first, how many
units to take from each lot and at what unit cost. It also snapshots each
lot's version_id so the commit step can detect that a lot changed between
planning and committing (ConflictError) instead of trusting stale numbers.

ORDERING:
- Lots are consumed by (received_at, id) ascending. Lots received at the
  same instant are therefore taken in creation order, deterministically.

ALL-OR-NOTHING:
- If the product's active lots cannot cover the request, planning raises
  InsufficientStockError with the shortfall. No partial plan is returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Lot, Product
from .concurrency import lock_for_update
from .lifecycle_service import LotStatus


@dataclass(frozen=True)
class AllocationSlice:
    lot_id: int
    lot_number: str
    quantity: int
    unit_cost_cents: int
    lot_version: int
    received_at: datetime | None = None

    @property
    def cost_cents(self) -> int:
        return self.quantity * self.unit_cost_cents

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "lot_number": self.lot_number,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "cost_cents": self.cost_cents,
        }


@dataclass(frozen=True)
class AllocationPlan:
    product_id: int
    requested_quantity: int
    slices: tuple[AllocationSlice, ...] = field(default_factory=tuple)

    @property
    def quantity(self) -> int:
        return sum(s.quantity for s in self.slices)

    @property
    def total_cost_cents(self) -> int:
        return sum(s.cost_cents for s in self.slices)

    @property
    def lot_ids(self) -> list[int]:
        return [s.lot_id for s in self.slices]

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested_quantity": self.requested_quantity,
            "quantity": self.quantity,
            "total_cost_cents": self.total_cost_cents,
            "slices": [s.to_dict() for s in self.slices],
        }


def require_positive_quantity(quantity, field_name: str = "quantity") -> int:
    """Quantities are whole units; bools and floats are rejected."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"{field_name} must be a whole number of units")
    if quantity <= 0:
        raise ValidationError(f"{field_name} must be positive")
    return quantity


def fifo_order(lots: Iterable[Lot]) -> list[Lot]:
    return sorted(lots, key=lambda lot: (lot.received_at, lot.id))


def plan_fifo(product_id: int, quantity: int, lots: Iterable[Lot]) -> AllocationPlan:
    """
    Build a FIFO plan from the given lots (pure function).

    Lots with nothing remaining are skipped; no lot contributes more than
    its remaining quantity.

    Raises:
        ValidationError: quantity not a positive integer
        InsufficientStockError: lots cannot cover the request
    """
    require_positive_quantity(quantity)

    ordered = [lot for lot in fifo_order(lots) if lot.remaining_quantity > 0]
    available = sum(lot.remaining_quantity for lot in ordered)
    if available < quantity:
        raise InsufficientStockError(product_id, quantity, available)

    slices = []
    pending = quantity
    for lot in ordered:
        if pending <= 0:
            break
        take = min(pending, lot.remaining_quantity)
        slices.append(AllocationSlice(
            lot_id=lot.id,
            lot_number=lot.lot_number,
            quantity=take,
            unit_cost_cents=lot.unit_cost_cents,
            lot_version=lot.version_id,
            received_at=lot.received_at,
        ))
        pending -= take

    return AllocationPlan(product_id=product_id, requested_quantity=quantity, slices=tuple(slices))


def plan_from_lot(product_id: int, quantity: int, lot: Lot) -> AllocationPlan:
    """
    One-slice plan for a line pinned to a specific lot (pure function).

    The operator picked the lot, so FIFO order is bypassed, but the lot must
    belong to the product, be ACTIVE and hold the whole quantity.

    Raises:
        ValidationError: quantity invalid, or lot belongs to another product
        InsufficientStockError: the lot cannot cover the request (lot_id set)
    """
    require_positive_quantity(quantity)
    if lot.product_id != product_id:
        raise ValidationError(f"Lot {lot.id} does not belong to product {product_id}")

    available = lot.remaining_quantity if lot.status == LotStatus.ACTIVE.value else 0
    if available < quantity:
        raise InsufficientStockError(product_id, quantity, available, lot_id=lot.id)

    return AllocationPlan(
        product_id=product_id,
        requested_quantity=quantity,
        slices=(AllocationSlice(
            lot_id=lot.id,
            lot_number=lot.lot_number,
            quantity=quantity,
            unit_cost_cents=lot.unit_cost_cents,
            lot_version=lot.version_id,
            received_at=lot.received_at,
        ),),
    )


def get_lot(lot_id: int, *, lock: bool = False) -> Lot:
    query = db.session.query(Lot).filter_by(id=lot_id)
    if lock:
        query = lock_for_update(query)
    lot = query.first()
    if lot is None:
        raise NotFoundError("Lot", lot_id)
    return lot


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def get_active_lots(product_id: int, *, lock: bool = False) -> list[Lot]:
    """Active lots of a product in FIFO order."""
    query = db.session.query(Lot).filter(
        Lot.product_id == product_id,
        Lot.status == LotStatus.ACTIVE.value,
        Lot.remaining_quantity > 0,
    ).order_by(Lot.received_at.asc(), Lot.id.asc())
    if lock:
        query = lock_for_update(query)
    return query.all()


def allocate(product_id: int, quantity: int, *, lot_id: int | None = None) -> AllocationPlan:
    """
    Plan a FIFO allocation against the product's current active lots.

    With lot_id the whole quantity is planned against that one lot instead.
    Read-only: nothing is written and nothing is locked.

    Raises:
        NotFoundError: product or lot does not exist
        ValidationError: quantity not a positive integer
        InsufficientStockError: not enough stock, with the shortfall
    """
    require_positive_quantity(quantity)
    get_product(product_id)
    if lot_id is not None:
        return plan_from_lot(product_id, quantity, get_lot(lot_id))
    return plan_fifo(product_id, quantity, get_active_lots(product_id))
