# Overview: Cost recalculation and aggregate reconciliation for products.

"""
Effective Unit Cost

A product's effective unit cost is the acquisition cost of its oldest lot
that still holds stock, or 0 when no lot does. Only that single lot is read
(ORDER BY received_at, id LIMIT 1), so recalculation stays cheap no matter
how many lots a product has accumulated.

Recalculation runs inside every consumption, reversal, intake and
adjustment. A reversal can re-activate an older lot, which then becomes
the cost source again.

Reconciliation (reconcile_product / reconcile_all) is the heavier repair
path: it recomputes the stock aggregate from every lot and re-syncs lot
statuses, for use after imports or manual database edits.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import LedgerError
from ..extensions import db
from ..models import Lot, Product
from .allocation_service import get_product
from .concurrency import execute_atomically
from .lifecycle_service import LotStatus, lot_status_for, sync_lot_status


def oldest_active_lot(product_id: int) -> Lot | None:
    return (
        db.session.query(Lot)
        .filter(
            Lot.product_id == product_id,
            Lot.status == LotStatus.ACTIVE.value,
            Lot.remaining_quantity > 0,
        )
        .order_by(Lot.received_at.asc(), Lot.id.asc())
        .limit(1)
        .first()
    )


def _recalculate_cost_inner(product: Product) -> int:
    """Set product.unit_cost_cents from its oldest active lot. No commit."""
    lot = oldest_active_lot(product.id)
    new_cost = lot.unit_cost_cents if lot is not None else 0
    if product.unit_cost_cents != new_cost:
        product.unit_cost_cents = new_cost
    return new_cost


def recalculate_cost(product_id: int) -> int:
    """
    Recalculate and persist a product's effective unit cost.

    Returns:
        The new unit cost in cents (0 when no lot holds stock)

    Raises:
        NotFoundError: product does not exist
    """
    def _work(op) -> int:
        product = get_product(product_id, lock=True)
        return _recalculate_cost_inner(product)

    return execute_atomically("recalculate_cost", _work)


def _lot_stock_total(product_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Lot.remaining_quantity), 0))
        .filter(Lot.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def reconcile_product(product_id: int) -> dict:
    """
    Recompute a product's stock aggregate and cost from its lots.

    Also moves any lot whose status disagrees with its remaining quantity
    to the correct status.
    """
    def _work(op) -> dict:
        product = get_product(product_id, lock=True)
        lots = db.session.query(Lot).filter_by(product_id=product_id).all()

        stock_before = product.stock_quantity
        cost_before = product.unit_cost_cents

        fixed_lots = []
        for lot in lots:
            if lot.status != lot_status_for(lot.remaining_quantity).value:
                sync_lot_status(lot)
                fixed_lots.append(lot.id)

        stock_after = sum(lot.remaining_quantity for lot in lots)
        if product.stock_quantity != stock_after:
            product.stock_quantity = stock_after
        cost_after = _recalculate_cost_inner(product)

        return {
            "product_id": product_id,
            "stock_before": stock_before,
            "stock_after": stock_after,
            "cost_before_cents": cost_before,
            "cost_after_cents": cost_after,
            "lot_statuses_fixed": fixed_lots,
            "changed": bool(
                stock_before != stock_after or cost_before != cost_after or fixed_lots
            ),
        }

    return execute_atomically("reconcile_product", _work)


def reconcile_all() -> dict:
    """
    Reconcile every product, one transaction per product.

    A product that fails is logged and counted; the others still run.
    """
    product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    updated = 0
    unchanged = 0
    errors = []
    for product_id in product_ids:
        try:
            result = reconcile_product(product_id)
        except LedgerError as exc:
            current_app.logger.error("Failed to reconcile product %s: %s", product_id, exc)
            errors.append({"product_id": product_id, "error": str(exc)})
            continue
        if result["changed"]:
            updated += 1
        else:
            unchanged += 1

    return {
        "products": len(product_ids),
        "updated": updated,
        "unchanged": unchanged,
        "errors": errors,
    }


def check_invariants(product_id: int | None = None) -> list[dict]:
    """
    Report ledger invariant violations without changing anything.

    Checks:
    - product.stock_quantity == SUM(lot.remaining_quantity)
    - product.unit_cost_cents == cost of oldest active lot (or 0)
    - 0 <= lot.remaining_quantity <= lot.received_quantity
    - lot.status matches remaining quantity
    """
    q = db.session.query(Product).order_by(Product.id)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    violations = []
    for product in q.all():
        lot_total = _lot_stock_total(product.id)
        if product.stock_quantity != lot_total:
            violations.append({
                "product_id": product.id,
                "check": "stock_aggregate",
                "expected": lot_total,
                "actual": product.stock_quantity,
            })

        oldest = oldest_active_lot(product.id)
        expected_cost = oldest.unit_cost_cents if oldest is not None else 0
        if product.unit_cost_cents != expected_cost:
            violations.append({
                "product_id": product.id,
                "check": "unit_cost",
                "expected": expected_cost,
                "actual": product.unit_cost_cents,
            })

        for lot in db.session.query(Lot).filter_by(product_id=product.id).order_by(Lot.id):
            if not 0 <= lot.remaining_quantity <= lot.received_quantity:
                violations.append({
                    "product_id": product.id,
                    "lot_id": lot.id,
                    "check": "lot_bounds",
                    "expected": f"0..{lot.received_quantity}",
                    "actual": lot.remaining_quantity,
                })
            expected_status = lot_status_for(lot.remaining_quantity).value
            if lot.status != expected_status:
                violations.append({
                    "product_id": product.id,
                    "lot_id": lot.id,
                    "check": "lot_status",
                    "expected": expected_status,
                    "actual": lot.status,
                })

    return violations
