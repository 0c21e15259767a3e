# backend/partsledger/services/products_service.py
"""
Catalog Service

Suppliers and products, just enough to operate the ledger.

AGGREGATES: stock_quantity and unit_cost_cents are ledger-owned. They are
never in the writable field sets below; only intakes, consumptions,
reversals and adjustments move them.
"""
from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Lot, Product, Supplier
from ..services.ledger_service import append_ledger_event
from .concurrency import execute_atomically
from .lifecycle_service import LotStatus, OperationState

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "name",
    "brand",
    "description",
    "sale_price_cents",
    "min_sale_price_cents",
    "reorder_threshold",
    "is_active",
}

SUPPLIER_MUTABLE_FIELDS = {
    "name",
    "code",
    "contact_name",
    "contact_phone",
    "contact_email",
    "address",
    "is_active",
}


def apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k not in allowed:
            continue
        setattr(obj, k, v)


# =============================================================================
# SUPPLIERS
# =============================================================================

def _flush_unique(message: str) -> None:
    """Flush pending catalog writes; a unique-key race surfaces as ConflictError."""
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError(message) from exc


def create_supplier(*, patch: dict, actor: str | None = None) -> Supplier:
    """
    Create a supplier from a validated patch dict.

    Raises:
        ConflictError: supplier code already in use
    """
    code = patch.get("code")

    def _work(op) -> Supplier:
        if code:
            existing = db.session.query(Supplier).filter(Supplier.code == code).first()
            if existing:
                raise ConflictError(f"Supplier code {code} already exists")
        op.advance(OperationState.VALIDATING)

        supplier = Supplier()
        apply_patch(supplier, patch, SUPPLIER_MUTABLE_FIELDS)
        db.session.add(supplier)
        _flush_unique(f"Supplier code {code} already exists")

        append_ledger_event(
            event_type="supplier.created",
            entity_type="supplier",
            entity_id=supplier.id,
            actor=actor,
            note=f"Created supplier {supplier.name}",
        )
        return supplier

    return execute_atomically("create_supplier", _work)


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError("Supplier", supplier_id)
    return supplier


def list_suppliers(*, include_inactive: bool = False) -> list[Supplier]:
    q = db.session.query(Supplier)
    if not include_inactive:
        q = q.filter(Supplier.is_active.is_(True))
    return q.order_by(Supplier.name.asc(), Supplier.id.asc()).all()


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional search and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(
            or_(Product.sku.ilike(like), Product.name.ilike(like), Product.brand.ilike(like))
        )
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _require_unique_sku(sku: str, *, exclude_id: int | None = None) -> None:
    q = db.session.query(Product).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first():
        raise ConflictError(f"SKU {sku} already exists")


def create_product(*, patch: dict, actor: str | None = None) -> Product:
    """
    Create product using a validated patch dict.

    New products start with no lots: stock 0, effective cost 0.

    Raises:
        ConflictError: If SKU already exists
    """
    sku = patch.get("sku")
    if not sku:
        raise ValidationError("sku is required")

    def _work(op) -> Product:
        _require_unique_sku(sku)
        op.advance(OperationState.VALIDATING)

        p = Product(stock_quantity=0, unit_cost_cents=0)
        apply_patch(p, patch, PRODUCT_MUTABLE_FIELDS)

        db.session.add(p)
        _flush_unique(f"SKU {sku} already exists")  # ensure p.id exists before ledger append

        append_ledger_event(
            event_type="product.created",
            entity_type="product",
            entity_id=p.id,
            product_id=p.id,
            actor=actor,
            note=f"Created product sku={p.sku} name={p.name}",
        )
        return p

    return execute_atomically("create_product", _work)


def update_product(*, product_id: int, patch: dict, actor: str | None = None) -> Product:
    """
    Update catalog fields of a product (never its stock or cost).

    A concurrent ledger operation bumps the product's version; the update is
    then retried against the fresh row or fails with ConflictError.

    Raises:
        NotFoundError: product missing
        ConflictError: new SKU already exists, or the row kept changing
        ValidationError: sale price would fall below the price floor
    """
    def _work(op) -> Product:
        p = get_product_or_404(product_id)

        if "sku" in patch and patch["sku"] != p.sku:
            _require_unique_sku(patch["sku"], exclude_id=p.id)

        apply_patch(p, patch, PRODUCT_MUTABLE_FIELDS)
        if p.sale_price_cents < p.min_sale_price_cents:
            raise ValidationError("sale_price_cents cannot be below min_sale_price_cents")
        op.advance(OperationState.VALIDATING)

        _flush_unique(f"SKU {p.sku} already exists")
        append_ledger_event(
            event_type="product.updated",
            entity_type="product",
            entity_id=p.id,
            product_id=p.id,
            actor=actor,
            note=f"Updated fields: {', '.join(sorted(patch.keys()))}",
        )
        return p

    return execute_atomically("update_product", _work)


def get_product_or_404(product_id: int) -> Product:
    p = db.session.get(Product, product_id)
    if p is None:
        raise NotFoundError("Product", product_id)
    return p


def list_lots(product_id: int, *, include_exhausted: bool = False) -> list[Lot]:
    """Lots of a product in FIFO order (oldest first)."""
    get_product_or_404(product_id)
    q = db.session.query(Lot).filter(Lot.product_id == product_id)
    if not include_exhausted:
        q = q.filter(Lot.status == LotStatus.ACTIVE.value)
    return q.order_by(Lot.received_at.asc(), Lot.id.asc()).all()


def get_product_summary(product_id: int) -> dict:
    """
    Product with its stock picture.

    Returns:
        - product: Product details
        - active_lots: Lots still holding stock, FIFO order
        - suppliers: Per-supplier purchase statistics
        - margin_cents / margin_pct: sale price vs effective unit cost
    """
    p = get_product_or_404(product_id)
    lots = list_lots(product_id)

    margin = p.sale_price_cents - p.unit_cost_cents
    margin_pct = round(margin * 100 / p.sale_price_cents, 2) if p.sale_price_cents else None

    return {
        "product": p.to_dict(),
        "active_lots": [lot.to_dict() for lot in lots],
        "suppliers": [s.to_dict() for s in p.supplier_stats],
        "stock_value_cents": sum(lot.remaining_quantity * lot.unit_cost_cents for lot in lots),
        "margin_cents": margin,
        "margin_pct": margin_pct,
    }


def list_low_stock() -> list[dict]:
    """Active products at or below their reorder threshold, largest deficit first."""
    products = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.reorder_threshold,
        )
        .all()
    )
    rows = [
        {
            "product_id": p.id,
            "sku": p.sku,
            "name": p.name,
            "stock_quantity": p.stock_quantity,
            "reorder_threshold": p.reorder_threshold,
            "deficit": p.reorder_threshold - p.stock_quantity,
        }
        for p in products
    ]
    rows.sort(key=lambda r: (-r["deficit"], r["sku"]))
    return rows
