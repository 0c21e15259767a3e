from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Supplier(db.Model):
    """
    Supplier of motorcycle parts.

    Every stock intake comes from exactly one supplier; per-product
    purchase statistics (ProductSupplier) hang off it.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_suppliers_code"),
        db.Index("ix_suppliers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True)  # Optional short code for quick lookup

    # Contact information
    contact_name = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Product(db.Model):
    """
    Product master data plus its materialized stock aggregate.

    AGGREGATE FIELDS (ledger-owned, never written by CRUD code):
    - stock_quantity:  SUM(lots.remaining_quantity) for this product
    - unit_cost_cents: cost of the oldest lot still holding stock, 0 if none

    Both are updated in the same transaction as the lot changes that move
    them. version_id makes concurrent writers collide at flush time instead
    of silently overwriting each other.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Ledger-derived aggregates
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    # Pricing (authoritative storage in cents)
    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)
    min_sale_price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Low-stock report threshold
    reorder_threshold = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "brand": self.brand,
            "description": self.description,
            "stock_quantity": self.stock_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "sale_price_cents": self.sale_price_cents,
            "min_sale_price_cents": self.min_sale_price_cents,
            "reorder_threshold": self.reorder_threshold,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductSupplier(db.Model):
    """
    Purchase statistics for a product from one supplier.

    Updated by every stock intake: last intake time, average unit cost of
    the latest intake and cumulative received quantity.
    """
    __tablename__ = "product_suppliers"
    __table_args__ = (
        db.UniqueConstraint("product_id", "supplier_id", name="uq_product_suppliers_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    last_intake_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_unit_cost_cents = db.Column(db.Integer, nullable=True)
    total_quantity_received = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", backref=db.backref("supplier_stats", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("product_stats", lazy=True))

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "last_intake_at": to_utc_z(self.last_intake_at),
            "last_unit_cost_cents": self.last_unit_cost_cents,
            "total_quantity_received": self.total_quantity_received,
        }
