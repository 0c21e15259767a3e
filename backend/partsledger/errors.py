# Overview: Error taxonomy shared by the ledger services and API routes.

"""
Ledger error taxonomy.

Every failure is raised to the caller as one of these. Routes turn them
into JSON bodies via to_dict() and the class-level status_code.

- ValidationError:        bad input (400)
- PriceFloorError:        sale price below the product's floor (400)
- NotFoundError:          referenced product/lot/consumption/return missing (404)
- InsufficientStockError: requested exceeds available (409, recoverable)
- LotOverflowError:       reversal exceeds a lot's received quantity (409, data bug upstream)
- ReversalQuantityError:  reversal exceeds what is still unreversed (409)
- InvalidTransitionError: illegal lifecycle transition (409)
- ConflictError:          concurrent modification detected (409, retryable)
"""

from __future__ import annotations


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        details = self.details()
        if details:
            body["details"] = details
        return body


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""
    code = "validation_error"


class PriceFloorError(ValidationError):
    code = "price_below_floor"

    def __init__(self, product_id: int, unit_price_cents: int, min_sale_price_cents: int):
        super().__init__(
            f"Sale price {unit_price_cents} is below the minimum "
            f"{min_sale_price_cents} for product {product_id}"
        )
        self.product_id = product_id
        self.unit_price_cents = unit_price_cents
        self.min_sale_price_cents = min_sale_price_cents

    def details(self) -> dict:
        return {
            "product_id": self.product_id,
            "unit_price_cents": self.unit_price_cents,
            "min_sale_price_cents": self.min_sale_price_cents,
        }


class NotFoundError(LedgerError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id

    def details(self) -> dict:
        return {"entity": self.entity, "id": self.entity_id}


class InsufficientStockError(LedgerError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int, *, lot_id: int | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        self.lot_id = lot_id
        where = f"lot {lot_id} of product {product_id}" if lot_id is not None else f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {where}: requested {requested}, "
            f"available {available}, short {self.shortfall}"
        )

    def details(self) -> dict:
        body = {
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
            "shortfall": self.shortfall,
        }
        if self.lot_id is not None:
            body["lot_id"] = self.lot_id
        return body


class LotOverflowError(LedgerError):
    status_code = 409
    code = "lot_overflow"

    def __init__(self, lot_id: int, capacity: int, remaining: int, requested: int):
        self.lot_id = lot_id
        self.capacity = capacity
        self.remaining = remaining
        self.requested = requested
        super().__init__(
            f"Reversing {requested} units into lot {lot_id} would exceed its received "
            f"quantity {capacity} (remaining {remaining}, room {capacity - remaining})"
        )

    def details(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "capacity": self.capacity,
            "remaining": self.remaining,
            "requested": self.requested,
        }


class ReversalQuantityError(LedgerError):
    status_code = 409
    code = "reversal_quantity"

    def __init__(self, consumption_id: int, requested: int, reversible: int):
        self.consumption_id = consumption_id
        self.requested = requested
        self.reversible = reversible
        super().__init__(
            f"Cannot reverse {requested} units of consumption {consumption_id}: "
            f"only {reversible} left unreversed"
        )

    def details(self) -> dict:
        return {
            "consumption_id": self.consumption_id,
            "requested": self.requested,
            "reversible": self.reversible,
        }


class InvalidTransitionError(LedgerError):
    status_code = 409
    code = "invalid_transition"


class ConflictError(LedgerError):
    status_code = 409
    code = "conflict"
