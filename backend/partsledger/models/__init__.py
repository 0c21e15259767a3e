from .catalog import Supplier, Product, ProductSupplier
from .inventory import StockIntake, Lot, Consumption, ConsumptionLine, StockMovement
from .documents import Return, ReturnLine, LedgerEvent, DocumentSequence
from .sales import Quotation, QuotationLine, Credit, CreditLine

__all__ = [
    'Supplier', 'Product', 'ProductSupplier',
    'StockIntake', 'Lot', 'Consumption', 'ConsumptionLine', 'StockMovement',
    'Return', 'ReturnLine', 'LedgerEvent', 'DocumentSequence',
    'Quotation', 'QuotationLine', 'Credit', 'CreditLine',
]
