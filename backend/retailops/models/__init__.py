from .tenancy import Store
from .auth import User, SessionToken
from .catalog import Product, product_stores
from .inventory import StockLedgerEntry, StockMovement, ImmutableRecordError
from .orders import (
    OrderTimelineEntry,
    CustomerOrder,
    CustomerOrderLine,
    ManagerOrder,
    ManagerOrderLine,
)
from .sales import Sale, SaleLine
from .documents import OrderSequence

__all__ = [
    'Store',
    'User', 'SessionToken',
    'Product', 'product_stores',
    'StockLedgerEntry', 'StockMovement', 'ImmutableRecordError',
    'OrderTimelineEntry', 'CustomerOrder', 'CustomerOrderLine', 'ManagerOrder', 'ManagerOrderLine',
    'Sale', 'SaleLine',
    'OrderSequence',
]
