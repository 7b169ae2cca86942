from .shops import Shop
from .auth import Admin, Cashier, SessionToken
from .inventory import Product, StockHistoryEntry, STOCK_ENTRY_TYPES
from .sales import (
    Transaction,
    TransactionItem,
    TRANSACTION_STATUSES,
    PAYMENT_METHODS,
    WALK_IN_CUSTOMER,
)

__all__ = [
    'Shop',
    'Admin', 'Cashier', 'SessionToken',
    'Product', 'StockHistoryEntry', 'STOCK_ENTRY_TYPES',
    'Transaction', 'TransactionItem',
    'TRANSACTION_STATUSES', 'PAYMENT_METHODS', 'WALK_IN_CUSTOMER',
]
