from .inventory import Product, InventoryLog
from .customers import Customer
from .sales import Sale, SaleLine, Refund, RefundLine
from .expenses import Expense, ExpenseLine
from .auth import User, SessionToken
from .audit import AuditLog

__all__ = [
    'Product', 'InventoryLog',
    'Customer',
    'Sale', 'SaleLine', 'Refund', 'RefundLine',
    'Expense', 'ExpenseLine',
    'User', 'SessionToken',
    'AuditLog',
]
