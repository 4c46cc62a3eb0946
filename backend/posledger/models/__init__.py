from .tenancy import Organization, Store
from .catalog import Product, Customer
from .inventory import StockLevel, StockMovement, STOCK_STATUSES, MOVEMENT_KINDS
from .sales import (
    Sale,
    SaleLine,
    Payment,
    SALE_STATUSES,
    PAYMENT_STATUSES,
    SALE_PAYMENT_METHODS,
    ADDITIONAL_PAYMENT_METHODS,
    SALE_SOURCES,
)
from .refunds import Refund, RefundLine
from .documents import DocumentSequence
from .audit import AuditLog, Notification

__all__ = [
    'Organization', 'Store',
    'Product', 'Customer',
    'StockLevel', 'StockMovement', 'STOCK_STATUSES', 'MOVEMENT_KINDS',
    'Sale', 'SaleLine', 'Payment',
    'SALE_STATUSES', 'PAYMENT_STATUSES', 'SALE_PAYMENT_METHODS',
    'ADDITIONAL_PAYMENT_METHODS', 'SALE_SOURCES',
    'Refund', 'RefundLine',
    'DocumentSequence',
    'AuditLog', 'Notification',
]
