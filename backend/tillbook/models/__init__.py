from .tenancy import Tenant, TenantSettings
from .auth import User, SessionToken, LoginAttempt
from .catalog import Product, Customer
from .invoicing import Invoice, InvoiceItem
from .inventory import StockMovement
from .audit import AuditLogEntry, SystemLogEntry
from .notifications import Notification
from .connectors import TenantConnector

__all__ = [
    'Tenant', 'TenantSettings',
    'User', 'SessionToken', 'LoginAttempt',
    'Product', 'Customer',
    'Invoice', 'InvoiceItem',
    'StockMovement',
    'AuditLogEntry', 'SystemLogEntry',
    'Notification',
    'TenantConnector',
]
