from .tenancy import Store
from .auth import User, Role, UserRole, SessionToken
from .inventory import Category, Product, InventoryRecord
from .assembly import AssemblyOffer, BillOfMaterial
from .customers import Customer
from .sales import SalesOrder, SalesItem
from .documents import DocumentSequence
from .ledger import RevenueEntry, AuditLog

__all__ = [
    'Store',
    'User', 'Role', 'UserRole', 'SessionToken',
    'Category', 'Product', 'InventoryRecord',
    'AssemblyOffer', 'BillOfMaterial',
    'Customer',
    'SalesOrder', 'SalesItem',
    'DocumentSequence',
    'RevenueEntry', 'AuditLog',
]
