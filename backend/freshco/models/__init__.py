from .tenancy import Company, CompanyModule
from .auth import User, UserRole, WarehouseManager, SessionToken
from .catalog import Warehouse, Product, ProductVariant, Supplier, SupplierBankAccount
from .inventory import WarehouseInventory, StockMovement
from .procurement import (
    PurchaseOrder, PurchaseOrderItem, GoodsReceipt, GoodsReceiptItem,
    PurchaseInvoice, PurchaseInvoiceItem, SupplierPayment,
)
from .orders import Order, OrderItem
from .payments import PaymentIntent
from .documents import DocumentSequence

__all__ = [
    'Company', 'CompanyModule',
    'User', 'UserRole', 'WarehouseManager', 'SessionToken',
    'Warehouse', 'Product', 'ProductVariant', 'Supplier', 'SupplierBankAccount',
    'WarehouseInventory', 'StockMovement',
    'PurchaseOrder', 'PurchaseOrderItem', 'GoodsReceipt', 'GoodsReceiptItem',
    'PurchaseInvoice', 'PurchaseInvoiceItem', 'SupplierPayment',
    'Order', 'OrderItem',
    'PaymentIntent',
    'DocumentSequence',
]
