from .auth import User, UserCapability
from .customers import Customer
from .inventory import ItemCategory, Supplier, Item, ItemLog, StockAdjustment, Assembly, AssemblyItem
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .registers import CashRegisterSession, CashRegisterSessionAccessRequest, CashRegisterSessionAudit
from .sales import Sale, SaleItem, Warranty
from .money import BankAccount, MoneyTransaction, IncomeExpense

__all__ = [
    'User', 'UserCapability',
    'Customer',
    'ItemCategory', 'Supplier', 'Item', 'ItemLog', 'StockAdjustment', 'Assembly', 'AssemblyItem',
    'PurchaseOrder', 'PurchaseOrderItem',
    'CashRegisterSession', 'CashRegisterSessionAccessRequest', 'CashRegisterSessionAudit',
    'Sale', 'SaleItem', 'Warranty',
    'BankAccount', 'MoneyTransaction', 'IncomeExpense',
]
