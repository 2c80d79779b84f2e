from .staff import Staff, CommissionOverride, CommissionPayment, SecurityEvent
from .inventory import Supplier, Product, StockMovement
from .sales import Sale, SaleLineItem, PartExchangeItem, ConsignmentSettlement, SaleAuditEvent
from .cash import Location, CashDrawerMovement
from .settings import StoreSetting

__all__ = [
    'Staff', 'CommissionOverride', 'CommissionPayment', 'SecurityEvent',
    'Supplier', 'Product', 'StockMovement',
    'Sale', 'SaleLineItem', 'PartExchangeItem', 'ConsignmentSettlement', 'SaleAuditEvent',
    'Location', 'CashDrawerMovement',
    'StoreSetting',
]
