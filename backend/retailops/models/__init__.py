from .catalog import Branch, Product
from .sales import Sale, SaleItem, SaleCoupon, ReceiptSequence, SaleStatus
from .returns import Return, ReturnStatus, ReturnGroupStatus, ACTIVE_RETURN_STATUSES

__all__ = [
    'Branch', 'Product',
    'Sale', 'SaleItem', 'SaleCoupon', 'ReceiptSequence', 'SaleStatus',
    'Return', 'ReturnStatus', 'ReturnGroupStatus', 'ACTIVE_RETURN_STATUSES',
]
