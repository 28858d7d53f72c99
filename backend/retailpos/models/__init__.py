from .inventory import Item, Location, LocationStock, InventoryTransfer
from .customers import Customer
from .sales import Sale, SaleLineItem, Payment
from .documents import DocumentSequence

__all__ = [
    "Item",
    "Location",
    "LocationStock",
    "InventoryTransfer",
    "Customer",
    "Sale",
    "SaleLineItem",
    "Payment",
    "DocumentSequence",
]
