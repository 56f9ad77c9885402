from .reference import Warehouse, Location, Product, Batch, ProductPresentation
from .inventory import InventoryBalance, StockMovement
from .requests import MovementRequest, MovementRequestItem
from .returns import StockReturn, StockReturnItem
from .audit import AuditEvent, DocumentSequence

__all__ = [
    'Warehouse', 'Location', 'Product', 'Batch', 'ProductPresentation',
    'InventoryBalance', 'StockMovement',
    'MovementRequest', 'MovementRequestItem',
    'StockReturn', 'StockReturnItem',
    'AuditEvent', 'DocumentSequence',
]
