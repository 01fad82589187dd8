# app/models/__init__.py
from .department import Department
from .user import User
from .drug import Drug
from .stock import Stock, StockTransaction, TransactionType
from .transfer import Transfer, TransferItem, TransferStatus, NumberSeries

__all__ = [
    "Department",
    "User",
    "Drug",
    "Stock",
    "StockTransaction",
    "TransactionType",
    "Transfer",
    "TransferItem",
    "TransferStatus",
    "NumberSeries",
]
