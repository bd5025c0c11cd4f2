# Overview: Till side of Kassa; local journal, sync engine and staff receipt cache.

from .errors import ApiError, NetworkError, StorageError
from .journal import SaleJournal
from .records import CustomerSale, LineItem, SaleDraft, SaleRecord, WalkInSale
from .sync import SyncCoordinator, SyncResult

__all__ = [
    "ApiError",
    "NetworkError",
    "StorageError",
    "SaleJournal",
    "CustomerSale",
    "LineItem",
    "SaleDraft",
    "SaleRecord",
    "WalkInSale",
    "SyncCoordinator",
    "SyncResult",
]
