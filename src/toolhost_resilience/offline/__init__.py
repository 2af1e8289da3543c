"""
Offline mode for the toolhost: local workspace copies and a persistent
queue of operations replayed on reconnect.
"""

from .capabilities import OfflineCapabilities, SyncStatus
from .queue import OperationQueue, OperationStatus, OperationType, PendingOperation

__all__ = [
    "OfflineCapabilities",
    "SyncStatus",
    "OperationQueue",
    "OperationStatus",
    "OperationType",
    "PendingOperation",
]
