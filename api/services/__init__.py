"""
API services
"""
from .limits import DailyLimitService
from .queue import QueueService
from .status_notifier import StatusNotifier
from .storage import StorageService
from .stylization import StylizationClient

__all__ = [
    "DailyLimitService",
    "QueueService",
    "StatusNotifier",
    "StorageService",
    "StylizationClient",
]
