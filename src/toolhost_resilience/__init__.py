"""
Toolhost Resilience - failure classification, automatic recovery, checkpoints
and offline queueing for hosts that embed third-party web tools.
"""

from .config import RecoveryPreferences, ResilienceConfig, load_resilience_config
from .connectivity import ConnectivityMonitor
from .exceptions import *
from .integrity import DataIntegrityManager
from .models import *
from .notifications import NotificationCenter, Notifier
from .offline import OfflineCapabilities
from .recovery import AutomaticRecovery, RetryLogic, ServiceErrorHandler

try:
    from importlib.metadata import PackageNotFoundError, version as _get_version
    __version__ = _get_version("toolhost-resilience")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = [
    "AutomaticRecovery",
    "ServiceErrorHandler",
    "RetryLogic",
    "DataIntegrityManager",
    "OfflineCapabilities",
    "NotificationCenter",
    "Notifier",
    "ConnectivityMonitor",
    "RecoveryPreferences",
    "ResilienceConfig",
    "load_resilience_config",
]
