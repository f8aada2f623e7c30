"""
catalog-sync: reconciliation controller for Helm chart catalog repositories.

Keeps a chunked, compressed snapshot of each repository's chart index in
sync with its declarative descriptor, from git or plain HTTP sources.
"""

from .config import SyncConfig, SyncConfigManager
from .lifecycle import CatalogSyncLifecycleManager

__version__ = "0.4.0"

__all__ = ["SyncConfig", "SyncConfigManager", "CatalogSyncLifecycleManager"]
