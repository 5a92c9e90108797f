"""Remote backend access: row-level store client and connectivity gate."""

from .client import RemoteStore
from .connectivity import ConnectivityMonitor

__all__ = ["ConnectivityMonitor", "RemoteStore"]
