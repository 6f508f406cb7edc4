"""QuestFlow sync: the outbound queue, its HTTP transport and connectivity tracking."""

from .connectivity import ConnectivityMonitor
from .queue import MAX_ATTEMPTS, SyncQueue
from .transport import HttpTransport

__all__ = ["ConnectivityMonitor", "HttpTransport", "SyncQueue", "MAX_ATTEMPTS"]
