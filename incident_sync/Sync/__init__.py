from .connectivity import ConnectivityMonitor
from .events import CallbackList
from .merge import MergedRecord, MergedView, merge_records
from .poller import PendingCountPoller
from .sync_engine import EngineState, RecordOutcome, SyncEngine, SyncPassResult
from .sync_service import SyncService, SyncStatus

__all__ = [
    "ConnectivityMonitor", "CallbackList",
    "MergedRecord", "MergedView", "merge_records",
    "PendingCountPoller",
    "EngineState", "RecordOutcome", "SyncEngine", "SyncPassResult",
    "SyncService", "SyncStatus",
]
