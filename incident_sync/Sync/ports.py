# ports.py
# Description: Interfaces the sync engine depends on, so tests can swap in fakes.
#
# Imports
from typing import Any, Callable, Dict, List, Optional, Protocol
#
# Local Imports
from ..DB.Records_DB import LocalRecord
from ..reports_api.schemas import CreateRecordResponse, RecordListPage
#
########################################################################################################################
#
# Functions:

class DurableStorePort(Protocol):
    """Local keyed store with query-by-flag and update-by-key. Implemented by `LocalRecordStore`."""

    async def add(self, kind: str, payload: Dict[str, Any], captured_at: Optional[int] = None) -> int: ...

    async def get(self, local_key: int) -> Optional[LocalRecord]: ...

    async def list_pending(self, kind: Optional[str] = None, include_flagged: bool = True) -> List[LocalRecord]: ...

    async def count_pending(self, kind: Optional[str] = None, include_flagged: bool = True) -> int: ...

    async def list_all(self, kind: Optional[str] = None) -> List[LocalRecord]: ...

    async def mark_synced(self, local_key: int, remote_id: str) -> bool: ...

    async def record_failure(self, local_key: int, error: str, permanent: bool = False) -> bool: ...

    async def requeue(self, local_key: int) -> bool: ...

    async def delete(self, local_key: int) -> bool: ...


class ConnectivityPort(Protocol):
    """Platform online/offline signal. Implemented by `ConnectivityMonitor`."""

    @property
    def is_online(self) -> bool: ...

    def subscribe(self, callback: Callable[[bool], Any]) -> Callable[[], None]: ...


class RemoteRecordsPort(Protocol):
    """Remote API collaborator. Implemented by `CitizenAPIClient`."""

    async def create_record(self, kind: str, body: Dict[str, Any], idempotency_key: Optional[str] = None,
                            timeout: Optional[float] = None) -> CreateRecordResponse: ...

    async def list_records(self, kind: str, page: int = 1, page_size: int = 20) -> RecordListPage: ...

    async def update_record(self, kind: str, server_id: str, partial: Dict[str, Any]) -> Dict[str, Any]: ...

    async def delete_record(self, kind: str, server_id: str) -> None: ...

#
# End of ports.py
########################################################################################################################
