# merge.py
# Description: Builds the unified list shown to the user from local records and a server page.
#
# Imports
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
#
# Local Imports
from ..DB.Records_DB import LocalRecord, SyncState
from ..reports_api.schemas import RecordListPage
from ..reports_api.utils import extract_record_id
#
########################################################################################################################
#
# Functions:

SOURCE_LOCAL = "local"
SOURCE_SERVER = "server"


@dataclass
class MergedRecord:
    source: str
    data: Dict[str, Any]
    sync_state: SyncState
    local_key: Optional[int] = None
    remote_id: Optional[str] = None
    captured_at: Optional[int] = None
    needs_review: bool = False
    last_error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.sync_state == SyncState.PENDING

    @classmethod
    def from_local(cls, record: LocalRecord) -> "MergedRecord":
        data = dict(record.payload)
        data.setdefault("timestamp", record.captured_at)
        if record.remote_id:
            data.setdefault("_id", record.remote_id)
        return cls(
            source=SOURCE_LOCAL,
            data=data,
            sync_state=record.sync_state,
            local_key=record.local_key,
            remote_id=record.remote_id,
            captured_at=record.captured_at,
            needs_review=record.needs_review,
            last_error=record.last_error,
        )

    @classmethod
    def from_server(cls, item: Dict[str, Any]) -> "MergedRecord":
        timestamp = item.get("timestamp")
        return cls(
            source=SOURCE_SERVER,
            data=dict(item),
            sync_state=SyncState.SYNCED,
            remote_id=extract_record_id(item),
            captured_at=timestamp if isinstance(timestamp, int) else None,
        )


@dataclass
class MergedView:
    items: List[MergedRecord] = field(default_factory=list)
    total_count: int = 0
    server_total: int = 0
    page: int = 1
    pages: int = 1
    local_only_count: int = 0
    server_available: bool = True


def merge_records(local_records: Iterable[LocalRecord], server_page: Optional[RecordListPage]) -> MergedView:
    """
    Merges local records with one page of server records.

    - Local PENDING records come first, newest capture first. They are shown on every page,
      since they are not yet part of the server's pagination.
    - A server item whose id equals a local `remote_id`, or whose `idempotencyKey` equals a
      local record's key, is the same record: a SYNCED local record takes its place in the
      page, and a PENDING one keeps its slot at the top, so the item is never shown twice.
    - `total_count` is the server total plus the pending records not found in this page.

    A `server_page` of None produces a local-only view (server unreachable), listing every
    local record, newest first.
    """
    local_records = list(local_records)

    if server_page is None:
        ordered = sorted(local_records, key=lambda r: (r.captured_at, r.local_key), reverse=True)
        pending_count = sum(1 for r in ordered if not r.is_synced)
        return MergedView(
            items=[MergedRecord.from_local(r) for r in ordered],
            total_count=len(ordered),
            server_total=0,
            page=1,
            pages=1,
            local_only_count=pending_count,
            server_available=False,
        )

    by_remote_id = {r.remote_id: r for r in local_records if r.remote_id}
    by_idempotency_key = {r.idempotency_key: r for r in local_records if r.idempotency_key}

    pending = sorted(
        (r for r in local_records if not r.is_synced),
        key=lambda r: (r.captured_at, r.local_key),
        reverse=True,
    )

    matched_pending_keys = set()
    emitted_synced_keys = set()
    server_items: List[MergedRecord] = []
    for item in server_page.items:
        local = None
        server_id = extract_record_id(item)
        if server_id is not None:
            local = by_remote_id.get(server_id)
        if local is None and item.get("idempotencyKey"):
            local = by_idempotency_key.get(str(item["idempotencyKey"]))

        if local is None:
            server_items.append(MergedRecord.from_server(item))
        elif local.is_synced:
            # Two server items can resolve to one local record (by id and by echoed key)
            if local.local_key not in emitted_synced_keys:
                emitted_synced_keys.add(local.local_key)
                server_items.append(MergedRecord.from_local(local))
        else:
            matched_pending_keys.add(local.local_key)

    local_only = len(pending) - len(matched_pending_keys)
    return MergedView(
        items=[MergedRecord.from_local(r) for r in pending] + server_items,
        total_count=server_page.total + local_only,
        server_total=server_page.total,
        page=server_page.page,
        pages=server_page.pages,
        local_only_count=local_only,
    )

#
# End of merge.py
########################################################################################################################
