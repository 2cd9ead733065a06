# sync_service.py
# Description: Wires the store, connectivity monitor, engine and poller into one reactive status bundle.
#
# Imports
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from ..Constants import (
    DEFAULT_PAGE_SIZE, DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_SUBMIT_TIMEOUT_SECONDS, DEFAULT_API_TIMEOUT_SECONDS,
    KIND_PERSON, KIND_REPORT, STATUS_OFFLINE, STATUS_ONLINE, STATUS_SYNCING,
)
from ..DB.local_store import LocalRecordStore
from ..reports_api.client import CitizenAPIClient
from ..reports_api.exceptions import CitizenAPIError
from ..reports_api.schemas import PersonPayload, ReportPayload
from ..reports_api.utils import encode_evidence_file
from .connectivity import ConnectivityMonitor
from .events import CallbackList
from .merge import MergedView, merge_records
from .poller import PendingCountPoller
from .ports import ConnectivityPort, DurableStorePort, RemoteRecordsPort
from .sync_engine import EngineState, SyncEngine, SyncPassResult
#
########################################################################################################################
#
# Functions:

@dataclass(frozen=True)
class SyncStatus:
    is_online: bool
    pending_count: int
    is_syncing: bool

    @property
    def label(self) -> str:
        if self.is_syncing:
            return STATUS_SYNCING
        return STATUS_ONLINE if self.is_online else STATUS_OFFLINE


class SyncService:
    """
    The surface the UI talks to.

    Status (`is_online`, `pending_count`, `is_syncing`) is republished to subscribers whenever any
    part of it changes. With `auto_sync` on, a pass is triggered when the device comes back online
    and on every poll tick that sees pending work while online and idle.
    """

    def __init__(
        self,
        store: DurableStorePort,
        api: RemoteRecordsPort,
        connectivity: ConnectivityPort,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        submit_timeout: float = DEFAULT_SUBMIT_TIMEOUT_SECONDS,
        auto_sync: bool = True,
        engine: Optional[SyncEngine] = None,
    ):
        self.store = store
        self.api = api
        self.connectivity = connectivity
        self.auto_sync = auto_sync
        self.engine = engine or SyncEngine(store, api, connectivity, submit_timeout=submit_timeout)
        self.poller = PendingCountPoller(store, poll_interval)
        self._pending_count = 0
        self._subscribers = CallbackList("sync-status")
        self._last_published: Optional[SyncStatus] = None
        self._sync_tasks: Set[asyncio.Task] = set()
        self._unsubscribers = []
        self._started = False

    @classmethod
    async def from_config(cls, connectivity: Optional[ConnectivityMonitor] = None) -> "SyncService":
        """Builds a service from the user's config file (database path, API settings, sync options)."""
        from .. import config

        store = await LocalRecordStore.open(config.get_records_db_path(), config.get_or_create_device_id())
        token = config.get_cli_setting("api", "token", "") or None
        api = CitizenAPIClient(
            base_url=config.get_cli_setting("api", "base_url", "http://localhost:3000"),
            token=token,
            timeout=float(config.get_cli_setting("api", "timeout_seconds", DEFAULT_API_TIMEOUT_SECONDS)),
        )
        if connectivity is None:
            connectivity = ConnectivityMonitor(
                initially_online=bool(config.get_cli_setting("sync", "start_online", True)))
        return cls(
            store,
            api,
            connectivity,
            poll_interval=float(config.get_cli_setting("sync", "poll_interval_seconds",
                                                       DEFAULT_POLL_INTERVAL_SECONDS)),
            submit_timeout=float(config.get_cli_setting("sync", "submit_timeout_seconds",
                                                        DEFAULT_SUBMIT_TIMEOUT_SECONDS)),
            auto_sync=bool(config.get_cli_setting("sync", "auto_sync", True)),
        )

    # --- Reactive status ---
    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    @property
    def pending_count(self) -> int:
        return self._pending_count

    @property
    def is_syncing(self) -> bool:
        return self.engine.is_syncing

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(is_online=self.is_online, pending_count=self._pending_count, is_syncing=self.is_syncing)

    def subscribe(self, callback: Callable[[SyncStatus], Any]) -> Callable[[], None]:
        """Registers `callback(status)`. It receives the current status immediately, then every change."""
        unsubscribe = self._subscribers.add(callback)
        self._subscribers.emit_to(callback, self.status)
        return unsubscribe

    def _publish(self):
        status = self.status
        if status == self._last_published:
            return
        self._last_published = status
        self._subscribers.emit(status)

    def _set_pending_count(self, count: Optional[int]):
        if count is None:
            return
        self._pending_count = count
        self._publish()

    # --- Lifecycle ---
    async def start(self):
        if self._started:
            return
        self._started = True
        self._unsubscribers = [
            self.connectivity.subscribe(self._on_connectivity_change),
            self.poller.add_listener(self._on_pending_count),
            self.engine.on_state_change(self._on_engine_state),
            self.engine.add_listener(self._on_pass_complete),
        ]
        await self.poller.poll_once()
        self.poller.start()
        logger.info(f"Sync service started ({'online' if self.is_online else 'offline'}, "
                    f"{self._pending_count} pending).")

    async def stop(self):
        """Stops polling and cancels any in-flight pass. Interrupted records stay PENDING."""
        if not self._started:
            return
        self._started = False
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self.poller.stop()
        tasks = list(self._sync_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._sync_tasks.clear()
        self._subscribers.cancel_pending()
        logger.info("Sync service stopped.")

    async def close(self):
        """Stops the service and closes the store and the API client."""
        await self.stop()
        close_api = getattr(self.api, "close", None)
        if close_api is not None:
            await close_api()
        close_store = getattr(self.store, "close", None)
        if close_store is not None:
            await close_store()

    # --- Event handlers ---
    def _on_connectivity_change(self, online: bool):
        self._publish()
        if online and self.auto_sync:
            self.schedule_sync("reconnect")

    def _on_pending_count(self, count: int):
        self._set_pending_count(count)
        if count > 0 and self.auto_sync and self.is_online and not self.is_syncing:
            self.schedule_sync("poll")

    def _on_engine_state(self, state: EngineState):
        self._publish()

    def _on_pass_complete(self, result: SyncPassResult):
        self._set_pending_count(result.pending_after)

    # --- Sync triggering ---
    async def trigger_sync(self, reason: str = "manual") -> Optional[SyncPassResult]:
        """Manual "sync now". Returns None when the trigger was dropped (offline, busy or nothing pending)."""
        return await self.engine.trigger_sync(reason)

    def schedule_sync(self, reason: str) -> Optional[asyncio.Task]:
        """Starts a trigger in the background. Returns None if one is already running."""
        if self.is_syncing or any(not task.done() for task in self._sync_tasks):
            return None
        task = asyncio.get_running_loop().create_task(self.engine.trigger_sync(reason), name=f"sync-{reason}")
        self._sync_tasks.add(task)
        task.add_done_callback(self._on_sync_task_done)
        return task

    def _on_sync_task_done(self, task: asyncio.Task):
        self._sync_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Background sync task {task.get_name()} failed: {exc}")

    async def wait_until_idle(self):
        """Waits for background sync tasks, including any scheduled while waiting."""
        while self._sync_tasks:
            await asyncio.gather(*list(self._sync_tasks), return_exceptions=True)

    async def refresh_pending_count(self) -> Optional[int]:
        return await self.poller.poll_once()

    # --- Capture and CRUD ---
    async def capture_report(self, payload: Union[ReportPayload, Dict[str, Any]],
                             evidence_path: Optional[Union[str, Path]] = None) -> int:
        """
        Validates and stores a report locally as PENDING, then syncs right away if online.

        Args:
            payload: The report fields.
            evidence_path: Optional photo on disk, attached as the `evidenceBase64` data URL.

        Returns:
            The record's local key.

        Raises:
            pydantic.ValidationError: If a dict payload is invalid.
            FileNotFoundError: If `evidence_path` does not exist.
            DatabaseError: If the record could not be stored.
        """
        if not isinstance(payload, ReportPayload):
            payload = ReportPayload.model_validate(payload)
        if evidence_path is not None:
            evidence = await asyncio.to_thread(encode_evidence_file, evidence_path)
            payload = payload.model_copy(update={"evidence_base64": evidence})
        return await self._capture(KIND_REPORT, payload.to_wire())

    async def capture_person(self, payload: Union[PersonPayload, Dict[str, Any]]) -> int:
        if not isinstance(payload, PersonPayload):
            payload = PersonPayload.model_validate(payload)
        return await self._capture(KIND_PERSON, payload.to_wire())

    async def _capture(self, kind: str, wire_payload: Dict[str, Any]) -> int:
        local_key = await self.store.add(kind, wire_payload)
        logger.info(f"Captured {kind} locally as record {local_key}.")
        await self.refresh_pending_count()
        if self.is_online:
            self.schedule_sync("capture")
        return local_key

    async def requeue(self, local_key: int) -> bool:
        """Releases a record flagged for review so the next pass retries it."""
        released = await self.store.requeue(local_key)
        if released:
            logger.info(f"Record {local_key} requeued for sync.")
            await self.refresh_pending_count()
            if self.is_online:
                self.schedule_sync("requeue")
        return released

    async def list_merged(self, kind: str = KIND_REPORT, page: int = 1,
                          page_size: int = DEFAULT_PAGE_SIZE) -> MergedView:
        """Server page merged with local records. Falls back to a local-only view when the server is unreachable."""
        local_records = await self.store.list_all(kind)
        server_page = None
        if self.is_online:
            try:
                server_page = await self.api.list_records(kind, page=page, page_size=page_size)
            except CitizenAPIError as e:
                logger.warning(f"Could not load {kind} page {page} from server, showing local records only: {e}")
        return merge_records(local_records, server_page)

    async def update_remote(self, kind: str, remote_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        return await self.api.update_record(kind, remote_id, partial)

    async def delete_record(self, local_key: int) -> bool:
        """
        Deletes a local record. A synced record is deleted on the server first when online;
        if that call fails the error propagates and the local copy is kept.
        """
        record = await self.store.get(local_key)
        if record is None:
            return False
        if record.remote_id and self.is_online:
            await self.api.delete_record(record.kind, record.remote_id)
        deleted = await self.store.delete(local_key)
        await self.refresh_pending_count()
        return deleted

#
# End of sync_service.py
########################################################################################################################
