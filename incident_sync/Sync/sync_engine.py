# sync_engine.py
# Description: Drains the local store's PENDING records to the remote API and reconciles the results.
#
# Imports
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from ..Constants import DEFAULT_SUBMIT_TIMEOUT_SECONDS
from ..DB.Records_DB import ConflictError, DatabaseError, LocalRecord
from ..Metrics.metrics_logger import MetricsLogger
from ..reports_api.exceptions import CitizenAPIError, is_permanent_failure
from ..reports_api.utils import build_submission_body
from .events import CallbackList
from .ports import ConnectivityPort, DurableStorePort, RemoteRecordsPort
#
########################################################################################################################
#
# Functions:

class EngineState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class RecordOutcome(str, Enum):
    SYNCED = "synced"
    FAILED = "failed"            # transient, retried on a later pass
    REJECTED = "rejected"        # permanent, flagged for manual review
    VANISHED = "vanished"        # no longer pending locally (deleted, or synced elsewhere) when the answer came back
    SKIPPED_OFFLINE = "skipped_offline"


@dataclass
class SyncPassResult:
    reason: str
    started_at: datetime
    snapshot_keys: List[int] = field(default_factory=list)
    synced: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    rejected: List[int] = field(default_factory=list)
    vanished: List[int] = field(default_factory=list)
    skipped_offline: List[int] = field(default_factory=list)
    pending_after: Optional[int] = None
    duration_seconds: float = 0.0

    @property
    def attempted(self) -> int:
        return len(self.snapshot_keys) - len(self.skipped_offline)

    def _bucket(self, outcome: RecordOutcome) -> List[int]:
        return getattr(self, outcome.value)

    def summary(self) -> str:
        return (f"{len(self.synced)} synced, {len(self.failed)} failed, {len(self.rejected)} rejected, "
                f"{len(self.vanished)} vanished, {len(self.skipped_offline)} skipped (offline) "
                f"of {len(self.snapshot_keys)} in {self.duration_seconds:.2f}s")


class SyncEngine:
    """
    IDLE/SYNCING state machine over the local durable store.

    A trigger that arrives while a pass is running is dropped; the pending count published at
    the end of every pass lets the caller re-trigger for anything captured in the meantime.
    """

    def __init__(
        self,
        store: DurableStorePort,
        api: RemoteRecordsPort,
        connectivity: ConnectivityPort,
        submit_timeout: float = DEFAULT_SUBMIT_TIMEOUT_SECONDS,
        metrics: Optional[MetricsLogger] = None,
    ):
        self.store = store
        self.api = api
        self.connectivity = connectivity
        self.submit_timeout = submit_timeout
        self.metrics = metrics or MetricsLogger(base_labels={"component": "sync_engine"})
        self._state = EngineState.IDLE
        self._busy = False
        self._state_listeners = CallbackList("sync-state")
        self._pass_listeners = CallbackList("sync-pass")
        self.last_result: Optional[SyncPassResult] = None

    # --- State ---
    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state == EngineState.SYNCING

    def _set_state(self, state: EngineState):
        if state == self._state:
            return
        self._state = state
        logger.debug(f"Sync engine state -> {state.value}")
        self._state_listeners.emit(state)

    def on_state_change(self, callback: Callable[[EngineState], Any]) -> Callable[[], None]:
        return self._state_listeners.add(callback)

    def add_listener(self, callback: Callable[[SyncPassResult], Any]) -> Callable[[], None]:
        """Registers `callback(result)`, called after every completed pass."""
        return self._pass_listeners.add(callback)

    # --- Triggering ---
    async def trigger_sync(self, reason: str = "manual") -> Optional[SyncPassResult]:
        """
        Runs a pass if online, idle and there is retryable pending work.
        Returns the pass result, or None when the trigger was dropped.
        State only turns SYNCING once there is something to submit.
        """
        if self._busy:
            logger.debug(f"Sync trigger '{reason}' dropped: a pass is already running.")
            return None
        if not self.connectivity.is_online:
            logger.debug(f"Sync trigger '{reason}' dropped: offline.")
            return None
        # Claimed before the first await so a concurrent trigger is dropped
        self._busy = True
        try:
            try:
                retryable = await self.store.count_pending(include_flagged=False)
            except DatabaseError as e:
                logger.warning(f"Sync trigger '{reason}' dropped: could not count pending records: {e}")
                return None
            if retryable == 0:
                logger.debug(f"Sync trigger '{reason}' dropped: nothing to submit.")
                return None
            self._set_state(EngineState.SYNCING)
            return await self._run_pass(reason)
        finally:
            self._busy = False
            self._set_state(EngineState.IDLE)

    async def run_pass(self, reason: str = "manual") -> Optional[SyncPassResult]:
        """Runs one pass regardless of the pending count. Returns None if a pass is already running."""
        if self._busy:
            logger.debug(f"Sync pass '{reason}' dropped: a pass is already running.")
            return None
        self._busy = True
        self._set_state(EngineState.SYNCING)
        try:
            return await self._run_pass(reason)
        finally:
            self._busy = False
            self._set_state(EngineState.IDLE)

    # --- Pass ---
    async def _run_pass(self, reason: str) -> SyncPassResult:
        result = SyncPassResult(reason=reason, started_at=datetime.now(timezone.utc))
        start = time.perf_counter()
        try:
            try:
                snapshot = await self.store.list_pending(include_flagged=False)
            except DatabaseError as e:
                logger.error(f"Sync pass '{reason}' aborted: could not read pending records: {e}")
                snapshot = []
            result.snapshot_keys = [record.local_key for record in snapshot]
            if snapshot:
                logger.info(f"Starting sync pass '{reason}' with {len(snapshot)} pending record(s).")

            for record in snapshot:
                if not self.connectivity.is_online:
                    result.skipped_offline.append(record.local_key)
                    continue
                try:
                    outcome = await self._sync_record(record)
                except Exception as e:
                    logger.opt(exception=e).error(f"Unexpected error syncing record {record.local_key}: {e}")
                    outcome = RecordOutcome.FAILED
                result._bucket(outcome).append(record.local_key)

            if result.skipped_offline:
                logger.warning(f"Went offline during pass '{reason}'; "
                               f"{len(result.skipped_offline)} record(s) left for the next pass.")
        finally:
            result.duration_seconds = time.perf_counter() - start
            result.pending_after = await self._count_pending_quietly()
            self.last_result = result

        if result.snapshot_keys:
            logger.info(f"Sync pass '{reason}' finished: {result.summary()}. Pending now: {result.pending_after}")
        self._log_metrics(result)
        self._pass_listeners.emit(result)
        return result

    async def _sync_record(self, record: LocalRecord) -> RecordOutcome:
        body = build_submission_body(record.payload, record.captured_at)
        try:
            response = await asyncio.wait_for(
                self.api.create_record(record.kind, body, idempotency_key=record.idempotency_key),
                timeout=self.submit_timeout,
            )
        except asyncio.TimeoutError:
            return await self._record_failure(record, f"Submission timed out after {self.submit_timeout}s")
        except CitizenAPIError as e:
            return await self._record_failure(record, str(e), permanent=is_permanent_failure(e))

        try:
            still_present = await self.store.mark_synced(record.local_key, response.id)
        except ConflictError as e:
            logger.error(f"Server id '{response.id}' for record {record.local_key} conflicts locally: {e}")
            return await self._record_failure(record, f"Identifier conflict: {e}", permanent=True)
        except DatabaseError as e:
            # Stays PENDING; the idempotency key lets the server dedupe the resubmission
            logger.error(f"Record {record.local_key} accepted as '{response.id}' but could not be marked synced: {e}")
            return RecordOutcome.FAILED

        if not still_present:
            logger.info(f"Record {record.local_key} was deleted during submission; dropping server id '{response.id}'.")
            return RecordOutcome.VANISHED
        logger.debug(f"Record {record.local_key} synced as '{response.id}'.")
        return RecordOutcome.SYNCED

    async def _record_failure(self, record: LocalRecord, error: str, permanent: bool = False) -> RecordOutcome:
        if permanent:
            logger.warning(f"Record {record.local_key} rejected permanently, flagged for review: {error}")
        else:
            logger.warning(f"Record {record.local_key} not synced, will retry: {error}")
        try:
            still_present = await self.store.record_failure(record.local_key, error, permanent=permanent)
        except DatabaseError as e:
            logger.error(f"Could not store failure details for record {record.local_key}: {e}")
            return RecordOutcome.FAILED
        if not still_present:
            return RecordOutcome.VANISHED
        return RecordOutcome.REJECTED if permanent else RecordOutcome.FAILED

    async def _count_pending_quietly(self) -> Optional[int]:
        try:
            return await self.store.count_pending()
        except DatabaseError as e:
            logger.warning(f"Could not recount pending records after pass: {e}")
            return None

    def _log_metrics(self, result: SyncPassResult):
        if not result.snapshot_keys:
            return
        labels = {"reason": result.reason}
        self.metrics.log_histogram("sync_pass_duration_seconds", result.duration_seconds, labels)
        self.metrics.log_counter("sync_records_synced_total", len(result.synced), labels)
        self.metrics.log_counter("sync_records_failed_total", len(result.failed), labels)
        self.metrics.log_counter("sync_records_rejected_total", len(result.rejected), labels)
        if result.pending_after is not None:
            self.metrics.log_gauge("sync_pending_records", result.pending_after)

#
# End of sync_engine.py
########################################################################################################################
