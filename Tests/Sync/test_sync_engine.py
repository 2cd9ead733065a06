# test_sync_engine.py
#
# Behaviour of the IDLE/SYNCING engine against a real in-memory store and a mocked remote API.
#
# Imports
import asyncio
from unittest.mock import AsyncMock, MagicMock
#
# Third-party Libraries
import pytest
#
# Local Imports
from incident_sync.DB.Records_DB import StorageError, SyncState
from incident_sync.reports_api.exceptions import (
    APIConnectionError,
    APIResponseError,
    AuthenticationError,
    ServerValidationError,
)
from incident_sync.reports_api.schemas import CreateRecordResponse
from incident_sync.Sync.sync_engine import EngineState, SyncEngine
#
########################################################################################################################
#
# Fixtures and Helper Functions

pytestmark = pytest.mark.asyncio


@pytest.fixture
def engine(store, fake_api, online_monitor):
    return SyncEngine(store, fake_api, online_monitor, submit_timeout=1.0)


def submitted_municipios(api) -> list:
    return [c.args[1].get("municipio") for c in api.create_record.await_args_list]


async def add_reports(store, make_report, *names):
    return [await store.add("report", make_report(name)) for name in names]


########################################################################################################################
#
# Tests:

async def test_offline_capture_then_reconnect_syncs_everything(store, fake_api, offline_monitor, make_report):
    engine = SyncEngine(store, fake_api, offline_monitor)
    keys = await add_reports(store, make_report, "A", "B", "C")
    assert await store.count_pending() == 3

    assert await engine.trigger_sync("offline") is None
    fake_api.create_record.assert_not_awaited()

    offline_monitor.mark_online()
    result = await engine.trigger_sync("reconnect")

    assert result.synced == keys
    assert result.pending_after == 0
    for key in keys:
        record = await store.get(key)
        assert record.sync_state == SyncState.SYNCED
        assert record.remote_id is not None
    assert engine.state == EngineState.IDLE


async def test_pass_submits_in_insertion_order(engine, store, fake_api, make_report):
    await add_reports(store, make_report, "R1", "R2", "R3")
    await engine.trigger_sync()
    assert submitted_municipios(fake_api) == ["R1", "R2", "R3"]


async def test_submission_body_and_idempotency_key(engine, store, fake_api, make_report):
    key = await store.add("report", make_report("Oaxaca"), captured_at=1_700_000_000_000)
    record = await store.get(key)
    await engine.trigger_sync()

    call = fake_api.create_record.await_args
    kind, body = call.args[0], call.args[1]
    assert kind == "report"
    assert body["timestamp"] == 1_700_000_000_000
    assert "local_key" not in body and "synced" not in body
    assert call.kwargs["idempotency_key"] == record.idempotency_key


async def test_failure_of_one_record_does_not_abort_the_pass(engine, store, fake_api, make_report):
    key_a, key_b = await add_reports(store, make_report, "A", "B")

    async def _create(kind, body, idempotency_key=None, timeout=None):
        if body["municipio"] == "A":
            raise APIConnectionError("connection reset")
        return CreateRecordResponse(id="srv-b")

    fake_api.create_record.side_effect = _create
    result = await engine.trigger_sync()

    assert result.failed == [key_a]
    assert result.synced == [key_b]
    record_a = await store.get(key_a)
    assert record_a.sync_state == SyncState.PENDING
    assert record_a.last_error == "connection reset"
    assert record_a.attempt_count == 1
    assert (await store.get(key_b)).remote_id == "srv-b"
    assert result.pending_after == 1


async def test_network_failure_leaves_record_pending(engine, store, fake_api, make_report):
    (key,) = await add_reports(store, make_report, "Solo")
    fake_api.create_record.side_effect = APIResponseError(503, "Service Unavailable")

    result = await engine.trigger_sync()

    assert result.failed == [key]
    assert await store.count_pending() == 1
    assert engine.state == EngineState.IDLE


async def test_synced_records_are_never_resubmitted(engine, store, fake_api, make_report):
    await add_reports(store, make_report, "A", "B")
    await engine.trigger_sync()
    assert fake_api.create_record.await_count == 2

    assert await engine.trigger_sync() is None
    assert await engine.run_pass("forced") is not None
    assert fake_api.create_record.await_count == 2


async def test_trigger_dropped_when_nothing_pending(engine, fake_api):
    assert await engine.trigger_sync() is None
    fake_api.create_record.assert_not_awaited()


async def test_capture_during_pass_waits_for_next_trigger(engine, store, fake_api, make_report):
    await add_reports(store, make_report, "First")
    late_keys = []

    async def _create(kind, body, idempotency_key=None, timeout=None):
        if not late_keys:
            late_keys.append(await store.add("report", make_report("Late")))
            # A trigger during the pass is dropped, not queued
            assert await engine.trigger_sync("re-entrant") is None
        return CreateRecordResponse(id=f"srv-{body['municipio']}")

    fake_api.create_record.side_effect = _create
    first = await engine.trigger_sync("first")

    assert submitted_municipios(fake_api) == ["First"]
    assert late_keys[0] not in first.snapshot_keys
    assert first.pending_after == 1

    second = await engine.trigger_sync("second")
    assert second.synced == late_keys
    assert submitted_municipios(fake_api) == ["First", "Late"]


async def test_concurrent_triggers_run_a_single_pass(engine, store, fake_api, make_report):
    await add_reports(store, make_report, "A", "B")
    started, gate = asyncio.Event(), asyncio.Event()

    async def _create(kind, body, idempotency_key=None, timeout=None):
        started.set()
        await gate.wait()
        return CreateRecordResponse(id=f"srv-{body['municipio']}")

    fake_api.create_record.side_effect = _create
    first = asyncio.create_task(engine.trigger_sync("one"))
    await asyncio.wait_for(started.wait(), timeout=2)
    assert engine.is_syncing
    assert await engine.trigger_sync("two") is None
    gate.set()
    result = await first

    assert result.synced and len(result.synced) == 2
    assert fake_api.create_record.await_count == 2


async def test_going_offline_mid_pass_skips_the_rest(engine, store, fake_api, online_monitor, make_report):
    key_a, key_b, key_c = await add_reports(store, make_report, "A", "B", "C")

    async def _create(kind, body, idempotency_key=None, timeout=None):
        online_monitor.mark_offline()
        return CreateRecordResponse(id=f"srv-{body['municipio']}")

    fake_api.create_record.side_effect = _create
    result = await engine.trigger_sync()

    assert result.synced == [key_a]
    assert result.skipped_offline == [key_b, key_c]
    assert result.attempted == 1
    assert await store.count_pending() == 2


async def test_submission_timeout_is_a_transient_failure(store, fake_api, online_monitor, make_report):
    engine = SyncEngine(store, fake_api, online_monitor, submit_timeout=0.05)
    (key,) = await add_reports(store, make_report, "Slow")

    async def _hang(kind, body, idempotency_key=None, timeout=None):
        await asyncio.sleep(10)

    fake_api.create_record.side_effect = _hang
    result = await engine.trigger_sync()

    assert result.failed == [key]
    record = await store.get(key)
    assert record.sync_state == SyncState.PENDING
    assert "timed out" in record.last_error
    assert record.needs_review is False


async def test_permanent_rejection_is_flagged_and_skipped(engine, store, fake_api, make_report):
    key_bad, key_good = await add_reports(store, make_report, "Bad", "Good")

    async def _create(kind, body, idempotency_key=None, timeout=None):
        if body["municipio"] == "Bad":
            raise ServerValidationError(422, "location is required")
        return CreateRecordResponse(id="srv-good")

    fake_api.create_record.side_effect = _create
    result = await engine.trigger_sync()
    assert result.rejected == [key_bad]
    assert result.synced == [key_good]

    bad = await store.get(key_bad)
    assert bad.sync_state == SyncState.PENDING
    assert bad.needs_review is True
    assert result.pending_after == 1

    # Automatic triggers leave the flagged record alone
    fake_api.create_record.reset_mock()
    assert await engine.trigger_sync("poll") is None
    fake_api.create_record.assert_not_awaited()

    # Released for retry
    await store.requeue(key_bad)
    fake_api.create_record.side_effect = None
    fake_api.create_record.return_value = CreateRecordResponse(id="srv-fixed")
    retry = await engine.trigger_sync("requeue")
    assert retry.synced == [key_bad]


async def test_auth_failure_is_retried_later(engine, store, fake_api, make_report):
    (key,) = await add_reports(store, make_report, "A")
    fake_api.create_record.side_effect = AuthenticationError(401, "Authentication failed: expired token")
    result = await engine.trigger_sync()
    assert result.failed == [key]
    assert (await store.get(key)).needs_review is False


async def test_record_deleted_during_submission_is_dropped(engine, store, fake_api, make_report):
    (key,) = await add_reports(store, make_report, "Gone")

    async def _create(kind, body, idempotency_key=None, timeout=None):
        await store.delete(key)
        return CreateRecordResponse(id="srv-gone")

    fake_api.create_record.side_effect = _create
    result = await engine.trigger_sync()

    assert result.vanished == [key]
    assert result.synced == []
    assert await store.get(key) is None


async def test_server_id_conflict_flags_record(engine, store, fake_api, make_report):
    key_a, key_b = await add_reports(store, make_report, "A", "B")
    # The server answers with the same id twice
    fake_api.create_record.side_effect = None
    fake_api.create_record.return_value = CreateRecordResponse(id="same-id")

    result = await engine.trigger_sync()

    assert result.synced == [key_a]
    assert result.rejected == [key_b]
    record_b = await store.get(key_b)
    assert record_b.needs_review is True
    assert "conflict" in record_b.last_error.lower()


async def test_unexpected_exception_is_isolated(engine, store, fake_api, make_report):
    key_a, key_b = await add_reports(store, make_report, "A", "B")

    async def _create(kind, body, idempotency_key=None, timeout=None):
        if body["municipio"] == "A":
            raise RuntimeError("bug in transport")
        return CreateRecordResponse(id="srv-b")

    fake_api.create_record.side_effect = _create
    result = await engine.trigger_sync()
    assert result.failed == [key_a]
    assert result.synced == [key_b]


async def test_unreadable_store_ends_pass_quietly(fake_api, online_monitor):
    broken_store = MagicMock()
    broken_store.count_pending = AsyncMock(return_value=1)
    broken_store.list_pending = AsyncMock(side_effect=StorageError("disk I/O error"))
    engine = SyncEngine(broken_store, fake_api, online_monitor)

    result = await engine.trigger_sync()

    assert result.snapshot_keys == []
    assert result.pending_after == 1
    assert engine.state == EngineState.IDLE


async def test_listeners_receive_state_changes_and_results(engine, store, make_report):
    await add_reports(store, make_report, "A")
    states, results = [], []
    engine.on_state_change(states.append)
    engine.add_listener(results.append)

    result = await engine.trigger_sync()

    assert states == [EngineState.SYNCING, EngineState.IDLE]
    assert results == [result]
    assert engine.last_result is result


async def test_flagged_only_store_never_enters_syncing(engine, store, fake_api, make_report):
    (key,) = await add_reports(store, make_report, "Rejected")
    await store.record_failure(key, "API Error 422: invalid", permanent=True)
    states = []
    engine.on_state_change(states.append)

    for _ in range(3):
        assert await engine.trigger_sync("poll") is None

    assert states == []
    assert engine.state == EngineState.IDLE
    fake_api.create_record.assert_not_awaited()


async def test_trigger_during_pending_count_is_dropped(store, fake_api, online_monitor, make_report):
    await add_reports(store, make_report, "A")
    counting, release = asyncio.Event(), asyncio.Event()
    slow_store = MagicMock(wraps=store)

    async def _count_pending(*args, **kwargs):
        counting.set()
        await release.wait()
        return await store.count_pending(*args, **kwargs)

    slow_store.count_pending = _count_pending
    slow_store.list_pending = store.list_pending
    slow_store.mark_synced = store.mark_synced
    engine = SyncEngine(slow_store, fake_api, online_monitor)

    first = asyncio.create_task(engine.trigger_sync("one"))
    await asyncio.wait_for(counting.wait(), timeout=2)
    # Still IDLE while counting, yet a second trigger must not start another pass
    assert engine.state == EngineState.IDLE
    assert await engine.trigger_sync("two") is None
    release.set()

    result = await first
    assert len(result.synced) == 1
    fake_api.create_record.assert_awaited_once()


async def test_pass_metrics_are_logged(store, fake_api, online_monitor, make_report):
    metrics = MagicMock()
    engine = SyncEngine(store, fake_api, online_monitor, metrics=metrics)
    await add_reports(store, make_report, "A")
    await engine.trigger_sync()

    metrics.log_counter.assert_any_call("sync_records_synced_total", 1, {"reason": "manual"})
    metrics.log_gauge.assert_called_with("sync_pending_records", 0)

#
# End of test_sync_engine.py
########################################################################################################################
