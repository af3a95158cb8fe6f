# tests/test_fulfillment_watcher.py

import asyncio

import pytest

from common.errors import CallbackExecutionError, FulfillmentTimeoutError
from common.schemas.encrypted_payload import RemoteArtifactHandle
from common.schemas.fulfillment import SuccessRecord, UserCallbackErrorRecord
from common.schemas.request_state import WatchState
from fakes import ARTIFACT_ID, ARTIFACT_URL, FakeLedger, FakeStoreClient
from orchestrator.fulfillment_watcher import CorrelationTable, FulfillmentWatcher
from orchestrator.ledger_client import (
    RESPONSE_EVENT,
    USER_CALLBACK_ERROR_EVENT,
    USER_CALLBACK_RAW_ERROR_EVENT,
)
from secrets_store.cleanup import CleanupCoordinator


HANDLE = RemoteArtifactHandle(artifact_id=ARTIFACT_ID, url=ARTIFACT_URL)


def make_watcher(ledger, store=None, poll_interval_s=0.01, timeout_s=1.0):
    store = store if store is not None else FakeStoreClient()
    cleanup = CleanupCoordinator(store, "token")
    cleanup.register(HANDLE)
    watcher = FulfillmentWatcher(
        ledger, cleanup, poll_interval_s=poll_interval_s, timeout_s=timeout_s
    )
    return watcher, store


def response_args(request_id=7, result=b"\xde\xad", err=b""):
    return {"requestId": request_id, "result": result, "err": err}


# -------------------------------------------------------------------------
# Correlation table
# -------------------------------------------------------------------------


def test_correlation_table_first_write_wins():
    table = CorrelationTable()

    assert table.record(7, SuccessRecord(response=b"first")) is True
    assert table.record(7, SuccessRecord(response=b"second")) is False
    assert 7 in table

    assert table.take(7) == SuccessRecord(response=b"first")
    assert table.take(7) is None


def test_correlation_table_retires_taken_keys():
    table = CorrelationTable()
    table.record(7, SuccessRecord(response=b"first"))
    table.take(7)

    assert table.record(7, SuccessRecord(response=b"late duplicate")) is False
    assert len(table) == 0


# -------------------------------------------------------------------------
# Watch outcomes
# -------------------------------------------------------------------------


def test_event_before_first_tick_is_fulfilled():
    ledger = FakeLedger()
    watcher, store = make_watcher(ledger, poll_interval_s=0.5, timeout_s=5.0)

    async def main():
        await watcher.subscribe()
        ledger.fire(RESPONSE_EVENT, response_args())
        return await watcher.watch(7)

    state, record = asyncio.run(main())

    assert state is WatchState.FULFILLED
    assert record == SuccessRecord(response=b"\xde\xad", error=None)
    assert len(store.deleted) == 1
    assert all(not s.active for s in ledger.subscriptions)


def test_no_event_times_out_and_cleans_up_once():
    ledger = FakeLedger()
    watcher, store = make_watcher(ledger, poll_interval_s=0.01, timeout_s=0.05)

    with pytest.raises(FulfillmentTimeoutError) as exc_info:
        asyncio.run(watcher.wait(7))

    assert "deadline exceeded" in str(exc_info.value)
    assert isinstance(exc_info.value, TimeoutError)
    assert len(store.deleted) == 1
    assert all(not s.active for s in ledger.subscriptions)


def test_fulfillment_and_timeout_in_same_tick_delete_once():
    ledger = FakeLedger()
    store = FakeStoreClient(delete_delay=0.05)
    watcher, store = make_watcher(ledger, store=store, poll_interval_s=0.01, timeout_s=0.0)

    async def main():
        await watcher.subscribe()
        ledger.fire(RESPONSE_EVENT, response_args())
        return await watcher.watch(7)

    state, _ = asyncio.run(main())

    assert state in (WatchState.FULFILLED, WatchState.TIMED_OUT)
    assert len(store.deleted) == 1


def test_late_fulfillment_racing_deadline_deletes_once():
    ledger = FakeLedger()
    store = FakeStoreClient(delete_delay=0.05)
    watcher, store = make_watcher(ledger, store=store, poll_interval_s=0.02, timeout_s=0.02)

    async def main():
        await watcher.subscribe()
        loop = asyncio.get_running_loop()
        loop.call_later(0.019, ledger.fire, RESPONSE_EVENT, response_args())
        return await watcher.watch(7)

    asyncio.run(main())

    assert len(store.deleted) == 1


def test_event_arriving_during_watch():
    ledger = FakeLedger()
    watcher, store = make_watcher(ledger, poll_interval_s=0.01, timeout_s=2.0)

    async def main():
        await watcher.subscribe()
        asyncio.get_running_loop().call_later(0.05, ledger.fire, RESPONSE_EVENT, response_args())
        return await watcher.wait(7)

    report = asyncio.run(main())

    assert report.response == b"\xde\xad"
    assert report.remote_error is None
    assert report.response_as_int() == 0xDEAD
    assert len(store.deleted) == 1


def test_other_request_ids_are_ignored():
    ledger = FakeLedger()
    watcher, store = make_watcher(ledger, poll_interval_s=0.01, timeout_s=0.05)

    async def main():
        await watcher.subscribe()
        ledger.fire(RESPONSE_EVENT, response_args(request_id=8))
        return await watcher.watch(7)

    state, record = asyncio.run(main())

    assert state is WatchState.TIMED_OUT
    assert record is None
    assert 8 in watcher.table


def test_duplicate_event_keeps_first_record():
    ledger = FakeLedger()
    watcher, _ = make_watcher(ledger)

    async def main():
        await watcher.subscribe()
        ledger.fire(RESPONSE_EVENT, response_args(result=b"first"))
        ledger.fire(USER_CALLBACK_ERROR_EVENT, {"eventRequestId": 7, "reason": "late"})
        return await watcher.wait(7)

    assert asyncio.run(main()).response == b"first"


# -------------------------------------------------------------------------
# Classification
# -------------------------------------------------------------------------


def test_user_callback_error_is_callback_failure():
    ledger = FakeLedger()
    watcher, store = make_watcher(ledger)

    async def main():
        await watcher.subscribe()
        ledger.fire(USER_CALLBACK_ERROR_EVENT, {"eventRequestId": 7, "reason": "out of gas"})
        return await watcher.wait(7)

    with pytest.raises(CallbackExecutionError) as exc_info:
        asyncio.run(main())

    assert exc_info.value.detail == "out of gas"
    assert exc_info.value.raw is False
    assert len(store.deleted) == 1


def test_user_callback_raw_error_is_decoded():
    ledger = FakeLedger()
    watcher, _ = make_watcher(ledger)

    async def main():
        await watcher.subscribe()
        ledger.fire(USER_CALLBACK_RAW_ERROR_EVENT, {"eventRequestId": 7, "lowLevelData": b"revert"})
        return await watcher.wait(7)

    with pytest.raises(CallbackExecutionError) as exc_info:
        asyncio.run(main())

    assert exc_info.value.detail == "revert"
    assert exc_info.value.raw is True


def test_remote_code_error_reported_separately():
    ledger = FakeLedger()
    watcher, _ = make_watcher(ledger)

    async def main():
        await watcher.subscribe()
        ledger.fire(RESPONSE_EVENT, response_args(result=b"", err=b"Request failed"))
        return await watcher.wait(7)

    report = asyncio.run(main())

    assert report.has_response is False
    assert report.remote_error == "Request failed"


def test_callback_record_classification_without_cleanup():
    ledger = FakeLedger()
    watcher = FulfillmentWatcher(ledger, cleanup=None, poll_interval_s=0.01, timeout_s=1.0)
    watcher.table.record(7, UserCallbackErrorRecord(message="bad"))

    with pytest.raises(CallbackExecutionError):
        asyncio.run(watcher.wait(7))
