# src/orchestrator/fulfillment_watcher.py

"""
Waits for the oracle network to fulfill a submitted request.

Three activities run concurrently while a request is watched:
  * event subscriptions, writing FulfillmentRecords into a CorrelationTable,
  * a poll task, checking the table for the watched request id,
  * a deadline task.

The poll and deadline tasks race to set a single settle future; the first
one wins and the other is cancelled. Both branches call cleanup, which is
latched, so the secrets artifact is deleted exactly once. Cleanup has always
finished by the time `watch()` returns.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from common.errors import CallbackExecutionError, FulfillmentTimeoutError
from common.logging_utils import log_event
from common.schemas.fulfillment import (
    FulfillmentRecord,
    FulfillmentReport,
    SuccessRecord,
    UserCallbackErrorRecord,
    UserCallbackRawErrorRecord,
)
from common.schemas.request_state import PendingRequestState, WatchState
from orchestrator.ledger_client import (
    CLIENT_CONTRACT,
    ORACLE_CONTRACT,
    RESPONSE_EVENT,
    USER_CALLBACK_ERROR_EVENT,
    USER_CALLBACK_RAW_ERROR_EVENT,
    normalize_request_id,
)


WatchOutcome = Tuple[WatchState, Optional[FulfillmentRecord]]


class CorrelationTable:
    """
    Request id -> FulfillmentRecord. First write wins; a record is handed out
    once by `take()` and its key is retired so late duplicates are dropped.
    """

    def __init__(self):
        self._records: Dict[str, FulfillmentRecord] = {}
        self._retired: set[str] = set()
        self._lock = threading.Lock()

    def record(self, request_id, record: FulfillmentRecord) -> bool:
        key = normalize_request_id(request_id)
        with self._lock:
            if key in self._records or key in self._retired:
                return False
            self._records[key] = record
            return True

    def take(self, request_id) -> Optional[FulfillmentRecord]:
        key = normalize_request_id(request_id)
        with self._lock:
            record = self._records.pop(key, None)
            if record is not None:
                self._retired.add(key)
            return record

    def __contains__(self, request_id) -> bool:
        key = normalize_request_id(request_id)
        with self._lock:
            return key in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def classify(request_id: str, record: FulfillmentRecord) -> FulfillmentReport:
    """
    Callback failures raise CallbackExecutionError; a success record becomes
    a FulfillmentReport, carrying the remote code's own error if it threw.
    """
    if isinstance(record, UserCallbackErrorRecord):
        raise CallbackExecutionError(request_id, record.message)

    if isinstance(record, UserCallbackRawErrorRecord):
        raise CallbackExecutionError(
            request_id, record.raw.decode("utf-8", errors="replace"), raw=True
        )

    remote_error = record.error.decode("utf-8", errors="replace") if record.error else None
    return FulfillmentReport(
        request_id=request_id,
        response=record.response,
        remote_error=remote_error,
    )


class FulfillmentWatcher:

    def __init__(
        self,
        ledger,
        cleanup=None,
        table: Optional[CorrelationTable] = None,
        poll_interval_s: float = 1.0,
        timeout_s: float = 300.0,
    ):
        self.ledger = ledger
        self.cleanup = cleanup
        self.table = table if table is not None else CorrelationTable()
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self._subscriptions: List[Any] = []

    # -------------------------
    # Event subscriptions
    # -------------------------
    async def subscribe(self) -> None:
        """
        Attach the three fulfillment listeners. Safe to call before the
        request is submitted, so an early event is never missed.
        """
        if self._subscriptions:
            return

        streams: List[Tuple[str, str, Callable[[Dict[str, Any]], None]]] = [
            (CLIENT_CONTRACT, RESPONSE_EVENT, self._on_response),
            (ORACLE_CONTRACT, USER_CALLBACK_ERROR_EVENT, self._on_user_callback_error),
            (ORACLE_CONTRACT, USER_CALLBACK_RAW_ERROR_EVENT, self._on_user_callback_raw_error),
        ]
        try:
            for contract, event_name, handler in streams:
                self._subscriptions.append(
                    await self.ledger.subscribe(contract, event_name, handler)
                )
        except BaseException:
            await self.unsubscribe()
            raise

    async def unsubscribe(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.unsubscribe()

    def _store(self, event_name: str, request_id, record: FulfillmentRecord) -> None:
        if self.table.record(request_id, record):
            log_event(
                "fulfillment_event_received",
                request_id=normalize_request_id(request_id),
                extra={"event": event_name},
            )
        else:
            log_event(
                "fulfillment_event_duplicate_ignored",
                request_id=normalize_request_id(request_id),
                extra={"event": event_name},
                level="debug",
            )

    def _on_response(self, args: Dict[str, Any]) -> None:
        error = bytes(args.get("err") or b"")
        self._store(
            RESPONSE_EVENT,
            args["requestId"],
            SuccessRecord(response=bytes(args.get("result") or b""), error=error or None),
        )

    def _on_user_callback_error(self, args: Dict[str, Any]) -> None:
        self._store(
            USER_CALLBACK_ERROR_EVENT,
            args["eventRequestId"],
            UserCallbackErrorRecord(message=str(args.get("reason", ""))),
        )

    def _on_user_callback_raw_error(self, args: Dict[str, Any]) -> None:
        self._store(
            USER_CALLBACK_RAW_ERROR_EVENT,
            args["eventRequestId"],
            UserCallbackRawErrorRecord(raw=bytes(args.get("lowLevelData") or b"")),
        )

    # -------------------------
    # Watch loop
    # -------------------------
    async def wait(self, request_id) -> FulfillmentReport:
        """
        Watch `request_id` and classify the result.

        Raises FulfillmentTimeoutError on deadline and CallbackExecutionError
        when the client contract's callback failed.
        """
        key = normalize_request_id(request_id)
        state, record = await self.watch(key)

        if state is WatchState.TIMED_OUT:
            raise FulfillmentTimeoutError(key, self.timeout_s)

        return classify(key, record)

    async def watch(self, request_id) -> WatchOutcome:
        loop = asyncio.get_running_loop()
        await self.subscribe()

        state = PendingRequestState(
            request_id=normalize_request_id(request_id),
            deadline=loop.time() + self.timeout_s,
        )
        settled: asyncio.Future = loop.create_future()

        def settle(new_state: WatchState, record: Optional[FulfillmentRecord] = None) -> bool:
            # First writer wins; no await between check and set
            if settled.done():
                return False
            state.state = new_state
            settled.set_result((new_state, record))
            return True

        log_event(
            "fulfillment_watch_started",
            request_id=state.request_id,
            extra={"timeout_s": self.timeout_s, "poll_interval_s": self.poll_interval_s},
        )

        poll_task = asyncio.create_task(self._poll(state, settle))
        deadline_task = asyncio.create_task(self._deadline(state, settle))
        try:
            return await settled
        finally:
            for task in (poll_task, deadline_task):
                task.cancel()
            await asyncio.gather(poll_task, deadline_task, return_exceptions=True)
            await self.unsubscribe()
            await self._run_cleanup(state)

    async def _poll(self, state: PendingRequestState, settle) -> None:
        started = asyncio.get_running_loop().time()
        while True:
            record = self.table.take(state.request_id)
            if record is not None:
                if settle(WatchState.FULFILLED, record):
                    elapsed_ms = int((asyncio.get_running_loop().time() - started) * 1000)
                    log_event(
                        "request_fulfilled",
                        request_id=state.request_id,
                        extra={"record": type(record).__name__, "elapsed_ms": elapsed_ms},
                    )
                await self._run_cleanup(state)
                return
            await asyncio.sleep(self.poll_interval_s)

    async def _deadline(self, state: PendingRequestState, settle) -> None:
        delay = state.deadline - asyncio.get_running_loop().time()
        await asyncio.sleep(max(delay, 0.0))

        if settle(WatchState.TIMED_OUT):
            log_event(
                "fulfillment_deadline_exceeded",
                request_id=state.request_id,
                extra={"timeout_s": self.timeout_s},
                level="error",
            )
        await self._run_cleanup(state)

    async def _run_cleanup(self, state: PendingRequestState) -> None:
        if self.cleanup is not None:
            await self.cleanup.cleanup()
        state.cleanup_done = True
