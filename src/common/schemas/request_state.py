from dataclasses import dataclass
from enum import Enum


class WatchState(Enum):
    WAITING = "WAITING"
    FULFILLED = "FULFILLED"
    TIMED_OUT = "TIMED_OUT"


@dataclass
class PendingRequestState:
    """
    Per-watch state. Lives only for the duration of one watch loop.
    `deadline` is in event-loop time (loop.time()), not wall clock.
    """
    request_id: str
    deadline: float
    state: WatchState = WatchState.WAITING
    cleanup_done: bool = False
