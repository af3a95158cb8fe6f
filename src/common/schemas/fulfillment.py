from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class SuccessRecord:
    """Response delivered to the client contract. `error` is the remote code's own error, if any."""
    response: bytes
    error: Optional[bytes] = None


@dataclass(frozen=True)
class UserCallbackErrorRecord:
    message: str


@dataclass(frozen=True)
class UserCallbackRawErrorRecord:
    raw: bytes


FulfillmentRecord = Union[SuccessRecord, UserCallbackErrorRecord, UserCallbackRawErrorRecord]


@dataclass(frozen=True)
class FulfillmentReport:
    """
    Classified outcome of a fulfilled request whose callback succeeded.

    `remote_error` is set when the off-chain code itself threw; `response`
    may be empty in that case.
    """
    request_id: str
    response: bytes
    remote_error: Optional[str] = None

    @property
    def has_response(self) -> bool:
        return len(self.response) > 0

    def response_as_int(self) -> int:
        return int.from_bytes(self.response, "big") if self.response else 0

    def response_as_text(self) -> str:
        return self.response.decode("utf-8", errors="replace")
