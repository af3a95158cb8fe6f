# src/common/errors.py

"""
Error taxonomy for the tracking-request workflow.

Every error carries a short `category` string. The CLI prints it next to the
message so operators can tell a bad credential from a contract that never
emitted its event. Only artifact deletion failures are absorbed locally;
everything here aborts the workflow once raised.
"""

from __future__ import annotations


class TadiError(Exception):
    category = "error"


class ConfigError(TadiError):
    """Bad or missing input shape (secrets, signer key, store token)."""

    category = "config"


class CryptoError(TadiError):
    """Malformed key or ciphertext."""

    category = "crypto"


class AuthError(TadiError):
    """The secret store rejected the access token."""

    category = "auth"


class ScopeError(TadiError):
    """The access token does not carry the secret-management scope."""

    category = "scope"


class StoreError(TadiError):
    """A remote artifact operation failed."""

    category = "store"


class SecretsFetchError(TadiError):
    """A remote secrets URL could not be fetched or parsed."""

    category = "secrets-fetch"

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch off-chain secrets from {url}: {reason}")
        self.url = url


class ConsistencyError(TadiError):
    category = "consistency"

    def __init__(self, url: str, reference_url: str):
        super().__init__(
            f"Off-chain secrets URLs {url} and {reference_url} do not contain "
            "the same JSON object. All secrets URLs must have an identical JSON object."
        )
        self.url = url
        self.reference_url = reference_url


class CoverageError(TadiError):
    category = "coverage"

    def __init__(self, node_address: str):
        super().__init__(
            f"No secrets specified for node {node_address} and no default secrets found."
        )
        self.node_address = node_address


class ProtocolError(TadiError):
    """An expected on-chain event was not emitted."""

    category = "protocol"


class CallbackExecutionError(TadiError):
    """The client contract's fulfillment callback failed on-chain."""

    category = "callback"

    def __init__(self, request_id: str, message: str, raw: bool = False):
        kind = "Raw error in" if raw else "Error encountered when calling"
        super().__init__(
            f"{kind} fulfillRequest for request {request_id}: {message}"
        )
        self.request_id = request_id
        self.detail = message
        self.raw = raw


class FulfillmentTimeoutError(TadiError, TimeoutError):
    category = "timeout"

    def __init__(self, request_id: str, timeout_s: float):
        super().__init__(
            f"Fulfillment deadline exceeded: request {request_id} "
            f"not fulfilled within {timeout_s:g} seconds"
        )
        self.request_id = request_id
        self.timeout_s = timeout_s
