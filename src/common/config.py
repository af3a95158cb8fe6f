# src/common/config.py

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Self


ENV_PREFIX = "TADI_"


def _get_env_str(name: str, default: str) -> str:
    value = os.getenv(ENV_PREFIX + name)
    return value if value is not None else default


def _get_env_int(name: str, default: int) -> int:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_env_bool(name: str, default: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    value_lower = value.lower()
    if value_lower in ("1", "true", "yes", "y", "on"):
        return True
    if value_lower in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass
class Config:
    """
    Configuration for one tracking-request invocation.

    Defaults can be overridden via environment variables:
    - Prefix: TADI_
    - Example: TADI_FULFILLMENT_TIMEOUT_S=120

    There is no module-level instance. The entry point builds one with
    `Config.from_env()` and hands it to each component explicitly.
    """

    # --- Credentials ---
    SIGNER_PRIVATE_KEY: str = ""
    TRACKING_API_KEY: str = ""
    STORE_API_TOKEN: str = ""

    # --- Ledger ---
    RPC_URL: str = "http://localhost:8545"
    CLIENT_CONTRACT_ADDRESS: str = "0x6266530eCC40E53d20Fd22C50fcF2a08DBD78B95"
    ORACLE_ADDRESS: str = "0xeA6721aC65BCeD841B8ec3fc5fEdeA6141a0aDE4"
    CLIENT_ABI_PATH: str = "build/artifacts/contracts/TADIEngine.sol/TADIEngine.json"
    ORACLE_ABI_PATH: str = (
        "build/artifacts/contracts/dev/functions/FunctionsOracle.sol/FunctionsOracle.json"
    )

    # --- Oracle request ---
    SUBSCRIPTION_ID: int = 1305
    REQUEST_GAS_LIMIT: int = 300_000  # callback gas budget inside the request
    TX_GAS_LIMIT: int = 12_000_000  # gas limit of the submitting transaction
    CONFIRMATION_BLOCKS: int = 2

    # --- Fulfillment watch ---
    POLL_INTERVAL_S: float = 1.0
    FULFILLMENT_TIMEOUT_S: float = 300.0
    EVENT_POLL_INTERVAL_S: float = 2.0

    # --- Remote secrets / secret store ---
    STORE_API_URL: str = "https://api.github.com"
    SECRETS_FETCH_TIMEOUT_S: float = 3.0
    SECRETS_MAX_CONTENT_LENGTH: int = 1_000_000

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    STRICT_NO_LOGGING_MODE: bool = False

    @classmethod
    def from_env(cls) -> Self:
        """
        Construct a Config object, overriding defaults with environment variables.

        Environment variable names are prefixed with TADI_ and match field names.
        Example: TADI_CONFIRMATION_BLOCKS=3
        """
        return cls(
            # --- Credentials ---
            SIGNER_PRIVATE_KEY=_get_env_str("SIGNER_PRIVATE_KEY", cls.SIGNER_PRIVATE_KEY),
            TRACKING_API_KEY=_get_env_str("TRACKING_API_KEY", cls.TRACKING_API_KEY),
            STORE_API_TOKEN=_get_env_str("STORE_API_TOKEN", cls.STORE_API_TOKEN),

            # --- Ledger ---
            RPC_URL=_get_env_str("RPC_URL", cls.RPC_URL),
            CLIENT_CONTRACT_ADDRESS=_get_env_str(
                "CLIENT_CONTRACT_ADDRESS", cls.CLIENT_CONTRACT_ADDRESS
            ),
            ORACLE_ADDRESS=_get_env_str("ORACLE_ADDRESS", cls.ORACLE_ADDRESS),
            CLIENT_ABI_PATH=_get_env_str("CLIENT_ABI_PATH", cls.CLIENT_ABI_PATH),
            ORACLE_ABI_PATH=_get_env_str("ORACLE_ABI_PATH", cls.ORACLE_ABI_PATH),

            # --- Oracle request ---
            SUBSCRIPTION_ID=_get_env_int("SUBSCRIPTION_ID", cls.SUBSCRIPTION_ID),
            REQUEST_GAS_LIMIT=_get_env_int("REQUEST_GAS_LIMIT", cls.REQUEST_GAS_LIMIT),
            TX_GAS_LIMIT=_get_env_int("TX_GAS_LIMIT", cls.TX_GAS_LIMIT),
            CONFIRMATION_BLOCKS=_get_env_int("CONFIRMATION_BLOCKS", cls.CONFIRMATION_BLOCKS),

            # --- Fulfillment watch ---
            POLL_INTERVAL_S=_get_env_float("POLL_INTERVAL_S", cls.POLL_INTERVAL_S),
            FULFILLMENT_TIMEOUT_S=_get_env_float(
                "FULFILLMENT_TIMEOUT_S", cls.FULFILLMENT_TIMEOUT_S
            ),
            EVENT_POLL_INTERVAL_S=_get_env_float(
                "EVENT_POLL_INTERVAL_S", cls.EVENT_POLL_INTERVAL_S
            ),

            # --- Remote secrets / secret store ---
            STORE_API_URL=_get_env_str("STORE_API_URL", cls.STORE_API_URL),
            SECRETS_FETCH_TIMEOUT_S=_get_env_float(
                "SECRETS_FETCH_TIMEOUT_S", cls.SECRETS_FETCH_TIMEOUT_S
            ),
            SECRETS_MAX_CONTENT_LENGTH=_get_env_int(
                "SECRETS_MAX_CONTENT_LENGTH", cls.SECRETS_MAX_CONTENT_LENGTH
            ),

            # --- Logging ---
            LOG_LEVEL=_get_env_str("LOG_LEVEL", cls.LOG_LEVEL),
            STRICT_NO_LOGGING_MODE=_get_env_bool(
                "STRICT_NO_LOGGING_MODE", cls.STRICT_NO_LOGGING_MODE
            ),
        )
