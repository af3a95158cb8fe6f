# src/orchestrator/request_submitter.py

from typing import List, Optional

from common.errors import ProtocolError
from common.logging_utils import log_event
from common.schemas.encrypted_payload import EncryptedPayload
from orchestrator.ledger_client import normalize_request_id


class RequestSubmitter:
    """
    Sends the oracle request through the client contract and returns the
    request id taken from the confirmed receipt's RequestSent event.
    """

    def __init__(self, ledger, tx_gas_limit: int = 12_000_000):
        self.ledger = ledger
        self.tx_gas_limit = tx_gas_limit

    async def submit(
        self,
        source: str,
        payload: Optional[EncryptedPayload],
        args: Optional[List[str]],
        subscription_id: int,
        gas_budget: int,
        confirmations: int,
    ) -> str:
        # Empty bytes are the on-chain "no secrets" sentinel (0x)
        secrets = payload.data if payload is not None else b""

        tx_hash = await self.ledger.execute_request(
            source,
            secrets,
            list(args or []),
            subscription_id,
            gas_budget,
            self.tx_gas_limit,
        )

        log_event(
            "request_submitted",
            extra={"tx_hash": tx_hash, "confirmations": confirmations},
        )

        receipt = await self.ledger.wait_for_confirmations(tx_hash, confirmations)

        events = self.ledger.request_sent_events(receipt)
        if not events:
            raise ProtocolError(
                f"Transaction {tx_hash} did not emit RequestSent; "
                "the contract rejected or mis-handled the request"
            )

        request_id = normalize_request_id(events[0]["id"])

        log_event("request_accepted", request_id=request_id, extra={"tx_hash": tx_hash})
        return request_id
