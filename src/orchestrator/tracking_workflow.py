# src/orchestrator/tracking_workflow.py

import aiohttp

from common.config import Config
from common.logging_utils import log_event
from common.schemas.fulfillment import FulfillmentReport
from common.schemas.request_models import TrackingRequestConfig
from orchestrator.fulfillment_watcher import FulfillmentWatcher
from orchestrator.request_submitter import RequestSubmitter
from orchestrator.secrets_resolver import SecretsResolver
from secrets_store.cleanup import CleanupCoordinator


class TrackingRequestWorkflow:
    """
    One tracking request, end to end:

      secrets -> SecretsResolver -> RequestSubmitter -> FulfillmentWatcher

    Listeners are attached before submission. Whatever happens, the
    temporary secrets artifact (if one was created) is deleted exactly once
    before `run()` returns or raises.
    """

    def __init__(self, config: Config, ledger, store_client, session: aiohttp.ClientSession):
        self.config = config
        self.ledger = ledger

        self.cleanup = CleanupCoordinator(store_client, config.STORE_API_TOKEN)
        self.resolver = SecretsResolver(
            store_client,
            session,
            store_token=config.STORE_API_TOKEN,
            fetch_timeout_s=config.SECRETS_FETCH_TIMEOUT_S,
            max_content_length=config.SECRETS_MAX_CONTENT_LENGTH,
        )
        self.submitter = RequestSubmitter(ledger, tx_gas_limit=config.TX_GAS_LIMIT)
        self.watcher = FulfillmentWatcher(
            ledger,
            self.cleanup,
            poll_interval_s=config.POLL_INTERVAL_S,
            timeout_s=config.FULFILLMENT_TIMEOUT_S,
        )

    async def run(self, request: TrackingRequestConfig) -> FulfillmentReport:
        balance = await self.ledger.contract_balance()
        log_event("client_contract_balance", extra={"wei": balance})

        try:
            payload, handle = await self.resolver.resolve(
                request.secrets, self.ledger, self.config.SIGNER_PRIVATE_KEY
            )
            self.cleanup.register(handle)

            await self.watcher.subscribe()

            request_id = await self.submitter.submit(
                request.source,
                payload,
                request.args,
                request.subscription_id,
                request.request_gas,
                self.config.CONFIRMATION_BLOCKS,
            )

            return await self.watcher.wait(request_id)
        finally:
            # No-ops when the watcher already finished both
            await self.watcher.unsubscribe()
            await self.cleanup.cleanup()
