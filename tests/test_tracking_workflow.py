# tests/test_tracking_workflow.py

import asyncio

import aiohttp
import pytest
from aiohttp.test_utils import TestServer as LocalServer

from common.config import Config
from common.encryption import decrypt
from common.errors import FulfillmentTimeoutError, ProtocolError
from common.schemas.request_models import TrackingRequestConfig
from fakes import (
    ARTIFACT_ID,
    ARTIFACT_URL,
    FakeLedger,
    make_don_keypair,
    make_secrets_app,
    make_signer_key,
    make_store_app,
)
from orchestrator.ledger_client import RESPONSE_EVENT
from orchestrator.tracking_workflow import TrackingRequestWorkflow
from secrets_store.store_client import SecretStoreClient


NODE_A = "0xAbC0000000000000000000000000000000000001"
NODE_B = "0xDef0000000000000000000000000000000000002"


def make_config(**overrides) -> Config:
    values = dict(
        SIGNER_PRIVATE_KEY=make_signer_key(),
        STORE_API_TOKEN="ghp_test",
        POLL_INTERVAL_S=0.01,
        FULFILLMENT_TIMEOUT_S=2.0,
        CONFIRMATION_BLOCKS=2,
    )
    values.update(overrides)
    return Config(**values)


def make_request(secrets) -> TrackingRequestConfig:
    return TrackingRequestConfig(
        source="return Functions.encodeString('Holland-1696969696')",
        args=["00340434726200036723"],
        subscription_id=1305,
        request_gas=300_000,
        secrets=secrets,
    )


def run_workflow(config, ledger, request, store_state, secret_documents=None):
    async def main():
        store_server = LocalServer(make_store_app(store_state))
        secrets_server = LocalServer(make_secrets_app(secret_documents or {}, {}))
        async with store_server, secrets_server:
            async with aiohttp.ClientSession() as session:
                base_url = str(store_server.make_url("/")).rstrip("/")
                store_client = SecretStoreClient(session, base_url=base_url)
                workflow = TrackingRequestWorkflow(config, ledger, store_client, session)

                if isinstance(request.secrets, list):
                    request.secrets = [str(secrets_server.make_url(f"/{n}")) for n in request.secrets]

                return await workflow.run(request)

    return asyncio.run(main())


def test_inline_secrets_end_to_end():
    don_private, don_public = make_don_keypair()
    ledger = FakeLedger(
        don_public_key=don_public,
        request_id=7,
        emit=[(0.05, RESPONSE_EVENT, {"requestId": 7, "result": bytes.fromhex("dead"), "err": b""})],
    )
    store_state = {"scopes": "gist"}

    report = run_workflow(make_config(), ledger, make_request({"apiKey": "k"}), store_state)

    assert report.response == b"\xde\xad"
    assert report.remote_error is None
    assert len(store_state["created"]) == 1
    assert store_state["deleted"] == [ARTIFACT_ID]

    secrets = ledger.executed[0]["secrets"]
    assert decrypt(don_private, secrets).decode() == ARTIFACT_URL + "/raw"

    # Listeners are attached before the request goes out
    assert ledger.calls.index(f"subscribe:{RESPONSE_EVENT}") < ledger.calls.index("execute_request")
    assert all(not s.active for s in ledger.subscriptions)


def test_remote_secrets_end_to_end():
    don_private, don_public = make_don_keypair()
    ledger = FakeLedger(
        don_public_key=don_public,
        node_addresses=[NODE_A, NODE_B],
        emit=[(0.02, RESPONSE_EVENT, {"requestId": 7, "result": b"Holland", "err": b""})],
    )
    store_state = {}
    request = make_request(["urlA", "urlB"])
    documents = {"urlA": {"0x0": "shared"}, "urlB": {"0x0": "shared"}}

    report = run_workflow(make_config(), ledger, request, store_state, documents)

    assert report.response_as_text() == "Holland"
    assert store_state["created"] == []
    assert store_state["deleted"] == []
    assert store_state["identity_calls"] == 0
    assert decrypt(don_private, ledger.executed[0]["secrets"]).decode() == " ".join(request.secrets)


def test_submission_failure_still_cleans_up():
    _, don_public = make_don_keypair()
    ledger = FakeLedger(don_public_key=don_public, emit_request_sent=False)
    store_state = {}

    with pytest.raises(ProtocolError):
        run_workflow(make_config(), ledger, make_request({"apiKey": "k"}), store_state)

    assert store_state["deleted"] == [ARTIFACT_ID]
    assert all(not s.active for s in ledger.subscriptions)


def test_timeout_still_cleans_up_once():
    _, don_public = make_don_keypair()
    ledger = FakeLedger(don_public_key=don_public)
    store_state = {}
    config = make_config(FULFILLMENT_TIMEOUT_S=0.05)

    with pytest.raises(FulfillmentTimeoutError):
        run_workflow(config, ledger, make_request({"apiKey": "k"}), store_state)

    assert store_state["deleted"] == [ARTIFACT_ID]


def test_failed_deletion_does_not_fail_workflow():
    _, don_public = make_don_keypair()
    ledger = FakeLedger(
        don_public_key=don_public,
        emit=[(0.01, RESPONSE_EVENT, {"requestId": 7, "result": b"ok", "err": b""})],
    )
    store_state = {"delete_status": 500}

    report = run_workflow(make_config(), ledger, make_request({"apiKey": "k"}), store_state)

    assert report.response == b"ok"
    assert store_state["deleted"] == [ARTIFACT_ID]


def test_no_secrets_skips_store():
    ledger = FakeLedger(emit=[(0.01, RESPONSE_EVENT, {"requestId": 7, "result": b"ok", "err": b""})])
    store_state = {}

    run_workflow(make_config(), ledger, make_request(None), store_state)

    assert ledger.executed[0]["secrets"] == b""
    assert "get_don_public_key" not in ledger.calls
    assert store_state["identity_calls"] == 0
