# src/orchestrator/secrets_resolver.py

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import aiohttp

from common.encryption import encrypt, sign_and_encrypt
from common.errors import ConfigError, ConsistencyError, CoverageError, SecretsFetchError
from common.logging_utils import log_event
from common.schemas.encrypted_payload import EncryptedPayload, RemoteArtifactHandle, SecretsOrigin


DEFAULT_SECRETS_KEY = "0x0"

SecretsInput = Union[Mapping[str, str], Sequence[str], None]


def _canonical_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class SecretsResolver:
    """
    Turns the request's secrets input into the encrypted payload the oracle
    network expects:

    - Inline mapping: signed+encrypted for the DON, published as a private
      artifact on the secret store; the payload is the encrypted raw URL of
      that artifact. The artifact handle is returned for cleanup.
    - List of URLs: every URL must serve the same JSON object and cover every
      node (or provide the "0x0" default); the payload is the encrypted
      space-joined URL list.
    - None: the empty payload.

    All shape checks run before any network call.
    """

    def __init__(
        self,
        store_client,
        session: aiohttp.ClientSession,
        store_token: str = "",
        fetch_timeout_s: float = 3.0,
        max_content_length: int = 1_000_000,
    ):
        self.store_client = store_client
        self.session = session
        self.store_token = store_token
        self.fetch_timeout = aiohttp.ClientTimeout(total=fetch_timeout_s)
        self.max_content_length = max_content_length

    async def resolve(
        self,
        secrets: SecretsInput,
        oracle,
        signer_key: Optional[str] = None,
    ) -> Tuple[EncryptedPayload, Optional[RemoteArtifactHandle]]:
        """
        Returns
        -------
        payload : EncryptedPayload
            Encrypted secrets reference, tagged with its origin.
        handle : RemoteArtifactHandle or None
            The artifact to delete after fulfillment (inline secrets only).
        """
        if secrets is None:
            return EncryptedPayload.empty(), None

        if isinstance(secrets, Mapping):
            if not secrets:
                raise ConfigError("Inline secrets must contain at least one entry")
            if not signer_key:
                raise ConfigError("signerPrivateKey is required to encrypt inline secrets")
            if not self.store_token:
                raise ConfigError("Store API token is required to publish inline secrets")

            don_public_key = await oracle.get_don_public_key()
            return await self._resolve_inline(secrets, don_public_key, signer_key)

        if isinstance(secrets, (list, tuple)):
            if not secrets:
                raise ConfigError("Remote secrets must list at least one URL")
            if not all(isinstance(url, str) and url for url in secrets):
                raise ConfigError("Remote secrets must be a list of URL strings")

            don_public_key = await oracle.get_don_public_key()
            return await self._resolve_remote(list(secrets), don_public_key, oracle)

        raise ConfigError(
            "Unsupported secrets format. Use a mapping of inline secrets or a list of URLs."
        )

    # -------------------------
    # Inline secrets
    # -------------------------
    async def _resolve_inline(
        self, secrets: Mapping[str, str], don_public_key: bytes, signer_key: str
    ) -> Tuple[EncryptedPayload, RemoteArtifactHandle]:
        signed = sign_and_encrypt(signer_key, don_public_key, _canonical_json(dict(secrets)))
        offchain_secrets = {DEFAULT_SECRETS_KEY: base64.b64encode(signed).decode("ascii")}

        await self.store_client.verify_access_scope(self.store_token)
        handle = await self.store_client.create_artifact(
            self.store_token, _canonical_json(offchain_secrets)
        )

        payload = EncryptedPayload(
            data=encrypt(don_public_key, handle.raw_url),
            origin=SecretsOrigin.INLINE,
        )

        log_event(
            "secrets_resolved",
            artifact_id=handle.artifact_id,
            extra={"origin": payload.origin.value, "entries": len(secrets)},
        )
        return payload, handle

    # -------------------------
    # Remote secrets
    # -------------------------
    async def _resolve_remote(
        self, urls: List[str], don_public_key: bytes, oracle
    ) -> Tuple[EncryptedPayload, None]:
        node_addresses = await oracle.get_all_node_addresses()

        responses: List[Tuple[str, Dict[str, Any]]] = []
        for url in urls:
            responses.append((url, await self._fetch_secrets(url)))

        verify_remote_secrets(responses, node_addresses)

        payload = EncryptedPayload(
            data=encrypt(don_public_key, " ".join(urls)),
            origin=SecretsOrigin.REMOTE,
        )

        log_event(
            "secrets_resolved",
            extra={
                "origin": payload.origin.value,
                "urls": len(urls),
                "nodes": len(node_addresses),
            },
        )
        return payload, None

    async def _fetch_secrets(self, url: str) -> Dict[str, Any]:
        try:
            async with self.session.get(url, timeout=self.fetch_timeout) as resp:
                if resp.status >= 400:
                    raise SecretsFetchError(url, f"HTTP {resp.status} {resp.reason}")
                if resp.content_length is not None and resp.content_length > self.max_content_length:
                    raise SecretsFetchError(url, "response exceeds maximum content length")

                chunks: List[bytes] = []
                size = 0
                async for chunk in resp.content.iter_chunked(64 * 1024):
                    size += len(chunk)
                    if size > self.max_content_length:
                        raise SecretsFetchError(url, "response exceeds maximum content length")
                    chunks.append(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SecretsFetchError(url, repr(e)) from e

        body = b"".join(chunks)
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SecretsFetchError(url, "response is not valid JSON") from e

        if not isinstance(data, dict):
            raise SecretsFetchError(url, "response is not a JSON object")
        return data


def verify_remote_secrets(
    responses: List[Tuple[str, Dict[str, Any]]], node_addresses: Sequence[str]
) -> bool:
    """
    Check that every URL served the same JSON object and that every node has
    its own secrets entry or the "0x0" default.
    """
    reference_url, reference = responses[0]
    reference_json = _canonical_json(reference)

    for url, secrets in responses[1:]:
        if _canonical_json(secrets) != reference_json:
            raise ConsistencyError(url, reference_url)

    for node_address in node_addresses:
        address = node_address.lower()
        if not reference.get(address) and not reference.get(DEFAULT_SECRETS_KEY):
            raise CoverageError(address)

    return True
