# src/secrets_store/store_client.py

import asyncio
import re
import time
from typing import Optional

import aiohttp
from pydantic import ValidationError

from common.errors import AuthError, ScopeError, StoreError
from common.logging_utils import log_event
from common.schemas.encrypted_payload import RemoteArtifactHandle
from common.schemas.request_models import StoreArtifactResponse


REQUIRED_SCOPE = "gist"
SCOPES_HEADER = "X-OAuth-Scopes"
ARTIFACT_NAME_PREFIX = "encrypted-functions-request-data-"

_ARTIFACT_ID_RE = re.compile(r"/([a-fA-F0-9]+)$")


def artifact_id_from_url(url: str) -> str:
    """
    Extract the artifact id from a locator URL such as
    https://gist.github.com/<user>/<hex id>.
    """
    match = _ARTIFACT_ID_RE.search(url.rstrip("/"))
    if not match:
        raise StoreError(f"Cannot derive artifact id from URL {url}")
    return match.group(1)


class SecretStoreClient:
    """
    Client for the temporary remote store holding encrypted inline secrets.

    The store speaks the GitHub Gist API: the artifact is a private gist with
    a single JSON file, and the token must carry the `gist` scope.
    The aiohttp session is owned by the caller.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str = "https://api.github.com",
        timeout_s: float = 30.0,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def verify_access_scope(self, token: str) -> bool:
        """
        Check that `token` is valid and carries the secret-management scope.

        Raises AuthError if the identity endpoint rejects the token and
        ScopeError if the scope is missing. Extra scopes only log a warning.
        """
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with self.session.get(
                f"{self.base_url}/user", headers=headers, timeout=self.timeout
            ) as resp:
                if resp.status != 200:
                    raise AuthError(f"Failed to get user data: {resp.status} {resp.reason}")
                raw_scopes = resp.headers.get(SCOPES_HEADER, "")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthError(f"Failed to reach secret store identity endpoint: {e!r}") from e

        scopes = [s.strip() for s in raw_scopes.split(",") if s.strip()]

        if REQUIRED_SCOPE not in scopes:
            raise ScopeError(
                "The provided store API token does not have permissions to read and write Gists"
            )

        if len(scopes) > 1:
            log_event(
                "store_token_extra_scopes",
                extra={"scopes": ",".join(scopes)},
                level="warning",
            )

        return True

    async def create_artifact(self, token: str, content: str) -> RemoteArtifactHandle:
        """
        Create one private artifact holding `content`.
        """
        filename = f"{ARTIFACT_NAME_PREFIX}{int(time.time() * 1000)}.json"
        body = {
            "public": False,
            "files": {filename: {"content": content}},
        }
        headers = {"Authorization": f"token {token}"}

        try:
            async with self.session.post(
                f"{self.base_url}/gists", json=body, headers=headers, timeout=self.timeout
            ) as resp:
                if resp.status not in (200, 201):
                    raise StoreError(f"Failed to create Gist: {resp.status} {resp.reason}")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StoreError(f"Failed to create Gist: {e!r}") from e

        try:
            parsed = StoreArtifactResponse.model_validate(data)
        except ValidationError as e:
            raise StoreError("Failed to create Gist: unexpected response body") from e

        handle = RemoteArtifactHandle(
            artifact_id=parsed.id,
            url=parsed.html_url,
            filename=filename,
        )

        log_event(
            "store_artifact_created",
            artifact_id=handle.artifact_id,
            extra={"url": handle.url},
        )
        return handle

    async def delete_artifact(self, token: str, handle: RemoteArtifactHandle) -> bool:
        """
        Delete the artifact. Never raises; returns False if the store did
        not answer 204 or could not be reached.
        """
        artifact_id: Optional[str] = handle.artifact_id
        headers = {"Authorization": f"Bearer {token}"}

        try:
            if not artifact_id:
                artifact_id = artifact_id_from_url(handle.url)

            async with self.session.delete(
                f"{self.base_url}/gists/{artifact_id}", headers=headers, timeout=self.timeout
            ) as resp:
                if resp.status != 204:
                    log_event(
                        "store_artifact_delete_failed",
                        artifact_id=artifact_id,
                        error=f"{resp.status} {resp.reason}",
                        level="error",
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError, StoreError) as e:
            log_event(
                "store_artifact_delete_failed",
                artifact_id=artifact_id,
                error=repr(e),
                level="error",
            )
            return False

        log_event(
            "store_artifact_deleted",
            artifact_id=artifact_id,
            extra={"url": handle.url},
        )
        return True
