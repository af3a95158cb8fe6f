# src/secrets_store/cleanup.py

import asyncio
import threading
from typing import Optional

from common.logging_utils import log_event
from common.schemas.encrypted_payload import RemoteArtifactHandle


class CleanupCoordinator:
    """
    Deletes the temporary secrets artifact at most once.

    The first caller claims the latch (lock-protected compare-and-set) and
    starts the deletion as its own task; every caller, including later ones,
    awaits that same task through `asyncio.shield`, so cancelling a caller
    never aborts an in-flight deletion. Failures are logged, never raised.
    """

    def __init__(self, store_client, token: str):
        self.store_client = store_client
        self.token = token
        self._handle: Optional[RemoteArtifactHandle] = None
        self._latch = threading.Lock()
        self._claimed = False
        self._task: Optional[asyncio.Task] = None

    def register(self, handle: Optional[RemoteArtifactHandle]) -> None:
        if handle is None:
            return
        if self._handle is not None and self._handle != handle:
            raise RuntimeError("A secrets artifact is already registered for cleanup")
        self._handle = handle

    @property
    def has_artifact(self) -> bool:
        return self._handle is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def _claim(self) -> bool:
        with self._latch:
            if self._claimed:
                return False
            self._claimed = True
            return True

    async def cleanup(self) -> bool:
        """
        Returns True once the artifact is gone (or there never was one).
        """
        if self._handle is None:
            return True

        if self._claim():
            self._task = asyncio.ensure_future(self._delete(self._handle))

        # The claimant assigns _task synchronously right after claiming,
        # so a concurrent caller in the same loop always sees it here.
        return await asyncio.shield(self._task)

    async def _delete(self, handle: RemoteArtifactHandle) -> bool:
        try:
            deleted = await self.store_client.delete_artifact(self.token, handle)
        except Exception as e:
            log_event(
                "cleanup_failed",
                artifact_id=handle.artifact_id,
                error=repr(e),
                level="error",
            )
            return False

        if not deleted:
            log_event(
                "cleanup_incomplete",
                artifact_id=handle.artifact_id,
                extra={"url": handle.url},
                level="warning",
            )
        return deleted
