from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SecretsOrigin(Enum):
    INLINE = "INLINE"
    REMOTE = "REMOTE"
    NONE = "NONE"


@dataclass(frozen=True)
class EncryptedPayload:
    """
    Encrypted secrets reference sent with the oracle request.

    INLINE: ciphertext of the artifact's raw URL (the artifact holds the
    signed+encrypted secrets). REMOTE: ciphertext of the space-joined
    secrets URLs. NONE: empty, submitted as the 0x sentinel.
    """
    data: bytes
    origin: SecretsOrigin

    @classmethod
    def empty(cls) -> "EncryptedPayload":
        return cls(data=b"", origin=SecretsOrigin.NONE)

    def to_hex(self) -> str:
        return "0x" + self.data.hex()


@dataclass(frozen=True)
class RemoteArtifactHandle:
    """
    A temporary private artifact on the secret store.
    `url` is the human-facing locator; `url + "/raw"` serves the content.
    """
    artifact_id: str
    url: str
    filename: Optional[str] = None

    @property
    def raw_url(self) -> str:
        return f"{self.url}/raw"
