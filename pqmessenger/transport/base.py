"""
Transport Interface
===================

Boundary between the session layer and whatever moves public keys and
envelopes between parties.

The session layer never performs network I/O itself. A transport
publishes public keys, resolves a peer's current key, delivers
envelopes and returns a user's inbox. Retries, timeouts and
cancellation are the transport's business.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional

from pqmessenger.core.crypto.message_cipher import SealedEnvelope

MAX_TIMESTAMP = 2 ** 64 - 1

_REQUIRED_FIELDS = ("sender", "recipient", "ciphertext", "nonce", "timestamp")


def now_timestamp() -> int:
    """Seconds since the epoch as an unsigned integer."""
    return int(time.time())


@dataclass(frozen=True)
class Envelope:
    """
    Delivery structure exchanged through the transport.

    Binary fields are base64 text. kem_ciphertext carries the sender's
    KEM ciphertext for the (sender, recipient) direction so the
    recipient can derive the same shared secret.
    """

    sender: str
    recipient: str
    ciphertext: str
    nonce: str
    timestamp: int
    kem_ciphertext: Optional[str] = None
    message_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.sender or not self.recipient:
            raise ValueError("Envelope needs a sender and a recipient")
        if not isinstance(self.timestamp, int) or isinstance(self.timestamp, bool):
            raise ValueError("Envelope timestamp must be an integer")
        if not 0 <= self.timestamp <= MAX_TIMESTAMP:
            raise ValueError("Envelope timestamp out of range")

    def sealed(self) -> SealedEnvelope:
        """
        Decode the message body.

        Raises:
            InvalidEncodingError: If ciphertext or nonce is not base64
        """
        return SealedEnvelope.from_text(self.ciphertext, self.nonce)

    def with_message_id(self, message_id: str) -> "Envelope":
        data = asdict(self)
        data["message_id"] = message_id
        return Envelope(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Envelope":
        """
        Raises:
            ValueError: If required fields are missing or malformed
        """
        missing = [name for name in _REQUIRED_FIELDS if name not in data]
        if missing:
            raise ValueError(f"Envelope missing fields: {', '.join(missing)}")

        for name in ("sender", "recipient", "ciphertext", "nonce"):
            if not isinstance(data[name], str):
                raise ValueError(f"Envelope field {name} must be a string")
        for name in ("kem_ciphertext", "message_id"):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise ValueError(f"Envelope field {name} must be a string")

        return cls(
            sender=data["sender"],
            recipient=data["recipient"],
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            timestamp=data["timestamp"],
            kem_ciphertext=data.get("kem_ciphertext"),
            message_id=data.get("message_id"),
        )

    def __repr__(self) -> str:
        return (
            f"Envelope({self.sender!r} -> {self.recipient!r}, "
            f"ts={self.timestamp}, id={self.message_id!r})"
        )


@dataclass(frozen=True)
class DeliveryReceipt:
    """Acknowledgment returned by Transport.deliver()."""

    message_id: str
    delivered_at: int


class Transport(ABC):
    """
    Key directory and envelope relay used by MessengerSession.

    Implementations raise TransportError for any failure to reach or
    use the underlying service.
    """

    @abstractmethod
    def publish_key(self, user_id: str, public_key: bytes) -> None:
        """Publish (or replace) user_id's current public key."""
        ...

    @abstractmethod
    def fetch_public_key(self, user_id: str) -> Optional[bytes]:
        """Current public key of user_id, or None if not published."""
        ...

    @abstractmethod
    def list_users(self) -> List[str]:
        """Ids of every user with a published key."""
        ...

    @abstractmethod
    def deliver(self, envelope: Envelope) -> DeliveryReceipt:
        """Hand an envelope over for delivery to envelope.recipient."""
        ...

    @abstractmethod
    def fetch_inbox(self, user_id: str) -> List[Envelope]:
        """Envelopes addressed to user_id, oldest first."""
        ...

    @abstractmethod
    def delete_message(self, message_id: str) -> bool:
        """Drop one delivered envelope; False if it was already gone."""
        ...

    @abstractmethod
    def clear_inbox(self, user_id: str) -> None:
        """Drop every envelope addressed to user_id."""
        ...

    def close(self) -> None:
        pass

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
