"""
In-process transport: a shared directory and inboxes in plain dicts.

Several MessengerSession objects sharing one InMemoryTransport behave
like separate clients talking through a relay.
"""

from __future__ import annotations

import threading
import uuid
from typing import Dict, List, Optional

from pqmessenger.core.errors import TransportError
from pqmessenger.transport.base import DeliveryReceipt, Envelope, Transport, now_timestamp


class InMemoryTransport(Transport):

    def __init__(self) -> None:
        self._directory: Dict[str, bytes] = {}
        self._inboxes: Dict[str, List[Envelope]] = {}
        self._lock = threading.Lock()
        self.delivered: List[Envelope] = []

    def publish_key(self, user_id: str, public_key: bytes) -> None:
        with self._lock:
            self._directory[user_id] = bytes(public_key)
            self._inboxes.setdefault(user_id, [])

    def fetch_public_key(self, user_id: str) -> Optional[bytes]:
        with self._lock:
            return self._directory.get(user_id)

    def list_users(self) -> List[str]:
        with self._lock:
            return sorted(self._directory)

    def deliver(self, envelope: Envelope) -> DeliveryReceipt:
        with self._lock:
            inbox = self._inboxes.get(envelope.recipient)
            if inbox is None:
                raise TransportError(f"Unknown recipient: {envelope.recipient}")

            stored = envelope.with_message_id(uuid.uuid4().hex)
            inbox.append(stored)
            self.delivered.append(stored)

        return DeliveryReceipt(message_id=stored.message_id, delivered_at=now_timestamp())

    def fetch_inbox(self, user_id: str) -> List[Envelope]:
        with self._lock:
            return list(self._inboxes.get(user_id, ()))

    def delete_message(self, message_id: str) -> bool:
        with self._lock:
            for inbox in self._inboxes.values():
                for index, envelope in enumerate(inbox):
                    if envelope.message_id == message_id:
                        del inbox[index]
                        return True
        return False

    def clear_inbox(self, user_id: str) -> None:
        with self._lock:
            if user_id in self._inboxes:
                self._inboxes[user_id].clear()
