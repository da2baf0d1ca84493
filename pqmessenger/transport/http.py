"""
HTTP Transport
==============

Client for the relay API served by ``pqmessenger.web.relay``.

Endpoints:
    POST   /api/users              publish {user_id, public_key}
    GET    /api/users              list user ids
    GET    /api/users?user_id=     fetch one public key
    POST   /api/messages           deliver an envelope
    DELETE /api/messages?message_id=  drop one delivered envelope
    GET    /api/inbox?user_id=     fetch inbox
    DELETE /api/inbox?user_id=     clear inbox

Public keys travel as base64 text. Every network or protocol failure
becomes a TransportError; nothing is retried here.
"""

from __future__ import annotations

import binascii
import logging
from base64 import b64decode, b64encode
from typing import Any, List, Optional

import requests

from pqmessenger.core.errors import TransportError
from pqmessenger.transport.base import DeliveryReceipt, Envelope, Transport, now_timestamp

DEFAULT_TIMEOUT = 10.0


class HttpTransport(Transport):
    """
    Relay client over a pooled requests.Session.

    Usage:
        with HttpTransport("http://localhost:8080") as transport:
            session = MessengerSession(provider, transport)
    """

    def __init__(
        self,
        server_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = server_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._log = logging.getLogger("pqmessenger.transport")

    @property
    def server_url(self) -> str:
        return self._base_url

    def _request(
        self,
        method: str,
        path: str,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> Optional[Any]:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc.__class__.__name__}") from exc

        if allow_not_found and response.status_code == 404:
            return None

        if not response.ok:
            self._log.warning("%s %s returned HTTP %d", method, path, response.status_code)
            raise TransportError(f"{method} {path} failed: HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON") from exc

    def publish_key(self, user_id: str, public_key: bytes) -> None:
        self._request(
            "POST",
            "/api/users",
            json={"user_id": user_id, "public_key": b64encode(public_key).decode("ascii")},
        )
        self._log.debug("Published public key for %s", user_id)

    def fetch_public_key(self, user_id: str) -> Optional[bytes]:
        data = self._request("GET", "/api/users", allow_not_found=True, params={"user_id": user_id})
        if data is None:
            return None

        try:
            return b64decode(data["public_key"], validate=True)
        except (KeyError, TypeError, binascii.Error, ValueError) as exc:
            raise TransportError(f"Relay returned a malformed public key for {user_id}") from exc

    def list_users(self) -> List[str]:
        data = self._request("GET", "/api/users")
        try:
            return list(data["users"])
        except (KeyError, TypeError) as exc:
            raise TransportError("Relay returned a malformed user list") from exc

    def deliver(self, envelope: Envelope) -> DeliveryReceipt:
        data = self._request("POST", "/api/messages", json=envelope.to_dict())
        try:
            return DeliveryReceipt(
                message_id=str(data["message_id"]),
                delivered_at=int(data.get("delivered_at", now_timestamp())),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportError("Relay returned a malformed delivery receipt") from exc

    def fetch_inbox(self, user_id: str) -> List[Envelope]:
        data = self._request("GET", "/api/inbox", allow_not_found=True, params={"user_id": user_id})
        if data is None:
            return []

        try:
            return [Envelope.from_dict(item) for item in data["inbox"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportError("Relay returned a malformed inbox") from exc

    def delete_message(self, message_id: str) -> bool:
        data = self._request(
            "DELETE", "/api/messages", allow_not_found=True, params={"message_id": message_id}
        )
        return data is not None

    def clear_inbox(self, user_id: str) -> None:
        self._request("DELETE", "/api/inbox", params={"user_id": user_id})

    def close(self) -> None:
        self._session.close()

    def __repr__(self) -> str:
        return f"HttpTransport({self._base_url!r})"
