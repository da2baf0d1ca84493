"""
PQ Messenger Relay
==================
Flask relay holding a public-key directory and per-user inboxes in memory.

The relay only ever stores opaque base64 text. It never sees plaintext,
shared secrets or private keys.
"""

import binascii
import logging
import os
import threading
import uuid
from base64 import b64decode
from typing import Dict, List, Optional

from flask import Flask, current_app, jsonify, request

from pqmessenger.core.logging import configure_root_logger
from pqmessenger.transport.base import Envelope, now_timestamp

log = logging.getLogger("pqmessenger.relay")

MAX_USER_ID_LENGTH = 128


# ============================================================
# STORAGE
# ============================================================

class RelayStore:
    """Directory and inboxes shared by every request of one app."""

    def __init__(self) -> None:
        self._keys: Dict[str, str] = {}
        self._inboxes: Dict[str, List[Envelope]] = {}
        self._messages: Dict[str, Envelope] = {}
        self._lock = threading.Lock()

    def publish(self, user_id: str, public_key_b64: str) -> bool:
        """Store a key; True if user_id is new."""
        with self._lock:
            created = user_id not in self._keys
            self._keys[user_id] = public_key_b64
            self._inboxes.setdefault(user_id, [])
        return created

    def public_key(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._keys.get(user_id)

    def users(self) -> List[str]:
        with self._lock:
            return sorted(self._keys)

    def has_user(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._keys

    def deliver(self, envelope: Envelope) -> Envelope:
        with self._lock:
            stored = envelope.with_message_id(uuid.uuid4().hex)
            self._inboxes.setdefault(envelope.recipient, []).append(stored)
            self._messages[stored.message_id] = stored
        return stored

    def inbox(self, user_id: str) -> List[Envelope]:
        with self._lock:
            return list(self._inboxes.get(user_id, ()))

    def clear_inbox(self, user_id: str) -> int:
        with self._lock:
            envelopes = self._inboxes.get(user_id, [])
            for envelope in envelopes:
                self._messages.pop(envelope.message_id, None)
            count = len(envelopes)
            self._inboxes[user_id] = []
        return count

    def message(self, message_id: str) -> Optional[Envelope]:
        with self._lock:
            return self._messages.get(message_id)

    def delete_message(self, message_id: str) -> bool:
        with self._lock:
            envelope = self._messages.pop(message_id, None)
            if envelope is None:
                return False
            inbox = self._inboxes.get(envelope.recipient, [])
            self._inboxes[envelope.recipient] = [e for e in inbox if e.message_id != message_id]
        return True

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"user_count": len(self._keys), "message_count": len(self._messages)}


def _store() -> RelayStore:
    return current_app.extensions["pqmessenger_relay"]


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def _valid_user_id(value) -> bool:
    return isinstance(value, str) and 0 < len(value) <= MAX_USER_ID_LENGTH


def _required_user_id():
    user_id = request.args.get("user_id", "").strip()
    if not _valid_user_id(user_id):
        return None
    return user_id


# ============================================================
# APP FACTORY
# ============================================================

def create_app(store: Optional[RelayStore] = None) -> Flask:
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024
    app.extensions["pqmessenger_relay"] = store or RelayStore()

    # CORS handler - handles both preflight and actual requests
    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, DELETE, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        response.headers['Access-Control-Max-Age'] = '3600'
        return response

    @app.route('/api/<path:path>', methods=['OPTIONS'])
    def handle_options(path):
        return app.make_response('')

    @app.errorhandler(404)
    def not_found(exc):
        return _error("Endpoint not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(exc):
        return _error("Method not allowed", 405)

    @app.errorhandler(413)
    def too_large(exc):
        return _error("Request body too large", 413)

    # ============================================================
    # HEALTH CHECK
    # ============================================================

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "ok",
            "timestamp": now_timestamp(),
            **_store().stats(),
        })

    # ============================================================
    # KEY DIRECTORY
    # ============================================================

    @app.route("/api/users", methods=["POST"])
    def publish_key():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error("Request body must be a JSON object", 400)

        user_id = data.get("user_id")
        public_key = data.get("public_key")

        if not _valid_user_id(user_id):
            return _error("user_id must be a non-empty string", 400)
        if not isinstance(public_key, str) or not public_key:
            return _error("public_key must be a base64 string", 400)
        try:
            b64decode(public_key, validate=True)
        except (binascii.Error, ValueError):
            return _error("public_key must be a base64 string", 400)

        created = _store().publish(user_id, public_key)
        log.info("Public key %s for %s", "registered" if created else "replaced", user_id)
        return jsonify({"user_id": user_id, "created": created}), (201 if created else 200)

    @app.route("/api/users", methods=["GET"])
    def get_users():
        if "user_id" not in request.args:
            return jsonify({"users": _store().users()})

        user_id = _required_user_id()
        if user_id is None:
            return _error("user_id must be a non-empty string", 400)

        public_key = _store().public_key(user_id)
        if public_key is None:
            return _error("Unknown user", 404)
        return jsonify({"user_id": user_id, "public_key": public_key})

    # ============================================================
    # MESSAGES
    # ============================================================

    @app.route("/api/messages", methods=["POST"])
    def send_message():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error("Request body must be a JSON object", 400)

        try:
            envelope = Envelope.from_dict(data)
        except ValueError as exc:
            return _error(str(exc), 400)

        if not _store().has_user(envelope.recipient):
            return _error("Unknown recipient", 404)

        stored = _store().deliver(envelope)
        log.info("Message %s queued: %s -> %s", stored.message_id, stored.sender, stored.recipient)
        return jsonify({"message_id": stored.message_id, "delivered_at": now_timestamp()}), 201

    @app.route("/api/messages", methods=["GET"])
    def get_message():
        message_id = request.args.get("message_id", "").strip()
        if not message_id:
            return _error("message_id is required", 400)

        envelope = _store().message(message_id)
        if envelope is None:
            return _error("Message not found", 404)
        return jsonify({"message": envelope.to_dict()})

    @app.route("/api/messages", methods=["DELETE"])
    def delete_message():
        message_id = request.args.get("message_id", "").strip()
        if not message_id:
            return _error("message_id is required", 400)

        if not _store().delete_message(message_id):
            return _error("Message not found", 404)
        return jsonify({"deleted": message_id})

    # ============================================================
    # INBOX
    # ============================================================

    @app.route("/api/inbox", methods=["GET"])
    def get_inbox():
        user_id = _required_user_id()
        if user_id is None:
            return _error("user_id is required", 400)
        if not _store().has_user(user_id):
            return _error("Unknown user", 404)

        return jsonify({"inbox": [e.to_dict() for e in _store().inbox(user_id)]})

    @app.route("/api/inbox", methods=["DELETE"])
    def clear_inbox():
        user_id = _required_user_id()
        if user_id is None:
            return _error("user_id is required", 400)
        if not _store().has_user(user_id):
            return _error("Unknown user", 404)

        count = _store().clear_inbox(user_id)
        log.info("Cleared %d messages for %s", count, user_id)
        return jsonify({"cleared": count})

    return app


# ============================================================
# ENTRY POINT
# ============================================================

application = create_app()

if __name__ == "__main__":
    configure_root_logger(level=os.environ.get("LOG_LEVEL", "INFO"), enable_file=False)
    application.run(host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
