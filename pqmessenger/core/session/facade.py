"""
Messenger Session
=================

Client-side façade: one logged-in identity talking to peers through a
Transport.

Flow:
    login("alice")        keypair generated, public key published
    send("bob", "hi")     bob's key resolved, secret established once,
                          message sealed, envelope delivered with the
                          outbound KEM ciphertext attached
    read_inbox()          every envelope opened independently

All state (key store, secret cache, cipher) is owned by the session and
injected at construction; nothing is global.
"""

from __future__ import annotations

import logging
from base64 import b64encode
from dataclasses import dataclass
from typing import List, Optional

from pqmessenger.core.config import MessengerConfig
from pqmessenger.core.crypto.kem import KemProvider
from pqmessenger.core.crypto.message_cipher import MessageCipher, decode_b64
from pqmessenger.core.logging import configure_from_config
from pqmessenger.core.errors import (
    AlreadyLoggedInError,
    MessengerError,
    MisaddressedEnvelopeError,
    NoSharedSecretError,
    NotLoggedInError,
    ProviderInitError,
    UnknownRecipientError,
)
from pqmessenger.core.session.identity_store import IdentityKeyStore
from pqmessenger.core.session.secret_cache import SharedSecretCache
from pqmessenger.transport.base import DeliveryReceipt, Envelope, Transport, now_timestamp


@dataclass(frozen=True)
class ReceivedMessage:
    """
    One inbox item after opening.

    Exactly one of text and error is set.
    """

    sender: str
    timestamp: int
    text: Optional[str] = None
    error: Optional[MessengerError] = None
    message_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MessengerSession:
    """
    Usage:
        with MessengerSession(KemProvider(), InMemoryTransport()) as session:
            session.login("alice")
            session.send("bob", "hello")
            for message in session.read_inbox():
                print(message.sender, message.text)

    The session owns its provider: close() wipes the key store and the
    secret cache, then releases the provider. The transport is closed
    only when the session built it (see open()).
    """

    def __init__(
        self,
        provider: KemProvider,
        transport: Transport,
        key_store: Optional[IdentityKeyStore] = None,
        secret_cache: Optional[SharedSecretCache] = None,
        cipher: Optional[MessageCipher] = None,
    ) -> None:
        self._provider = provider
        self._transport = transport
        self._key_store = key_store or IdentityKeyStore(provider)
        self._secrets = secret_cache or SharedSecretCache(provider)
        self._cipher = cipher or MessageCipher()
        self._current_user: Optional[str] = None
        self._owns_transport = False
        self._closed = False
        self._log = logging.getLogger("pqmessenger.session")

    @classmethod
    def open(
        cls,
        config: Optional[MessengerConfig] = None,
        transport: Optional[Transport] = None,
    ) -> MessengerSession:
        """
        Build a provider, optional self-tests and transport from config.

        config.logging is applied to the root logger first (see
        LoggingConfig.configure_root), with files under config.paths.log_dir.
        If anything fails after the provider is acquired, the provider is
        released before the error propagates.

        Raises:
            ProviderInitError: Backend unavailable or self-tests failed
        """
        config = config or MessengerConfig.load()
        if config.logging.configure_root:
            configure_from_config(config.logging, config.paths.log_dir)

        provider = KemProvider(config.kem.algorithm, config.kem.backend)
        owns_transport = transport is None

        try:
            if config.security.run_self_tests:
                # Imported here; hardening only reaches core lazily
                from pqmessenger.security.hardening import run_self_tests

                passed, _ = run_self_tests(provider)
                if not passed:
                    raise ProviderInitError("Cryptographic self-tests failed")

            if transport is None:
                from pqmessenger.transport.http import HttpTransport

                transport = HttpTransport(
                    config.transport.server_url,
                    timeout=config.transport.timeout_seconds,
                )

            session = cls(
                provider,
                transport,
                cipher=MessageCipher(track_nonces=config.cipher.track_nonces),
            )
        except Exception:
            provider.close()
            raise

        session._owns_transport = owns_transport
        return session

    @property
    def current_user(self) -> Optional[str]:
        return self._current_user

    @property
    def provider(self) -> KemProvider:
        return self._provider

    @property
    def key_store(self) -> IdentityKeyStore:
        return self._key_store

    @property
    def secret_cache(self) -> SharedSecretCache:
        return self._secrets

    def _require_login(self) -> str:
        if self._current_user is None:
            raise NotLoggedInError("Log in before using the session")
        return self._current_user

    def login(self, user_id: str) -> bytes:
        """
        Create user_id's keypair and publish its public key.

        One identity at a time: call logout() before logging in as
        someone else.

        Returns:
            The published public key

        Raises:
            AlreadyLoggedInError: If an identity is already logged in
            DuplicateIdentityError: If user_id already exists in this process
            TransportError: If publishing failed; the identity is removed
        """
        if self._current_user is not None:
            raise AlreadyLoggedInError(
                f"Already logged in as {self._current_user}; log out first"
            )

        keypair = self._key_store.create_identity(user_id)
        try:
            self._transport.publish_key(user_id, keypair.public_key)
        except MessengerError:
            self._key_store.remove_identity(user_id)
            raise

        self._current_user = user_id
        self._log.info("Logged in as %s", user_id)
        return keypair.public_key

    def users(self) -> List[str]:
        """Ids with a published key, as reported by the transport."""
        self._require_login()
        return self._transport.list_users()

    def send(self, recipient: str, plaintext: str) -> DeliveryReceipt:
        """
        Seal plaintext for recipient and hand it to the transport.

        If the recipient has published a different public key since the
        outbound secret was established (e.g. they logged out and back
        in), that secret is invalidated and a new one is established
        against the current key.

        Raises:
            NotLoggedInError: Before login()
            UnknownRecipientError: If recipient has no published key
            EncapsulationError, EncryptionError, TransportError
        """
        sender = self._require_login()

        public_key = self._transport.fetch_public_key(recipient)
        if public_key is None:
            raise UnknownRecipientError(f"No public key for recipient: {recipient}")

        if self._secrets.peer_key_changed(sender, recipient, public_key):
            self._log.warning("%s published a new public key; re-establishing secret", recipient)
            self._secrets.invalidate(sender, recipient)

        secret = self._secrets.get_or_establish(sender, recipient, public_key)
        kem_ct = self._secrets.outbound_ciphertext(sender, recipient)
        ciphertext_b64, nonce_b64 = self._cipher.seal(plaintext, secret).to_text()

        envelope = Envelope(
            sender=sender,
            recipient=recipient,
            ciphertext=ciphertext_b64,
            nonce=nonce_b64,
            timestamp=now_timestamp(),
            kem_ciphertext=b64encode(kem_ct).decode("ascii") if kem_ct else None,
        )
        receipt = self._transport.deliver(envelope)
        self._log.debug("Sent message %s to %s", receipt.message_id, recipient)
        return receipt

    def receive(self, envelope: Envelope) -> str:
        """
        Open one envelope addressed to the current user.

        Raises:
            NotLoggedInError: Before login()
            MisaddressedEnvelopeError: If the envelope is for someone else
            NoSharedSecretError: No KEM ciphertext and nothing cached
            InvalidEncodingError, DecapsulationError, DecryptionError,
            InvalidUtf8Error
        """
        local = self._require_login()
        if envelope.recipient != local:
            raise MisaddressedEnvelopeError(
                f"Envelope for {envelope.recipient} delivered to {local}"
            )

        if envelope.kem_ciphertext:
            kem_ct = decode_b64("kem_ciphertext", envelope.kem_ciphertext)
            secret = self._secrets.accept(
                local,
                envelope.sender,
                kem_ct,
                self._key_store.private_key_of(local),
            )
        else:
            secret = self._secrets.inbound_secret(local, envelope.sender)
            if secret is None:
                raise NoSharedSecretError(f"No shared secret with {envelope.sender}")

        return self._cipher.open(envelope.sealed(), secret)

    def read_inbox(self, clear: bool = False) -> List[ReceivedMessage]:
        """
        Fetch and open every envelope in the current user's inbox.

        A failure on one envelope is reported on that item and does not
        stop the rest.

        Args:
            clear: Delete the envelopes just read from the transport.
                Only those are deleted; anything delivered after the
                fetch stays for the next read.
        """
        local = self._require_login()
        envelopes = self._transport.fetch_inbox(local)

        messages: List[ReceivedMessage] = []
        for envelope in envelopes:
            try:
                text = self.receive(envelope)
            except MessengerError as exc:
                self._log.warning(
                    "Could not open message %s from %s: %s",
                    envelope.message_id, envelope.sender, exc.__class__.__name__,
                )
                messages.append(ReceivedMessage(
                    sender=envelope.sender,
                    timestamp=envelope.timestamp,
                    error=exc,
                    message_id=envelope.message_id,
                ))
            else:
                messages.append(ReceivedMessage(
                    sender=envelope.sender,
                    timestamp=envelope.timestamp,
                    text=text,
                    message_id=envelope.message_id,
                ))

        if clear:
            for envelope in envelopes:
                if envelope.message_id is None:
                    self._log.warning("Cannot delete message from %s without an id", envelope.sender)
                    continue
                self._transport.delete_message(envelope.message_id)

        self._log.info("Read %d messages for %s", len(messages), local)
        return messages

    def logout(self) -> None:
        """Forget the current identity and every secret it owns."""
        local = self._require_login()
        removed = self._secrets.invalidate_identity(local)
        self._key_store.remove_identity(local)
        self._current_user = None
        self._log.info("Logged out %s (%d secrets wiped)", local, removed)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._current_user = None
        self._secrets.close()
        self._key_store.close()
        self._provider.close()
        if self._owns_transport:
            self._transport.close()

    def __enter__(self) -> "MessengerSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"MessengerSession(user={self._current_user!r}, provider={self._provider!r})"
