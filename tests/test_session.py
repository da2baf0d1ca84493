"""End-to-end tests for MessengerSession over the in-memory transport."""

import logging
from unittest import mock

import pytest

from pqmessenger.core.config import (
    KemConfig,
    LoggingConfig,
    MessengerConfig,
    PathConfig,
    SecurityConfig,
)
from pqmessenger.core.crypto.kem import KemProvider
from pqmessenger.core.errors import (
    AlreadyLoggedInError,
    DecryptionError,
    DuplicateIdentityError,
    MisaddressedEnvelopeError,
    NoSharedSecretError,
    NotLoggedInError,
    ProviderInitError,
    TransportError,
    UnknownRecipientError,
)
from pqmessenger.core.session import IdentityKeyStore, MessengerSession
from pqmessenger.security.hardening import CheckResult, SecurityCheckResult
from pqmessenger.transport.base import Envelope
from pqmessenger.transport.memory import InMemoryTransport


@pytest.fixture
def alice(provider, transport):
    session = MessengerSession(provider, transport)
    session.login("alice")
    return session


@pytest.fixture
def bob(transport, counting_backend):
    session = MessengerSession(KemProvider(backend=counting_backend), transport)
    session.login("bob")
    yield session
    session.close()


def test_alice_bob_scenario(alice, bob, transport, counting_backend):
    """Two sends reuse one secret but never one nonce."""
    bob_pk = transport.fetch_public_key("bob")
    assert len(bob_pk) == 1184
    assert len(bob.key_store.private_key_of("bob")) == 2400

    alice.send("bob", "Hello Bob")
    encapsulations = counting_backend.encapsulate_calls
    alice.send("bob", "Hello Bob")

    assert counting_backend.encapsulate_calls == encapsulations
    assert alice.secret_cache.pairs() == [("alice", "bob")]

    first, second = transport.delivered
    assert first.nonce != second.nonce
    assert first.ciphertext != second.ciphertext
    assert first.kem_ciphertext == second.kem_ciphertext

    messages = bob.read_inbox()
    assert [m.text for m in messages] == ["Hello Bob", "Hello Bob"]
    assert all(m.ok and m.sender == "alice" for m in messages)


def test_bidirectional_conversation(alice, bob):
    alice.send("bob", "ping")
    assert bob.read_inbox(clear=True)[0].text == "ping"

    bob.send("alice", "pong")
    assert alice.read_inbox()[0].text == "pong"

    # each direction has its own secret
    ab = alice.secret_cache.get_or_establish("alice", "bob", None)
    ba = bob.secret_cache.get_or_establish("bob", "alice", None)
    assert ab != ba


def test_read_inbox_clear(alice, bob, transport):
    alice.send("bob", "once")
    bob.read_inbox(clear=True)
    assert transport.fetch_inbox("bob") == []
    assert bob.read_inbox() == []


def test_unknown_recipient_leaves_no_entry(alice, counting_backend):
    before = counting_backend.encapsulate_calls

    with pytest.raises(UnknownRecipientError):
        alice.send("carol", "anyone there?")

    assert counting_backend.encapsulate_calls == before
    assert not alice.secret_cache.has_entry("alice", "carol")


def test_operations_require_login(provider, transport):
    session = MessengerSession(provider, transport)

    with pytest.raises(NotLoggedInError):
        session.send("bob", "hi")
    with pytest.raises(NotLoggedInError):
        session.read_inbox()
    with pytest.raises(NotLoggedInError):
        session.users()
    with pytest.raises(NotLoggedInError):
        session.logout()
    with pytest.raises(NotLoggedInError):
        session.receive(Envelope("bob", "alice", "AA==", "AA==", 0))


def test_misaddressed_envelope(alice, bob, transport):
    alice.send("bob", "for bob only")
    envelope = transport.delivered[-1]

    with pytest.raises(MisaddressedEnvelopeError):
        alice.receive(envelope)


def test_envelope_without_kem_ciphertext(alice, bob, transport):
    alice.send("bob", "first")
    envelope = transport.delivered[-1]
    stripped = Envelope(
        sender=envelope.sender,
        recipient=envelope.recipient,
        ciphertext=envelope.ciphertext,
        nonce=envelope.nonce,
        timestamp=envelope.timestamp,
    )

    with pytest.raises(NoSharedSecretError):
        bob.receive(stripped)

    # once accepted, the cached inbound secret is enough
    assert bob.receive(envelope) == "first"
    assert bob.receive(stripped) == "first"


def test_corrupt_item_does_not_stop_inbox(alice, bob, transport):
    alice.send("bob", "good one")
    good = transport.delivered[-1]
    transport.deliver(Envelope(
        sender="alice",
        recipient="bob",
        ciphertext="AAAAAAAAAAAAAAAAAAAAAAAA",
        nonce=good.nonce,
        timestamp=good.timestamp,
        kem_ciphertext=good.kem_ciphertext,
    ))
    alice.send("bob", "good two")

    messages = bob.read_inbox()

    assert [m.text for m in messages] == ["good one", None, "good two"]
    assert isinstance(messages[1].error, DecryptionError)
    assert not messages[1].ok


def test_duplicate_login(provider, transport):
    store = IdentityKeyStore(provider)
    MessengerSession(provider, transport, key_store=store).login("alice")

    with pytest.raises(DuplicateIdentityError):
        MessengerSession(provider, transport, key_store=store).login("alice")


def test_failed_publish_rolls_back(provider):
    transport = mock.Mock()
    transport.publish_key.side_effect = TransportError("relay down")
    session = MessengerSession(provider, transport)

    with pytest.raises(TransportError):
        session.login("alice")

    assert not session.key_store.has_identity("alice")
    assert session.current_user is None


def test_logout_wipes_identity_and_secrets(alice, bob):
    alice.send("bob", "bye")
    private_key = alice.key_store.private_key_of("alice")

    alice.logout()

    assert alice.current_user is None
    assert private_key.is_wiped
    assert len(alice.secret_cache) == 0
    with pytest.raises(NotLoggedInError):
        alice.send("bob", "again")


def test_users(alice, bob):
    assert alice.users() == ["alice", "bob"]


def test_close_releases_provider(provider, transport, counting_backend):
    with MessengerSession(provider, transport) as session:
        session.login("alice")
        private_key = session.key_store.private_key_of("alice")

    assert counting_backend.closed
    assert private_key.is_wiped
    assert session.current_user is None


_QUIET = LoggingConfig(configure_root=False)


def test_open_with_self_tests(transport):
    config = MessengerConfig(kem=KemConfig(), logging=_QUIET, security=SecurityConfig(run_self_tests=True))

    with MessengerSession.open(config, transport) as session:
        assert session.provider.algorithm == "Kyber768"
        session.login("alice")


def test_open_releases_provider_when_self_tests_fail(transport):
    failed = CheckResult("KEM Kyber768", SecurityCheckResult.FAIL, "broken")
    config = MessengerConfig(logging=_QUIET, security=SecurityConfig(run_self_tests=True))

    with mock.patch("pqmessenger.security.hardening.run_self_tests", return_value=(False, [failed])), \
            mock.patch.object(KemProvider, "close", autospec=True) as close:
        with pytest.raises(ProviderInitError):
            MessengerSession.open(config, transport)

    assert close.call_count == 1


def test_open_builds_http_transport():
    config = MessengerConfig(logging=_QUIET, security=SecurityConfig(run_self_tests=False))

    with MessengerSession.open(config) as session:
        assert session._transport.server_url == "http://localhost:8080"


def test_open_applies_logging_config(transport, tmp_path):
    config = MessengerConfig(
        paths=PathConfig(log_dir=tmp_path),
        logging=LoggingConfig(
            level="DEBUG",
            format="%(levelname)s %(name)s %(message)s",
            enable_console=False,
            enable_file=True,
        ),
        security=SecurityConfig(run_self_tests=False),
    )
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        with MessengerSession.open(config, transport) as session:
            session.login("alice")
        for handler in root.handlers:
            handler.flush()

        content = (tmp_path / "pqmessenger.log").read_text(encoding="utf-8")
        assert "INFO pqmessenger.session Logged in as alice" in content
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_open_leaves_root_logger_alone_when_asked(transport):
    root = logging.getLogger()
    handlers = list(root.handlers)
    config = MessengerConfig(logging=_QUIET, security=SecurityConfig(run_self_tests=False))

    with MessengerSession.open(config, transport):
        pass

    assert root.handlers == handlers


def test_send_after_peer_relogin(alice, bob, transport, counting_backend, caplog):
    """A peer that logs out and back in gets a fresh secret on the next send."""
    alice.send("bob", "first")
    assert [m.text for m in bob.read_inbox(clear=True)] == ["first"]
    old_kem_ct = transport.delivered[-1].kem_ciphertext

    bob.logout()
    bob.login("bob")
    encapsulations = counting_backend.encapsulate_calls

    with caplog.at_level(logging.WARNING, logger="pqmessenger.session"):
        alice.send("bob", "second")

    assert counting_backend.encapsulate_calls == encapsulations + 1
    assert transport.delivered[-1].kem_ciphertext != old_kem_ct
    assert "published a new public key" in caplog.text

    messages = bob.read_inbox()
    assert [(m.text, m.error) for m in messages] == [("second", None)]

    # the fresh secret is reused again
    alice.send("bob", "third")
    assert counting_backend.encapsulate_calls == encapsulations + 1
    assert bob.read_inbox()[-1].text == "third"


class _DeliverDuringFetch(InMemoryTransport):
    """Delivers one more envelope right after the inbox snapshot is taken."""

    def __init__(self):
        super().__init__()
        self.pending = None

    def fetch_inbox(self, user_id):
        snapshot = super().fetch_inbox(user_id)
        if self.pending is not None:
            envelope, self.pending = self.pending, None
            self.deliver(envelope)
        return snapshot


def test_clear_keeps_messages_delivered_during_read(provider):
    transport = _DeliverDuringFetch()
    alice = MessengerSession(provider, transport)
    bob = MessengerSession(KemProvider(), transport)
    alice.login("alice")
    bob.login("bob")

    alice.send("bob", "one")
    alice.send("bob", "two")
    late = transport.delivered[-1]
    transport.delete_message(late.message_id)
    transport.pending = late

    assert [m.text for m in bob.read_inbox(clear=True)] == ["one"]
    assert [m.text for m in bob.read_inbox(clear=True)] == ["two"]
    assert transport.fetch_inbox("bob") == []
    bob.close()


def test_login_while_logged_in(alice):
    with pytest.raises(AlreadyLoggedInError):
        alice.login("carol")

    assert alice.current_user == "alice"
    assert not alice.key_store.has_identity("carol")

    alice.logout()
    alice.login("carol")
    assert alice.current_user == "carol"
