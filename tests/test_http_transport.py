"""Tests for the requests-based relay client."""

from base64 import b64encode
from unittest import mock
from urllib.parse import urlsplit

import pytest
import requests

from pqmessenger.core.crypto.kem import KemProvider
from pqmessenger.core.errors import TransportError
from pqmessenger.core.session import MessengerSession
from pqmessenger.transport import Envelope, HttpTransport
from pqmessenger.web.relay import create_app


def _response(status=200, payload=None, invalid_json=False):
    response = mock.Mock()
    response.status_code = status
    response.ok = status < 400
    if invalid_json:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return mock.Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return HttpTransport("http://relay.test:8080/", timeout=3.0, session=session)


def test_publish_key_posts_base64(client, session):
    session.request.return_value = _response(201, {"user_id": "alice", "created": True})

    client.publish_key("alice", b"\x01\x02\x03")

    session.request.assert_called_once_with(
        "POST",
        "http://relay.test:8080/api/users",
        timeout=3.0,
        json={"user_id": "alice", "public_key": "AQID"},
    )


def test_fetch_public_key(client, session):
    session.request.return_value = _response(200, {"user_id": "bob", "public_key": "AQID"})
    assert client.fetch_public_key("bob") == b"\x01\x02\x03"

    _, kwargs = session.request.call_args
    assert kwargs["params"] == {"user_id": "bob"}


def test_fetch_unknown_public_key_is_none(client, session):
    session.request.return_value = _response(404, {"error": "Unknown user"})
    assert client.fetch_public_key("carol") is None


def test_malformed_public_key(client, session):
    session.request.return_value = _response(200, {"public_key": "not base64!"})
    with pytest.raises(TransportError):
        client.fetch_public_key("bob")


def test_list_users(client, session):
    session.request.return_value = _response(200, {"users": ["alice", "bob"]})
    assert client.list_users() == ["alice", "bob"]


def test_deliver_returns_receipt(client, session):
    session.request.return_value = _response(201, {"message_id": "abc", "delivered_at": 42})
    envelope = Envelope("alice", "bob", "AAAA", "AAAA", 7)

    receipt = client.deliver(envelope)

    assert receipt.message_id == "abc"
    assert receipt.delivered_at == 42
    _, kwargs = session.request.call_args
    assert kwargs["json"] == envelope.to_dict()


def test_fetch_inbox(client, session):
    session.request.return_value = _response(200, {"inbox": [
        {"sender": "alice", "recipient": "bob", "ciphertext": "AAAA", "nonce": "AAAA",
         "timestamp": 7, "message_id": "m1"},
    ]})

    inbox = client.fetch_inbox("bob")

    assert [e.message_id for e in inbox] == ["m1"]


def test_malformed_inbox(client, session):
    session.request.return_value = _response(200, {"inbox": [{"sender": "alice"}]})
    with pytest.raises(TransportError):
        client.fetch_inbox("bob")


def test_connection_error(client, session):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransportError) as excinfo:
        client.list_users()
    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_http_error_status(client, session):
    session.request.return_value = _response(500, {"error": "boom"})
    with pytest.raises(TransportError):
        client.publish_key("alice", b"pk")


def test_invalid_json(client, session):
    session.request.return_value = _response(200, invalid_json=True)
    with pytest.raises(TransportError):
        client.list_users()


def test_close_closes_session(client, session):
    client.close()
    session.close.assert_called_once_with()


class _FlaskSession:
    """Adapter routing requests.Session calls into a Flask test client."""

    def __init__(self, app):
        self._client = app.test_client()

    def request(self, method, url, timeout=None, params=None, json=None):
        response = self._client.open(urlsplit(url).path, method=method, query_string=params, json=json)
        result = mock.Mock()
        result.status_code = response.status_code
        result.ok = response.status_code < 400
        result.json.return_value = response.get_json()
        return result

    def close(self):
        pass


def test_sessions_talk_through_relay():
    """alice and bob exchange messages over HttpTransport and the Flask relay."""
    app = create_app()
    alice_transport = HttpTransport("http://relay", session=_FlaskSession(app))
    bob_transport = HttpTransport("http://relay", session=_FlaskSession(app))

    with MessengerSession(KemProvider(), alice_transport) as alice, \
            MessengerSession(KemProvider(), bob_transport) as bob:
        alice.login("alice")
        bob.login("bob")

        alice.send("bob", "over the relay")
        alice.send("bob", "again")
        messages = bob.read_inbox(clear=True)

        assert [m.text for m in messages] == ["over the relay", "again"]
        assert bob_transport.fetch_inbox("bob") == []

        bob.send("alice", "reply")
        assert alice.read_inbox()[0].text == "reply"

        stored_key = app.extensions["pqmessenger_relay"].public_key("alice")
        assert stored_key == b64encode(alice.key_store.public_key_of("alice")).decode("ascii")


def test_delete_message(client, session):
    session.request.return_value = _response(200, {"deleted": "m1"})
    assert client.delete_message("m1") is True
    args, kwargs = session.request.call_args
    assert args == ("DELETE", "http://relay.test:8080/api/messages")
    assert kwargs["params"] == {"message_id": "m1"}

    session.request.return_value = _response(404, {"error": "Message not found"})
    assert client.delete_message("m1") is False
