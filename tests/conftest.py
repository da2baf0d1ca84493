"""Shared fixtures for the messenger test suite."""

import threading

import pytest

from pqmessenger.core.crypto.kem import KemBackend, KemProvider, KyberPyBackend
from pqmessenger.transport.memory import InMemoryTransport


class CountingBackend(KemBackend):
    """Real kyber-py backend that counts calls and can be told to fail."""

    name = "counting"

    def __init__(self, algorithm="Kyber768"):
        self._inner = KyberPyBackend(algorithm)
        self._lock = threading.Lock()
        self.keygen_calls = 0
        self.encapsulate_calls = 0
        self.decapsulate_calls = 0
        self.fail_encapsulate = False
        self.fail_decapsulate = False
        self.closed = False

    def keygen(self):
        with self._lock:
            self.keygen_calls += 1
        return self._inner.keygen()

    def encapsulate(self, public_key):
        with self._lock:
            self.encapsulate_calls += 1
        if self.fail_encapsulate:
            raise RuntimeError("injected encapsulation failure")
        return self._inner.encapsulate(public_key)

    def decapsulate(self, ciphertext, secret_key):
        with self._lock:
            self.decapsulate_calls += 1
        if self.fail_decapsulate:
            raise RuntimeError("injected decapsulation failure")
        return self._inner.decapsulate(ciphertext, secret_key)

    def close(self):
        self.closed = True


@pytest.fixture
def counting_backend():
    return CountingBackend()


@pytest.fixture
def provider(counting_backend):
    kem = KemProvider("Kyber768", backend=counting_backend)
    yield kem
    kem.close()


@pytest.fixture
def kyber_provider():
    """Provider over the real kyber-py backend, selected by name."""
    kem = KemProvider()
    yield kem
    kem.close()


@pytest.fixture
def transport():
    return InMemoryTransport()
