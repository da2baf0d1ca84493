"""Tests for the KEM provider."""

import pytest

from pqmessenger.core.crypto.kem import KEM_PARAMETERS, KemProvider
from pqmessenger.core.errors import (
    DecapsulationError,
    EncapsulationError,
    InvalidKeyLengthError,
    ProviderInitError,
)
from pqmessenger.core.memory import SecretBytes


def test_kyber768_lengths(kyber_provider):
    """Kyber768 keys, ciphertext and secret have their fixed sizes."""
    keypair = kyber_provider.keypair()

    assert len(keypair.public_key) == 1184
    assert len(keypair.private_key) == 2400
    assert isinstance(keypair.private_key, SecretBytes)

    result = kyber_provider.encapsulate(keypair.public_key)
    assert len(result.ciphertext) == 1088
    assert len(result.shared_secret) == 32


def test_encapsulate_decapsulate_roundtrip(kyber_provider):
    keypair = kyber_provider.keypair()
    result = kyber_provider.encapsulate(keypair.public_key)

    recovered = kyber_provider.decapsulate(result.ciphertext, keypair.private_key)
    assert recovered == result.shared_secret

    # raw bytes private key works too
    assert kyber_provider.decapsulate(result.ciphertext, keypair.private_key.value) == recovered


def test_encapsulation_is_probabilistic(kyber_provider):
    keypair = kyber_provider.keypair()
    first = kyber_provider.encapsulate(keypair.public_key)
    second = kyber_provider.encapsulate(keypair.public_key)

    assert first.ciphertext != second.ciphertext
    assert first.shared_secret != second.shared_secret


def test_decapsulate_with_other_key_gives_different_secret(kyber_provider):
    """Implicit rejection: wrong key yields a secret, just not the right one."""
    alice = kyber_provider.keypair()
    bob = kyber_provider.keypair()
    result = kyber_provider.encapsulate(alice.public_key)

    assert kyber_provider.decapsulate(result.ciphertext, bob.private_key) != result.shared_secret


@pytest.mark.parametrize("size", [0, 1183, 1185, 2400])
def test_wrong_public_key_length_never_reaches_backend(provider, counting_backend, size):
    with pytest.raises(InvalidKeyLengthError):
        provider.encapsulate(b"\x00" * size)

    assert counting_backend.encapsulate_calls == 0


def test_wrong_ciphertext_length_never_reaches_backend(provider, counting_backend):
    keypair = provider.keypair()

    with pytest.raises(InvalidKeyLengthError):
        provider.decapsulate(b"\x00" * 1087, keypair.private_key)

    assert counting_backend.decapsulate_calls == 0


def test_wrong_private_key_length_never_reaches_backend(provider, counting_backend):
    with pytest.raises(InvalidKeyLengthError):
        provider.decapsulate(b"\x00" * 1088, b"\x00" * 1184)

    assert counting_backend.decapsulate_calls == 0


def test_invalid_key_length_is_value_error(provider):
    with pytest.raises(ValueError):
        provider.encapsulate(b"short")


def test_backend_failures_are_typed(provider, counting_backend):
    keypair = provider.keypair()
    result = provider.encapsulate(keypair.public_key)

    counting_backend.fail_encapsulate = True
    with pytest.raises(EncapsulationError) as excinfo:
        provider.encapsulate(keypair.public_key)
    assert isinstance(excinfo.value.__cause__, RuntimeError)

    counting_backend.fail_decapsulate = True
    with pytest.raises(DecapsulationError):
        provider.decapsulate(result.ciphertext, keypair.private_key)


def test_decapsulate_with_wiped_key_fails(provider):
    keypair = provider.keypair()
    result = provider.encapsulate(keypair.public_key)
    keypair.wipe()

    with pytest.raises(DecapsulationError):
        provider.decapsulate(result.ciphertext, keypair.private_key)


def test_closed_provider_refuses_work(provider, counting_backend):
    provider.close()
    provider.close()

    assert provider.is_closed
    assert counting_backend.closed
    with pytest.raises(ProviderInitError):
        provider.keypair()
    with pytest.raises(ProviderInitError):
        provider.encapsulate(b"\x00" * 1184)


def test_context_manager_releases_backend(counting_backend):
    with KemProvider(backend=counting_backend) as kem:
        assert not kem.is_closed
    assert counting_backend.closed


def test_unknown_algorithm():
    with pytest.raises(ProviderInitError):
        KemProvider("Kyber9000")


def test_unknown_backend():
    with pytest.raises(ProviderInitError):
        KemProvider(backend="no-such-backend")


def test_parameters_table():
    assert KEM_PARAMETERS["Kyber768"].ciphertext_size == 1088
    assert KEM_PARAMETERS["ML-KEM-768"].public_key_size == 1184
    assert KEM_PARAMETERS["Kyber1024"].private_key_size == 3168


def test_ml_kem_768_backend():
    with KemProvider("ML-KEM-768") as kem:
        keypair = kem.keypair()
        result = kem.encapsulate(keypair.public_key)
        assert kem.decapsulate(result.ciphertext, keypair.private_key) == result.shared_secret


def test_repr_hides_key_material(kyber_provider):
    keypair = kyber_provider.keypair()
    text = repr(keypair) + repr(kyber_provider.encapsulate(keypair.public_key))

    assert keypair.public_key.hex() not in text
    assert "pk_len=1184" in text
