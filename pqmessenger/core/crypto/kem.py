"""
Post-Quantum Key Encapsulation Provider
=======================================

Capability interface over a CRYSTALS-Kyber / ML-KEM implementation.

Security Properties:
    - Kyber768 / ML-KEM-768: NIST Security Level 3 (~AES-192 equivalent)
    - IND-CCA2 secure key encapsulation
    - Probabilistic: every encapsulation yields a fresh secret

Algorithm Details (Kyber768):
    - Public key: 1184 bytes
    - Secret key: 2400 bytes
    - Ciphertext: 1088 bytes
    - Shared secret: 32 bytes

Backends:
    - kyber-py: pure Python reference (default, always installed)
    - liboqs: Open Quantum Safe bindings (``pip install pqmessenger[oqs]``)

All lengths are validated at this boundary, before the backend is
touched, so callers never deal with raw buffer sizing.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Final, Tuple, Type, Union

from pqmessenger.core.errors import (
    DecapsulationError,
    EncapsulationError,
    InvalidKeyLengthError,
    KeyGenError,
    MessengerError,
    ProviderInitError,
)
from pqmessenger.core.memory import SecretBytes, secure_zero


@dataclass(frozen=True, slots=True)
class KemParameters:
    """Fixed byte lengths of a KEM parameter set."""

    name: str
    public_key_size: int
    private_key_size: int
    ciphertext_size: int
    shared_secret_size: int


KYBER512: Final = KemParameters("Kyber512", 800, 1632, 768, 32)
KYBER768: Final = KemParameters("Kyber768", 1184, 2400, 1088, 32)
KYBER1024: Final = KemParameters("Kyber1024", 1568, 3168, 1568, 32)
ML_KEM_768: Final = KemParameters("ML-KEM-768", 1184, 2400, 1088, 32)

KEM_PARAMETERS: Final[Dict[str, KemParameters]] = {
    p.name: p for p in (KYBER512, KYBER768, KYBER1024, ML_KEM_768)
}

DEFAULT_ALGORITHM: Final[str] = KYBER768.name
DEFAULT_BACKEND: Final[str] = "kyber-py"


@dataclass(frozen=True, slots=True)
class KeyPair:
    """
    KEM keypair owned by one local identity.

    Attributes:
        public_key: Used for encapsulation (published)
        private_key: Used for decapsulation (never leaves the process)
        algorithm: Parameter set name
    """

    public_key: bytes
    private_key: SecretBytes
    algorithm: str

    def wipe(self) -> None:
        """Zeroize the private key."""
        self.private_key.wipe()

    def __repr__(self) -> str:
        """Safe representation without exposing key material."""
        return f"KeyPair({self.algorithm}, pk_len={len(self.public_key)})"


@dataclass(frozen=True, slots=True)
class EncapsulationResult:
    """
    Result of KEM encapsulation.

    Attributes:
        shared_secret: 32-byte secret for symmetric encryption
        ciphertext: Encapsulated key ciphertext (sent to the recipient)
    """

    shared_secret: bytes
    ciphertext: bytes

    def __repr__(self) -> str:
        """Safe representation without exposing secret material."""
        return f"EncapsulationResult(ct_len={len(self.ciphertext)})"


class KemBackend(ABC):
    """Abstract base for KEM implementations."""

    name: str = "abstract"

    @abstractmethod
    def keygen(self) -> Tuple[bytes, bytes]:
        """Generate keypair. Returns (public_key, secret_key)."""
        ...

    @abstractmethod
    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        """Encapsulate. Returns (shared_secret, ciphertext)."""
        ...

    @abstractmethod
    def decapsulate(self, ciphertext: bytes, secret_key: bytes) -> bytes:
        """Decapsulate. Returns shared_secret."""
        ...

    def close(self) -> None:
        """Release any native handle held by the backend."""
        pass


class KyberPyBackend(KemBackend):
    """
    Pure Python backend built on kyber-py.

    Slow compared to liboqs but has no native dependency.
    """

    name = "kyber-py"

    def __init__(self, algorithm: str) -> None:
        try:
            if algorithm.startswith("ML-KEM"):
                from kyber_py import ml_kem as module
                attr = algorithm.replace("-", "_")
            else:
                from kyber_py import kyber as module
                attr = algorithm
        except ImportError as exc:
            raise ProviderInitError("kyber-py is not installed") from exc

        impl = getattr(module, attr, None)
        if impl is None:
            raise ProviderInitError(f"kyber-py does not provide {algorithm}")
        self._impl = impl

    def keygen(self) -> Tuple[bytes, bytes]:
        return self._impl.keygen()

    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        shared_secret, ciphertext = self._impl.encaps(public_key)
        return shared_secret, ciphertext

    def decapsulate(self, ciphertext: bytes, secret_key: bytes) -> bytes:
        return self._impl.decaps(secret_key, ciphertext)


class OqsBackend(KemBackend):
    """
    Open Quantum Safe backend (liboqs-python).

    Holds one native KEM handle for keygen and encapsulation. Decapsulation
    needs a handle bound to the secret key, so it uses a short-lived scoped
    handle per call.
    """

    name = "liboqs"

    def __init__(self, algorithm: str) -> None:
        try:
            import oqs
        except ImportError as exc:
            raise ProviderInitError("liboqs-python is not installed") from exc

        try:
            self._handle = oqs.KeyEncapsulation(algorithm)
        except Exception as exc:
            raise ProviderInitError(f"liboqs cannot provide {algorithm}") from exc

        self._oqs = oqs
        self._algorithm = algorithm

    def keygen(self) -> Tuple[bytes, bytes]:
        public_key = self._handle.generate_keypair()
        secret_key = self._handle.export_secret_key()
        return bytes(public_key), bytes(secret_key)

    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        ciphertext, shared_secret = self._handle.encap_secret(public_key)
        return bytes(shared_secret), bytes(ciphertext)

    def decapsulate(self, ciphertext: bytes, secret_key: bytes) -> bytes:
        with self._oqs.KeyEncapsulation(self._algorithm, secret_key) as kem:
            return bytes(kem.decap_secret(ciphertext))

    def close(self) -> None:
        self._handle.free()


_BACKENDS: Final[Dict[str, Type[KemBackend]]] = {
    KyberPyBackend.name: KyberPyBackend,
    OqsBackend.name: OqsBackend,
}


class KemProvider:
    """
    Post-quantum Key Encapsulation Mechanism provider.

    Wraps one backend handle for the lifetime of the provider and exposes
    the three KEM operations with every length checked at the boundary.

    Usage:
        with KemProvider() as kem:
            keypair = kem.keypair()

            # Sender
            result = kem.encapsulate(keypair.public_key)

            # Recipient
            secret = kem.decapsulate(result.ciphertext, keypair.private_key)

    Security Notes:
        - Backend handle is acquired once and released exactly once
        - Wrong-length inputs never reach the backend
        - Implicit rejection on bad ciphertexts is left to the backend
    """

    __slots__ = ("_params", "_backend", "_closed", "_log")

    def __init__(
        self,
        algorithm: str = DEFAULT_ALGORITHM,
        backend: Union[str, KemBackend] = DEFAULT_BACKEND,
    ) -> None:
        """
        Initialize the provider.

        Args:
            algorithm: Parameter set name (see KEM_PARAMETERS)
            backend: Backend name ("kyber-py", "liboqs") or a backend instance

        Raises:
            ProviderInitError: If the algorithm or backend is unavailable
        """
        self._log = logging.getLogger("pqmessenger.kem")
        self._closed = True

        params = KEM_PARAMETERS.get(algorithm)
        if params is None:
            raise ProviderInitError(f"Unsupported KEM algorithm: {algorithm}")
        self._params = params

        if isinstance(backend, KemBackend):
            self._backend = backend
        else:
            backend_cls = _BACKENDS.get(backend)
            if backend_cls is None:
                raise ProviderInitError(f"Unknown KEM backend: {backend}")
            self._backend = backend_cls(algorithm)

        self._closed = False
        self._log.debug("KEM provider ready: %s via %s", algorithm, self._backend.name)

    @property
    def algorithm(self) -> str:
        return self._params.name

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @property
    def parameters(self) -> KemParameters:
        return self._params

    @property
    def public_key_length(self) -> int:
        return self._params.public_key_size

    @property
    def private_key_length(self) -> int:
        return self._params.private_key_size

    @property
    def ciphertext_length(self) -> int:
        return self._params.ciphertext_size

    @property
    def shared_secret_length(self) -> int:
        return self._params.shared_secret_size

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise ProviderInitError("KEM provider has been closed")

    @staticmethod
    def _check_length(what: str, data: bytes, expected: int) -> None:
        if len(data) != expected:
            raise InvalidKeyLengthError(
                f"{what} must be {expected} bytes, got {len(data)}"
            )

    def keypair(self) -> KeyPair:
        """
        Generate a new keypair.

        Returns:
            KeyPair with the private key held in a wipeable buffer

        Raises:
            ProviderInitError: If the provider is closed
            KeyGenError: If generation fails or returns wrong lengths
        """
        self._ensure_open()

        try:
            public_key, secret_key = self._backend.keygen()
        except MessengerError:
            raise
        except Exception as exc:
            raise KeyGenError(f"{self.algorithm} key generation failed") from exc

        try:
            if len(public_key) != self._params.public_key_size:
                raise KeyGenError(f"Backend returned {len(public_key)}-byte public key")
            if len(secret_key) != self._params.private_key_size:
                raise KeyGenError(f"Backend returned {len(secret_key)}-byte private key")

            return KeyPair(
                public_key=bytes(public_key),
                private_key=SecretBytes(secret_key),
                algorithm=self.algorithm,
            )
        finally:
            if isinstance(secret_key, bytearray):
                secure_zero(secret_key)

    def encapsulate(self, peer_public_key: bytes) -> EncapsulationResult:
        """
        Encapsulate a fresh shared secret against a peer's public key.

        Args:
            peer_public_key: Recipient's public key

        Returns:
            EncapsulationResult with shared_secret and ciphertext

        Raises:
            InvalidKeyLengthError: If the public key has the wrong length
            EncapsulationError: If the backend fails
        """
        self._ensure_open()
        self._check_length("Public key", peer_public_key, self._params.public_key_size)

        try:
            shared_secret, ciphertext = self._backend.encapsulate(bytes(peer_public_key))
        except MessengerError:
            raise
        except Exception as exc:
            raise EncapsulationError(f"{self.algorithm} encapsulation failed") from exc

        if len(shared_secret) != self._params.shared_secret_size:
            raise EncapsulationError(f"Backend returned {len(shared_secret)}-byte secret")
        if len(ciphertext) != self._params.ciphertext_size:
            raise EncapsulationError(f"Backend returned {len(ciphertext)}-byte ciphertext")

        return EncapsulationResult(
            shared_secret=bytes(shared_secret),
            ciphertext=bytes(ciphertext),
        )

    def decapsulate(
        self,
        ciphertext: bytes,
        private_key: Union[bytes, SecretBytes],
    ) -> bytes:
        """
        Recover the shared secret from a ciphertext.

        Args:
            ciphertext: KEM ciphertext produced by the peer
            private_key: Local private key

        Returns:
            32-byte shared secret

        Raises:
            InvalidKeyLengthError: If ciphertext or key has the wrong length
            DecapsulationError: If the backend fails
        """
        self._ensure_open()
        self._check_length("Ciphertext", ciphertext, self._params.ciphertext_size)
        self._check_length("Private key", private_key, self._params.private_key_size)

        try:
            raw_key = private_key.value if isinstance(private_key, SecretBytes) else bytes(private_key)
            shared_secret = self._backend.decapsulate(bytes(ciphertext), raw_key)
        except MessengerError:
            raise
        except Exception as exc:
            raise DecapsulationError(f"{self.algorithm} decapsulation failed") from exc

        if len(shared_secret) != self._params.shared_secret_size:
            raise DecapsulationError(f"Backend returned {len(shared_secret)}-byte secret")

        return bytes(shared_secret)

    def close(self) -> None:
        """Release the backend handle. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._backend.close()
        self._log.debug("KEM provider released")

    def __enter__(self) -> "KemProvider":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"KemProvider({self.algorithm}, backend={self._backend.name}, {state})"
