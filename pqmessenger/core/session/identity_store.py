"""
Identity Key Store
==================

Owns the KEM keypair of every local identity in this process.

Security Features:
- One keypair per identity; no silent rotation
- Private keys held in wipeable buffers
- All private keys zeroized on removal and on teardown
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List

from pqmessenger.core.crypto.kem import KemProvider, KeyPair
from pqmessenger.core.errors import DuplicateIdentityError, UnknownIdentityError
from pqmessenger.core.memory import SecretBytes


class IdentityKeyStore:
    """
    Keypairs keyed by local identity id.

    Usage:
        with IdentityKeyStore(provider) as store:
            keypair = store.create_identity("alice")
            publish(store.public_key_of("alice"))
        # every private key is wiped here

    Regenerating a keypair requires remove_identity() first, so cached
    shared secrets are never orphaned by an unnoticed key change.
    """

    __slots__ = ("_provider", "_keypairs", "_lock", "_log")

    def __init__(self, provider: KemProvider) -> None:
        self._provider = provider
        self._keypairs: Dict[str, KeyPair] = {}
        self._lock = threading.Lock()
        self._log = logging.getLogger("pqmessenger.identity")

    def create_identity(self, identity_id: str) -> KeyPair:
        """
        Generate and store a keypair for identity_id.

        Raises:
            DuplicateIdentityError: If identity_id already has a keypair
            ProviderInitError, KeyGenError: From the KEM provider
        """
        with self._lock:
            if identity_id in self._keypairs:
                raise DuplicateIdentityError(f"Identity already exists: {identity_id}")

            keypair = self._provider.keypair()
            self._keypairs[identity_id] = keypair

        self._log.info(
            "Identity created: %s (%s, pk=%d bytes, sk=%d bytes)",
            identity_id,
            keypair.algorithm,
            len(keypair.public_key),
            len(keypair.private_key),
        )
        return keypair

    def _get(self, identity_id: str) -> KeyPair:
        keypair = self._keypairs.get(identity_id)
        if keypair is None:
            raise UnknownIdentityError(f"Unknown identity: {identity_id}")
        return keypair

    def public_key_of(self, identity_id: str) -> bytes:
        """
        Raises:
            UnknownIdentityError: If identity_id has no keypair
        """
        with self._lock:
            return self._get(identity_id).public_key

    def private_key_of(self, identity_id: str) -> SecretBytes:
        """
        Private key buffer for in-process decapsulation.

        Raises:
            UnknownIdentityError: If identity_id has no keypair
        """
        with self._lock:
            return self._get(identity_id).private_key

    def has_identity(self, identity_id: str) -> bool:
        with self._lock:
            return identity_id in self._keypairs

    def identities(self) -> List[str]:
        with self._lock:
            return list(self._keypairs)

    def remove_identity(self, identity_id: str) -> None:
        """
        Wipe and drop the keypair of identity_id.

        Raises:
            UnknownIdentityError: If identity_id has no keypair
        """
        with self._lock:
            keypair = self._get(identity_id)
            del self._keypairs[identity_id]
        keypair.wipe()
        self._log.info("Identity removed: %s", identity_id)

    def close(self) -> None:
        """Wipe every private key and forget all identities."""
        with self._lock:
            keypairs = list(self._keypairs.values())
            self._keypairs.clear()
        for keypair in keypairs:
            keypair.wipe()

    def __enter__(self) -> "IdentityKeyStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keypairs)

    def __repr__(self) -> str:
        return f"IdentityKeyStore(identities={len(self)})"
