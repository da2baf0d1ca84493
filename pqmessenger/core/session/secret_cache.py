"""
Shared-Secret Cache
===================

One-way KEM key agreement, memoized per ordered identity pair.

Protocol:
    Outbound (local -> remote): the sender encapsulates against the
    remote public key once. The resulting secret is reused for every
    later message in that direction, and the KEM ciphertext is kept so
    it can travel with each envelope.

    Inbound (remote -> local): the recipient decapsulates the sender's
    KEM ciphertext with its own private key and memoizes the result.

(A, B) and (B, A) are independent: each direction has its own secret,
derived from whichever side encapsulated in that direction.

Concurrency:
    Check-then-establish runs under a per-pair lock, so two concurrent
    first sends to the same peer cannot produce two competing secrets.
    A failed encapsulation or decapsulation leaves the cache untouched.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from pqmessenger.core.crypto.kem import KemProvider
from pqmessenger.core.errors import UnknownRecipientError
from pqmessenger.core.memory import SecretBytes

Pair = Tuple[str, str]

OUTBOUND = "outbound"
INBOUND = "inbound"


def key_fingerprint(public_key: bytes) -> bytes:
    """SHA-256 digest identifying a peer public key."""
    return hashlib.sha256(public_key).digest()


@dataclass
class SharedSecretEntry:
    """
    Secret for one ordered pair plus the KEM ciphertext that produced it.

    Outbound entries also record the fingerprint of the peer public key
    the secret was encapsulated against.
    """

    secret: SecretBytes
    kem_ciphertext: bytes
    peer_key_fingerprint: Optional[bytes] = None
    created_at: float = field(default_factory=time.time)

    def wipe(self) -> None:
        self.secret.wipe()

    def __repr__(self) -> str:
        return f"SharedSecretEntry(ct_len={len(self.kem_ciphertext)}, created_at={self.created_at:.0f})"


class SharedSecretCache:
    """
    Per-pair shared secrets for one process.

    Usage:
        cache = SharedSecretCache(provider)

        # Sender side
        secret = cache.get_or_establish("alice", "bob", bob_public_key)
        kem_ct = cache.outbound_ciphertext("alice", "bob")

        # Recipient side
        secret = cache.accept("bob", "alice", kem_ct, bob_private_key)

    There is no expiry or rotation. An entry only disappears through
    invalidate(), invalidate_identity() or close().
    """

    __slots__ = ("_provider", "_entries", "_pair_locks", "_registry_lock", "_log")

    def __init__(self, provider: KemProvider) -> None:
        self._provider = provider
        self._entries: Dict[str, Dict[Pair, SharedSecretEntry]] = {OUTBOUND: {}, INBOUND: {}}
        self._pair_locks: Dict[Tuple[str, Pair], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._log = logging.getLogger("pqmessenger.secrets")

    def _pair_lock(self, direction: str, pair: Pair) -> threading.Lock:
        with self._registry_lock:
            lock = self._pair_locks.get((direction, pair))
            if lock is None:
                lock = threading.Lock()
                self._pair_locks[(direction, pair)] = lock
            return lock

    def _drop_pair_lock(self, direction: str, pair: Pair) -> None:
        with self._registry_lock:
            lock = self._pair_locks.get((direction, pair))
            if lock is not None and not lock.locked():
                del self._pair_locks[(direction, pair)]

    def _remove(self, direction: str, pair: Pair) -> bool:
        with self._pair_lock(direction, pair):
            entry = self._entries[direction].pop(pair, None)
        self._drop_pair_lock(direction, pair)
        if entry is None:
            return False
        entry.wipe()
        return True

    def get_or_establish(
        self,
        local_id: str,
        remote_id: str,
        remote_public_key: Optional[bytes],
    ) -> bytes:
        """
        Return the outbound secret for (local_id, remote_id), encapsulating
        against remote_public_key only if none exists yet.

        Raises:
            UnknownRecipientError: If remote_public_key was not resolved
            InvalidKeyLengthError, EncapsulationError: From the KEM provider
        """
        pair = (local_id, remote_id)
        outbound = self._entries[OUTBOUND]

        with self._pair_lock(OUTBOUND, pair):
            entry = outbound.get(pair)
            if entry is not None:
                return entry.secret.value

            if not remote_public_key:
                raise UnknownRecipientError(f"No public key for recipient: {remote_id}")

            result = self._provider.encapsulate(remote_public_key)
            outbound[pair] = SharedSecretEntry(
                secret=SecretBytes(result.shared_secret),
                kem_ciphertext=result.ciphertext,
                peer_key_fingerprint=key_fingerprint(remote_public_key),
            )

        self._log.info("Key exchange established: %s -> %s", local_id, remote_id)
        return result.shared_secret

    def outbound_ciphertext(self, local_id: str, remote_id: str) -> Optional[bytes]:
        """KEM ciphertext of the outbound entry, or None if not established."""
        entry = self._entries[OUTBOUND].get((local_id, remote_id))
        return entry.kem_ciphertext if entry is not None else None

    def peer_key_changed(self, local_id: str, remote_id: str, remote_public_key: bytes) -> bool:
        """
        True if an outbound entry exists for (local_id, remote_id) but was
        established against a different public key than remote_public_key.
        """
        entry = self._entries[OUTBOUND].get((local_id, remote_id))
        if entry is None or entry.peer_key_fingerprint is None:
            return False
        return not hmac.compare_digest(entry.peer_key_fingerprint, key_fingerprint(remote_public_key))

    def accept(
        self,
        local_id: str,
        remote_id: str,
        kem_ciphertext: bytes,
        private_key: Union[bytes, SecretBytes],
    ) -> bytes:
        """
        Return the inbound secret for messages from remote_id to local_id.

        Decapsulates only when kem_ciphertext differs from the one already
        accepted for this pair. A different ciphertext means the peer
        established a new secret (e.g. after restarting); the old entry is
        wiped and replaced, and a warning is logged.

        Raises:
            InvalidKeyLengthError, DecapsulationError: From the KEM provider
        """
        pair = (local_id, remote_id)
        inbound = self._entries[INBOUND]

        with self._pair_lock(INBOUND, pair):
            entry = inbound.get(pair)
            if entry is not None and hmac.compare_digest(entry.kem_ciphertext, kem_ciphertext):
                return entry.secret.value

            secret = self._provider.decapsulate(kem_ciphertext, private_key)

            if entry is not None:
                self._log.warning("Peer %s re-keyed towards %s; replacing inbound secret", remote_id, local_id)
                entry.wipe()
            inbound[pair] = SharedSecretEntry(
                secret=SecretBytes(secret),
                kem_ciphertext=bytes(kem_ciphertext),
            )

        self._log.info("Key exchange accepted: %s <- %s", local_id, remote_id)
        return secret

    def inbound_secret(self, local_id: str, remote_id: str) -> Optional[bytes]:
        """Previously accepted secret for remote_id -> local_id, or None."""
        entry = self._entries[INBOUND].get((local_id, remote_id))
        return entry.secret.value if entry is not None else None

    def has_entry(self, local_id: str, remote_id: str, direction: str = OUTBOUND) -> bool:
        return (local_id, remote_id) in self._entries[direction]

    def pairs(self, direction: str = OUTBOUND) -> List[Pair]:
        return list(self._entries[direction])

    def invalidate(self, local_id: str, remote_id: str) -> None:
        """Wipe and drop both directions' entries for (local_id, remote_id)."""
        pair = (local_id, remote_id)
        for direction in self._entries:
            self._remove(direction, pair)

    def invalidate_identity(self, local_id: str) -> int:
        """
        Drop every entry owned by local_id.

        Returns:
            Number of entries removed
        """
        removed = 0
        for direction, entries in self._entries.items():
            for pair in [p for p in list(entries) if p[0] == local_id]:
                if self._remove(direction, pair):
                    removed += 1

        if removed:
            self._log.info("Invalidated %d shared secrets for %s", removed, local_id)
        return removed

    def close(self) -> None:
        """Wipe every cached secret."""
        for entries in self._entries.values():
            for entry in list(entries.values()):
                entry.wipe()
            entries.clear()
        with self._registry_lock:
            self._pair_locks.clear()

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def __repr__(self) -> str:
        return (
            f"SharedSecretCache(outbound={len(self._entries[OUTBOUND])}, "
            f"inbound={len(self._entries[INBOUND])})"
        )
