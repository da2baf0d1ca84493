"""
Security Hardening Module
=========================

Nonce reuse detection and cryptographic self-tests.

This module implements:
- Nonce uniqueness tracking per symmetric key
- Startup self-tests for the KEM provider, AES-GCM and the CSPRNG
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Deque, Dict, Final, List, Optional, Set, Tuple

if TYPE_CHECKING:
    from pqmessenger.core.crypto.kem import KemProvider


class SecurityCheckResult(Enum):
    """Result of a security check."""
    PASS = auto()
    WARN = auto()
    FAIL = auto()


@dataclass
class CheckResult:
    """Individual security check result."""
    name: str
    result: SecurityCheckResult
    message: str
    details: Optional[str] = None


class NonceTracker:
    """
    Tracks nonces per key to detect reuse.

    Nonce reuse in AES-GCM is catastrophic. Keys are identified by a
    salted fingerprint so the tracker never holds key material. The
    oldest nonces of a key are forgotten once the per-key limit is hit.
    """

    _MAX_TRACKED: Final[int] = 100_000

    def __init__(self, max_tracked: int = _MAX_TRACKED) -> None:
        self._max_tracked = max_tracked
        self._salt = secrets.token_bytes(32)
        self._seen: Dict[bytes, Set[bytes]] = {}
        self._order: Dict[bytes, Deque[bytes]] = {}
        self._lock = threading.Lock()

    def _fingerprint(self, key: bytes) -> bytes:
        return hmac.new(self._salt, key, hashlib.sha256).digest()[:16]

    def check_and_register(self, key: bytes, nonce: bytes) -> bool:
        """
        Check if nonce is unique under key and register it.

        Returns:
            True if nonce is unique (safe to use)
            False if nonce was already used (CRITICAL ERROR)
        """
        key_id = self._fingerprint(key)

        with self._lock:
            seen = self._seen.setdefault(key_id, set())
            order = self._order.setdefault(key_id, deque())

            if nonce in seen:
                return False

            seen.add(nonce)
            order.append(nonce)
            if len(order) > self._max_tracked:
                seen.discard(order.popleft())

        return True

    def tracked_count(self, key: bytes) -> int:
        """Number of nonces currently remembered for key."""
        with self._lock:
            return len(self._seen.get(self._fingerprint(key), ()))

    def clear(self) -> None:
        """Clear all tracked nonces."""
        with self._lock:
            self._seen.clear()
            self._order.clear()


class CryptoSelfTest:
    """
    Cryptographic self-tests.

    Run on startup to verify the KEM backend and the AEAD are working
    before any identity is created.
    """

    @staticmethod
    def test_kem(provider: "KemProvider") -> CheckResult:
        """KEM keypair/encapsulate/decapsulate round-trip with length checks."""
        name = f"KEM {provider.algorithm}"
        try:
            keypair = provider.keypair()
            try:
                if len(keypair.public_key) != provider.public_key_length:
                    return CheckResult(name, SecurityCheckResult.FAIL, "Public key length mismatch")
                if len(keypair.private_key) != provider.private_key_length:
                    return CheckResult(name, SecurityCheckResult.FAIL, "Private key length mismatch")

                result = provider.encapsulate(keypair.public_key)
                recovered = provider.decapsulate(result.ciphertext, keypair.private_key)
            finally:
                keypair.wipe()

            if not hmac.compare_digest(result.shared_secret, recovered):
                return CheckResult(name, SecurityCheckResult.FAIL, "Shared secret mismatch")

            return CheckResult(name, SecurityCheckResult.PASS, "Self-test passed")

        except Exception as e:
            return CheckResult(name, SecurityCheckResult.FAIL, f"Self-test failed: {e}")

    @staticmethod
    def test_aes_gcm() -> CheckResult:
        """AES-256-GCM round-trip and tamper rejection."""
        try:
            from cryptography.exceptions import InvalidTag
            from pqmessenger.core.crypto.aes_gcm import AesGcmCipher

            cipher = AesGcmCipher()
            key = secrets.token_bytes(32)
            plaintext = b"Test plaintext for AES-GCM self-test"

            result = cipher.encrypt(plaintext, key)
            if cipher.decrypt(result.ciphertext, result.nonce, key) != plaintext:
                return CheckResult("AES-256-GCM", SecurityCheckResult.FAIL, "Decryption mismatch")

            tampered = bytes([result.ciphertext[0] ^ 0x01]) + result.ciphertext[1:]
            try:
                cipher.decrypt(tampered, result.nonce, key)
            except InvalidTag:
                return CheckResult("AES-256-GCM", SecurityCheckResult.PASS, "Self-test passed")

            return CheckResult("AES-256-GCM", SecurityCheckResult.FAIL, "Tampering not detected")

        except Exception as e:
            return CheckResult("AES-256-GCM", SecurityCheckResult.FAIL, f"Self-test failed: {e}")

    @staticmethod
    def test_random_generator() -> CheckResult:
        """Test cryptographic random number generator."""
        try:
            random1 = secrets.token_bytes(32)
            random2 = secrets.token_bytes(32)

            if random1 == random2:
                return CheckResult("CSPRNG", SecurityCheckResult.FAIL, "Random bytes not unique")

            unique_bytes = len(set(random1))
            if unique_bytes < 20:
                return CheckResult("CSPRNG", SecurityCheckResult.WARN, f"Low entropy: {unique_bytes}/32 unique")

            return CheckResult("CSPRNG", SecurityCheckResult.PASS, "Self-test passed")

        except Exception as e:
            return CheckResult("CSPRNG", SecurityCheckResult.FAIL, f"Self-test failed: {e}")

    @classmethod
    def run_all_tests(cls, provider: "KemProvider") -> List[CheckResult]:
        """Run all cryptographic self-tests."""
        return [
            cls.test_kem(provider),
            cls.test_aes_gcm(),
            cls.test_random_generator(),
        ]


def run_self_tests(provider: "KemProvider") -> Tuple[bool, List[CheckResult]]:
    """
    Run all self-tests and log each result.

    Returns:
        (passed, results) where passed is False if any check failed
    """
    log = logging.getLogger("pqmessenger.security")
    results = CryptoSelfTest.run_all_tests(provider)

    for result in results:
        level = {
            SecurityCheckResult.PASS: logging.INFO,
            SecurityCheckResult.WARN: logging.WARNING,
            SecurityCheckResult.FAIL: logging.ERROR,
        }[result.result]
        log.log(level, "[%s] %s: %s", result.result.name, result.name, result.message)

    failures = [r for r in results if r.result == SecurityCheckResult.FAIL]
    if failures:
        log.critical("Self-tests failed: %d critical failures", len(failures))
        return False, results

    return True, results
