"""
AES-256-GCM Authenticated Encryption
====================================

Thin AEAD primitive used by the message cipher.

Security Properties:
    - 256-bit key
    - 96-bit nonce (NIST recommended)
    - 128-bit authentication tag
    - Authenticated Additional Data (AAD) support

NIST SP 800-38D Compliance:
    - GCM mode with 96-bit IV
    - Unique nonce for each encryption under same key

WARNING:
    - Never reuse (key, nonce) pairs
    - Always verify tag before using plaintext
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Final, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

AES_KEY_SIZE: Final[int] = 32  # 256 bits
AES_NONCE_SIZE: Final[int] = 12  # 96 bits (NIST recommended for GCM)
AES_TAG_SIZE: Final[int] = 16  # 128 bits


@dataclass(frozen=True, slots=True)
class AesGcmResult:
    """
    Immutable result of AES-GCM encryption.

    Attributes:
        ciphertext: Encrypted data with appended authentication tag
        nonce: Nonce used for this encryption (must travel with ciphertext)
    """

    ciphertext: bytes
    nonce: bytes

    def __repr__(self) -> str:
        return f"AesGcmResult(ciphertext_len={len(self.ciphertext)}, nonce_len={len(self.nonce)})"


class AesGcmCipher:
    """
    AES-256-GCM Authenticated Encryption with Associated Data (AEAD).

    Usage:
        cipher = AesGcmCipher()
        result = cipher.encrypt(plaintext, key)
        plaintext = cipher.decrypt(result.ciphertext, result.nonce, key)

    Errors from the underlying library are not translated here:
    ValueError for bad parameters, cryptography.exceptions.InvalidTag
    for authentication failures.
    """

    __slots__ = ()

    @staticmethod
    def generate_nonce() -> bytes:
        """
        Generate a cryptographically secure random nonce.

        Returns:
            12 bytes of cryptographic random data

        Security:
            96-bit nonces with random generation have negligible collision
            probability for up to 2^32 encryptions under same key.
        """
        return secrets.token_bytes(AES_NONCE_SIZE)

    def encrypt(
        self,
        plaintext: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
        nonce: Optional[bytes] = None,
    ) -> AesGcmResult:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Data to encrypt (can be empty)
            key: 32-byte key
            aad: Additional Authenticated Data
            nonce: Pre-drawn 12-byte nonce; a fresh one is drawn if None

        Returns:
            AesGcmResult containing ciphertext and nonce

        Raises:
            ValueError: If key or nonce has the wrong size
        """
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"Key must be exactly {AES_KEY_SIZE} bytes")
        if nonce is None:
            nonce = self.generate_nonce()
        elif len(nonce) != AES_NONCE_SIZE:
            raise ValueError(f"Nonce must be exactly {AES_NONCE_SIZE} bytes")

        ciphertext = AESGCM(key).encrypt(nonce, plaintext, aad)

        return AesGcmResult(ciphertext=ciphertext, nonce=nonce)

    def decrypt(
        self,
        ciphertext: bytes,
        nonce: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM with integrity verification.

        Raises:
            ValueError: If parameters are invalid
            cryptography.exceptions.InvalidTag: If authentication fails

        Security Notes:
            - Integrity is verified BEFORE any plaintext is returned
        """
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"Key must be exactly {AES_KEY_SIZE} bytes")
        if len(nonce) != AES_NONCE_SIZE:
            raise ValueError(f"Nonce must be exactly {AES_NONCE_SIZE} bytes")
        if len(ciphertext) < AES_TAG_SIZE:
            raise ValueError("Ciphertext too short (missing authentication tag)")

        return AESGCM(key).decrypt(nonce, ciphertext, aad)
