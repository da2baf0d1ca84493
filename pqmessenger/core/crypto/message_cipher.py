"""
Message Cipher
==============

Seals and opens text messages under a KEM-derived shared secret.

Construction:
    key   = secret[:32]              (the raw KEM output, no KDF stretching)
    nonce = 12 fresh random bytes    (per seal call)
    body  = AES-256-GCM(key, nonce, utf8(plaintext))

Framing:
    ciphertext and nonce travel as two independent base64 strings.
    The shared secret itself is never encoded or transmitted.

Failure Modes:
    - EncryptionError: the AEAD refused to encrypt (never retried)
    - InvalidEncodingError: envelope text is not base64
    - DecryptionError: corruption and tag mismatch alike (no oracle)
    - InvalidUtf8Error: authentic plaintext that is not UTF-8 text
"""

from __future__ import annotations

import binascii
import logging
from base64 import b64decode, b64encode
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from cryptography.exceptions import InvalidTag

from pqmessenger.core.crypto.aes_gcm import AES_KEY_SIZE, AES_NONCE_SIZE, AES_TAG_SIZE, AesGcmCipher
from pqmessenger.core.errors import (
    DecryptionError,
    EncryptionError,
    InvalidEncodingError,
    InvalidKeyLengthError,
    InvalidUtf8Error,
)
from pqmessenger.core.memory import SecretBytes, ZeroizeContext
from pqmessenger.security.hardening import NonceTracker

Secret = Union[bytes, SecretBytes]


def decode_b64(label: str, text: str) -> bytes:
    try:
        return b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise InvalidEncodingError(f"{label} is not valid base64") from exc


@dataclass(frozen=True, slots=True)
class SealedEnvelope:
    """
    One encrypted message body.

    Attributes:
        ciphertext: AES-GCM output with the 16-byte tag appended
        nonce: 12-byte nonce used for this body
    """

    ciphertext: bytes
    nonce: bytes

    def to_text(self) -> Tuple[str, str]:
        """Return (ciphertext_b64, nonce_b64)."""
        return (
            b64encode(self.ciphertext).decode("ascii"),
            b64encode(self.nonce).decode("ascii"),
        )

    @classmethod
    def from_text(cls, ciphertext_b64: str, nonce_b64: str) -> "SealedEnvelope":
        """
        Decode the transport text form.

        Raises:
            InvalidEncodingError: If either field is not valid base64
        """
        return cls(
            ciphertext=decode_b64("Ciphertext", ciphertext_b64),
            nonce=decode_b64("Nonce", nonce_b64),
        )

    def __repr__(self) -> str:
        return f"SealedEnvelope(ct_len={len(self.ciphertext)}, nonce_len={len(self.nonce)})"


class MessageCipher:
    """
    AEAD sealing of text under a 32-byte shared secret.

    Usage:
        cipher = MessageCipher()
        envelope = cipher.seal("hello", shared_secret)
        text = cipher.open(envelope, shared_secret)

    Security Notes:
        - A fresh random nonce is drawn for every seal
        - With nonce tracking on, a repeated nonce under the same key
          aborts the seal before anything is encrypted
    """

    __slots__ = ("_aes", "_nonce_tracker", "_log")

    def __init__(
        self,
        track_nonces: bool = True,
        nonce_tracker: Optional[NonceTracker] = None,
    ) -> None:
        self._aes = AesGcmCipher()
        if nonce_tracker is None and track_nonces:
            nonce_tracker = NonceTracker()
        self._nonce_tracker = nonce_tracker
        self._log = logging.getLogger("pqmessenger.cipher")

    @property
    def tracks_nonces(self) -> bool:
        return self._nonce_tracker is not None

    @staticmethod
    def _key_material(secret: Secret) -> bytearray:
        raw = secret.value if isinstance(secret, SecretBytes) else bytes(secret)
        if len(raw) < AES_KEY_SIZE:
            raise InvalidKeyLengthError(
                f"Shared secret must be at least {AES_KEY_SIZE} bytes, got {len(raw)}"
            )
        return bytearray(raw[:AES_KEY_SIZE])

    def seal(self, plaintext: str, secret: Secret) -> SealedEnvelope:
        """
        Encrypt a text message.

        Args:
            plaintext: Message text
            secret: Shared secret (at least 32 bytes)

        Returns:
            SealedEnvelope with ciphertext and nonce

        Raises:
            InvalidKeyLengthError: If the secret is too short
            EncryptionError: If encoding or encryption fails
        """
        try:
            data = plaintext.encode("utf-8")
        except (AttributeError, UnicodeEncodeError) as exc:
            raise EncryptionError("Plaintext is not encodable text") from exc

        key = self._key_material(secret)
        with ZeroizeContext(key):
            nonce = self._aes.generate_nonce()
            if self._nonce_tracker is not None and not self._nonce_tracker.check_and_register(bytes(key), nonce):
                self._log.critical("Nonce reuse detected; refusing to encrypt")
                raise EncryptionError("Nonce reuse detected")

            try:
                result = self._aes.encrypt(data, bytes(key), nonce=nonce)
            except (ValueError, TypeError, OverflowError) as exc:
                raise EncryptionError("AES-GCM encryption failed") from exc

        return SealedEnvelope(ciphertext=result.ciphertext, nonce=result.nonce)

    def open(self, envelope: SealedEnvelope, secret: Secret) -> str:
        """
        Decrypt and verify a sealed envelope.

        Raises:
            InvalidKeyLengthError: If the secret is too short
            DecryptionError: If the envelope is malformed, corrupted or forged
            InvalidUtf8Error: If the authentic plaintext is not UTF-8
        """
        if len(envelope.nonce) != AES_NONCE_SIZE or len(envelope.ciphertext) < AES_TAG_SIZE:
            raise DecryptionError("Message could not be decrypted")

        key = self._key_material(secret)
        with ZeroizeContext(key):
            try:
                data = self._aes.decrypt(envelope.ciphertext, envelope.nonce, bytes(key))
            except (InvalidTag, ValueError) as exc:
                raise DecryptionError("Message could not be decrypted") from exc

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidUtf8Error("Decrypted message is not valid UTF-8") from exc

    def open_text(self, ciphertext_b64: str, nonce_b64: str, secret: Secret) -> str:
        """
        Decode the base64 framing, then open.

        Raises:
            InvalidEncodingError: If either field is not valid base64
            DecryptionError, InvalidUtf8Error: As for open()
        """
        return self.open(SealedEnvelope.from_text(ciphertext_b64, nonce_b64), secret)
