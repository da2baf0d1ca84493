"""
PQ Messenger Cryptographic Core
===============================

Provides post-quantum key encapsulation and message encryption.

Architecture:
    1. Kyber768 / ML-KEM-768: Per-peer shared secret establishment
    2. AES-256-GCM: Message body encryption under that secret

Security Properties:
    - All message encryption is authenticated (AEAD)
    - Private keys and shared secrets live in wipeable buffers
    - Fresh random nonce for every message
    - Every KEM length validated before reaching the backend

WARNING: This module handles sensitive cryptographic material.
         Incorrect usage can compromise security.
"""

from pqmessenger.core.crypto.aes_gcm import AesGcmCipher, AesGcmResult
from pqmessenger.core.crypto.kem import (
    KEM_PARAMETERS,
    KYBER768,
    EncapsulationResult,
    KemBackend,
    KemParameters,
    KemProvider,
    KeyPair,
    KyberPyBackend,
    OqsBackend,
)
from pqmessenger.core.crypto.message_cipher import MessageCipher, SealedEnvelope

__all__ = [
    "AesGcmCipher",
    "AesGcmResult",
    "KEM_PARAMETERS",
    "KYBER768",
    "EncapsulationResult",
    "KemBackend",
    "KemParameters",
    "KemProvider",
    "KeyPair",
    "KyberPyBackend",
    "OqsBackend",
    "MessageCipher",
    "SealedEnvelope",
]
