"""
Security module - Runtime hardening for the cryptographic core.

Security Considerations:
- Refuse to start if the KEM or AEAD self-tests fail
- Detect nonce reuse before it can happen
- No custom cryptography implementations
"""

from pqmessenger.security.hardening import (
    CheckResult,
    CryptoSelfTest,
    NonceTracker,
    SecurityCheckResult,
    run_self_tests,
)

__all__ = [
    "CheckResult",
    "CryptoSelfTest",
    "NonceTracker",
    "SecurityCheckResult",
    "run_self_tests",
]
