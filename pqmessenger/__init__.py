"""
PQ Messenger - Post-quantum end-to-end encrypted messaging
==========================================================

Kyber768 key encapsulation establishes one shared secret per ordered
pair of identities; AES-256-GCM seals every message under it.

Security Notice:
- No plaintext, secrets or private keys are logged
- Private keys and shared secrets are wiped on logout and close
- Every cryptographic failure surfaces as a typed error
"""

from pqmessenger.core.config import MessengerConfig
from pqmessenger.core.logging import get_secure_logger
from pqmessenger.core.session import MessengerSession, ReceivedMessage

__version__ = "0.1.0"

__all__ = [
    "MessengerConfig",
    "MessengerSession",
    "ReceivedMessage",
    "get_secure_logger",
    "__version__",
]
