"""
Session module - Identities, per-pair shared secrets and the client façade.

Security Considerations:
- One keypair per identity, wiped on removal
- Secrets established once per ordered pair, under a per-pair lock
- No network I/O below MessengerSession; the Transport does it
"""

from pqmessenger.core.session.facade import MessengerSession, ReceivedMessage
from pqmessenger.core.session.identity_store import IdentityKeyStore
from pqmessenger.core.session.secret_cache import (
    INBOUND,
    OUTBOUND,
    SharedSecretCache,
    SharedSecretEntry,
)

__all__ = [
    "MessengerSession",
    "ReceivedMessage",
    "IdentityKeyStore",
    "SharedSecretCache",
    "SharedSecretEntry",
    "INBOUND",
    "OUTBOUND",
]
