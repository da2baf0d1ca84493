"""
Memory Security Module
======================

Secret-holding buffers with explicit zeroization.

WARNING:
- Python's memory model doesn't guarantee secure erasure
- These are best-effort mitigations
"""

from pqmessenger.core.memory.secure_memory import SecretBytes
from pqmessenger.core.memory.zeroization import secure_zero, ZeroizeContext

__all__ = [
    "SecretBytes",
    "secure_zero",
    "ZeroizeContext",
]
