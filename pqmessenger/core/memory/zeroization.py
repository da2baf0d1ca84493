"""
Memory Zeroization Utilities
============================

Explicit wiping of mutable byte buffers.

Key Concepts:
- Zeroization: Overwriting memory with zeros/patterns
- Guard: Automatic cleanup on scope exit
"""

from __future__ import annotations

import ctypes
from contextlib import contextmanager
from typing import Iterator


def secure_zero(data: bytearray | memoryview) -> None:
    """
    Securely zero a byte buffer.

    Uses ctypes for direct memory access on bytearrays,
    with fallback to Python-level zeroing.

    Args:
        data: Mutable byte buffer to zero

    Security Notes:
        - This is best-effort; Python may have copies
        - Buffer must be mutable (bytearray, not bytes)
    """
    if len(data) == 0:
        return

    if isinstance(data, memoryview):
        data[:] = bytes(len(data))
        return

    try:
        addr = ctypes.addressof(
            (ctypes.c_char * len(data)).from_buffer(data)
        )
        # Multi-pass wipe
        ctypes.memset(addr, 0, len(data))
        ctypes.memset(addr, 0xFF, len(data))
        ctypes.memset(addr, 0, len(data))
    except (TypeError, ValueError, BufferError):
        for i in range(len(data)):
            data[i] = 0


@contextmanager
def ZeroizeContext(*buffers: bytearray) -> Iterator[None]:
    """
    Context manager that zeroizes buffers on exit.

    Always zeroizes, whether exit is normal or exceptional.

    Usage:
        key = bytearray(secret[:32])

        with ZeroizeContext(key):
            cipher.encrypt(data, bytes(key))
        # key is now zeroed
    """
    try:
        yield
    finally:
        for buf in buffers:
            secure_zero(buf)
