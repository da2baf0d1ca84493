"""
Secret Byte Buffers
===================

Holds private keys and shared secrets in mutable memory that is
explicitly wiped when no longer needed.

Security Properties:
- Explicit zeroization (don't rely on Python GC)
- Memory locking where supported (prevent swapping)
- Automatic cleanup on context exit

Limitations:
- Python's memory model copies data internally
- Every .value access returns an immutable copy
- Best-effort security, not guaranteed
"""

from __future__ import annotations

import ctypes
import hmac
import platform
from typing import Final

from pqmessenger.core.memory.zeroization import secure_zero


IS_WINDOWS: Final[bool] = platform.system() == "Windows"
IS_LINUX: Final[bool] = platform.system() == "Linux"
IS_MACOS: Final[bool] = platform.system() == "Darwin"


def _libc() -> ctypes.CDLL:
    return ctypes.CDLL("libc.so.6" if IS_LINUX else "libc.dylib", use_errno=True)


def _mlock(address: int, size: int) -> bool:
    """
    Lock memory pages to prevent swapping.

    Returns True if successful, False otherwise.
    """
    try:
        if IS_WINDOWS:
            kernel32 = ctypes.windll.kernel32
            return bool(kernel32.VirtualLock(ctypes.c_void_p(address), ctypes.c_size_t(size)))
        if IS_LINUX or IS_MACOS:
            return _libc().mlock(ctypes.c_void_p(address), ctypes.c_size_t(size)) == 0
    except (OSError, AttributeError):
        pass
    return False


def _munlock(address: int, size: int) -> bool:
    """Unlock memory pages."""
    try:
        if IS_WINDOWS:
            kernel32 = ctypes.windll.kernel32
            return bool(kernel32.VirtualUnlock(ctypes.c_void_p(address), ctypes.c_size_t(size)))
        if IS_LINUX or IS_MACOS:
            return _libc().munlock(ctypes.c_void_p(address), ctypes.c_size_t(size)) == 0
    except (OSError, AttributeError):
        pass
    return False


class SecretBytes:
    """
    Fixed-length secret held in a wipeable buffer.

    Used for KEM private keys and shared secrets. The length is fixed
    at construction and never changes; after wipe() the content is
    gone and any read raises ValueError.

    Usage:
        with SecretBytes(shared_secret) as secret:
            cipher.seal(text, secret.value)
        # buffer is now zeroed

    Security Notes:
        - The bytes passed to the constructor are copied, not wiped
        - Prefer keeping the SecretBytes object over its .value copies
    """

    __slots__ = ("_buffer", "_length", "_wiped", "_locked", "__weakref__")

    def __init__(self, data: bytes | bytearray, lock_memory: bool = True) -> None:
        self._length = len(data)
        self._buffer = bytearray(data)
        self._wiped = False
        self._locked = False

        if lock_memory and self._length:
            self._locked = _mlock(self._address(), self._length)

    def _address(self) -> int:
        return ctypes.addressof(
            (ctypes.c_char * self._length).from_buffer(self._buffer)
        )

    @property
    def value(self) -> bytes:
        """
        Secret content as immutable bytes.

        Warning: This creates a copy.
        """
        if self._wiped:
            raise ValueError("Secret has been wiped")
        return bytes(self._buffer)

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    @property
    def is_locked(self) -> bool:
        return self._locked

    def equals(self, other: bytes | "SecretBytes") -> bool:
        """Constant-time comparison against raw bytes or another secret."""
        other_value = other.value if isinstance(other, SecretBytes) else other
        return hmac.compare_digest(self.value, other_value)

    def wipe(self) -> None:
        """
        Securely wipe the buffer.

        Overwrites all data with zeros, then ones, then zeros again.
        Idempotent.
        """
        if self._wiped:
            return

        if self._length:
            secure_zero(self._buffer)
            if self._locked:
                _munlock(self._address(), self._length)
                self._locked = False

        self._wiped = True

    def __enter__(self) -> "SecretBytes":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.wipe()

    def __del__(self) -> None:
        try:
            self.wipe()
        except (AttributeError, TypeError):
            # Interpreter shutdown may have torn down module globals.
            pass

    def __len__(self) -> int:
        return self._length

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretBytes):
            return self.equals(other)
        if isinstance(other, (bytes, bytearray)):
            return self.equals(bytes(other))
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        """Safe representation - never show value."""
        if self._wiped:
            return "SecretBytes(WIPED)"
        return f"SecretBytes(len={self._length}, locked={self._locked})"
