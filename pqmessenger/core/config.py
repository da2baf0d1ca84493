"""
Messenger Configuration
=======================

Immutable, environment-aware configuration with security-first defaults.

Security Features:
- Immutable configuration after initialization
- Environment variable override support
- Sensitive-looking keys are never read from the environment
- OS-aware path handling
"""

from __future__ import annotations

import hashlib
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Final, Optional

from pqmessenger.core.crypto.kem import DEFAULT_ALGORITHM, DEFAULT_BACKEND, KEM_PARAMETERS
from pqmessenger.core.errors import ConfigError


_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "key", "token", "api_key",
    "private", "credential", "auth", "salt"
})

_KEM_BACKENDS: Final[frozenset[str]] = frozenset({"kyber-py", "liboqs"})
_LOG_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "PQMessenger" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "PQMessenger"
    else:  # Linux and others
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "PQMessenger" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    log_dir: Path = field(default_factory=_get_default_log_dir)

    def __post_init__(self) -> None:
        if not self.log_dir.is_absolute():
            raise ConfigError(f"log_dir must be an absolute path: {self.log_dir}")


@dataclass(frozen=True, slots=True)
class KemConfig:
    """Which KEM parameter set and which backend implements it."""

    backend: str = DEFAULT_BACKEND
    algorithm: str = DEFAULT_ALGORITHM

    def __post_init__(self) -> None:
        if self.backend not in _KEM_BACKENDS:
            raise ConfigError(f"Unknown KEM backend: {self.backend}")
        if self.algorithm not in KEM_PARAMETERS:
            raise ConfigError(f"Unsupported KEM algorithm: {self.algorithm}")


@dataclass(frozen=True, slots=True)
class CipherConfig:
    """Message cipher settings."""

    track_nonces: bool = True


@dataclass(frozen=True, slots=True)
class TransportConfig:
    """Relay connection settings."""

    server_url: str = "http://localhost:8080"
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if not self.server_url.startswith(("http://", "https://")):
            raise ConfigError(f"server_url must be an http(s) URL: {self.server_url}")
        if self.timeout_seconds <= 0:
            raise ConfigError("timeout_seconds must be positive")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """
    Immutable logging configuration.

    MessengerSession.open() applies it to the root logger unless
    configure_root is false (e.g. when the host application owns logging).
    """

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False
    configure_root: bool = True

    def __post_init__(self) -> None:
        if self.level.upper() not in _LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Startup hardening settings."""

    run_self_tests: bool = True


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


# env key -> (section, field, parser)
_ENV_FIELDS: Final[Dict[str, tuple[str, str, Callable[[str, str], Any]]]] = {
    "kem.backend": ("kem", "backend", lambda n, v: v),
    "kem.algorithm": ("kem", "algorithm", lambda n, v: v),
    "cipher.track_nonces": ("cipher", "track_nonces", _parse_bool),
    "transport.server_url": ("transport", "server_url", lambda n, v: v),
    "transport.timeout_seconds": ("transport", "timeout_seconds", _parse_float),
    "logging.level": ("logging", "level", lambda n, v: v),
    "logging.enable_console": ("logging", "enable_console", _parse_bool),
    "logging.enable_file": ("logging", "enable_file", _parse_bool),
    "logging.enable_json": ("logging", "enable_json", _parse_bool),
    "logging.configure_root": ("logging", "configure_root", _parse_bool),
    "paths.log_dir": ("paths", "log_dir", lambda n, v: Path(v)),
    "security.run_self_tests": ("security", "run_self_tests", _parse_bool),
}

_SECTIONS: Final[Dict[str, type]] = {
    "paths": PathConfig,
    "kem": KemConfig,
    "cipher": CipherConfig,
    "transport": TransportConfig,
    "logging": LoggingConfig,
    "security": SecurityConfig,
}


class MessengerConfig:
    """
    Centralized, immutable configuration with environment override support.

    Usage:
        config = MessengerConfig.load()
        provider = KemProvider(config.kem.algorithm, config.kem.backend)
        transport = HttpTransport(config.transport.server_url)
    """

    __slots__ = ("_paths", "_kem", "_cipher", "_transport", "_logging", "_security", "_frozen", "_config_hash")

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        kem: Optional[KemConfig] = None,
        cipher: Optional[CipherConfig] = None,
        transport: Optional[TransportConfig] = None,
        logging: Optional[LoggingConfig] = None,
        security: Optional[SecurityConfig] = None,
    ) -> None:
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_kem", kem or KemConfig())
        object.__setattr__(self, "_cipher", cipher or CipherConfig())
        object.__setattr__(self, "_transport", transport or TransportConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_security", security or SecurityConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Compute a hash of the configuration for integrity checking."""
        config_str = "|".join(
            str(part) for part in (
                self._paths, self._kem, self._cipher,
                self._transport, self._logging, self._security,
            )
        )
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def kem(self) -> KemConfig:
        return self._kem

    @property
    def cipher(self) -> CipherConfig:
        return self._cipher

    @property
    def transport(self) -> TransportConfig:
        return self._transport

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def security(self) -> SecurityConfig:
        return self._security

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "PQMESSENGER") -> MessengerConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables are prefixed with PQMESSENGER_ and use
        double underscores between section and field.

        Examples:
            PQMESSENGER_LOGGING__LEVEL=DEBUG
            PQMESSENGER_KEM__BACKEND=liboqs
            PQMESSENGER_TRANSPORT__SERVER_URL=https://relay.example.org

        Raises:
            ConfigError: If an override has an invalid value
        """
        overrides = cls._parse_env_overrides(env_prefix)

        section_kwargs: Dict[str, Dict[str, Any]] = {name: {} for name in _SECTIONS}
        for config_key, raw in overrides.items():
            target = _ENV_FIELDS.get(config_key)
            if target is None:
                continue
            section, field_name, parser = target
            section_kwargs[section][field_name] = parser(config_key, raw)

        built = {
            name: (_SECTIONS[name](**kwargs) if kwargs else None)
            for name, kwargs in section_kwargs.items()
        }
        return cls(**built)

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # PQMESSENGER_SECTION__KEY -> section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    def __repr__(self) -> str:
        """Safe string representation without sensitive data."""
        return f"MessengerConfig(hash={self._config_hash}, kem={self._kem.algorithm}/{self._kem.backend})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if getattr(self, "_frozen", False):
            raise AttributeError("MessengerConfig is immutable after initialization")
        super().__setattr__(name, value)
