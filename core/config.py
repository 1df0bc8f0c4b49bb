"""Service configuration.

Settings is frozen after creation. ``Settings.from_env()`` reads
``INVENTORY_*`` environment variables and falls back to the defaults below.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from core.exceptions import ConfigError

ENV_PREFIX = "INVENTORY_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Configuration for the inventory service.

    Attributes:
        host: Bind address for uvicorn.
        port: Bind port for uvicorn.
        live_path: Path of the live channel endpoint. Kept apart from any
            dev-tooling reload socket on the same host.
        throttle_seconds: Delay between the first mutation notification and
            the coalesced snapshot broadcast.
        reconnect_interval: Fixed delay before a client reconnect attempt.
        reconnect_attempts: Consecutive failed attempts before a client gives up.
        log_level: Name of the root logging level.
        seed_sample_data: Load demonstration batches on startup.
        cors_origins: Origins allowed by the CORS middleware.
    """

    host: str = "0.0.0.0"
    port: int = 8000
    live_path: str = "/ws"
    throttle_seconds: float = 2.0
    reconnect_interval: float = 10.0
    reconnect_attempts: int = 5
    log_level: str = "INFO"
    seed_sample_data: bool = True
    cors_origins: Tuple[str, ...] = field(default=("*",))

    def __post_init__(self) -> None:
        if self.throttle_seconds < 0:
            raise ConfigError(f"throttle_seconds must be >= 0, got {self.throttle_seconds}")
        if self.reconnect_interval < 0:
            raise ConfigError(f"reconnect_interval must be >= 0, got {self.reconnect_interval}")
        if self.reconnect_attempts < 0:
            raise ConfigError(f"reconnect_attempts must be >= 0, got {self.reconnect_attempts}")
        if not self.live_path.startswith("/"):
            raise ConfigError(f"live_path must start with '/', got {self.live_path!r}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Raises:
            ConfigError: If a variable cannot be converted
        """
        env = os.environ if environ is None else environ
        values = {}

        def read(name: str, convert):
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None:
                return
            try:
                values[name] = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e

        read("host", str)
        read("port", int)
        read("live_path", str)
        read("throttle_seconds", float)
        read("reconnect_interval", float)
        read("reconnect_attempts", int)
        read("log_level", str.upper)
        read("seed_sample_data", _parse_bool)
        read("cors_origins", _parse_list)
        return cls(**values)


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(raw)


def _parse_list(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())
