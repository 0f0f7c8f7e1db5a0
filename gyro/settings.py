from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any

from gyro.exceptions import InvalidSettings


DEFAULT_URL = "mongodb://localhost:27017"
DEFAULT_DATABASE_NAME = "test"
DEFAULT_RECONNECT_TIMEOUT = 500
DEFAULT_TIMEOUT = 5000


@dataclass
class ConnectionSettings:
    """Configuration for the connection manager.

    Attributes:
        reconnect_timeout: Milliseconds to wait after a failed connect before trying again (default: 500). Retries are
            unbounded and always use this same delay.
        timeout: Server selection timeout in milliseconds, this bounds how long a single connect attempt can take
            (default: 5000)
        database_name: Database to use when the URL does not name one (default: "test")
        connection_options: Additional options passed unchanged to the motor client.
            Example: {"tlsAllowInvalidCertificates": True}
    """
    reconnect_timeout: int = DEFAULT_RECONNECT_TIMEOUT
    timeout: int = DEFAULT_TIMEOUT
    database_name: str = DEFAULT_DATABASE_NAME
    connection_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("reconnect_timeout", "timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise InvalidSettings(f"{name} must be a number of milliseconds, got {value!r}")

        if self.reconnect_timeout < 0:
            raise InvalidSettings(f"reconnect_timeout must not be negative, got {self.reconnect_timeout}")

        if self.timeout <= 0:
            raise InvalidSettings(f"timeout must be positive, got {self.timeout}")

    @property
    def reconnect_delay(self) -> float:
        """The reconnect timeout in seconds."""
        return self.reconnect_timeout / 1000

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "ConnectionSettings":
        """Builds settings from a flat options mapping.

        ``reconnectTimeout`` is recognized, every other key is passed through to the motor client untouched.
        """
        connection_options = dict(options)
        if "reconnectTimeout" in connection_options:
            return cls(
                reconnect_timeout=connection_options.pop("reconnectTimeout"),
                connection_options=connection_options,
            )

        return cls(connection_options=connection_options)


def resolve_settings(settings: "ConnectionSettings | Mapping[str, Any] | None") -> ConnectionSettings:
    match settings:
        case None:
            return ConnectionSettings()

        case ConnectionSettings():
            return settings

        case Mapping():
            return ConnectionSettings.from_options(settings)

        case _:
            raise InvalidSettings(f"Expected ConnectionSettings or a mapping of options, got {settings!r}")
