"""State enums and value types shared by the lamp link components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RadioState(str, Enum):
    """Power state of the local Bluetooth adapter."""

    UNKNOWN = "unknown"
    POWERED_OFF = "poweredOff"
    POWERED_ON = "poweredOn"
    UNAUTHORIZED = "unauthorized"


class ConnectionState(str, Enum):
    """Link state of the session, as tracked by the manager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class LampState(str, Enum):
    """Result of reading the lamp's control characteristic."""

    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"


class SupervisorPhase(str, Enum):
    """Phase of the reconnection supervisor."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    GIVEN_UP = "given_up"


def normalize_device_id(*candidates: str | None) -> str | None:
    """Return the first non-empty identifier, upper-cased.

    Adapters report either a MAC address or a platform UUID.  Both
    compare case-insensitively, so the normalized form is upper case.
    Returns ``None`` when no candidate carries an identifier.

    Example::

        >>> normalize_device_id(None, "aa:bb:cc:dd:ee:ff")
        'AA:BB:CC:DD:EE:FF'
    """
    for candidate in candidates:
        if candidate is None:
            continue
        value = str(candidate).strip()
        if value:
            return value.upper()
    return None


def normalize_uuid(uuid: str) -> str:
    """Canonical comparison form of a UUID: lower case, no dashes."""
    return uuid.replace("-", "").strip().lower()


@dataclass(frozen=True)
class DiscoveredDevice:
    """One advertising peripheral seen during a scan pass."""

    id: str
    display_name: str | None = None
    signal_strength: int = 0

    def matches_name(self, name_filter: str) -> bool:
        """Case-insensitive substring match on the display name."""
        if not self.display_name:
            return False
        return name_filter.lower() in self.display_name.lower()


@dataclass(frozen=True)
class ControlCharacteristic:
    """A discovered GATT characteristic.

    *handle* is the transport's ATT handle, ``None`` where the backend
    does not expose one.
    """

    uuid: str
    handle: int | None = None
    properties: tuple[str, ...] = ()
    service_uuid: str | None = None

    @property
    def supports_write(self) -> bool:
        return "write" in self.properties or "write-without-response" in self.properties

    @property
    def supports_read(self) -> bool:
        return "read" in self.properties

    def has_uuid(self, uuid: str) -> bool:
        return normalize_uuid(self.uuid) == normalize_uuid(uuid)


@dataclass
class ReconnectionState:
    """Mutable bookkeeping of the reconnection supervisor."""

    max_attempts: int
    initial_delay: float
    attempt: int = 0
    current_delay: float = field(default=0.0)
    in_progress: bool = False

    def __post_init__(self) -> None:
        if not self.current_delay:
            self.current_delay = self.initial_delay

    def reset(self) -> None:
        """Back to attempt 0 at the initial delay."""
        self.attempt = 0
        self.current_delay = self.initial_delay
