"""bleak-lamp-link: BLE connection lifecycle manager for a single lamp.

Keeps a link to one peripheral alive over an unreliable radio:
power-on gating, time-boxed discovery, GATT discovery with control
characteristic selection, health monitoring, exponential-backoff
reconnection, and on/off commands with bounded retry.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .bleak_transport import BleakLink, BleakTransport
from .commands import LampCommands, decode_lamp_state
from .const import (
    CONTROL_CHAR_UUID,
    IS_LINUX,
    LEGACY_CONTROL_HANDLE,
    PAYLOAD_OFF,
    PAYLOAD_ON,
    LinkConfig,
)
from .exc import (
    CharacteristicNotFound,
    ConnectFailed,
    LampLinkError,
    NoCharacteristicSelected,
    NotConnected,
    RadioUnavailable,
    ReadFailed,
    ScanFailed,
    WriteFailed,
)
from .health import Health, HealthMonitor
from .manager import LampLinkManager
from .models import (
    ConnectionState,
    ControlCharacteristic,
    DiscoveredDevice,
    LampState,
    RadioState,
    ReconnectionState,
    SupervisorPhase,
    normalize_device_id,
)
from .radio import RadioGate
from .reconnect import ReconnectionSupervisor
from .scanner import Scanner
from .session import Session
from .transport import Link, Transport

__all__ = [
    # Host-facing manager
    "LampLinkManager",
    "LinkConfig",
    # Components
    "RadioGate",
    "Scanner",
    "Session",
    "HealthMonitor",
    "Health",
    "ReconnectionSupervisor",
    "LampCommands",
    "decode_lamp_state",
    # Transport
    "Transport",
    "Link",
    "BleakTransport",
    "BleakLink",
    # Models
    "ConnectionState",
    "ControlCharacteristic",
    "DiscoveredDevice",
    "LampState",
    "RadioState",
    "ReconnectionState",
    "SupervisorPhase",
    "normalize_device_id",
    # Errors
    "LampLinkError",
    "RadioUnavailable",
    "ScanFailed",
    "ConnectFailed",
    "CharacteristicNotFound",
    "NotConnected",
    "NoCharacteristicSelected",
    "WriteFailed",
    "ReadFailed",
    # Constants
    "CONTROL_CHAR_UUID",
    "IS_LINUX",
    "LEGACY_CONTROL_HANDLE",
    "PAYLOAD_ON",
    "PAYLOAD_OFF",
]
