"""Constants and configuration dataclasses for bleak-lamp-link."""

from __future__ import annotations

import platform
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

IS_LINUX = platform.system() == "Linux"

# Lamp control characteristic.  The device exposes exactly one writable
# characteristic with this UUID; writing a single byte switches the lamp.
CONTROL_CHAR_UUID = "b35d95c6-6a68-437e-abe7-0ebffd8e0661"

PAYLOAD_ON = b"\x01"
PAYLOAD_OFF = b"\x00"

# Legacy fixed ATT handle of the control characteristic.  Earlier
# firmware analyses used several conflicting handles (21/23 for ON,
# 26 for OFF) before settling on 26 for both.  Only used when UUID
# based selection finds nothing and the caller opts in.
LEGACY_CONTROL_HANDLE = 26

# How long to wait for a disconnect to complete before giving up.
DISCONNECT_TIMEOUT = 5.0

# Lower bounds applied to runtime configuration.
MIN_HEALTH_CHECK_INTERVAL = 5.0
MIN_INITIAL_RECONNECTION_DELAY = 0.5
MIN_RECONNECTION_ATTEMPTS = 1

# Pause after a command-triggered reconnect so the peripheral can
# finish its own connection setup before the command is retried.
LINK_STABILIZE_DELAY = 1.0

# Upper bound of the random jitter added to each backoff step (seconds).
RECONNECT_JITTER = 1.0

DEFAULT_SCAN_DURATION = 10.0

# Host option keys (camelCase) mapped onto LinkConfig fields.
_HOST_OPTION_KEYS = {
    "autoReconnect": "auto_reconnect",
    "maxReconnectionAttempts": "max_reconnection_attempts",
    "connectionMonitorInterval": "health_check_interval",
    "healthCheckInterval": "health_check_interval",
    "maxReconnectionDelay": "max_reconnection_delay",
    "controlCharacteristicUuid": "control_char_uuid",
    "legacyControlHandle": "legacy_control_handle",
    "adapter": "adapter",
}


@dataclass
class LinkConfig:
    """Configuration for a :class:`~bleak_lamp_link.manager.LampLinkManager`.

    Parameters
    ----------
    auto_reconnect:
        Hand link loss to the reconnection supervisor automatically.
    max_reconnection_attempts:
        Consecutive failed reconnects before the supervisor gives up.
    initial_reconnection_delay:
        First backoff delay in seconds.  Doubled (plus jitter) after
        every failure up to *max_reconnection_delay*.
    max_reconnection_delay:
        Backoff ceiling in seconds.
    health_check_interval:
        Seconds between health checks of a connected session.  Values
        below ``MIN_HEALTH_CHECK_INTERVAL`` are raised to the floor.
    command_attempts:
        Attempts per ``turn_on``/``turn_off``/``read_state`` call.
    command_reconnect_timeout:
        Longest a single command waits for the supervisor before it
        counts the attempt as failed.  The supervisor keeps running in
        the background.
    connect_timeout:
        Timeout for one physical connection attempt.
    discovery_timeout:
        Timeout for service discovery and for each service's
        characteristic discovery.
    io_timeout:
        Timeout for a single characteristic write or read.
    radio_ready_timeout:
        How long ``await_ready`` waits for the adapter to power on.
        ``None`` waits indefinitely.
    control_char_uuid:
        UUID auto-selected as the control characteristic.
    legacy_control_handle:
        ATT handle used when no characteristic matches
        *control_char_uuid*.  ``None`` disables the fallback.
    adapter:
        BlueZ adapter name (``hci0``).  ``None`` picks the first one.
    """

    auto_reconnect: bool = True
    max_reconnection_attempts: int = 10
    initial_reconnection_delay: float = 1.0
    max_reconnection_delay: float = 30.0
    health_check_interval: float = 10.0
    command_attempts: int = 3
    command_reconnect_timeout: float = 30.0
    connect_timeout: float = 20.0
    discovery_timeout: float = 10.0
    io_timeout: float = 5.0
    radio_ready_timeout: float | None = 30.0
    control_char_uuid: str = CONTROL_CHAR_UUID
    legacy_control_handle: int | None = None
    adapter: str | None = None

    def __post_init__(self) -> None:
        self.max_reconnection_attempts = max(
            MIN_RECONNECTION_ATTEMPTS, int(self.max_reconnection_attempts)
        )
        self.initial_reconnection_delay = max(
            MIN_INITIAL_RECONNECTION_DELAY, float(self.initial_reconnection_delay)
        )
        self.max_reconnection_delay = max(
            self.initial_reconnection_delay, float(self.max_reconnection_delay)
        )
        self.health_check_interval = max(
            MIN_HEALTH_CHECK_INTERVAL, float(self.health_check_interval)
        )
        if self.command_attempts < 1:
            raise ValueError(
                f"command_attempts must be >= 1, got {self.command_attempts}"
            )

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> LinkConfig:
        """Build a config from a host option dictionary.

        Accepts field names as well as the host's camelCase keys.
        ``initialReconnectionDelay`` is given in milliseconds, like the
        host's ``set_initial_reconnection_delay``.  Unknown keys are
        ignored.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            if value is None:
                continue
            if key == "initialReconnectionDelay":
                kwargs["initial_reconnection_delay"] = float(value) / 1000.0
            elif key in _HOST_OPTION_KEYS:
                kwargs[_HOST_OPTION_KEYS[key]] = value
            elif key in known:
                kwargs[key] = value
        return cls(**kwargs)
