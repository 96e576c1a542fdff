"""Host-facing lamp link manager.

:class:`LampLinkManager` wires the components together::

    RadioGate ─▶ Scanner ─▶ Session.connect ─▶ HealthMonitor
                                 ▲                  │ unhealthy
                                 │                  ▼
                  ReconnectionSupervisor ◀── link lost
                                 ▲
                  LampCommands ──┘ (on failed command)

Usage::

    async with LampLinkManager() as manager:
        await manager.await_ready()
        devices = await manager.scan(5.0, "Lamp")
        await manager.connect(devices[-1])
        await manager.turn_on()

Only one peripheral is managed at a time; connecting to another
target replaces the current one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .bleak_transport import BleakTransport
from .commands import LampCommands
from .const import DEFAULT_SCAN_DURATION, LinkConfig
from .dbus_bus import close_bus
from .exc import ConnectFailed
from .health import Health, HealthMonitor
from .models import (
    ConnectionState,
    ControlCharacteristic,
    DiscoveredDevice,
    LampState,
    RadioState,
    ReconnectionState,
    normalize_device_id,
)
from .radio import RadioGate
from .reconnect import ReconnectionSupervisor
from .scanner import Scanner
from .session import Session
from .transport import Transport

_LOGGER = logging.getLogger(__name__)


class LampLinkManager:
    """Connection lifecycle and commands for one BLE lamp.

    Parameters
    ----------
    transport:
        Radio adapter.  Defaults to a :class:`BleakTransport` on
        ``config.adapter``.
    config:
        Link configuration.  Defaults to :class:`LinkConfig` defaults.
    jitter:
        Override for the supervisor's backoff jitter source.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        config: LinkConfig | None = None,
        *,
        jitter: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or LinkConfig()
        self._transport = transport or BleakTransport(self._config.adapter)
        cfg = self._config

        self._radio = RadioGate(self._transport)
        self._scanner = Scanner(self._transport)
        self._session = Session(
            self._transport,
            control_uuid=cfg.control_char_uuid,
            legacy_handle=cfg.legacy_control_handle,
            connect_timeout=cfg.connect_timeout,
            discovery_timeout=cfg.discovery_timeout,
            io_timeout=cfg.io_timeout,
            on_link_lost=self._handle_link_lost,
        )
        self._monitor = HealthMonitor(
            self._probe_health,
            self._handle_unhealthy,
            interval=cfg.health_check_interval,
        )
        self._session.monitor = self._monitor

        supervisor_kwargs = {}
        if jitter is not None:
            supervisor_kwargs["jitter"] = jitter
        self._supervisor = ReconnectionSupervisor(
            self._reconnect_once,
            max_attempts=cfg.max_reconnection_attempts,
            initial_delay=cfg.initial_reconnection_delay,
            max_delay=cfg.max_reconnection_delay,
            on_reconnected=self._monitor.start,
            can_reconnect=lambda: self._session.target is not None,
            enabled=cfg.auto_reconnect,
            **supervisor_kwargs,
        )
        self._commands = LampCommands(
            self._session,
            self._supervisor,
            attempts=cfg.command_attempts,
            reconnect_timeout=cfg.command_reconnect_timeout,
        )
        self._last_scan: dict[str, DiscoveredDevice] = {}

    async def __aenter__(self) -> LampLinkManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Components ─────────────────────────────────────────────────

    @property
    def config(self) -> LinkConfig:
        return self._config

    @property
    def session(self) -> Session:
        return self._session

    @property
    def monitor(self) -> HealthMonitor:
        return self._monitor

    @property
    def supervisor(self) -> ReconnectionSupervisor:
        return self._supervisor

    # ── State for the host ─────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def current_peripheral_id(self) -> str | None:
        """Id of the connected (or connecting) peripheral, ``None`` otherwise."""
        return self._session.peripheral_id

    @property
    def connection_state(self) -> ConnectionState:
        return self._session.state

    @property
    def radio_state(self) -> RadioState:
        return self._radio.state

    @property
    def target(self) -> DiscoveredDevice | None:
        return self._session.target

    @property
    def auto_reconnect(self) -> bool:
        return self._supervisor.enabled

    @property
    def reconnection_state(self) -> ReconnectionState:
        return self._supervisor.state

    @property
    def characteristics(self) -> tuple[ControlCharacteristic, ...]:
        return self._session.characteristics

    @property
    def control_characteristic(self) -> ControlCharacteristic | None:
        return self._session.control_characteristic

    # ── Lifecycle ──────────────────────────────────────────────────

    async def await_ready(self, timeout: float | None = None) -> None:
        """Wait for the radio; see :meth:`RadioGate.await_ready`.

        *timeout* defaults to ``config.radio_ready_timeout``.
        """
        if timeout is None:
            timeout = self._config.radio_ready_timeout
        await self._radio.await_ready(timeout)

    async def scan(
        self,
        duration: float = DEFAULT_SCAN_DURATION,
        name_filter: str | None = None,
    ) -> list[DiscoveredDevice]:
        """Run one discovery pass; see :meth:`Scanner.scan`."""
        devices = await self._scanner.scan(duration, name_filter)
        self._last_scan = {device.id: device for device in devices}
        return devices

    def _resolve_target(self, device: DiscoveredDevice | str) -> DiscoveredDevice:
        if isinstance(device, DiscoveredDevice):
            return device
        device_id = normalize_device_id(device)
        if device_id is None:
            raise ConnectFailed("Empty device identifier")
        return self._last_scan.get(device_id) or DiscoveredDevice(id=device_id)

    async def connect(self, device: DiscoveredDevice | str) -> None:
        """Connect to *device* (a scan result or a bare identifier).

        Cancels any reconnection in progress and re-arms automatic
        reconnection.  Raises :class:`ConnectFailed` on failure.
        """
        target = self._resolve_target(device)
        self._supervisor.abort()
        self._supervisor.rearm()
        await self._session.connect(target)
        self._supervisor.reset()
        self._monitor.start()

    async def disconnect(self) -> None:
        """Disconnect and stop automatic reconnection until the next ``connect``."""
        self._supervisor.abort()
        await self._session.disconnect()

    async def close(self) -> None:
        """Disconnect and release the shared D-Bus connection."""
        await self.disconnect()
        await close_bus()

    # ── Commands ───────────────────────────────────────────────────

    async def turn_on(self) -> bool:
        return await self._commands.turn_on()

    async def turn_off(self) -> bool:
        return await self._commands.turn_off()

    async def read_state(self) -> LampState:
        return await self._commands.read_state()

    def select_control_characteristic(self, uuid: str) -> ControlCharacteristic:
        return self._session.select_control_characteristic(uuid)

    def select_control_characteristic_by_handle(
        self, handle: int
    ) -> ControlCharacteristic:
        return self._session.select_control_characteristic_by_handle(handle)

    # ── Runtime settings ───────────────────────────────────────────

    def set_auto_reconnect(self, enabled: bool) -> None:
        self._config.auto_reconnect = enabled
        self._supervisor.set_enabled(enabled)

    def set_max_reconnection_attempts(self, attempts: int) -> None:
        self._supervisor.set_max_attempts(attempts)
        self._config.max_reconnection_attempts = self._supervisor.state.max_attempts

    def set_health_check_interval(self, seconds: float) -> None:
        self._monitor.set_interval(seconds)
        self._config.health_check_interval = self._monitor.interval

    def set_initial_reconnection_delay(self, delay_ms: float) -> None:
        self._supervisor.set_initial_delay(delay_ms / 1000.0)
        self._config.initial_reconnection_delay = self._supervisor.state.initial_delay

    # ── Internal wiring ────────────────────────────────────────────

    async def _reconnect_once(self) -> None:
        target = self._session.target
        if target is None:
            raise ConnectFailed("No target to reconnect to")
        await self._session.connect(target)

    def _probe_health(self) -> Health:
        session = self._session
        if session.target is None:
            return Health.NO_SESSION
        if not session.is_connected:
            return Health.DISCONNECTED
        if not session.link_connected:
            return Health.MISMATCH
        return Health.OK

    def _handle_unhealthy(self, health: Health) -> None:
        if health is Health.MISMATCH:
            # Goes through the same path as a transport disconnect event
            self._session.mark_link_lost("health check: transport reports link down")
            return
        self._handle_link_lost()

    def _handle_link_lost(self) -> None:
        if not self._supervisor.enabled:
            _LOGGER.info("Link lost, auto-reconnection disabled")
            return
        _LOGGER.info("Attempting automatic reconnection")
        self._supervisor.trigger()
