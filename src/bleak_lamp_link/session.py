"""The link to the one peripheral the manager controls.

A :class:`Session` owns everything tied to a single connection:

- the physical link (created through the injected transport),
- GATT discovery, fanned out over every service and joined before
  ``connect`` returns,
- the selected control characteristic,
- bare ``write``/``read`` primitives with a bounded wait.

State is mutated only from the event loop; ``connect`` and
``disconnect`` are additionally serialized by an ``asyncio.Lock`` so a
reconnect and a manual disconnect never interleave.

Unsolicited link loss flips the session to ``DISCONNECTED``, drops the
link, stops the health monitor and notifies ``on_link_lost``.  The
target is kept so the reconnection supervisor can reuse it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from bleak.exc import BleakError

from .const import CONTROL_CHAR_UUID, DISCONNECT_TIMEOUT
from .exc import (
    CharacteristicNotFound,
    ConnectFailed,
    NoCharacteristicSelected,
    NotConnected,
    ReadFailed,
    WriteFailed,
)
from .models import ConnectionState, ControlCharacteristic, DiscoveredDevice
from .transport import Link, Transport

if TYPE_CHECKING:
    from .health import HealthMonitor

_LOGGER = logging.getLogger(__name__)

# Exceptions a transport may raise for a failed radio operation
_TRANSPORT_ERRORS = (BleakError, asyncio.TimeoutError, OSError, EOFError)


class Session:
    """Connection lifecycle of a single peripheral.

    Parameters
    ----------
    transport:
        The radio adapter.
    control_uuid:
        UUID auto-selected as the control characteristic.
    legacy_handle:
        ATT handle to fall back to when no characteristic matches
        *control_uuid*.  ``None`` disables the fallback.
    connect_timeout:
        Timeout for the physical connection.
    discovery_timeout:
        Timeout for listing services and for each service's
        characteristic discovery.
    io_timeout:
        Timeout for a single write or read.
    on_link_lost:
        Called (synchronously, on the event loop) after an unsolicited
        loss of an established link.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        control_uuid: str = CONTROL_CHAR_UUID,
        legacy_handle: int | None = None,
        connect_timeout: float = 20.0,
        discovery_timeout: float = 10.0,
        io_timeout: float = 5.0,
        on_link_lost: Callable[[], None] | None = None,
    ) -> None:
        self._transport = transport
        self._control_uuid = control_uuid
        self._legacy_handle = legacy_handle
        self._connect_timeout = connect_timeout
        self._discovery_timeout = discovery_timeout
        self._io_timeout = io_timeout
        self._on_link_lost = on_link_lost
        self.monitor: HealthMonitor | None = None

        self._lock = asyncio.Lock()
        self._target: DiscoveredDevice | None = None
        self._link: Link | None = None
        self._state = ConnectionState.DISCONNECTED
        self._characteristics: list[ControlCharacteristic] = []
        self._control: ControlCharacteristic | None = None
        # UUID chosen through select_control_characteristic(); re-applied
        # after discovery on the next connect
        self._preferred_uuid: str | None = None

    # ── State ──────────────────────────────────────────────────────

    @property
    def target(self) -> DiscoveredDevice | None:
        """The remembered peripheral, kept across link loss."""
        return self._target

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def link_connected(self) -> bool:
        """Link state as last reported by the transport."""
        link = self._link
        return link is not None and link.is_connected

    @property
    def peripheral_id(self) -> str | None:
        """Id of the peripheral behind the current link, if any."""
        link = self._link
        return link.device.id if link is not None else None

    @property
    def control_characteristic(self) -> ControlCharacteristic | None:
        return self._control

    @property
    def characteristics(self) -> tuple[ControlCharacteristic, ...]:
        """Every characteristic found by the last discovery."""
        return tuple(self._characteristics)

    def _stop_monitor(self) -> None:
        if self.monitor is not None:
            self.monitor.stop()

    # ── Connect / disconnect ───────────────────────────────────────

    async def connect(self, target: DiscoveredDevice) -> None:
        """Connect to *target* and discover its GATT database.

        An existing link is torn down first.  Returns once every
        service's characteristic discovery has finished.

        Raises :class:`ConnectFailed` if the link cannot be established,
        the service list cannot be read, or the link drops during
        discovery.
        """
        async with self._lock:
            self._stop_monitor()
            if self._link is not None:
                old_link, self._link = self._link, None
                await self._close_link(old_link)

            self._target = target
            self._state = ConnectionState.CONNECTING
            link = self._transport.create_link(
                target, lambda: self._handle_link_lost(link)
            )
            self._link = link
            _LOGGER.info(
                "%s: Connecting (%s)", target.id, target.display_name or "Unknown"
            )

            try:
                await asyncio.wait_for(link.connect(), timeout=self._connect_timeout)
                _LOGGER.debug("%s: Link established, discovering services", target.id)
                await self._discover(link)
            except _TRANSPORT_ERRORS as exc:
                self._abandon(link)
                await self._close_link(link)
                raise ConnectFailed(f"{target.id}: Failed to connect: {exc}") from exc
            except BaseException:
                # Cancelled (e.g. reconnection aborted) after the link may
                # already be up; the close must finish even if cancelled again
                self._abandon(link)
                await asyncio.shield(self._close_link(link))
                raise

            if self._link is not link:
                raise ConnectFailed(f"{target.id}: Link lost during discovery")

            self._state = ConnectionState.CONNECTED
            _LOGGER.info("%s: Connected", target.id)

    def _abandon(self, link: Link) -> None:
        if self._link is link:
            self._link = None
            self._state = ConnectionState.DISCONNECTED

    async def _close_link(self, link: Link) -> None:
        try:
            await asyncio.wait_for(link.disconnect(), timeout=DISCONNECT_TIMEOUT)
        except _TRANSPORT_ERRORS:
            _LOGGER.debug(
                "%s: Error closing link", link.device.id, exc_info=True
            )

    async def disconnect(self) -> None:
        """Disconnect and forget the target.

        Idempotent.  The health monitor is stopped first; an active
        disconnect is only issued when the session is connected.
        """
        self._stop_monitor()
        async with self._lock:
            link = self._link
            was_connected = self._state is ConnectionState.CONNECTED
            # Clear before awaiting so a late callback sees a stale link
            self._link = None
            self._state = ConnectionState.DISCONNECTED
            if was_connected and link is not None:
                _LOGGER.debug("%s: Disconnecting", link.device.id)
                await self._close_link(link)
                _LOGGER.info("%s: Disconnected", link.device.id)
            self._control = None
            self._characteristics.clear()
            self._preferred_uuid = None
            self._target = None

    def _handle_link_lost(self, link: Link) -> None:
        if link is not self._link:
            # Stale link or a disconnect we asked for
            return
        self.mark_link_lost("peripheral disconnected")

    def mark_link_lost(self, reason: str) -> None:
        """Record that the link is gone.

        Used for the transport's disconnect event and by the health
        monitor when the transport disagrees with the session's flag.
        ``on_link_lost`` only fires for a link that was established.
        """
        was_connected = self._state is ConnectionState.CONNECTED
        if self._link is None and not was_connected:
            return
        target_id = self._target.id if self._target else "?"
        _LOGGER.warning("%s: Link lost (%s)", target_id, reason)
        self._state = ConnectionState.DISCONNECTED
        self._link = None
        self._stop_monitor()
        if was_connected and self._on_link_lost is not None:
            self._on_link_lost()

    # ── Discovery ──────────────────────────────────────────────────

    async def _discover(self, link: Link) -> None:
        device_id = link.device.id
        self._characteristics.clear()
        self._control = None

        services = await asyncio.wait_for(
            link.discover_services(), timeout=self._discovery_timeout
        )
        _LOGGER.info("%s: Discovered %d services", device_id, len(services))

        per_service = await asyncio.gather(
            *(self._discover_service(link, service) for service in services)
        )
        for chars in per_service:
            for char in chars:
                self._characteristics.append(char)
                if self._control is None and char.has_uuid(self._control_uuid):
                    self._control = char
                    _LOGGER.info(
                        "%s: Found control characteristic %s (handle %s)",
                        device_id,
                        char.uuid,
                        char.handle,
                    )

        _LOGGER.info(
            "%s: Discovery completed, %d characteristics total",
            device_id,
            len(self._characteristics),
        )
        if self._control is not None:
            return

        if self._preferred_uuid is not None:
            self._control = self._find_by_uuid(self._preferred_uuid)
            if self._control is not None:
                _LOGGER.info(
                    "%s: Re-selected control characteristic %s",
                    device_id,
                    self._control.uuid,
                )
                return

        if self._legacy_handle is not None:
            self._control = self._find_by_handle(self._legacy_handle)
            if self._control is not None:
                _LOGGER.warning(
                    "%s: Control characteristic selected by legacy handle %d (%s)",
                    device_id,
                    self._legacy_handle,
                    self._control.uuid,
                )
                return

        _LOGGER.warning(
            "%s: Control characteristic %s not found; select one explicitly",
            device_id,
            self._control_uuid,
        )

    async def _discover_service(
        self, link: Link, service: Any
    ) -> Sequence[ControlCharacteristic]:
        uuid = getattr(service, "uuid", service)
        try:
            chars = await asyncio.wait_for(
                link.discover_characteristics(service),
                timeout=self._discovery_timeout,
            )
        except _TRANSPORT_ERRORS as exc:
            _LOGGER.error(
                "%s: Error discovering characteristics for service %s: %s",
                link.device.id,
                uuid,
                exc or type(exc).__name__,
            )
            return []
        _LOGGER.debug(
            "%s: Service %s has %d characteristics", link.device.id, uuid, len(chars)
        )
        for char in chars:
            _LOGGER.debug(
                "%s:   %s handle=%s properties=[%s]",
                link.device.id,
                char.uuid,
                char.handle,
                ", ".join(char.properties),
            )
        return chars

    # ── Characteristic selection ───────────────────────────────────

    def _find_by_uuid(self, uuid: str) -> ControlCharacteristic | None:
        for char in self._characteristics:
            if char.has_uuid(uuid):
                return char
        return None

    def _find_by_handle(self, handle: int) -> ControlCharacteristic | None:
        for char in self._characteristics:
            if char.handle == handle:
                return char
        return None

    def select_control_characteristic(self, uuid: str) -> ControlCharacteristic:
        """Use the discovered characteristic *uuid* for commands.

        The choice is re-applied after the next reconnect.  Raises
        :class:`CharacteristicNotFound` if discovery did not find it.
        """
        char = self._find_by_uuid(uuid)
        if char is None:
            _LOGGER.error("Characteristic with UUID %s not found", uuid)
            raise CharacteristicNotFound(uuid)
        self._control = char
        self._preferred_uuid = char.uuid
        _LOGGER.info("Selected control characteristic %s", char.uuid)
        return char

    def select_control_characteristic_by_handle(
        self, handle: int
    ) -> ControlCharacteristic:
        """Legacy: select the control characteristic by ATT handle.

        Handles differ between firmware revisions; prefer
        :meth:`select_control_characteristic`.
        """
        char = self._find_by_handle(handle)
        if char is None:
            _LOGGER.error("Characteristic with handle %d not found", handle)
            raise CharacteristicNotFound(handle)
        self._control = char
        _LOGGER.warning(
            "Selected control characteristic by legacy handle %d (%s)",
            handle,
            char.uuid,
        )
        return char

    # ── I/O primitives ─────────────────────────────────────────────

    def _ready(self) -> tuple[Link, ControlCharacteristic]:
        link = self._link
        if self._state is not ConnectionState.CONNECTED or link is None:
            target_id = self._target.id if self._target else "no target"
            raise NotConnected(f"{target_id}: Not connected")
        if self._control is None:
            raise NoCharacteristicSelected(
                f"{link.device.id}: No control characteristic selected"
            )
        return link, self._control

    async def write(self, payload: bytes, *, response: bool = False) -> None:
        """Write *payload* to the control characteristic.

        No retry.  Raises :class:`NotConnected`,
        :class:`NoCharacteristicSelected` or :class:`WriteFailed`.
        """
        link, char = self._ready()
        if char.properties and not char.supports_write:
            raise WriteFailed(f"{link.device.id}: {char.uuid} is not writable")
        _LOGGER.debug(
            "%s: Writing %s to %s", link.device.id, payload.hex(), char.uuid
        )
        try:
            await asyncio.wait_for(
                link.write(char, payload, response), timeout=self._io_timeout
            )
        except asyncio.TimeoutError as exc:
            raise WriteFailed(
                f"{link.device.id}: Write to {char.uuid} timed out "
                f"after {self._io_timeout:.1f} s"
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise WriteFailed(
                f"{link.device.id}: Write to {char.uuid} failed: {exc}"
            ) from exc

    async def read(self) -> bytes:
        """Read the control characteristic.

        No retry.  Raises :class:`NotConnected`,
        :class:`NoCharacteristicSelected` or :class:`ReadFailed`.
        """
        link, char = self._ready()
        if char.properties and not char.supports_read:
            raise ReadFailed(f"{link.device.id}: {char.uuid} is not readable")
        try:
            data = await asyncio.wait_for(link.read(char), timeout=self._io_timeout)
        except asyncio.TimeoutError as exc:
            raise ReadFailed(
                f"{link.device.id}: Read from {char.uuid} timed out "
                f"after {self._io_timeout:.1f} s"
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise ReadFailed(
                f"{link.device.id}: Read from {char.uuid} failed: {exc}"
            ) from exc
        _LOGGER.debug("%s: Read %s from %s", link.device.id, data.hex(), char.uuid)
        return data
