"""Production :class:`~bleak_lamp_link.transport.Transport` built on bleak.

- Scanning uses ``BleakScanner`` with a detection callback, so the
  scanner sees every advertisement as it arrives and can stop early.
- Each physical connection attempt goes through
  ``bleak_retry_connector.establish_connection(max_attempts=1)``; the
  retry policy lives in the reconnection supervisor, not here.
- Adapter power state comes from BlueZ over D-Bus
  (:mod:`bleak_lamp_link.dbus_bus`).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from bleak_retry_connector import establish_connection

from .adapters import resolve_adapter
from .const import DISCONNECT_TIMEOUT, IS_LINUX
from .dbus_bus import get_adapter_state, watch_adapter_state
from .models import ControlCharacteristic, DiscoveredDevice, RadioState, normalize_device_id
from .transport import (
    AdvertisementCallback,
    DisconnectCallback,
    Link,
    RadioStateCallback,
    Transport,
)

_LOGGER = logging.getLogger(__name__)

# Scan window used to resolve an identifier that was not seen in the
# current process (e.g. restored from the host's accessory cache).
_RESOLVE_SCAN_TIMEOUT = 10.0


def _platform_id(device: BLEDevice) -> str | None:
    """Backend-specific identifier used when ``address`` is empty."""
    details = device.details
    if isinstance(details, dict):
        props = details.get("props")
        if isinstance(props, dict) and props.get("Address"):
            return props["Address"]
        return details.get("path")
    identifier = getattr(details, "identifier", None)
    if identifier is not None:
        # CoreBluetooth CBPeripheral
        return str(identifier() if callable(identifier) else identifier)
    return None


def device_from_advertisement(
    device: BLEDevice, advertisement: AdvertisementData | None = None
) -> DiscoveredDevice | None:
    """Build a :class:`DiscoveredDevice` from bleak's scan callback arguments.

    Returns ``None`` when the backend supplied no identifier at all.
    """
    device_id = normalize_device_id(device.address, _platform_id(device))
    if device_id is None:
        return None
    name = device.name
    rssi = 0
    if advertisement is not None:
        name = advertisement.local_name or name
        rssi = advertisement.rssi
    return DiscoveredDevice(id=device_id, display_name=name, signal_strength=rssi)


class BleakLink(Link):
    """A link to one peripheral through ``BleakClient``."""

    def __init__(
        self,
        transport: BleakTransport,
        device: DiscoveredDevice,
        on_disconnect: DisconnectCallback,
    ) -> None:
        self.device = device
        self._transport = transport
        self._on_disconnect = on_disconnect
        self._client: BleakClient | None = None
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _handle_disconnected(self, _client: BleakClient) -> None:
        if self._closing:
            return
        _LOGGER.debug("%s: bleak reported disconnect", self.device.id)
        self._on_disconnect()

    async def connect(self) -> None:
        ble_device = await self._transport.resolve(self.device)
        self._closing = False
        self._client = await establish_connection(
            BleakClient,
            ble_device,
            self.device.display_name or self.device.id,
            disconnected_callback=self._handle_disconnected,
            max_attempts=1,
        )

    async def disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        self._closing = True
        try:
            await asyncio.wait_for(client.disconnect(), timeout=DISCONNECT_TIMEOUT)
        finally:
            self._client = None

    def _require_client(self) -> BleakClient:
        if self._client is None:
            raise BleakError(f"{self.device.id}: Not connected")
        return self._client

    async def discover_services(self) -> Sequence[Any]:
        # BleakClient resolves services while connecting
        return list(self._require_client().services)

    async def discover_characteristics(
        self, service: Any
    ) -> Sequence[ControlCharacteristic]:
        return [
            ControlCharacteristic(
                uuid=char.uuid,
                handle=char.handle,
                properties=tuple(char.properties),
                service_uuid=service.uuid,
            )
            for char in service.characteristics
        ]

    @staticmethod
    def _specifier(characteristic: ControlCharacteristic) -> int | str:
        if characteristic.handle is not None:
            return characteristic.handle
        return characteristic.uuid

    async def write(
        self,
        characteristic: ControlCharacteristic,
        data: bytes,
        response: bool = False,
    ) -> None:
        await self._require_client().write_gatt_char(
            self._specifier(characteristic), data, response=response
        )

    async def read(self, characteristic: ControlCharacteristic) -> bytes:
        value = await self._require_client().read_gatt_char(
            self._specifier(characteristic)
        )
        return bytes(value)


class BleakTransport(Transport):
    """The local adapter, driven through bleak.

    Parameters
    ----------
    adapter:
        BlueZ adapter name.  ``None`` picks the first adapter found.
    """

    def __init__(self, adapter: str | None = None) -> None:
        self._adapter_name = adapter
        self._scanner: BleakScanner | None = None
        self._ble_devices: dict[str, BLEDevice] = {}
        # Device behind the most recent link; survives the per-scan reset
        self._linked_id: str | None = None

    @property
    def adapter(self) -> str:
        if self._adapter_name is None:
            self._adapter_name = resolve_adapter()
        return self._adapter_name

    def _scanner_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if IS_LINUX:
            kwargs["adapter"] = self.adapter
        return kwargs

    async def radio_state(self) -> RadioState:
        return await get_adapter_state(self.adapter)

    async def subscribe_radio_state(
        self, callback: RadioStateCallback
    ) -> Callable[[], None]:
        return await watch_adapter_state(self.adapter, callback)

    async def start_scan(
        self,
        on_advertisement: AdvertisementCallback,
        service_uuids: list[str] | None = None,
    ) -> None:
        await self.stop_scan()
        self._forget_unlinked()

        def _detection_callback(
            device: BLEDevice, advertisement: AdvertisementData
        ) -> None:
            discovered = device_from_advertisement(device, advertisement)
            if discovered is None:
                _LOGGER.debug("Ignoring advertisement without identifier")
                return
            self._ble_devices[discovered.id] = device
            on_advertisement(discovered)

        scanner = BleakScanner(
            detection_callback=_detection_callback,
            service_uuids=service_uuids,
            **self._scanner_kwargs(),
        )
        await scanner.start()
        self._scanner = scanner

    def _forget_unlinked(self) -> None:
        """Drop devices from earlier scans, except the one behind the link."""
        self._ble_devices = {
            device_id: ble_device
            for device_id, ble_device in self._ble_devices.items()
            if device_id == self._linked_id
        }

    async def stop_scan(self) -> None:
        scanner = self._scanner
        if scanner is None:
            return
        self._scanner = None
        try:
            await scanner.stop()
        except BleakError:
            _LOGGER.debug("Stopping scanner failed", exc_info=True)

    async def resolve(self, device: DiscoveredDevice) -> BLEDevice:
        """Return the ``BLEDevice`` behind *device*, scanning for it if needed."""
        ble_device = self._ble_devices.get(device.id)
        if ble_device is not None:
            return ble_device
        _LOGGER.debug("%s: Not seen in this process, scanning for it", device.id)
        ble_device = await BleakScanner.find_device_by_address(
            device.id, timeout=_RESOLVE_SCAN_TIMEOUT, **self._scanner_kwargs()
        )
        if ble_device is None:
            raise BleakError(f"{device.id}: Device not found")
        self._ble_devices[device.id] = ble_device
        return ble_device

    def create_link(
        self, device: DiscoveredDevice, on_disconnect: DisconnectCallback
    ) -> BleakLink:
        self._linked_id = device.id
        return BleakLink(self, device, on_disconnect)
