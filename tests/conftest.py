"""Shared fixtures: a scriptable in-memory transport."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from unittest.mock import patch

import pytest
from bleak.exc import BleakError

from bleak_lamp_link.const import CONTROL_CHAR_UUID
from bleak_lamp_link.models import ControlCharacteristic, DiscoveredDevice, RadioState
from bleak_lamp_link.transport import Link, Transport

LAMP_ADDRESS = "AA:BB:CC:DD:EE:FF"
LAMP_SERVICE_UUID = "0000fff0-0000-1000-8000-00805f9b34fb"
INFO_SERVICE_UUID = "0000180a-0000-1000-8000-00805f9b34fb"

CONTROL_CHAR = ControlCharacteristic(
    uuid=CONTROL_CHAR_UUID,
    handle=26,
    properties=("read", "write-without-response"),
    service_uuid=LAMP_SERVICE_UUID,
)
OTHER_CHAR = ControlCharacteristic(
    uuid="0000fff1-0000-1000-8000-00805f9b34fb",
    handle=21,
    properties=("read", "write"),
    service_uuid=LAMP_SERVICE_UUID,
)
MODEL_CHAR = ControlCharacteristic(
    uuid="00002a24-0000-1000-8000-00805f9b34fb",
    handle=12,
    properties=("read",),
    service_uuid=INFO_SERVICE_UUID,
)


@dataclass
class FakeService:
    uuid: str
    characteristics: list[ControlCharacteristic] = field(default_factory=list)


def lamp_services() -> list[FakeService]:
    return [
        FakeService(INFO_SERVICE_UUID, [MODEL_CHAR]),
        FakeService(LAMP_SERVICE_UUID, [OTHER_CHAR, CONTROL_CHAR]),
    ]


def make_device(address=LAMP_ADDRESS, name="Schneider Lamp", rssi=-60):
    return DiscoveredDevice(id=address, display_name=name, signal_strength=rssi)


class FakeLink(Link):
    """In-memory link whose behavior is scripted on the owning transport."""

    def __init__(self, transport, device, on_disconnect):
        self.device = device
        self.transport = transport
        self.on_disconnect = on_disconnect
        self.connected = False

    @property
    def is_connected(self):
        return self.connected

    async def connect(self):
        t = self.transport
        t.connect_calls += 1
        if t.connect_delay:
            await asyncio.sleep(t.connect_delay)
        if t.connect_failures > 0:
            t.connect_failures -= 1
            raise BleakError("Device disconnected during connect")
        self.connected = True

    async def disconnect(self):
        self.transport.disconnect_calls += 1
        self.connected = False

    async def discover_services(self):
        t = self.transport
        t.discovery_started.set()
        if t.discovery_delay:
            await asyncio.sleep(t.discovery_delay)
        if self.transport.services_error is not None:
            raise self.transport.services_error
        return list(self.transport.services)

    async def discover_characteristics(self, service):
        if service.uuid in self.transport.failing_services:
            raise BleakError(f"Discovery failed for {service.uuid}")
        return list(service.characteristics)

    async def write(self, characteristic, data, response=False):
        t = self.transport
        t.writes.append((characteristic.uuid, bytes(data), response))
        if t.io_delay:
            await asyncio.sleep(t.io_delay)
        if t.write_failures > 0:
            t.write_failures -= 1
            raise BleakError("Write failed")

    async def read(self, characteristic):
        t = self.transport
        t.reads += 1
        if t.io_delay:
            await asyncio.sleep(t.io_delay)
        if t.read_failures > 0:
            t.read_failures -= 1
            raise BleakError("Read failed")
        return t.read_value

    def drop(self):
        """Simulate the peripheral dropping the link."""
        self.connected = False
        self.on_disconnect()


class FakeTransport(Transport):
    def __init__(self, state=RadioState.POWERED_ON):
        self.state = state
        self.radio_listeners = []
        self.scanning = False
        self.scan_callback = None
        self.scan_starts = 0
        self.scan_stops = 0
        self.start_scan_error = None
        self.pending_advertisements = []
        self.links = []
        self.services = lamp_services()
        self.services_error = None
        self.discovery_delay = 0.0
        self.discovery_started = asyncio.Event()
        self.failing_services = set()
        self.connect_calls = 0
        self.connect_failures = 0
        self.connect_delay = 0.0
        self.disconnect_calls = 0
        self.writes = []
        self.write_failures = 0
        self.reads = 0
        self.read_failures = 0
        self.read_value = b"\x01"
        self.io_delay = 0.0

    # Radio state

    async def radio_state(self):
        return self.state

    async def subscribe_radio_state(self, callback):
        self.radio_listeners.append(callback)
        return lambda: self.radio_listeners.remove(callback)

    def set_radio_state(self, state):
        self.state = state
        for listener in list(self.radio_listeners):
            listener(state)

    # Scanning

    def queue_advertisement(self, device, delay=0.0):
        """Deliver *device* *delay* seconds after the next scan starts."""
        self.pending_advertisements.append((delay, device))

    async def start_scan(self, on_advertisement, service_uuids=None):
        if self.start_scan_error is not None:
            raise self.start_scan_error
        self.scan_starts += 1
        self.scanning = True
        self.scan_callback = on_advertisement
        loop = asyncio.get_running_loop()
        for delay, device in self.pending_advertisements:
            loop.call_later(delay, self.advertise, device)
        self.pending_advertisements = []

    async def stop_scan(self):
        if self.scanning:
            self.scan_stops += 1
        self.scanning = False
        self.scan_callback = None

    def advertise(self, device):
        if self.scanning and self.scan_callback is not None:
            self.scan_callback(device)

    # Links

    def create_link(self, device, on_disconnect):
        link = FakeLink(self, device, on_disconnect)
        self.links.append(link)
        return link

    @property
    def link(self):
        return self.links[-1]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def lamp():
    return make_device()


@pytest.fixture
def fast_timing():
    """Remove the production floors and pauses so tests run in milliseconds."""
    with patch("bleak_lamp_link.const.LINK_STABILIZE_DELAY", 0.0), patch(
        "bleak_lamp_link.const.MIN_HEALTH_CHECK_INTERVAL", 0.0
    ), patch("bleak_lamp_link.const.MIN_INITIAL_RECONNECTION_DELAY", 0.0):
        yield
