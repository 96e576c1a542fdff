"""Tests for bleak_transport module."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from bleak_lamp_link.bleak_transport import (
    BleakTransport,
    device_from_advertisement,
)
from bleak_lamp_link.models import ControlCharacteristic, DiscoveredDevice, RadioState

from conftest import LAMP_ADDRESS


def _advertisement(local_name=None, rssi=-55):
    adv = MagicMock()
    adv.local_name = local_name
    adv.rssi = rssi
    return adv


def _ble_device(address=LAMP_ADDRESS.lower(), name="Lamp", details=None):
    return BLEDevice(address, name, details if details is not None else {})


# ── device_from_advertisement ─────────────────────────────────────


def test_device_from_advertisement():
    device = device_from_advertisement(
        _ble_device(name="Lamp"), _advertisement("Schneider Lamp", -42)
    )
    assert device == DiscoveredDevice(LAMP_ADDRESS, "Schneider Lamp", -42)


def test_device_from_advertisement_falls_back_to_device_name():
    device = device_from_advertisement(_ble_device(name="Lamp"), _advertisement(None))
    assert device.display_name == "Lamp"


def test_device_from_advertisement_uses_bluez_props():
    ble_device = _ble_device(
        address="", details={"props": {"Address": "11:22:33:44:55:66"}}
    )
    device = device_from_advertisement(ble_device, _advertisement())
    assert device.id == "11:22:33:44:55:66"


def test_device_from_advertisement_uses_corebluetooth_identifier():
    peripheral = MagicMock()
    peripheral.identifier.return_value = "6b1e4f3a-0c1d-4e6f-9a7b-1234abcd5678"
    device = device_from_advertisement(
        _ble_device(address="", details=peripheral), _advertisement()
    )
    assert device.id == "6B1E4F3A-0C1D-4E6F-9A7B-1234ABCD5678"


def test_device_from_advertisement_without_identifier():
    assert device_from_advertisement(_ble_device(address=""), _advertisement()) is None


# ── scanning ──────────────────────────────────────────────────────


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.IS_LINUX", False)
@patch("bleak_lamp_link.bleak_transport.BleakScanner")
async def test_start_and_stop_scan(mock_scanner_cls):
    scanner = MagicMock()
    scanner.start = AsyncMock()
    scanner.stop = AsyncMock()
    mock_scanner_cls.return_value = scanner
    seen = []

    transport = BleakTransport()
    await transport.start_scan(seen.append, ["0000fff0-0000-1000-8000-00805f9b34fb"])

    kwargs = mock_scanner_cls.call_args.kwargs
    assert kwargs["service_uuids"] == ["0000fff0-0000-1000-8000-00805f9b34fb"]
    assert "adapter" not in kwargs
    scanner.start.assert_awaited_once()

    detection_callback = kwargs["detection_callback"]
    detection_callback(_ble_device(), _advertisement("Schneider Lamp"))
    detection_callback(_ble_device(address=""), _advertisement("Nameless"))
    assert [d.id for d in seen] == [LAMP_ADDRESS]

    await transport.stop_scan()
    await transport.stop_scan()
    scanner.stop.assert_awaited_once()


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.IS_LINUX", True)
@patch("bleak_lamp_link.bleak_transport.BleakScanner")
async def test_scan_uses_adapter_on_linux(mock_scanner_cls):
    scanner = MagicMock()
    scanner.start = AsyncMock()
    mock_scanner_cls.return_value = scanner

    transport = BleakTransport("hci1")
    await transport.start_scan(lambda device: None)
    assert mock_scanner_cls.call_args.kwargs["adapter"] == "hci1"


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.get_adapter_state", new_callable=AsyncMock)
async def test_radio_state_queries_adapter(mock_state):
    mock_state.return_value = RadioState.POWERED_OFF
    transport = BleakTransport("hci2")
    assert await transport.radio_state() is RadioState.POWERED_OFF
    mock_state.assert_awaited_once_with("hci2")


@patch("bleak_lamp_link.bleak_transport.resolve_adapter", return_value="hci3")
def test_adapter_resolved_lazily(mock_resolve):
    transport = BleakTransport()
    mock_resolve.assert_not_called()
    assert transport.adapter == "hci3"
    assert transport.adapter == "hci3"
    mock_resolve.assert_called_once()


# ── resolve ───────────────────────────────────────────────────────


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.IS_LINUX", False)
@patch("bleak_lamp_link.bleak_transport.BleakScanner")
async def test_resolve_scans_for_unknown_device(mock_scanner_cls):
    ble_device = _ble_device()
    mock_scanner_cls.find_device_by_address = AsyncMock(return_value=ble_device)
    transport = BleakTransport()
    lamp = DiscoveredDevice(LAMP_ADDRESS)

    assert await transport.resolve(lamp) is ble_device
    assert await transport.resolve(lamp) is ble_device
    mock_scanner_cls.find_device_by_address.assert_awaited_once()


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.IS_LINUX", False)
@patch("bleak_lamp_link.bleak_transport.BleakScanner")
async def test_resolve_not_found(mock_scanner_cls):
    mock_scanner_cls.find_device_by_address = AsyncMock(return_value=None)
    with pytest.raises(BleakError):
        await BleakTransport().resolve(DiscoveredDevice(LAMP_ADDRESS))


# ── links ─────────────────────────────────────────────────────────


def _transport_with_device():
    transport = BleakTransport("hci0")
    transport._ble_devices[LAMP_ADDRESS] = _ble_device()
    return transport


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.establish_connection")
async def test_link_connect_single_attempt(mock_establish):
    client = MagicMock()
    client.is_connected = True
    mock_establish.return_value = client
    transport = _transport_with_device()
    link = transport.create_link(DiscoveredDevice(LAMP_ADDRESS, "Lamp"), MagicMock())

    await link.connect()

    assert link.is_connected
    args, kwargs = mock_establish.call_args
    assert args[2] == "Lamp"
    assert kwargs["max_attempts"] == 1
    assert kwargs["disconnected_callback"] is not None


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.establish_connection")
async def test_link_disconnect_callback(mock_establish):
    client = MagicMock()
    client.disconnect = AsyncMock()
    mock_establish.return_value = client
    on_disconnect = MagicMock()
    link = _transport_with_device().create_link(
        DiscoveredDevice(LAMP_ADDRESS), on_disconnect
    )
    await link.connect()
    disconnected_callback = mock_establish.call_args.kwargs["disconnected_callback"]

    disconnected_callback(client)
    on_disconnect.assert_called_once()

    # A requested disconnect is not reported
    await link.disconnect()
    disconnected_callback(client)
    on_disconnect.assert_called_once()
    assert not link.is_connected


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.establish_connection")
async def test_link_discovery_and_io(mock_establish):
    bleak_char = MagicMock()
    bleak_char.uuid = "b35d95c6-6a68-437e-abe7-0ebffd8e0661"
    bleak_char.handle = 26
    bleak_char.properties = ["read", "write"]
    service = MagicMock()
    service.uuid = "0000fff0-0000-1000-8000-00805f9b34fb"
    service.characteristics = [bleak_char]
    client = MagicMock()
    client.services = [service]
    client.write_gatt_char = AsyncMock()
    client.read_gatt_char = AsyncMock(return_value=bytearray(b"\x01"))
    mock_establish.return_value = client

    link = _transport_with_device().create_link(DiscoveredDevice(LAMP_ADDRESS), MagicMock())
    await link.connect()

    services = await link.discover_services()
    chars = await link.discover_characteristics(services[0])
    assert chars == [
        ControlCharacteristic(
            uuid=bleak_char.uuid,
            handle=26,
            properties=("read", "write"),
            service_uuid=service.uuid,
        )
    ]

    await link.write(chars[0], b"\x00")
    client.write_gatt_char.assert_awaited_once_with(26, b"\x00", response=False)
    assert await link.read(chars[0]) == b"\x01"

    by_uuid = ControlCharacteristic(uuid=bleak_char.uuid)
    await link.write(by_uuid, b"\x01", response=True)
    client.write_gatt_char.assert_awaited_with(bleak_char.uuid, b"\x01", response=True)


@pytest.mark.asyncio
async def test_link_io_without_connection():
    link = _transport_with_device().create_link(DiscoveredDevice(LAMP_ADDRESS), MagicMock())
    with pytest.raises(BleakError):
        await link.write(ControlCharacteristic(uuid="x"), b"\x01")


@pytest.mark.asyncio
@patch("bleak_lamp_link.bleak_transport.IS_LINUX", False)
@patch("bleak_lamp_link.bleak_transport.BleakScanner")
async def test_new_scan_forgets_devices_not_linked(mock_scanner_cls):
    scanner = MagicMock()
    scanner.start = AsyncMock()
    scanner.stop = AsyncMock()
    mock_scanner_cls.return_value = scanner
    transport = BleakTransport()

    await transport.start_scan(lambda device: None)
    detection_callback = mock_scanner_cls.call_args.kwargs["detection_callback"]
    detection_callback(_ble_device(), _advertisement("Schneider Lamp"))
    detection_callback(_ble_device("11:22:33:44:55:66"), _advertisement("Speaker"))
    detection_callback(_ble_device("66:55:44:33:22:11"), _advertisement("Watch"))
    await transport.stop_scan()
    transport.create_link(DiscoveredDevice(LAMP_ADDRESS), MagicMock())

    await transport.start_scan(lambda device: None)
    assert set(transport._ble_devices) == {LAMP_ADDRESS}

    detection_callback = mock_scanner_cls.call_args.kwargs["detection_callback"]
    detection_callback(_ble_device("11:22:33:44:55:66"), _advertisement("Speaker"))
    await transport.stop_scan()
    await transport.start_scan(lambda device: None)
    assert set(transport._ble_devices) == {LAMP_ADDRESS}
