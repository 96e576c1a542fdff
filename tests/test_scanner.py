"""Tests for scanner module."""

import asyncio
import time

import pytest
from bleak.exc import BleakError

from bleak_lamp_link.exc import ScanFailed
from bleak_lamp_link.scanner import Scanner

from conftest import make_device


@pytest.mark.asyncio
async def test_scan_runs_for_duration_without_filter(transport):
    transport.queue_advertisement(make_device("11:11:11:11:11:11", "Speaker"))
    transport.queue_advertisement(make_device("22:22:22:22:22:22", None), 0.01)
    scanner = Scanner(transport)

    start = time.monotonic()
    devices = await scanner.scan(0.1)
    elapsed = time.monotonic() - start

    assert elapsed >= 0.09
    assert [d.id for d in devices] == ["11:11:11:11:11:11", "22:22:22:22:22:22"]
    assert not transport.scanning
    assert transport.scan_callback is None
    assert not scanner.is_scanning


@pytest.mark.asyncio
async def test_scan_stops_early_on_name_match(transport):
    transport.queue_advertisement(make_device("11:11:11:11:11:11", "Speaker"))
    transport.queue_advertisement(make_device(name="Schneider Lamp"), 0.05)
    transport.queue_advertisement(make_device("33:33:33:33:33:33", "Late"), 0.5)
    scanner = Scanner(transport)

    start = time.monotonic()
    devices = await scanner.scan(5.0, "lamp")
    elapsed = time.monotonic() - start

    assert elapsed < 1.0
    assert devices[-1].display_name == "Schneider Lamp"
    assert len(devices) == 2
    assert not transport.scanning
    assert transport.scan_stops == 1


@pytest.mark.asyncio
async def test_scan_deduplicates_by_id(transport):
    transport.queue_advertisement(make_device(rssi=-80))
    transport.queue_advertisement(make_device(rssi=-50), 0.01)
    scanner = Scanner(transport)

    devices = await scanner.scan(0.05)

    assert len(devices) == 1
    assert devices[0].signal_strength == -50


@pytest.mark.asyncio
async def test_repeat_advertisement_of_match_goes_last(transport):
    lamp = make_device(name="Schneider Lamp")
    transport.queue_advertisement(make_device(name=None))
    transport.queue_advertisement(make_device("11:11:11:11:11:11", "Speaker"), 0.01)
    transport.queue_advertisement(lamp, 0.02)
    scanner = Scanner(transport)

    devices = await scanner.scan(5.0, "Lamp")

    assert [d.id for d in devices] == ["11:11:11:11:11:11", lamp.id]
    assert devices[-1] == lamp


@pytest.mark.asyncio
async def test_no_match_returns_everything_after_timeout(transport):
    transport.queue_advertisement(make_device("11:11:11:11:11:11", "Speaker"))
    scanner = Scanner(transport)

    devices = await scanner.scan(0.05, "Lamp")

    assert [d.id for d in devices] == ["11:11:11:11:11:11"]
    assert not transport.scanning


@pytest.mark.asyncio
async def test_start_failure_raises_scan_failed(transport):
    transport.start_scan_error = BleakError("org.bluez.Error.InProgress")
    scanner = Scanner(transport)

    with pytest.raises(ScanFailed):
        await scanner.scan(1.0)
    assert not transport.scanning
    assert not scanner.is_scanning


@pytest.mark.asyncio
async def test_cancelled_scan_cleans_up(transport):
    scanner = Scanner(transport)
    task = asyncio.ensure_future(scanner.scan(5.0))
    await asyncio.sleep(0.05)
    assert transport.scanning
    assert scanner.is_scanning

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not transport.scanning
    assert transport.scan_callback is None


@pytest.mark.asyncio
async def test_consecutive_scans_are_independent(transport):
    transport.queue_advertisement(make_device("11:11:11:11:11:11", "Speaker"))
    scanner = Scanner(transport)
    first = await scanner.scan(0.05)
    second = await scanner.scan(0.05)
    assert len(first) == 1
    assert second == []
    assert transport.scan_starts == 2
