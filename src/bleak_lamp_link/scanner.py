"""Time-boxed BLE discovery with optional early exit on a name match.

Each :meth:`Scanner.scan` call is an independent pass:

- **Hard timeout**: the pass ends after *duration* seconds even if
  the adapter keeps delivering advertisements.
- **Early exit**: with a name filter, the first advertisement whose
  display name contains the filter (case-insensitive) ends the pass
  immediately.
- **De-duplication**: advertisements are keyed by the normalized
  device id; a repeat advertisement refreshes the entry in place.
- **Cleanup**: the advertisement callback is detached and the adapter
  returned to idle on every exit path, including early exit and
  cancellation.

Only one pass runs at a time per scanner; BlueZ rejects a second
``StartDiscovery`` on the same adapter with ``InProgress``.
"""

from __future__ import annotations

import asyncio
import logging

from bleak.exc import BleakError

from .const import DEFAULT_SCAN_DURATION
from .exc import ScanFailed
from .models import DiscoveredDevice
from .transport import Transport

_LOGGER = logging.getLogger(__name__)

# Bound on starting or stopping the adapter's discovery.  Guards
# against backends that never answer.
_SCAN_CONTROL_TIMEOUT = 5.0


class Scanner:
    """Discovery passes over an injected :class:`Transport`."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._lock = asyncio.Lock()

    @property
    def is_scanning(self) -> bool:
        return self._lock.locked()

    async def scan(
        self,
        duration: float = DEFAULT_SCAN_DURATION,
        name_filter: str | None = None,
        service_uuids: list[str] | None = None,
    ) -> list[DiscoveredDevice]:
        """Run one discovery pass and return the devices seen.

        Parameters
        ----------
        duration:
            Longest the pass may run, in seconds.
        name_filter:
            Stop as soon as an advertised name contains this string
            (case-insensitive).  All devices collected so far are
            returned, the matching one last.
        service_uuids:
            Passed through to the adapter as a discovery filter.

        Raises :class:`ScanFailed` if the adapter refuses to start.
        """
        async with self._lock:
            return await self._scan(duration, name_filter, service_uuids)

    async def _scan(
        self,
        duration: float,
        name_filter: str | None,
        service_uuids: list[str] | None,
    ) -> list[DiscoveredDevice]:
        loop = asyncio.get_running_loop()
        devices: dict[str, DiscoveredDevice] = {}
        matched: asyncio.Future[DiscoveredDevice] = loop.create_future()

        def _on_advertisement(device: DiscoveredDevice) -> None:
            if matched.done():
                return
            if device.id not in devices:
                _LOGGER.debug(
                    "%s: Discovered %s (rssi %d)",
                    device.id,
                    device.display_name or "Unknown",
                    device.signal_strength,
                )
            devices[device.id] = device
            if name_filter and device.matches_name(name_filter):
                matched.set_result(device)

        _LOGGER.debug(
            "Starting scan (duration=%.1f s, filter=%r)", duration, name_filter
        )
        try:
            await asyncio.wait_for(
                self._transport.start_scan(_on_advertisement, service_uuids),
                timeout=_SCAN_CONTROL_TIMEOUT,
            )
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            await self._stop()
            raise ScanFailed(f"Failed to start scan: {exc}") from exc

        try:
            done, _ = await asyncio.wait({matched}, timeout=duration)
            if done:
                device = matched.result()
                _LOGGER.info(
                    "%s: Found matching device %s, stopping scan early",
                    device.id,
                    device.display_name,
                )
                # The match goes last so callers can take result[-1]
                devices.pop(device.id, None)
                devices[device.id] = device
            else:
                _LOGGER.info(
                    "Scan duration of %.1f s completed, %d devices found",
                    duration,
                    len(devices),
                )
        finally:
            if not matched.done():
                matched.cancel()
            await self._stop()

        return list(devices.values())

    async def _stop(self) -> None:
        try:
            await asyncio.wait_for(
                self._transport.stop_scan(), timeout=_SCAN_CONTROL_TIMEOUT
            )
        except (BleakError, asyncio.TimeoutError, OSError):
            _LOGGER.warning("Failed to stop scan cleanly", exc_info=True)
