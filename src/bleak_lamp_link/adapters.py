"""Local Bluetooth adapter enumeration.

Wraps ``bluetooth-adapters`` for enumeration, with a
``/sys/class/bluetooth`` fallback, and picks the adapter the lamp link
scans and connects through.
"""

from __future__ import annotations

import logging
import pathlib

from .const import IS_LINUX

_LOGGER = logging.getLogger(__name__)

_DEFAULT_ADAPTER = "hci0"
_SYSFS_BLUETOOTH = pathlib.Path("/sys/class/bluetooth")


def _adapters_from_sysfs() -> list[str]:
    if not _SYSFS_BLUETOOTH.exists():
        return []
    # hci0:64 style entries are connection objects, not adapters
    return sorted(
        entry.name
        for entry in _SYSFS_BLUETOOTH.iterdir()
        if entry.name.startswith("hci") and ":" not in entry.name
    )


def discover_adapters() -> list[str]:
    """Return the sorted names of the local BLE adapters.

    Returns an empty list on non-Linux platforms, where adapters are
    not addressed by name.
    """
    if not IS_LINUX:
        return []

    try:
        from bluetooth_adapters import get_adapters_from_hci

        names = sorted(a["name"] for a in get_adapters_from_hci().values())
        if names:
            _LOGGER.debug("Discovered adapters via bluetooth-adapters: %s", names)
            return names
    except Exception:
        _LOGGER.debug(
            "bluetooth-adapters enumeration failed, trying /sys",
            exc_info=True,
        )

    try:
        names = _adapters_from_sysfs()
    except OSError:
        _LOGGER.debug("Failed to enumerate %s", _SYSFS_BLUETOOTH, exc_info=True)
        return []
    if names:
        _LOGGER.debug("Discovered adapters via /sys: %s", names)
    return names


def resolve_adapter(preferred: str | None = None) -> str:
    """Pick the adapter to use.

    *preferred* wins when it is present (or when nothing can be
    enumerated).  Otherwise the first discovered adapter is used,
    falling back to ``hci0``.
    """
    available = discover_adapters()
    if preferred:
        if available and preferred not in available:
            _LOGGER.warning(
                "Adapter %s not found (available: %s), using it anyway",
                preferred,
                ", ".join(available),
            )
        return preferred
    if available:
        return available[0]
    return _DEFAULT_ADAPTER
