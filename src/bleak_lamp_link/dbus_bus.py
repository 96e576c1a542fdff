"""Shared D-Bus system bus and BlueZ adapter power state.

bleak does not expose whether the local adapter is powered, so on
Linux the radio gate reads and watches ``org.bluez.Adapter1.Powered``
directly with ``dbus-fast``, the library bleak itself uses for BlueZ.

A single long-lived ``MessageBus`` is reused for every query and for
the ``PropertiesChanged`` subscription.  All queries use raw
``bus.call(Message(...))`` instead of proxy objects, which skips the
introspection round-trip.

The bus is lazily created on first use and recreated if the
connection drops or the running event loop changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .const import IS_LINUX
from .models import RadioState

_LOGGER = logging.getLogger(__name__)

_BLUEZ_SERVICE = "org.bluez"
_ADAPTER_INTERFACE = "org.bluez.Adapter1"
_PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

_UNAUTHORIZED_ERRORS = ("AccessDenied", "NotAuthorized", "NotPermitted")
_NO_ADAPTER_ERRORS = ("UnknownObject", "UnknownInterface", "UnknownMethod")

_bus: object | None = None  # dbus_fast.aio.MessageBus, typed loosely to avoid import on non-Linux
_bus_loop: object | None = None  # The event loop the bus was created on


async def get_bus():
    """Get the shared system D-Bus connection, creating or reconnecting as needed.

    Returns a connected ``dbus_fast.aio.MessageBus`` instance.

    If the running event loop differs from the one the bus was created
    on, the old bus is discarded and a fresh one is created.

    Raises ``RuntimeError`` on non-Linux platforms.
    """
    global _bus, _bus_loop

    if not IS_LINUX:
        raise RuntimeError("Shared D-Bus bus is only available on Linux")

    from dbus_fast.aio import MessageBus
    from dbus_fast.constants import BusType

    current_loop = asyncio.get_running_loop()

    if _bus is not None:
        if _bus_loop is not current_loop:
            _LOGGER.debug(
                "Shared D-Bus bus was created on a different event loop, "
                "reconnecting on current loop"
            )
            _disconnect_quietly(_bus)
            _bus = None
        elif _bus.connected:
            return _bus
        else:
            _LOGGER.debug("Shared D-Bus bus disconnected, reconnecting")

    _bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    _bus_loop = current_loop
    _LOGGER.debug("Shared D-Bus bus connected")
    return _bus


def _disconnect_quietly(bus) -> None:
    try:
        bus.disconnect()
    except Exception:
        _LOGGER.debug("Error disconnecting D-Bus bus", exc_info=True)


def adapter_path(adapter: str) -> str:
    """Return the BlueZ object path of *adapter*.

    Example::

        >>> adapter_path("hci0")
        '/org/bluez/hci0'
    """
    return f"/org/bluez/{adapter}"


def radio_state_from_error(error_name: str | None) -> RadioState:
    """Map a D-Bus error name onto the adapter state it implies."""
    name = error_name or ""
    if any(token in name for token in _UNAUTHORIZED_ERRORS):
        return RadioState.UNAUTHORIZED
    if any(token in name for token in _NO_ADAPTER_ERRORS):
        # BlueZ is up but the adapter is gone (unplugged / rfkilled away)
        return RadioState.POWERED_OFF
    return RadioState.UNKNOWN


async def get_adapter_state(adapter: str = "hci0") -> RadioState:
    """Read ``Powered`` of *adapter* and return the matching :class:`RadioState`.

    Non-Linux platforms always report ``POWERED_ON``; bleak reports an
    unusable adapter itself when scanning or connecting there.
    """
    if not IS_LINUX:
        return RadioState.POWERED_ON

    from dbus_fast import Message, MessageType

    try:
        bus = await get_bus()
        reply = await bus.call(
            Message(
                destination=_BLUEZ_SERVICE,
                path=adapter_path(adapter),
                interface=_PROPERTIES_INTERFACE,
                member="Get",
                signature="ss",
                body=[_ADAPTER_INTERFACE, "Powered"],
            )
        )
    except Exception:
        _LOGGER.debug(
            "Failed to query power state of %s", adapter, exc_info=True
        )
        return RadioState.UNKNOWN

    if reply.message_type == MessageType.ERROR:
        state = radio_state_from_error(reply.error_name)
        _LOGGER.debug(
            "%s: Powered query failed with %s -> %s",
            adapter,
            reply.error_name,
            state.value,
        )
        return state

    powered = reply.body[0]
    if hasattr(powered, "value"):
        powered = powered.value
    return RadioState.POWERED_ON if powered else RadioState.POWERED_OFF


async def watch_adapter_state(
    adapter: str,
    callback: Callable[[RadioState], None],
) -> Callable[[], None]:
    """Invoke *callback* whenever ``Powered`` of *adapter* changes.

    Returns a callable that detaches the handler.  On non-Linux
    platforms nothing is ever delivered and the detach is a no-op.
    """
    if not IS_LINUX:
        return lambda: None

    from dbus_fast import Message, MessageType

    path = adapter_path(adapter)
    bus = await get_bus()
    rule = (
        "type='signal',"
        f"sender='{_BLUEZ_SERVICE}',"
        f"interface='{_PROPERTIES_INTERFACE}',"
        "member='PropertiesChanged',"
        f"path='{path}',"
        f"arg0='{_ADAPTER_INTERFACE}'"
    )
    reply = await bus.call(
        Message(
            destination="org.freedesktop.DBus",
            path="/org/freedesktop/DBus",
            interface="org.freedesktop.DBus",
            member="AddMatch",
            signature="s",
            body=[rule],
        )
    )
    if reply.message_type == MessageType.ERROR:
        _LOGGER.warning(
            "%s: Cannot watch adapter power state: %s",
            adapter,
            reply.error_name,
        )

    def _handler(message) -> None:
        if (
            message.message_type != MessageType.SIGNAL
            or message.member != "PropertiesChanged"
            or message.path != path
            or not message.body
            or message.body[0] != _ADAPTER_INTERFACE
        ):
            return None
        changed = message.body[1]
        if "Powered" not in changed:
            return None
        powered = changed["Powered"]
        if hasattr(powered, "value"):
            powered = powered.value
        state = RadioState.POWERED_ON if powered else RadioState.POWERED_OFF
        _LOGGER.debug("%s: Powered changed -> %s", adapter, state.value)
        callback(state)
        return None

    bus.add_message_handler(_handler)

    def _detach() -> None:
        try:
            bus.remove_message_handler(_handler)
        except Exception:
            _LOGGER.debug("Failed to detach adapter watch", exc_info=True)

    return _detach


async def close_bus() -> None:
    """Disconnect the shared bus if it's open.

    Safe to call even if no bus was ever created.
    """
    global _bus, _bus_loop
    if _bus is not None:
        _disconnect_quietly(_bus)
        _bus = None
        _bus_loop = None
