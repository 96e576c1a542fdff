"""Radio adapter interface consumed by the lamp link components.

The scanner, radio gate and session never touch bleak directly.  They
talk to a :class:`Transport`, which is injected by the manager.  The
production implementation is
:class:`~bleak_lamp_link.bleak_transport.BleakTransport`; tests use a
fake.

Transport methods report failures with ``bleak.exc.BleakError``,
``asyncio.TimeoutError`` or ``OSError``.  Callers translate these into
:mod:`bleak_lamp_link.exc` errors.
"""

from __future__ import annotations

import abc
from collections.abc import Callable, Sequence
from typing import Any

from .models import ControlCharacteristic, DiscoveredDevice, RadioState

RadioStateCallback = Callable[[RadioState], None]
AdvertisementCallback = Callable[[DiscoveredDevice], None]
DisconnectCallback = Callable[[], None]


class Link(abc.ABC):
    """A link to one peripheral."""

    device: DiscoveredDevice

    @property
    @abc.abstractmethod
    def is_connected(self) -> bool:
        """Last link state reported by the transport."""

    @abc.abstractmethod
    async def connect(self) -> None:
        """Establish the physical link."""

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Tear the link down.  Must not invoke the disconnect callback."""

    @abc.abstractmethod
    async def discover_services(self) -> Sequence[Any]:
        """Return the peripheral's services (objects with a ``uuid``)."""

    @abc.abstractmethod
    async def discover_characteristics(
        self, service: Any
    ) -> Sequence[ControlCharacteristic]:
        """Return the characteristics of one service."""

    @abc.abstractmethod
    async def write(
        self,
        characteristic: ControlCharacteristic,
        data: bytes,
        response: bool = False,
    ) -> None:
        """Write *data* to *characteristic*."""

    @abc.abstractmethod
    async def read(self, characteristic: ControlCharacteristic) -> bytes:
        """Read the value of *characteristic*."""


class Transport(abc.ABC):
    """The local Bluetooth adapter."""

    @abc.abstractmethod
    async def radio_state(self) -> RadioState:
        """Return the adapter's current power state."""

    @abc.abstractmethod
    async def subscribe_radio_state(
        self, callback: RadioStateCallback
    ) -> Callable[[], None]:
        """Deliver power-state changes to *callback*.

        Returns a callable that detaches the listener.
        """

    @abc.abstractmethod
    async def start_scan(
        self,
        on_advertisement: AdvertisementCallback,
        service_uuids: list[str] | None = None,
    ) -> None:
        """Start discovery, delivering every advertisement (duplicates included)."""

    @abc.abstractmethod
    async def stop_scan(self) -> None:
        """Stop discovery and detach the advertisement callback.  Idempotent."""

    @abc.abstractmethod
    def create_link(
        self, device: DiscoveredDevice, on_disconnect: DisconnectCallback
    ) -> Link:
        """Create a link to *device*.

        *on_disconnect* is invoked when the peripheral drops the link
        without being asked to.
        """
