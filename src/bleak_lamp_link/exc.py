"""Exceptions raised by bleak-lamp-link.

Every failure the lamp link can report is a :class:`LampLinkError`.
Transport exceptions (``BleakError``, timeouts, ``OSError``) are
chained onto these with ``raise ... from``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RadioState


class LampLinkError(Exception):
    """Base error for bleak-lamp-link."""


class RadioUnavailable(LampLinkError):
    """Raised when the radio adapter is not (or does not become) powered on."""

    def __init__(self, state: RadioState, message: str | None = None) -> None:
        self.state = state
        super().__init__(message or f"Bluetooth adapter is not ready: {state.value}")


class ScanFailed(LampLinkError):
    """Raised when the adapter refuses to start discovery."""


class ConnectFailed(LampLinkError):
    """Raised when a connection or its GATT discovery could not be completed."""


class CharacteristicNotFound(LampLinkError):
    """Raised when no discovered characteristic matches a UUID or handle."""

    def __init__(self, specifier: str | int) -> None:
        self.specifier = specifier
        super().__init__(f"Characteristic {specifier} not found")


class NotConnected(LampLinkError):
    """Raised when an operation needs a connected session."""


class NoCharacteristicSelected(LampLinkError):
    """Raised when no control characteristic has been selected."""


class WriteFailed(LampLinkError):
    """Raised when a characteristic write fails or times out."""


class ReadFailed(LampLinkError):
    """Raised when a characteristic read fails or times out."""
