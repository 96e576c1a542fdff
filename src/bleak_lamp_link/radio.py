"""Radio gate: wait for the local adapter to be powered on."""

from __future__ import annotations

import asyncio
import logging

from .exc import RadioUnavailable
from .models import RadioState
from .transport import Transport

_LOGGER = logging.getLogger(__name__)


class RadioGate:
    """Hold callers back until the adapter reports ``POWERED_ON``.

    The gate does not wait through transient states.  If the adapter
    is already on, :meth:`await_ready` returns at once.  If its state is
    still unknown, the first reported transition decides: powered on
    resolves, anything else fails with :class:`RadioUnavailable`.  A
    known non-ready state fails immediately; retrying is the caller's
    job.
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._state = RadioState.UNKNOWN

    @property
    def state(self) -> RadioState:
        """Last adapter state observed by the gate."""
        return self._state

    async def await_ready(self, timeout: float | None = None) -> None:
        """Return once the adapter is powered on.

        Raises :class:`RadioUnavailable` when the adapter is (or turns
        out to be) off or unauthorized, or when *timeout* seconds pass
        with the state still unknown.
        """
        loop = asyncio.get_running_loop()
        first_transition: asyncio.Future[RadioState] = loop.create_future()

        def _on_state(state: RadioState) -> None:
            _LOGGER.debug("Radio state changed to %s", state.value)
            self._state = state
            if state is not RadioState.UNKNOWN and not first_transition.done():
                first_transition.set_result(state)

        # Subscribe before reading so a transition in between is not lost
        unsubscribe = await self._transport.subscribe_radio_state(_on_state)
        try:
            current = await self._transport.radio_state()
            if not first_transition.done():
                self._state = current
            if current is RadioState.POWERED_ON:
                _LOGGER.debug("Radio is already powered on")
                return
            if current is not RadioState.UNKNOWN:
                _LOGGER.warning("Radio is not powered on: %s", current.value)
                raise RadioUnavailable(current)

            _LOGGER.debug("Radio state unknown, waiting for first transition")
            try:
                state = await asyncio.wait_for(first_transition, timeout=timeout)
            except asyncio.TimeoutError:
                _LOGGER.warning(
                    "Radio did not report a power state within %.0f s", timeout
                )
                raise RadioUnavailable(
                    RadioState.UNKNOWN,
                    f"Bluetooth adapter state still unknown after {timeout:.0f} s",
                ) from None
            if state is not RadioState.POWERED_ON:
                _LOGGER.warning("Radio is not powered on: %s", state.value)
                raise RadioUnavailable(state)
            _LOGGER.info("Radio is powered on")
        finally:
            unsubscribe()
