"""Lamp commands with bounded retry.

``turn_on``/``turn_off``/``read_state`` wrap the session's bare write
and read.  A failed attempt (including ``NotConnected``) hands off to
the reconnection supervisor, waits ``LINK_STABILIZE_DELAY`` and tries
again, up to *attempts* times.  The bound holds regardless of the
supervisor's own attempt ceiling: a command never waits on the
supervisor longer than *reconnect_timeout* per attempt.

Errors never cross this boundary.  Every :class:`LampLinkError` is
logged and folded into ``False`` / :attr:`LampState.UNKNOWN`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from . import const
from .exc import LampLinkError
from .models import LampState
from .reconnect import ReconnectionSupervisor
from .session import Session

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


def decode_lamp_state(data: bytes) -> LampState:
    """Map the control characteristic's value onto a :class:`LampState`."""
    if not data:
        return LampState.UNKNOWN
    if data[0] == const.PAYLOAD_ON[0]:
        return LampState.ON
    if data[0] == const.PAYLOAD_OFF[0]:
        return LampState.OFF
    return LampState.UNKNOWN


class LampCommands:
    """The lamp's command surface."""

    def __init__(
        self,
        session: Session,
        supervisor: ReconnectionSupervisor,
        *,
        attempts: int = 3,
        reconnect_timeout: float | None = 30.0,
    ) -> None:
        self._session = session
        self._supervisor = supervisor
        self.attempts = attempts
        self.reconnect_timeout = reconnect_timeout

    def _target_id(self) -> str:
        target = self._session.target
        return target.id if target is not None else "no target"

    async def turn_on(self) -> bool:
        """Switch the lamp on.  Returns ``True`` on success."""
        _LOGGER.info("%s: Turning lamp ON", self._target_id())
        return await self._write(const.PAYLOAD_ON, "Turn lamp ON")

    async def turn_off(self) -> bool:
        """Switch the lamp off.  Returns ``True`` on success."""
        _LOGGER.info("%s: Turning lamp OFF", self._target_id())
        return await self._write(const.PAYLOAD_OFF, "Turn lamp OFF")

    async def read_state(self) -> LampState:
        """Read whether the lamp is on.  ``UNKNOWN`` when it cannot be read."""
        data = await self._with_retry("Read lamp state", self._session.read)
        if data is None:
            return LampState.UNKNOWN
        state = decode_lamp_state(data)
        if state is LampState.UNKNOWN:
            _LOGGER.error(
                "%s: Unrecognized lamp state value %r", self._target_id(), data.hex()
            )
        else:
            _LOGGER.info("%s: Lamp state: %s", self._target_id(), state.value)
        return state

    async def _write(self, payload: bytes, operation: str) -> bool:
        async def _do_write() -> bool:
            await self._session.write(payload)
            return True

        return bool(await self._with_retry(operation, _do_write))

    async def _with_retry(
        self, operation: str, action: Callable[[], Awaitable[_T]]
    ) -> _T | None:
        for attempt in range(1, self.attempts + 1):
            try:
                return await action()
            except LampLinkError as exc:
                _LOGGER.warning(
                    "%s: %s failed (attempt %d/%d): %s",
                    self._target_id(),
                    operation,
                    attempt,
                    self.attempts,
                    exc,
                )
            if attempt == self.attempts:
                break
            if not self._supervisor.available:
                _LOGGER.error(
                    "%s: %s - not retrying, reconnection is not possible",
                    self._target_id(),
                    operation,
                )
                return None

            _LOGGER.info(
                "%s: %s - reconnecting before retry %d/%d",
                self._target_id(),
                operation,
                attempt + 1,
                self.attempts,
            )
            if not await self._supervisor.reconnect(timeout=self.reconnect_timeout):
                _LOGGER.debug("%s: Reconnection did not complete", self._target_id())
            await asyncio.sleep(const.LINK_STABILIZE_DELAY)

        _LOGGER.error(
            "%s: %s failed after %d attempts",
            self._target_id(),
            operation,
            self.attempts,
        )
        return None
