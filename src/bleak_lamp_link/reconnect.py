"""Reconnection supervisor: exponential backoff back to the remembered target.

State machine::

    IDLE ──trigger──▶ ATTEMPTING ──success──▶ IDLE
                        │  ▲
                failure │  │ after backoff delay
                        ▼  │
                     (next attempt)
                        │
          attempt > max ▼
                     GIVEN_UP   (until re-armed)

- **Single flight**: while a reconnection task runs, further triggers
  (health monitor tick, link-loss event, failed command) return the
  running task instead of starting another.
- **Backoff**: after each failure
  ``delay = min(delay * 2 + jitter, max_delay)`` with jitter drawn
  from ``[0, RECONNECT_JITTER)``; the delay is reset to the initial
  value on success.
- **Abort**: :meth:`abort` (issued by a manual disconnect) cancels
  the running task and blocks new triggers until :meth:`rearm`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from . import const
from .exc import LampLinkError
from .models import ReconnectionState, SupervisorPhase

_LOGGER = logging.getLogger(__name__)


def _default_jitter() -> float:
    return random.uniform(0.0, const.RECONNECT_JITTER)


class ReconnectionSupervisor:
    """Drive reconnection attempts through *connect* with backoff.

    Parameters
    ----------
    connect:
        Coroutine function performing one connection attempt to the
        remembered target.  Raises a :class:`LampLinkError` on failure.
    max_attempts:
        Consecutive failures tolerated before giving up.
    initial_delay:
        Delay before the first attempt, in seconds.
    max_delay:
        Backoff ceiling, in seconds.
    on_reconnected:
        Called after a successful attempt (restarts the health monitor).
    can_reconnect:
        Returns ``False`` when there is nothing to reconnect to.
    jitter:
        Returns the jitter added to each backoff step.
    enabled:
        Initial auto-reconnect setting.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[None]],
        *,
        max_attempts: int = 10,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        on_reconnected: Callable[[], None] | None = None,
        can_reconnect: Callable[[], bool] | None = None,
        jitter: Callable[[], float] = _default_jitter,
        enabled: bool = True,
    ) -> None:
        self._connect = connect
        self._max_delay = max_delay
        self._on_reconnected = on_reconnected
        self._can_reconnect = can_reconnect
        self._jitter = jitter
        self._state = ReconnectionState(
            max_attempts=max_attempts, initial_delay=initial_delay
        )
        self._phase = SupervisorPhase.IDLE
        self._enabled = enabled
        self._aborted = False
        self._task: asyncio.Task[bool] | None = None

    # ── Introspection / configuration ──────────────────────────────

    @property
    def state(self) -> ReconnectionState:
        return self._state

    @property
    def phase(self) -> SupervisorPhase:
        return self._phase

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def available(self) -> bool:
        """Whether a trigger would start (or join) a reconnection."""
        if self.is_running:
            return True
        if not self._enabled or self._aborted:
            return False
        if self._phase is SupervisorPhase.GIVEN_UP:
            return False
        return self._can_reconnect is None or self._can_reconnect()

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        _LOGGER.info("Auto-reconnection %s", "enabled" if enabled else "disabled")

    def set_max_attempts(self, attempts: int) -> None:
        self._state.max_attempts = max(const.MIN_RECONNECTION_ATTEMPTS, attempts)
        _LOGGER.info(
            "Max reconnection attempts set to %d", self._state.max_attempts
        )

    def set_initial_delay(self, delay: float) -> None:
        delay = max(const.MIN_INITIAL_RECONNECTION_DELAY, delay)
        self._state.initial_delay = delay
        if not self.is_running:
            self._state.current_delay = delay
        self._max_delay = max(self._max_delay, delay)
        _LOGGER.info("Initial reconnection delay set to %.0f ms", delay * 1000)

    def next_delay(self) -> float:
        """Backoff delay following the current one."""
        delay = self._state.current_delay * 2 + self._jitter()
        return min(delay, self._max_delay)

    # ── Control ────────────────────────────────────────────────────

    def trigger(self) -> asyncio.Task[bool] | None:
        """Start a reconnection sequence, or join the running one.

        Returns the task driving the sequence, or ``None`` when
        reconnection is disabled, aborted, given up, or has no target.
        """
        if self.is_running:
            _LOGGER.debug("Reconnection already in progress")
            return self._task
        if not self.available:
            _LOGGER.debug(
                "Reconnection not started (enabled=%s, aborted=%s, phase=%s)",
                self._enabled,
                self._aborted,
                self._phase.value,
            )
            return None
        self._task = asyncio.ensure_future(self._run())
        return self._task

    async def reconnect(self, timeout: float | None = None) -> bool:
        """Trigger reconnection and wait up to *timeout* for the outcome.

        Returns ``True`` once reconnected.  A timeout leaves the
        sequence running in the background and returns ``False``.
        """
        task = self.trigger()
        if task is None:
            return False
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            _LOGGER.warning(
                "Reconnection still in progress after %.1f s, not waiting longer",
                timeout,
            )
            return False

    def abort(self) -> None:
        """Cancel any running sequence and refuse triggers until :meth:`rearm`."""
        self._aborted = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            _LOGGER.debug("Reconnection aborted")

    def rearm(self) -> None:
        """Reset counters and accept triggers again."""
        self._aborted = False
        self._phase = SupervisorPhase.IDLE
        self._state.reset()

    def reset(self) -> None:
        """Reset attempt counter and delay after a successful connect."""
        self._state.reset()
        if self._phase is SupervisorPhase.GIVEN_UP:
            self._phase = SupervisorPhase.IDLE

    async def _run(self) -> bool:
        state = self._state
        state.in_progress = True
        self._phase = SupervisorPhase.ATTEMPTING
        try:
            while not self._aborted and self._enabled:
                state.attempt += 1
                if state.attempt > state.max_attempts:
                    _LOGGER.error(
                        "Max reconnection attempts (%d) reached. Giving up.",
                        state.max_attempts,
                    )
                    self._phase = SupervisorPhase.GIVEN_UP
                    return False

                _LOGGER.info(
                    "Reconnection attempt %d/%d in %.0f ms",
                    state.attempt,
                    state.max_attempts,
                    state.current_delay * 1000,
                )
                await asyncio.sleep(state.current_delay)
                if self._aborted or not self._enabled:
                    break

                try:
                    await self._connect()
                except LampLinkError as exc:
                    state.current_delay = self.next_delay()
                    _LOGGER.warning(
                        "Reconnection attempt %d failed: %s",
                        state.attempt,
                        exc,
                    )
                    continue
                except Exception:
                    state.current_delay = self.next_delay()
                    _LOGGER.exception(
                        "Reconnection attempt %d raised unexpectedly", state.attempt
                    )
                    continue

                _LOGGER.info(
                    "Reconnection successful after %d attempt(s)", state.attempt
                )
                state.reset()
                self._phase = SupervisorPhase.IDLE
                if self._on_reconnected is not None:
                    self._on_reconnected()
                return True

            self._phase = SupervisorPhase.IDLE
            return False
        except asyncio.CancelledError:
            _LOGGER.debug("Reconnection task cancelled")
            self._phase = SupervisorPhase.IDLE
            return False
        finally:
            state.in_progress = False
