"""Periodic health check of a connected session.

The transport's disconnect event is not always delivered: BlueZ can
keep reporting a dead link, or drop it without a callback.  The
:class:`HealthMonitor` ticks every *interval* seconds and compares
two views of the link:

1. the session's own ``connection_state`` flag, and
2. the link state last reported by the transport.

If the flag already says disconnected, or the flag says connected
while the transport says otherwise, the monitor calls *on_unhealthy*,
which hands off to the reconnection supervisor exactly like a link
loss event would.

Usage::

    monitor = HealthMonitor(
        probe=session_health,
        on_unhealthy=supervisor.trigger,
        interval=10.0,
    )
    monitor.start()   # after a successful connect
    monitor.stop()    # before disconnect / reconnect
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from . import const

_LOGGER = logging.getLogger(__name__)


class Health(str, Enum):
    """Outcome of a single health probe."""

    OK = "ok"
    DISCONNECTED = "disconnected"
    MISMATCH = "mismatch"
    NO_SESSION = "no_session"


class HealthMonitor:
    """Tick periodically and report an unhealthy session.

    At most one monitoring task exists per monitor: :meth:`start`
    always cancels the previous task before creating a new one.

    Parameters
    ----------
    probe:
        Returns the :class:`Health` of the session.  Called on every
        tick.
    on_unhealthy:
        Called with the probe result when it is ``DISCONNECTED`` or
        ``MISMATCH``.  Must not block; it is expected to schedule
        recovery and return.
    interval:
        Seconds between ticks.  Raised to
        ``const.MIN_HEALTH_CHECK_INTERVAL`` if lower.
    """

    def __init__(
        self,
        probe: Callable[[], Health],
        on_unhealthy: Callable[[Health], None],
        interval: float = 10.0,
    ) -> None:
        self._probe = probe
        self._on_unhealthy = on_unhealthy
        self._interval = self._clamp(interval)
        self._task: asyncio.Task[None] | None = None

    @staticmethod
    def _clamp(interval: float) -> float:
        return max(float(interval), const.MIN_HEALTH_CHECK_INTERVAL)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        """Return whether a monitoring task is active."""
        return self._task is not None and not self._task.done()

    def set_interval(self, interval: float) -> None:
        """Change the tick interval, restarting a running monitor."""
        self._interval = self._clamp(interval)
        if self.is_running:
            self.start()
            _LOGGER.info(
                "Health check interval updated to %.1f s", self._interval
            )
        else:
            _LOGGER.info(
                "Health check interval set to %.1f s (applies on next connection)",
                self._interval,
            )

    def start(self) -> None:
        """Start monitoring, replacing any running monitor task."""
        self.stop()
        self._task = asyncio.ensure_future(self._monitor())
        _LOGGER.debug("Started health monitor (interval %.1f s)", self._interval)

    def stop(self) -> None:
        """Stop monitoring.  Safe to call multiple times or before ``start()``."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            _LOGGER.debug("Stopped health monitor")

    def check(self) -> Health:
        """Run one probe and react to the result."""
        health = self._probe()
        if health is Health.OK:
            _LOGGER.debug("Health check: OK")
        elif health is Health.NO_SESSION:
            _LOGGER.debug("Health check: no session")
        else:
            _LOGGER.warning("Health check failed: %s", health.value)
            self._on_unhealthy(health)
        return health

    async def _monitor(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    self.check()
                except Exception:
                    _LOGGER.exception("Health check raised")
        except asyncio.CancelledError:
            pass
