"""Network reachability monitor.

Periodically opens a TCP connection to a well-known host and records whether
it succeeded. Provider clients consult is_online before touching the network
and serve from cache when it is False.
"""

import asyncio

from aggregator.config import ReachabilitySettings
from aggregator.logging import get_logger

logger = get_logger(__name__)


class ReachabilityMonitor:
    """Tracks whether the host currently has network connectivity.

    The flag starts at settings.assume_online and is updated after every
    probe. Transitions are logged; steady state is not.
    """

    def __init__(self, settings: ReachabilitySettings) -> None:
        self._settings = settings
        self._online = settings.assume_online
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online != self._online:
            logger.info("reachability_changed", online=online)
        self._online = online

    async def start(self) -> None:
        """Begin probing in the background."""
        if self._running:
            logger.warning("reachability_monitor_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._probe_loop())
        logger.info(
            "reachability_monitor_started",
            host=self._settings.probe_host,
            interval=self._settings.interval,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("reachability_monitor_stopped")

    async def probe_once(self) -> bool:
        """Attempt one TCP connect and update the online flag."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self._settings.probe_host, self._settings.probe_port),
                timeout=self._settings.timeout,
            )
        except (OSError, TimeoutError):
            self.set_online(False)
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        self.set_online(True)
        return True

    async def _probe_loop(self) -> None:
        while self._running:
            await self.probe_once()
            await asyncio.sleep(self._settings.interval)
