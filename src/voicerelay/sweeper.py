"""Background eviction of sessions that outlived their retention window."""

import asyncio
import logging

from voicerelay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodically evicts stale sessions from the registry.

    Every ``interval_s`` seconds, sessions older than ``ttl_s`` are sent an
    ``expired`` status and deleted, whatever their device count.
    """

    def __init__(self, registry: SessionRegistry, ttl_s: float, interval_s: float) -> None:
        """Initialize sweeper.

        Args:
            registry: Registry to sweep
            ttl_s: Maximum session age in seconds
            interval_s: Seconds between sweeps

        Raises:
            ValueError: If ttl or interval is not positive
        """
        if ttl_s <= 0 or interval_s <= 0:
            raise ValueError(f"ttl_s and interval_s must be positive, got {ttl_s}, {interval_s}")

        self._registry = registry
        self._ttl_s = ttl_s
        self._interval_s = interval_s
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self, now: float | None = None) -> list[str]:
        """Run a single eviction pass.

        Returns:
            Keys of evicted sessions
        """
        evicted = await self._registry.evict_expired(self._ttl_s, now=now)
        if evicted:
            logger.info("Expired sessions evicted", extra={"count": len(evicted)})
        return evicted

    def start(self) -> None:
        """Start the background sweep loop (no-op if already running)."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
        logger.info(
            "Expiry sweeper started",
            extra={"ttl_s": self._ttl_s, "interval_s": self._interval_s},
        )

    async def stop(self) -> None:
        """Stop the sweep loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")
