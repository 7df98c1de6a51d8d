"""
CredentialReaper — periodic cleanup of long-expired credentials.

Owned by the application: started on startup, cancelled on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from connectors.token_manager import TokenLifecycleManager

if TYPE_CHECKING:
    from auth.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class CredentialReaper:
    """Runs ``manager.cleanup()`` every ``interval`` seconds."""

    def __init__(
        self,
        manager: TokenLifecycleManager,
        interval: float,
        rate_limiter: Optional["SlidingWindowRateLimiter"] = None,
    ):
        if interval <= 0:
            raise ValueError("reaper interval must be positive")
        self._manager = manager
        self._interval = interval
        self._rate_limiter = rate_limiter
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="credential-reaper")
        logger.info("Credential reaper started (every %.0fs)", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Credential reaper stopped")

    async def run_once(self) -> int:
        removed = await self._manager.cleanup()
        if self._rate_limiter is not None:
            self._rate_limiter.prune()
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Credential cleanup sweep failed")
