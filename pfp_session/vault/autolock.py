"""
AutoLock — Forget the master password after a preference-driven delay.

Reads ``autolock`` (enabled flag) and ``autolock_delay`` (minutes) from the
preferences every time the timer is (re)scheduled. A delay of zero or less
locks immediately.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .config import SessionConfig
from .prefs import Preferences

logger = logging.getLogger("pfp.vault")

AUTOLOCK_PREF = "autolock"
AUTOLOCK_DELAY_PREF = "autolock_delay"


class AutoLock:
    """One-shot lock timer that can be suspended around sensitive flows."""

    def __init__(
        self,
        prefs: Preferences,
        lock: Callable[[], Awaitable[None]],
        config: Optional[SessionConfig] = None,
    ):
        self._prefs = prefs
        self._lock = lock
        self._config = config or SessionConfig()
        self._timer: Optional[asyncio.Task] = None
        self._suspended = False
        prefs.on(AUTOLOCK_PREF, self._autolock_changed)
        prefs.on(AUTOLOCK_DELAY_PREF, self._delay_changed)

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def cancel(self) -> None:
        """Drop the pending timer, if any."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def suspend(self) -> None:
        self.cancel()
        self._suspended = True

    async def resume(self) -> None:
        self.cancel()
        self._suspended = False
        await self.schedule()

    async def schedule(self) -> None:
        """Start the timer according to the current preferences."""
        autolock = await self._prefs.get(AUTOLOCK_PREF, self._config.autolock)
        if not autolock:
            return
        delay = await self._prefs.get(AUTOLOCK_DELAY_PREF, self._config.autolock_delay)
        self.cancel()
        if delay <= 0:
            logger.info("Autolock delay is %s, locking now", delay)
            await self._lock()
            return
        self._timer = asyncio.create_task(self._fire(delay * 60))
        logger.debug("Autolock scheduled in %s minute(s)", delay)

    async def _fire(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._timer = None
        logger.info("Autolock delay elapsed, forgetting master password")
        await self._lock()

    async def password_changed(self) -> None:
        if not self._suspended:
            await self.schedule()

    async def _autolock_changed(self, name: str, value) -> None:
        if value:
            if not self._suspended:
                await self.schedule()
        else:
            self.cancel()

    async def _delay_changed(self, name: str, value) -> None:
        if self.pending:
            await self.schedule()

    async def close(self) -> None:
        """Cancel the timer and wait for it to finish."""
        timer = self._timer
        self.cancel()
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass
