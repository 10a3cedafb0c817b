"""Periodic token maintenance."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ytfield.services.oauth_service import OAuthSessionManager

logger = logging.getLogger(__name__)


class TokenRefreshScheduler:
    """Runs OAuthSessionManager.check_token() on a fixed interval."""

    def __init__(self, oauth: OAuthSessionManager, interval_seconds: float = 86400):
        self.oauth = oauth
        self.interval_seconds = interval_seconds
        self.last_run_at: Optional[datetime] = None
        self.last_state: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.running:
            return False
        self._task = asyncio.create_task(self._loop())
        logger.info("Token refresh scheduler started (every %ss)", self.interval_seconds)
        return True

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Token refresh scheduler stopped")

    async def run_once(self) -> str:
        state = await self.oauth.check_token()
        self.last_run_at = datetime.utcnow()
        self.last_state = state.value
        logger.debug("Scheduled token check finished: %s", self.last_state)
        return self.last_state

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Scheduled token check error: %s", e)
            await asyncio.sleep(self.interval_seconds)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_state": self.last_state,
        }
