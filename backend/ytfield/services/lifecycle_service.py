"""Activation, deactivation and option migrations."""
import logging
import time
from typing import Dict, Optional

from ytfield.config import Settings
from ytfield.services.option_store import OptionStore
from ytfield.services.token_store import TokenStore
from ytfield.workers.scheduler import TokenRefreshScheduler

logger = logging.getLogger(__name__)


class LifecycleService:
    """Brings the installation up and down."""

    def __init__(
        self,
        settings: Settings,
        option_store: OptionStore,
        token_store: TokenStore,
        scheduler: Optional[TokenRefreshScheduler] = None,
    ):
        self.settings = settings
        self.option_store = option_store
        self.token_store = token_store
        self.scheduler = scheduler

    @property
    def activated_option_key(self) -> str:
        return f"{self.settings.option_prefix}_activated"

    def option_migrations(self) -> Dict[str, str]:
        """Legacy option key -> current option key."""
        legacy = self.settings.legacy_option_prefix
        return {
            self.settings.legacy_token_option_key: self.settings.token_option_key,
            f"{legacy}__activated": self.activated_option_key,
        }

    async def _migrate_option(self, old_key: str, new_key: str) -> bool:
        if old_key == new_key:
            return False

        old_value = await self.option_store.get(old_key)
        # Only when the old value exists and the new key is still empty
        if not old_value or await self.option_store.get(new_key):
            return False

        await self.option_store.set(new_key, old_value)
        await self.option_store.delete(old_key)
        logger.info("Option migrated: %s -> %s", old_key, new_key)
        return True

    async def migrate_options(self) -> int:
        migrations = self.option_migrations()
        migrated_count = 0
        for old_key, new_key in migrations.items():
            if await self._migrate_option(old_key, new_key):
                migrated_count += 1

        if migrated_count:
            logger.info(
                "Options migrated successfully (%d of %d)",
                migrated_count,
                len(migrations),
            )
        return migrated_count

    async def needs_migration(self) -> bool:
        return bool(await self.option_store.get(self.settings.legacy_token_option_key))

    async def activate(self) -> int:
        """Run migrations, record activation and start token maintenance."""
        migrated = await self.migrate_options()
        await self.option_store.set(self.activated_option_key, int(time.time()))

        if self.scheduler is not None:
            self.scheduler.start()

        logger.info("Activated")
        return migrated

    async def deactivate(self) -> None:
        """Forget the token and stop token maintenance."""
        await self.token_store.delete()

        if self.scheduler is not None:
            await self.scheduler.stop()

        logger.info("Deactivated")
