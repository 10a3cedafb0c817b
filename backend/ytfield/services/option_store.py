"""Key-value persisted options."""
import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from ytfield.db.database import session_scope
from ytfield.models.option import Option

logger = logging.getLogger(__name__)


class OptionStore(ABC):
    """Persisted option storage with read-after-write consistency."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Create or replace a value."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if something was deleted."""


class SqlOptionStore(OptionStore):
    """Options stored as JSON text in the `options` table."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def get(self, key: str) -> Optional[Any]:
        async with self.session_maker() as session:
            option = await session.get(Option, key)
            if option is None or option.value is None:
                return None
            raw = option.value

        try:
            return json.loads(raw)
        except ValueError:
            # Written by something other than this store; hand back as-is
            logger.warning("Option %s does not hold JSON, returning raw text", key)
            return raw

    async def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        async with session_scope(self.session_maker) as session:
            option = await session.get(Option, key)
            if option is None:
                session.add(Option(key=key, value=payload))
            else:
                option.value = payload

    async def delete(self, key: str) -> bool:
        async with session_scope(self.session_maker) as session:
            result = await session.execute(delete(Option).where(Option.key == key))
            return bool(result.rowcount)


class InMemoryOptionStore(OptionStore):
    """Process-local option store, used for tests and ephemeral runs."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.values: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self.values.get(key))

    async def set(self, key: str, value: Any) -> None:
        self.values[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        return self.values.pop(key, None) is not None
