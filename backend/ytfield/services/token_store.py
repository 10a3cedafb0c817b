"""Persisted OAuth token record with validation and read-back verification."""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ytfield.services.option_store import OptionStore

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 10
MIN_LOG_TOKEN_LENGTH = 8
EXPIRY_LEEWAY_SECONDS = 30
REQUIRED_TOKEN_KEYS = ("access_token", "token_type")
COMPARED_TOKEN_FIELDS = ("access_token", "token_type", "refresh_token", "expires_in")

CacheInvalidator = Callable[[str], Awaitable[None]]


@dataclass
class OAuthToken:
    """OAuth2 token record as stored in the option store."""
    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    created: Optional[int] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OAuthToken":
        expires_in = data.get("expires_in")
        created = data.get("created")
        return cls(
            access_token=data["access_token"],
            token_type=data["token_type"],
            refresh_token=data.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            created=int(created) if created is not None else None,
            scope=data.get("scope"),
            id_token=data.get("id_token"),
        )

    @classmethod
    def from_token_response(
        cls,
        payload: Dict[str, Any],
        previous: Optional["OAuthToken"] = None,
        now: Optional[float] = None,
    ) -> "OAuthToken":
        """Build a whole new record from a token endpoint response.

        Google omits the refresh token on refresh grants, so the previous
        one is carried into the new record.
        """
        refresh_token = payload.get("refresh_token")
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token

        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload.get("access_token", ""),
            token_type=payload.get("token_type", ""),
            refresh_token=refresh_token or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            created=int(now if now is not None else time.time()),
            scope=payload.get("scope"),
            id_token=payload.get("id_token"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @property
    def expires_at(self) -> Optional[int]:
        if self.created is None or self.expires_in is None:
            return None
        return self.created + self.expires_in

    def is_expired(self, now: Optional[float] = None, leeway: int = EXPIRY_LEEWAY_SECONDS) -> bool:
        """True when the token is expired or about to expire.

        A record without creation time or lifetime is treated as expired.
        """
        expires_at = self.expires_at
        if expires_at is None:
            return True
        current = now if now is not None else time.time()
        return expires_at - leeway <= current


def is_valid_token_format(token: Any) -> bool:
    """Structural check on a raw token record."""
    if not isinstance(token, dict):
        return False

    for key in REQUIRED_TOKEN_KEYS:
        if not token.get(key):
            return False

    access_token = token["access_token"]
    if not isinstance(access_token, str) or len(access_token) < MIN_TOKEN_LENGTH:
        return False

    return token["token_type"] == "Bearer"


def sanitize_token_for_logging(token: Any) -> Union[Dict[str, Any], str]:
    """Mask secrets in a token record so it can be logged."""
    if isinstance(token, OAuthToken):
        token = token.to_dict()
    if not isinstance(token, dict):
        return f"invalid_format: {type(token).__name__}"

    sanitized = {}
    for key, value in token.items():
        if key in ("access_token", "refresh_token", "id_token"):
            if isinstance(value, str) and len(value) > MIN_LOG_TOKEN_LENGTH:
                sanitized[key] = f"{value[:4]}...{value[-4:]}"
            else:
                sanitized[key] = "invalid_format"
        else:
            sanitized[key] = value
    return sanitized


def tokens_are_equal(expected: Any, actual: Any) -> bool:
    """Compare the essential fields of two raw token records."""
    if not isinstance(expected, dict) or not isinstance(actual, dict):
        return False
    return all(expected.get(field) == actual.get(field) for field in COMPARED_TOKEN_FIELDS)


class TokenStore:
    """
    Validated storage of the single OAuth token record.

    Writes are serialized and verified by reading the record back. Optional
    cache invalidators are run around authoritative reads and writes for
    deployments with a caching layer between this store and its backing
    persistence; their failures are logged and ignored.
    """

    def __init__(
        self,
        option_store: OptionStore,
        option_key: str,
        cache_invalidators: Optional[Sequence[CacheInvalidator]] = None,
        max_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        self.option_store = option_store
        self.option_key = option_key
        self.cache_invalidators = list(cache_invalidators or [])
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._write_lock = asyncio.Lock()

    @property
    def has_cache(self) -> bool:
        return bool(self.cache_invalidators)

    def add_cache_invalidator(self, invalidator: CacheInvalidator) -> None:
        self.cache_invalidators.append(invalidator)

    async def _invalidate_caches(self) -> None:
        for invalidator in self.cache_invalidators:
            try:
                await invalidator(self.option_key)
            except Exception as exc:
                logger.warning(
                    "Cache invalidation failed for %s: %s",
                    self.option_key,
                    exc,
                )

    @staticmethod
    def _repair(raw: Any) -> Any:
        """Decode a record that was stored as a JSON string."""
        if not isinstance(raw, str):
            return raw
        try:
            decoded = json.loads(raw)
        except ValueError:
            return raw
        if isinstance(decoded, dict):
            logger.warning("Token was stored as JSON string, decoded successfully")
            return decoded
        return raw

    async def _read_authoritative(self) -> Any:
        if not self.has_cache:
            return self._repair(await self.option_store.get(self.option_key))

        record = None
        for attempt in range(1, self.max_attempts + 1):
            await self._invalidate_caches()
            record = self._repair(await self.option_store.get(self.option_key))
            if record is None or is_valid_token_format(record):
                return record

            logger.warning(
                "Token read returned invalid data (attempt %d/%d)",
                attempt,
                self.max_attempts,
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_backoff)

        return record

    async def get(self) -> Optional[OAuthToken]:
        """Load the stored token, or None if absent or unusable."""
        record = await self._read_authoritative()
        if record is None:
            return None

        if not is_valid_token_format(record):
            logger.error(
                "Invalid token format in store: %s",
                sanitize_token_for_logging(record),
            )
            return None

        try:
            return OAuthToken.from_dict(record)
        except (TypeError, ValueError) as exc:
            logger.error(
                "Stored token could not be parsed (%s): %s",
                exc,
                sanitize_token_for_logging(record),
            )
            return None

    async def save(self, token: Union[OAuthToken, Dict[str, Any]]) -> bool:
        """Persist a token record, replacing any previous one.

        Returns False without writing when the record is structurally
        invalid, and False when the read-back does not match what was written.
        """
        record = token.to_dict() if isinstance(token, OAuthToken) else token

        if not is_valid_token_format(record):
            logger.error(
                "Attempting to save invalid token format: %s",
                sanitize_token_for_logging(record),
            )
            return False

        attempts = self.max_attempts if self.has_cache else 1
        async with self._write_lock:
            for attempt in range(1, attempts + 1):
                await self._invalidate_caches()
                try:
                    await self.option_store.set(self.option_key, record)
                except Exception:
                    logger.exception("Failed to write token to option store")
                    return False

                await self._invalidate_caches()
                stored = self._repair(await self.option_store.get(self.option_key))
                if tokens_are_equal(record, stored):
                    return True

                logger.error(
                    "Token verification failed after save - possible cache corruption "
                    "(attempt %d/%d): saved=%s retrieved=%s",
                    attempt,
                    attempts,
                    sanitize_token_for_logging(record),
                    sanitize_token_for_logging(stored),
                )
                if attempt < attempts:
                    await asyncio.sleep(self.retry_backoff)

        return False

    async def delete(self) -> bool:
        """Remove the stored token. Idempotent."""
        async with self._write_lock:
            await self._invalidate_caches()
            existed = await self.option_store.delete(self.option_key)
            await self._invalidate_caches()

        if existed:
            logger.info("Stored access token deleted")
        return True
