"""Google OAuth2 session management for the YouTube Data API."""
import asyncio
import enum
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from ytfield.config import Settings
from ytfield.services.errors import (
    AuthExpiredUnrecoverable,
    AuthRequired,
    ProviderRejected,
    TokenPersistenceError,
    TransportFailure,
    ValidationError,
    YouTubeServiceError,
    extract_error_detail,
)
from ytfield.services.token_store import (
    OAuthToken,
    TokenStore,
    is_valid_token_format,
    sanitize_token_for_logging,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/youtube.force-ssl",
    "https://www.googleapis.com/auth/youtube.upload",
]


class TokenState(str, enum.Enum):
    """Lifecycle state of the stored token."""
    NO_TOKEN = "no_token"
    VALID = "valid"
    EXPIRED = "expired"
    REFRESHING = "refreshing"
    INVALID = "invalid"


class OAuthSessionManager:
    """
    Owns the OAuth client configuration and the stored token.

    Refreshes are single-flight: concurrent callers that find the token
    expired wait on one lock, and whoever gets it second re-reads the store
    and picks up the token the first one saved.
    """

    def __init__(self, token_store: TokenStore, settings: Settings):
        self.token_store = token_store
        self.settings = settings
        self.state = TokenState.NO_TOKEN
        self.refresh_count = 0
        self._refresh_lock = asyncio.Lock()
        # Last refreshed token, served to waiters even if persisting it failed
        self._refreshed_token: Optional[OAuthToken] = None

    def build_authorization_url(self, state: Optional[str] = None) -> str:
        """Build the Google consent URL for the authorization-code flow."""
        self.settings.require_oauth_credentials()

        params = {
            "client_id": self.settings.google_oauth_client_id,
            "redirect_uri": self.settings.google_oauth_redirect_uri,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            # Offline access plus forced consent guarantees a refresh token
            "access_type": "offline",
            "prompt": "select_account consent",
            "include_granted_scopes": "true",
        }
        if state:
            params["state"] = state

        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _post_token_endpoint(self, data: Dict[str, str], action: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.settings.oauth_http_timeout) as client:
                return await client.post(GOOGLE_TOKEN_URL, data=data)
        except httpx.TimeoutException as exc:
            logger.warning("Google token %s timed out", action)
            raise TransportFailure(f"Google token {action} timed out. Please try again.") from exc
        except httpx.RequestError as exc:
            logger.warning("Google token %s network error: %s", action, type(exc).__name__)
            raise TransportFailure(f"Unable to reach Google OAuth service for token {action}.") from exc

    @staticmethod
    def _parse_token_payload(response: httpx.Response, action: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("Google token %s returned invalid JSON", action)
            raise ProviderRejected(
                f"Token {action} failed: invalid provider response",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        if not isinstance(payload, dict):
            raise ProviderRejected(
                f"Token {action} failed: invalid provider response",
                status_code=response.status_code,
                body=response.text,
            )
        return payload

    async def authorize(self, code: str) -> OAuthToken:
        """Exchange a one-time authorization code for a token and store it."""
        if not code or not code.strip():
            raise ValidationError("Authorization code is required")
        self.settings.require_oauth_credentials()

        response = await self._post_token_endpoint(
            {
                "code": code.strip(),
                "client_id": self.settings.google_oauth_client_id,
                "client_secret": self.settings.google_oauth_client_secret,
                "redirect_uri": self.settings.google_oauth_redirect_uri,
                "grant_type": "authorization_code",
            },
            "exchange",
        )

        if response.status_code != 200:
            detail = extract_error_detail(response)
            logger.info(
                "Google authorization code exchange rejected status=%s detail=%s",
                response.status_code,
                detail,
            )
            raise ProviderRejected(
                f"Authorization code exchange failed: {detail}",
                status_code=response.status_code,
                body=response.text,
            )

        token = OAuthToken.from_token_response(self._parse_token_payload(response, "exchange"))
        if not await self.token_store.save(token):
            logger.error(
                "Authorization succeeded but token could not be saved: %s",
                sanitize_token_for_logging(token),
            )
            raise TokenPersistenceError("Failed to save access token")

        self._refreshed_token = None
        self.state = TokenState.VALID
        logger.info("App authorized: %s", sanitize_token_for_logging(token))
        return token

    async def _discard_token(self) -> None:
        await self.token_store.delete()
        self._refreshed_token = None
        self.state = TokenState.INVALID

    async def _refresh(self, token: OAuthToken) -> OAuthToken:
        if not token.refresh_token:
            logger.error(
                'Unable to retrieve "refresh_token": %s',
                sanitize_token_for_logging(token),
            )
            await self._discard_token()
            raise AuthExpiredUnrecoverable(
                "Access token expired and no refresh token is available. Re-authorization required."
            )

        self.settings.require_oauth_credentials()
        self.refresh_count += 1
        response = await self._post_token_endpoint(
            {
                "client_id": self.settings.google_oauth_client_id,
                "client_secret": self.settings.google_oauth_client_secret,
                "refresh_token": token.refresh_token,
                "grant_type": "refresh_token",
            },
            "refresh",
        )

        if response.status_code >= 500:
            detail = extract_error_detail(response)
            logger.warning(
                "Google token refresh failed upstream status=%s detail=%s",
                response.status_code,
                detail,
            )
            raise ProviderRejected(
                f"Token refresh failed: {detail}",
                status_code=response.status_code,
                body=response.text,
            )

        if response.status_code != 200:
            detail = extract_error_detail(response)
            logger.error(
                "Google token refresh rejected status=%s detail=%s token=%s",
                response.status_code,
                detail,
                sanitize_token_for_logging(token),
            )
            await self._discard_token()
            raise AuthExpiredUnrecoverable(
                f"Failed to refresh token - re-authorization required: {detail}"
            )

        new_token = OAuthToken.from_token_response(
            self._parse_token_payload(response, "refresh"),
            previous=token,
        )
        if not is_valid_token_format(new_token.to_dict()):
            logger.error(
                "New token format validation failed: %s",
                sanitize_token_for_logging(new_token),
            )
            await self._discard_token()
            raise AuthExpiredUnrecoverable("New token format validation failed")

        if not await self.token_store.save(new_token):
            # The refreshed token is still good for this process
            logger.error(
                "Refreshed token could not be persisted: %s",
                sanitize_token_for_logging(new_token),
            )
        else:
            logger.info("Access token refreshed")

        return new_token

    async def ensure_valid_token(self) -> OAuthToken:
        """
        Return a usable token, refreshing it first if it has expired.

        Raises:
            AuthRequired: nothing stored, authorization flow needed
            AuthExpiredUnrecoverable: refresh impossible or rejected; token deleted
            TransportFailure: token endpoint unreachable; token kept
        """
        token = await self.token_store.get()
        if token is None:
            self.state = TokenState.NO_TOKEN
            raise AuthRequired("No access token available. Authorization required.")

        if not token.is_expired():
            self.state = TokenState.VALID
            return token

        async with self._refresh_lock:
            token = await self.token_store.get()
            if token is None:
                self.state = TokenState.NO_TOKEN
                raise AuthRequired("No access token available. Authorization required.")
            if not token.is_expired():
                self.state = TokenState.VALID
                return token

            refreshed = self._refreshed_token
            if (
                refreshed is not None
                and refreshed.refresh_token == token.refresh_token
                and not refreshed.is_expired()
            ):
                self.state = TokenState.VALID
                return refreshed

            self.state = TokenState.REFRESHING
            try:
                token = await self._refresh(token)
            except AuthRequired:
                raise
            except Exception:
                self.state = TokenState.EXPIRED
                raise

            self._refreshed_token = token
            self.state = TokenState.VALID
            return token

    async def authorization_header(self) -> Dict[str, str]:
        token = await self.ensure_valid_token()
        return {"Authorization": f"Bearer {token.access_token}"}

    async def is_authorized(self) -> bool:
        try:
            await self.ensure_valid_token()
        except YouTubeServiceError:
            return False
        return True

    async def check_token(self) -> TokenState:
        """Periodic maintenance: refresh the token if needed, never raise."""
        try:
            await self.ensure_valid_token()
        except AuthRequired as exc:
            if self.state == TokenState.INVALID:
                logger.error("Scheduled token check discarded the token: %s", exc)
            else:
                logger.debug("Scheduled token check: no token stored")
        except YouTubeServiceError as exc:
            logger.warning("Scheduled token check failed: %s", exc)
        return self.state

    async def fetch_user_email(self) -> Optional[str]:
        """Email address of the authorized Google account."""
        headers = await self.authorization_header()
        try:
            async with httpx.AsyncClient(timeout=self.settings.oauth_http_timeout) as client:
                response = await client.get(GOOGLE_USERINFO_URL, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransportFailure("Google user info lookup timed out. Please try again.") from exc
        except httpx.RequestError as exc:
            raise TransportFailure("Unable to reach Google for user info lookup.") from exc

        if response.status_code != 200:
            detail = extract_error_detail(response)
            raise ProviderRejected(
                f"Unable to load Google user info: {detail}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderRejected(
                "Unable to load Google user info: invalid provider response",
                status_code=response.status_code,
            ) from exc
        return payload.get("email") if isinstance(payload, dict) else None

    async def authorization_status(self) -> Dict[str, Any]:
        """Describe whether the app is authorized, for the settings screen."""
        try:
            self.settings.require_oauth_credentials()
        except ValidationError as exc:
            logger.error(str(exc))
            return {"status": "error", "message": str(exc)}

        try:
            await self.ensure_valid_token()
        except AuthRequired:
            return {
                "status": "authorize",
                "message": "Authorize the app to upload videos to YouTube:",
                "auth_url": self.build_authorization_url(),
            }
        except YouTubeServiceError as exc:
            logger.error("Unable to check authorization: %s", exc)
            return {"status": "error", "message": str(exc)}

        try:
            email = await self.fetch_user_email()
        except YouTubeServiceError as exc:
            logger.warning("Unable to load user info: %s", exc)
            email = None

        return {
            "status": "authorized",
            "message": f"App authorized! You are logged in as: {email or 'unknown'}",
            "email": email,
        }

    async def logout(self, revoke: bool = True) -> bool:
        """Forget the stored token, revoking it at Google first if asked."""
        token = await self.token_store.get()
        if token is not None and revoke:
            secret = token.refresh_token or token.access_token
            try:
                async with httpx.AsyncClient(timeout=self.settings.oauth_http_timeout) as client:
                    response = await client.post(GOOGLE_REVOKE_URL, data={"token": secret})
                if response.status_code != 200:
                    logger.warning(
                        "Token revocation rejected: %s",
                        extract_error_detail(response),
                    )
            except httpx.RequestError as exc:
                logger.warning("Token revocation failed: %s", type(exc).__name__)

        await self.token_store.delete()
        self.state = TokenState.NO_TOKEN
        self._refreshed_token = None
        return True
