"""
IGDB access tokens.

IGDB authenticates with a Twitch app token (client-credentials grant). The
token is cached in memory and in the api_tokens table so every worker reuses
it until it is about to expire.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from ..database import get_db_session
from ..exceptions import ProviderAuthError
from ..models import ApiToken, as_utc

logger = logging.getLogger(__name__)

TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
PROVIDER_KEY = "igdb"

# Tokens with less life left than this are refreshed
MIN_REMAINING_SECONDS = 60


class AccessTokenCache:
    """Fetches, caches and refreshes the IGDB bearer token."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        session_factory: Optional[Callable] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        persist: bool = True,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.session_factory = session_factory
        self.transport = transport
        self.persist = persist
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, expires_at: Optional[datetime]) -> bool:
        if expires_at is None:
            return False
        remaining = (as_utc(expires_at) - datetime.now(timezone.utc)).total_seconds()
        return remaining > MIN_REMAINING_SECONDS

    async def get_token(self) -> str:
        if self._token and self._is_fresh(self._expires_at):
            return self._token

        async with self._lock:
            if self._token and self._is_fresh(self._expires_at):
                return self._token

            stored = self._load_stored()
            if stored:
                self._token, self._expires_at = stored
                return self._token

            self._token, self._expires_at = await self._exchange()
            self._store(self._token, self._expires_at)
            return self._token

    def invalidate(self) -> None:
        """Forget the current token (after a 401)."""
        self._token = None
        self._expires_at = None
        if not self.persist:
            return
        try:
            with get_db_session(self.session_factory) as session:
                session.query(ApiToken).filter_by(provider=PROVIDER_KEY).delete()
        except SQLAlchemyError as e:
            logger.warning(f"Could not clear stored IGDB token: {e}")

    async def _exchange(self):
        if not self.client_id or not self.client_secret:
            raise ProviderAuthError(PROVIDER_KEY, "IGDB_CLIENT_ID / IGDB_CLIENT_SECRET not configured")

        params = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }
        started = time.time()
        try:
            async with httpx.AsyncClient(timeout=10, transport=self.transport) as client:
                response = await client.post(TWITCH_TOKEN_URL, params=params)
                response.raise_for_status()
                data = response.json()
            token = data["access_token"]
            expires_in = int(data["expires_in"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error(f"IGDB auth failed: {e}")
            raise ProviderAuthError(PROVIDER_KEY, f"Token exchange failed: {e}") from e

        logger.info(f"Obtained IGDB token (expires in {expires_in}s, {time.time() - started:.2f}s)")
        return token, datetime.now(timezone.utc) + timedelta(seconds=expires_in)

    def _load_stored(self):
        if not self.persist:
            return None
        try:
            with get_db_session(self.session_factory) as session:
                row = session.get(ApiToken, PROVIDER_KEY)
                if row and self._is_fresh(row.expires_at):
                    return row.access_token, as_utc(row.expires_at)
        except SQLAlchemyError as e:
            logger.warning(f"Could not read stored IGDB token: {e}")
        return None

    def _store(self, token: str, expires_at: datetime) -> None:
        if not self.persist:
            return
        try:
            with get_db_session(self.session_factory) as session:
                row = session.get(ApiToken, PROVIDER_KEY)
                if row is None:
                    row = ApiToken(provider=PROVIDER_KEY)
                    session.add(row)
                row.access_token = token
                row.expires_at = expires_at
        except SQLAlchemyError as e:
            logger.warning(f"Could not store IGDB token: {e}")
