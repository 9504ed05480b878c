"""
## Session Binder

Binds a Canvas access token to the browser through an opaque credential.

The browser only ever holds the credential, as an HTTP-only cookie. The
token stays in the session store, keyed by that credential, and is looked
up again on every proxied call. A credential that does not resolve, for
whatever reason, is simply "not logged in".
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import secrets

from .logging_util import get_logger, mask_secret
from .models import BoundSession, TokenExchangeResult
from .persistence import PersistenceProvider


logger = get_logger(__name__)


def ensure_aware_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class SessionBinder:

    def __init__(self, store: PersistenceProvider[BoundSession], ttl_in_sec: Optional[int] = None):
        self.store = store
        self.ttl_in_sec = ttl_in_sec

    def _session_ttl(self, result: TokenExchangeResult) -> Optional[int]:
        # No refresh: once the upstream token expires the session is over.
        candidates = [t for t in (self.ttl_in_sec, result.expires_in) if t and t > 0]
        return min(candidates) if candidates else None

    async def bind(self, result: TokenExchangeResult) -> str:
        credential = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        ttl = self._session_ttl(result)

        await self.store.set(
            credential,
            BoundSession(
                access_token=result.access_token,
                token_type=result.token_type,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl) if ttl else None,
            ),
            ttl_in_sec=ttl,
        )
        logger.info(f"Bound new session {mask_secret(credential)} (ttl={ttl or 'browser session'})")
        return credential

    async def resolve(self, credential: Optional[str]) -> Optional[str]:
        if not credential:
            return None

        try:
            session = await self.store.get(credential)
        except Exception:
            logger.error(f"Session lookup failed for {mask_secret(credential)}", exc_info=True)
            return None

        if session is None or not session.access_token:
            logger.debug(f"Unknown or cleared session {mask_secret(credential)}")
            return None

        if session.expires_at and ensure_aware_utc(session.expires_at) <= datetime.now(timezone.utc):
            logger.info(f"Session {mask_secret(credential)} expired")
            try:
                await self.clear(credential)
            except Exception:
                logger.error(f"Could not remove expired session {mask_secret(credential)}", exc_info=True)
            return None

        return session.access_token

    async def clear(self, credential: Optional[str]) -> None:
        if not credential:
            return
        await self.store.delete(credential)
        logger.info(f"Cleared session {mask_secret(credential)}")
