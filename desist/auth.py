"""
Desist Auth - Remote Session Invalidation
Signs the user out of the backend and reads the locally stored session.

The session lives in the session store under the "session" key, in the
shape the backend hands out: {"access_token": ..., "user_id": ...,
"expires_at": ...}.
"""

import asyncio
import logging
import requests
from typing import Optional

from .errors import PermissionDeniedError, TransientIOError
from .interfaces import PersistentKeyValueStore, Session

logger = logging.getLogger(__name__)

SESSION_KEY = "session"
LOGOUT_PATH = "/auth/v1/logout"
AUTH_TIMEOUT = 5


class HttpAuthService:
    """Backend session handling over HTTP (Supabase-compatible logout)."""

    def __init__(
        self,
        session_store: PersistentKeyValueStore,
        auth_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        self.session_store = session_store
        self.auth_url = auth_url.rstrip("/") if auth_url else None
        self.api_key = api_key

    async def get_current_session(self) -> Optional[Session]:
        data = await self.session_store.get(SESSION_KEY)
        if not data or not data.get("access_token"):
            return None
        return Session(
            access_token=data["access_token"],
            user_id=data.get("user_id"),
            expires_at=data.get("expires_at"),
        )

    async def sign_out(self) -> bool:
        """
        Invalidate the remote session.

        Returns:
            True if the backend confirmed, False if there was nothing to sign out

        Raises:
            TransientIOError: network failure or server error
            PermissionDeniedError: the backend refused the token
        """
        session = await self.get_current_session()
        if session is None:
            logger.info("No active session to sign out")
            return False
        if not self.auth_url:
            logger.warning("No auth_url configured, remote session left to expire")
            return False

        headers = {"Authorization": f"Bearer {session.access_token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            response = await asyncio.to_thread(
                requests.post,
                f"{self.auth_url}{LOGOUT_PATH}",
                headers=headers,
                timeout=AUTH_TIMEOUT
            )
        except requests.RequestException as e:
            raise TransientIOError(f"Sign-out request failed: {e}") from e

        if response.status_code in (401, 403):
            raise PermissionDeniedError(f"Sign-out refused: HTTP {response.status_code}")
        if not response.ok:
            raise TransientIOError(f"Sign-out failed: HTTP {response.status_code}")

        logger.info("Remote session invalidated")
        return True
