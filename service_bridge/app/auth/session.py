"""
Session authentication for Bridge Service routes.
"""

from typing import TYPE_CHECKING

from fastapi import Request

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_user_context
from .models import UserSession

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..cache.cache_provider import CacheProvider


class SessionAuthenticator:
    """Resolves the caller's session from the session header."""

    def __init__(self, cache_provider: "CacheProvider", session_header: str = "Bridge-Session"):
        self.cache_provider = cache_provider
        self.session_header = session_header
        self.logger = get_logger("bridge.auth.session")

    async def authenticate_request(self, request: Request) -> UserSession:
        """Return the signed-in session or raise AuthenticationError."""
        session_token = request.headers.get(self.session_header)
        if not session_token:
            raise AuthenticationError()

        session = await self.cache_provider.get_user_session(session_token)
        if session is None or not session.authenticated:
            self.logger.info("Rejected request with unknown session")
            raise AuthenticationError()
        if not session.app_id:
            self.logger.info("Rejected session without an app", user_id=session.id)
            raise AuthenticationError()

        set_user_context(user_id=session.id, app_id=session.app_id)
        request.state.session = session
        return session
