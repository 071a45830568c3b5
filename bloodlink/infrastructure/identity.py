"""
Identity/session provider

Components never cache the current user: every privileged operation awaits
``get_current_user()`` because the session can change between calls
(sign-out, account switch).
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from bloodlink.core.errors import NotAuthenticatedError
from bloodlink.core.logger import get_logger

logger = get_logger(__name__)

SessionListener = Callable[[Optional[str]], None]


class IdentityProvider(ABC):
    """Read-only view of the active session"""

    @abstractmethod
    async def get_current_user(self) -> Optional[str]:
        """Active user id, or None when signed out"""

    @abstractmethod
    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register for session changes; returns a callable that removes the listener"""

    async def require_user(self) -> str:
        """Active user id, or NotAuthenticatedError"""
        user_id = await self.get_current_user()
        if not user_id:
            raise NotAuthenticatedError("No active session")
        return user_id


class SessionIdentityProvider(IdentityProvider):
    """
    In-process session holder.

    The auth collaborator (or a test) drives it through sign_in/sign_out;
    listeners receive the new user id (None on sign-out).
    """

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners: List[SessionListener] = []

    async def get_current_user(self) -> Optional[str]:
        return self._user_id

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def sign_in(self, user_id: str) -> None:
        self._set(user_id)

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, user_id: Optional[str]) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        logger.info("Session changed", user_id=user_id)
        for listener in list(self._listeners):
            listener(user_id)
