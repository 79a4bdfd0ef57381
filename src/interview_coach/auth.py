"""
Identity capability.

Resolves the opaque identifier of the current user. The CLI is a
single-user deployment, so the identifier comes from configuration.
"""

import getpass
import logging
from abc import ABC, abstractmethod

from interview_coach.config import Settings, get_settings

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    """Abstract source of the current user's identity."""

    @abstractmethod
    async def get_current_user_id(self) -> str | None:
        """Return the current user's id, or None when nobody is signed in."""
        ...


class StaticIdentityProvider(IdentityProvider):
    """Always returns the same identifier (tests, embedding)."""

    def __init__(self, user_id: str | None) -> None:
        self._user_id = user_id

    async def get_current_user_id(self) -> str | None:
        return self._user_id


class SettingsIdentityProvider(IdentityProvider):
    """
    Uses `INTERVIEW_COACH_USER_ID`, falling back to the OS login name.

    The fallback can be disabled for deployments that must not guess.
    """

    def __init__(self, settings: Settings | None = None, *, use_login_fallback: bool = True) -> None:
        self._settings = settings or get_settings()
        self._use_login_fallback = use_login_fallback

    async def get_current_user_id(self) -> str | None:
        if self._settings.user_id:
            return self._settings.user_id
        if not self._use_login_fallback:
            return None
        try:
            return getpass.getuser()
        except (KeyError, OSError) as e:
            logger.warning(f"Could not determine login name: {e}")
            return None
