"""
Session state for the SideQuest session client.

SessionState owns the in-memory session snapshot and writes it through to the
session store on every change, so the file on disk always reflects the last
committed state.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqclient.auth.session_storage import SessionStore
from sqshared.models import SessionSnapshot, User, TokenInfo, LoginCode, UserAchievement

logger = logging.getLogger(__name__)

_UNSET = object()


def utc_now() -> datetime:
    """Default clock used by the session components."""
    return datetime.now(timezone.utc)


class SessionState:
    """
    Current user, token, pending login code and achievement cache.

    Components read through the properties and change state only through
    ``commit`` and ``update_access_token``; each call results in exactly one
    write to the store. The in-memory snapshot is replaced only after that
    write succeeded.
    """

    def __init__(self, store: SessionStore, snapshot: Optional[SessionSnapshot] = None):
        self._store = store
        self._snapshot = snapshot or SessionSnapshot()

    @classmethod
    def load(cls, store: SessionStore) -> 'SessionState':
        """Create the session state from the stored snapshot, or empty on first run."""
        snapshot = store.load()
        if snapshot is None:
            logger.info("No stored session, starting with an empty session")
        return cls(store, snapshot)

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def user(self) -> Optional[User]:
        return self._snapshot.user

    @property
    def token(self) -> Optional[TokenInfo]:
        return self._snapshot.token

    @property
    def login_code(self) -> Optional[LoginCode]:
        return self._snapshot.login_code

    @property
    def user_achievements(self) -> Tuple[UserAchievement, ...]:
        return tuple(self._snapshot.user_achievements)

    def has_scope(self, scope: str) -> bool:
        """Check whether the current token was granted ``scope``."""
        return self._snapshot.token is not None and self._snapshot.token.has_scope(scope)

    def commit(
        self,
        user=_UNSET,
        token=_UNSET,
        login_code=_UNSET,
        user_achievements=_UNSET
    ) -> None:
        """
        Apply the given changes and persist the result.

        Fields that are not passed keep their current value; pass None to clear.

        Raises:
            StorageError: If the snapshot cannot be written
        """
        changes = {}
        if user is not _UNSET:
            changes['user'] = user
        if token is not _UNSET:
            changes['token'] = token
        if login_code is not _UNSET:
            changes['login_code'] = login_code
        if user_achievements is not _UNSET:
            changes['user_achievements'] = list(user_achievements or [])

        snapshot = replace(self._snapshot, **changes)
        self._store.save(snapshot)
        self._snapshot = snapshot

    def update_access_token(self, access_token: str, expires_at: datetime) -> None:
        """Replace the access token and its expiry, keeping the rest of the token record."""
        if self._snapshot.token is None:
            raise ValueError("No token record to update")

        self.commit(token=replace(
            self._snapshot.token,
            access_token=access_token,
            access_token_expires_at=expires_at
        ))

    def clear(self) -> None:
        """Forget everything about the current session."""
        self.commit(user=None, token=None, login_code=None, user_achievements=[])
