"""
Profile and achievement synchronization for the SideQuest session client.

This module fetches the logged in user's profile, keeps the cached list of the
user's unlocked achievements current and grants achievements. Every call goes
through the token manager so an expired access token is refreshed first.
"""

import logging
from typing import List, Optional

from sqclient.auth.token_manager import TokenManager
from sqclient.state import SessionState
from sqshared.exceptions import (
    AchievementSyncError, AlreadyExistsError, AuthError, ConsistencyError,
    DataError, ErrorCode, SideQuestError
)
from sqshared.interfaces import IHttpTransport
from sqshared.logging_config import AuditLogger
from sqshared.models import (
    Achievement, AuthScopes, User, UserAchievement, parse_response, parse_response_list
)

logger = logging.getLogger(__name__)

USER_PROFILE_PATH = "/v2/users/me"
USER_ACHIEVEMENTS_PATH = "/v2/users/me/apps/me/achievements"
APP_ACHIEVEMENTS_PATH = "/v2/apps/me/achievements"


class ProfileAndAchievementSync:
    """Synchronizes the user profile and achievements with the SideQuest API."""

    def __init__(
        self,
        state: SessionState,
        transport: IHttpTransport,
        token_manager: TokenManager,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.state = state
        self.transport = transport
        self.token_manager = token_manager
        self._audit = audit_logger or AuditLogger()

    async def fetch_profile(self) -> User:
        """
        Fetch the profile of the user the current token belongs to.

        Nothing is stored; see ``refresh_user_profile``.

        Raises:
            AuthError: If nobody is logged in or the token cannot be refreshed
            DataError: If the response holds no usable profile
        """
        if self.state.token is None:
            raise AuthError("No user is logged in")

        access_token = await self.token_manager.ensure_valid_access_token()
        payload = await self.transport.get_json(USER_PROFILE_PATH, access_token=access_token)
        return parse_response(User, payload, "User profile")

    async def refresh_user_profile(self) -> User:
        """
        Fetch the user profile, store it and refresh the achievement cache.

        Returns:
            The refreshed user

        Raises:
            ConsistencyError: If the profile belongs to a different user than
                the token; the stored user is left unchanged
            AchievementSyncError: If the profile was stored but the achievement
                refresh that follows it failed
        """
        user = await self.fetch_profile()
        self.check_profile_matches_token(user)

        self.state.commit(user=user)
        logger.info(f"User profile refreshed for user {user.user_id}")

        await self.refresh_achievements_if_scoped(user)
        return user

    def check_profile_matches_token(self, user: User) -> None:
        token = self.state.token
        if token is None or token.user_id != user.user_id:
            expected = token.user_id if token else None
            raise ConsistencyError(
                f"User profile for user {user.user_id} does not match the token issued for user {expected}",
                expected_user_id=expected,
                actual_user_id=user.user_id
            )

    async def refresh_achievements_if_scoped(self, user: User) -> None:
        """
        Refresh the achievement cache when the token may read achievements.

        Raises:
            AchievementSyncError: Wrapping the failure of the refresh
        """
        if not self.state.has_scope(AuthScopes.READ_APP_ACHIEVEMENTS):
            return

        try:
            await self.refresh_user_achievements()
        except SideQuestError as e:
            logger.warning(f"Achievement refresh for user {user.user_id} failed: {e}")
            raise AchievementSyncError(
                f"Achievements could not be refreshed: {e.message}",
                user=user,
                cause=e
            ) from e

    async def refresh_user_achievements(self) -> List[UserAchievement]:
        """
        Replace the cached list of the user's achievements with the server's.

        Returns:
            The user's unlocked achievements
        """
        access_token = await self.token_manager.ensure_valid_access_token()
        payload = await self.transport.get_json(USER_ACHIEVEMENTS_PATH, access_token=access_token)
        achievements = parse_response_list(UserAchievement, payload, "user achievements")

        self.state.commit(user_achievements=achievements)
        logger.debug(f"Cached {len(achievements)} user achievements")
        return achievements

    async def get_app_achievements(self) -> List[Achievement]:
        """Fetch every achievement defined for the app. The result is not cached."""
        access_token = await self.token_manager.ensure_valid_access_token()
        payload = await self.transport.get_json(APP_ACHIEVEMENTS_PATH, access_token=access_token)
        return parse_response_list(Achievement, payload, "app achievements")

    async def add_user_achievement(
        self,
        achievement_identifier: str,
        raise_if_exists: bool = False
    ) -> Optional[UserAchievement]:
        """
        Grant an achievement to the logged in user.

        Args:
            achievement_identifier: Identifier of the achievement to grant
            raise_if_exists: Raise AlreadyExistsError when the user already has
                the achievement instead of treating it as granted

        Returns:
            The granted achievement as listed for the user, or None when the
            token may not read achievements

        Raises:
            AlreadyExistsError: If the user already has it and ``raise_if_exists``
            DataError: If the grant is not reflected in the user's achievements
        """
        if not achievement_identifier or not achievement_identifier.strip():
            raise ValueError("Achievement identifier cannot be empty")

        access_token = await self.token_manager.ensure_valid_access_token()
        user_id = self.state.user.user_id if self.state.user else None

        already_existed = False
        try:
            await self.transport.post_json(
                USER_ACHIEVEMENTS_PATH,
                {'achievement_identifier': achievement_identifier, 'achieved': True},
                access_token=access_token
            )
        except AlreadyExistsError:
            if raise_if_exists:
                raise
            already_existed = True
            logger.info(f"Achievement {achievement_identifier} was already granted")

        self._audit.log_achievement_granted(user_id, achievement_identifier, already_existed=already_existed)

        if not self.state.has_scope(AuthScopes.READ_APP_ACHIEVEMENTS):
            return None

        achievements = await self.refresh_user_achievements()
        for achievement in achievements:
            if achievement.matches(achievement_identifier):
                return achievement

        raise DataError(
            f"Achievement {achievement_identifier} was granted but not confirmed",
            error_code=ErrorCode.DATA_NOT_CONFIRMED
        )
