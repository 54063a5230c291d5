"""
Short code (device code) login for the SideQuest session client.

The app requests a short code, shows the code and verification URL to the
user, and then polls ``check_complete`` until the user has approved the login
on another device, the code expires or the caller gives up.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from sqclient.auth.token_manager import TokenManager
from sqclient.profile_sync import ProfileAndAchievementSync
from sqclient.state import SessionState, utc_now
from sqshared.exceptions import DataError, InvalidStateError, LoginCodeExpiredError
from sqshared.interfaces import IHttpTransport
from sqshared.logging_config import AuditLogger
from sqshared.models import AuthScopes, LoginCode, TokenInfo, User, parse_response

logger = logging.getLogger(__name__)

GET_SHORT_CODE_PATH = "/v2/oauth/getshortcode"
CHECK_SHORT_CODE_PATH = "/v2/oauth/checkshortcode"


class LoginState(Enum):
    """Short code login states."""
    NO_REQUEST = "no_request"
    PENDING = "pending"
    EXPIRED = "expired"
    COMPLETED = "completed"


class DeviceCodeFlow:
    """Drives a short code login from request to completion."""

    def __init__(
        self,
        state: SessionState,
        transport: IHttpTransport,
        token_manager: TokenManager,
        profile_sync: ProfileAndAchievementSync,
        client_id: str,
        clock: Callable[[], datetime] = utc_now,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.state = state
        self.transport = transport
        self.token_manager = token_manager
        self.profile_sync = profile_sync
        self.client_id = client_id
        self._clock = clock
        self._audit = audit_logger or AuditLogger()

        # Not persisted; a restarted app may poll right away
        self._last_poll: Optional[datetime] = None

    @property
    def login_state(self) -> LoginState:
        login_code = self.state.login_code
        if login_code is None:
            return LoginState.COMPLETED if self.state.user is not None else LoginState.NO_REQUEST
        if self._clock() > login_code.expires_at:
            return LoginState.EXPIRED
        return LoginState.PENDING

    async def request_code(self, scopes: Optional[Iterable[str]] = None) -> LoginCode:
        """
        Start a short code login, replacing any login already in progress.

        Args:
            scopes: Scopes to request, defaults to profile read and
                achievement read and write

        Returns:
            The login code to show to the user

        Raises:
            DataError: If the server returned no login code
        """
        requested: List[str] = list(dict.fromkeys(scopes)) if scopes else list(AuthScopes.DEFAULT)

        logger.info(f"Requesting short code login for scopes: {', '.join(requested)}")
        payload = await self.transport.post_json(GET_SHORT_CODE_PATH, {
            'client_id': self.client_id,
            'scopes': requested,
        })
        login_code = parse_response(LoginCode, payload, "Login code")

        self.state.commit(login_code=login_code)
        # The first check waits a full interval after the code was issued
        self._last_poll = self._clock()
        logger.info(f"Short code issued, expires at {login_code.expires_at.isoformat()}")
        return login_code

    async def check_complete(self) -> Tuple[bool, Optional[User]]:
        """
        Check whether the user has approved the pending login.

        Polls faster than the interval the server asked for are answered
        locally with ``(False, None)``.

        Returns:
            ``(True, user)`` once the login completed, ``(False, None)`` while
            it is still pending

        Raises:
            InvalidStateError: If no login is in progress
            LoginCodeExpiredError: If the login code expired; the pending
                login is discarded
            ConsistencyError: If the profile does not belong to the issued token
            AchievementSyncError: If the login completed but the achievement
                refresh that follows it failed
        """
        login_code = self.state.login_code
        if login_code is None:
            raise InvalidStateError("No short code login is in progress")

        now = self._clock()
        if now > login_code.expires_at:
            logger.info("Short code expired before the login was completed")
            self.clear_login_code()
            raise LoginCodeExpiredError()

        if self._last_poll is not None and (now - self._last_poll).total_seconds() < login_code.interval:
            return False, None

        payload = await self.transport.post_json(CHECK_SHORT_CODE_PATH, {
            'code': login_code.code,
            'device_id': login_code.device_id,
        })

        if payload is None:
            self._last_poll = now
            logger.debug("Short code login not approved yet")
            return False, None

        token = parse_response(TokenInfo, payload, "Token")
        if not token.access_token:
            raise DataError("Short code check returned a token without an access token")

        self.token_manager.install_token(token)

        user = await self.profile_sync.fetch_profile()
        self.profile_sync.check_profile_matches_token(user)

        self.state.commit(user=user, login_code=None)
        self._last_poll = None

        logger.info(f"Short code login completed for user {user.user_id}")
        self._audit.log_login(user.user_id, token.scopes)
        self.token_manager.notify_auth_change(True)

        await self.profile_sync.refresh_achievements_if_scoped(user)
        return True, user

    def clear_login_code(self) -> None:
        """Discard the pending login without contacting the server."""
        self._last_poll = None
        if self.state.login_code is not None:
            self.state.commit(login_code=None)
            logger.info("Short code login cancelled")
