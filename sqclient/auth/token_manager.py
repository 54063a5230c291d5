"""
Token Manager for the SideQuest session client.

This module keeps the access token usable: it hands out the stored token while
it is comfortably within its lifetime and otherwise renews it with the refresh
token. Refresh happens on demand only; there are no background tasks.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Callable, List, Any

from sqclient.state import SessionState, utc_now
from sqshared.exceptions import AuthError, ErrorCode, SideQuestError
from sqshared.interfaces import IHttpTransport
from sqshared.logging_config import AuditLogger
from sqshared.models import TokenInfo, parse_timestamp

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v2/oauth/token"

# A token this close to expiry is refreshed instead of used
REFRESH_MARGIN = timedelta(minutes=1)


class TokenManager:
    """
    Manages the access token lifecycle for the current session.

    Provides the single entry point for authenticated calls
    (``ensure_valid_access_token``), logout, and installation of a newly
    issued token record.
    """

    def __init__(
        self,
        state: SessionState,
        transport: IHttpTransport,
        client_id: str,
        clock: Callable[[], datetime] = utc_now,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.state = state
        self.transport = transport
        self.client_id = client_id
        self._clock = clock
        self._audit = audit_logger or AuditLogger()

        # Callbacks for authentication events
        self._auth_callbacks: List[Callable[[bool], Any]] = []

        logger.info("Token manager initialized")

    def add_auth_callback(self, callback: Callable[[bool], Any]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Function called with authentication status (bool)
        """
        self._auth_callbacks.append(callback)

    def notify_auth_change(self, is_authenticated: bool) -> None:
        """Notify callbacks of authentication state change."""
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    def is_access_token_valid(self) -> bool:
        """Check whether the stored access token can be used without a refresh."""
        token = self.state.token
        if token is None or not token.access_token or token.access_token_expires_at is None:
            return False
        return self._clock() < token.access_token_expires_at - REFRESH_MARGIN

    async def ensure_valid_access_token(self) -> str:
        """
        Return an access token that is valid for at least another minute.

        Returns:
            The stored access token, or a freshly refreshed one

        Raises:
            AuthError: If nobody is logged in, the refresh token is missing
                (the session is logged out first) or the refresh response
                carries no usable access token
            TransportError: If the refresh request could not be made
            ProtocolError: If the server rejected the refresh request
        """
        token = self.state.token
        if token is None:
            raise AuthError("No user is logged in")

        if self.is_access_token_valid():
            return token.access_token

        if not token.refresh_token:
            logger.warning("Access token expired and no refresh token is stored, logging out")
            self.logout(reason="refresh_token_missing")
            raise AuthError(
                "Access token expired and the refresh token is missing",
                error_code=ErrorCode.AUTH_REFRESH_TOKEN_MISSING
            )

        logger.info("Refreshing access token")
        try:
            response = await self.transport.post_form(TOKEN_PATH, {
                'grant_type': 'refresh_token',
                'refresh_token': token.refresh_token,
                'client_id': token.client_id or self.client_id,
            })
            access_token, expires_at = self._parse_refresh_response(response)
        except SideQuestError as e:
            self._audit.log_token_refresh(token.user_id, success=False, failure_reason=e.error_code.value)
            raise

        self.state.update_access_token(access_token, expires_at)
        self._audit.log_token_refresh(token.user_id)

        logger.info(f"Access token refreshed, valid until {expires_at.isoformat()}")
        return access_token

    def _parse_refresh_response(self, response: Any):
        if not isinstance(response, dict) or not response.get('access_token'):
            raise AuthError(
                "Token refresh did not return an access token",
                error_code=ErrorCode.AUTH_REFRESH_FAILED
            )

        try:
            expires_at = parse_timestamp(response.get('access_token_expires_at'))
            if expires_at is None and response.get('expires_in') is not None:
                expires_at = self._clock() + timedelta(seconds=float(response['expires_in']))
        except (TypeError, ValueError) as e:
            raise AuthError(
                "Token refresh returned an invalid expiry",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            )

        if expires_at is None:
            raise AuthError(
                "Token refresh did not return an access token expiry",
                error_code=ErrorCode.AUTH_REFRESH_FAILED
            )

        return response['access_token'], expires_at

    def install_token(self, token: TokenInfo) -> None:
        """
        Replace the token record after a successful login.

        The previous user and achievement cache belong to the replaced token and
        are cleared with it.
        """
        self.state.commit(token=token, user=None, user_achievements=[])
        logger.info(f"Installed new token for user {token.user_id}")

    def logout(self, reason: str = "requested") -> bool:
        """
        Forget the current session.

        Clears the token, user, pending login code and achievement cache in a
        single write.

        Returns:
            True if a token had been stored, including one whose login never
            finished fetching the profile
        """
        token = self.state.token
        was_logged_in = token is not None

        self.state.clear()
        self._audit.log_logout(token.user_id if token else None, reason=reason)

        if was_logged_in:
            logger.info(f"User {token.user_id} logged out")
            self.notify_auth_change(False)

        return was_logged_in
