"""
Session manager for the SideQuest session client.

SideQuestSession is the object an application holds for the lifetime of its
SideQuest login. It loads the stored session once, wires the token manager,
the short code login flow and the profile and achievement synchronization
together, and exposes the current state read-only.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Tuple

from sqclient.api_client import SideQuestHttpClient
from sqclient.auth.session_storage import SessionStore, load_or_create_encryption_key
from sqclient.auth.token_manager import TokenManager
from sqclient.config import ClientConfiguration
from sqclient.device_flow import DeviceCodeFlow, LoginState
from sqclient.profile_sync import ProfileAndAchievementSync
from sqclient.state import SessionState, utc_now
from sqshared.interfaces import IHttpTransport
from sqshared.logging_config import AuditLogger
from sqshared.models import Achievement, LoginCode, User, UserAchievement

logger = logging.getLogger(__name__)


class SideQuestSession:
    """
    The current SideQuest session of an app.

    Only one session should exist per snapshot file; the application owns it
    and passes it where it is needed.
    """

    def __init__(
        self,
        client_id: str,
        store: SessionStore,
        transport: IHttpTransport,
        clock: Callable[[], datetime] = utc_now,
        audit_logger: Optional[AuditLogger] = None
    ):
        if not client_id or not client_id.strip():
            raise ValueError("Client id cannot be empty")

        self.client_id = client_id
        self.transport = transport
        audit = audit_logger or AuditLogger()

        self._state = SessionState.load(store)
        self.token_manager = TokenManager(self._state, transport, client_id, clock=clock, audit_logger=audit)
        self.profile_sync = ProfileAndAchievementSync(self._state, transport, self.token_manager, audit_logger=audit)
        self.device_flow = DeviceCodeFlow(
            self._state, transport, self.token_manager, self.profile_sync, client_id,
            clock=clock, audit_logger=audit
        )

        logger.info(f"SideQuest session ready (logged in: {self.is_logged_in})")

    @classmethod
    def from_config(cls, config: ClientConfiguration) -> 'SideQuestSession':
        """
        Create a session from the client configuration.

        Raises:
            ConfigurationError: If the configuration is incomplete
        """
        config.validate()

        data_path = config.get_data_path()
        encryption_key = load_or_create_encryption_key(data_path) if config.is_encryption_enabled() else None

        return cls(
            client_id=config.get_client_id(),
            store=SessionStore(data_path, encryption_key=encryption_key),
            transport=SideQuestHttpClient(config.get_api_base_url(), timeout=config.get_timeout()),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.transport.close()

    def add_auth_callback(self, callback: Callable[[bool], Any]) -> None:
        """
        Add callback for authentication state changes.

        Called with True when a short code login completes and with False when
        a logged in user is logged out.
        """
        self.token_manager.add_auth_callback(callback)

    # Current state

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def login_code(self) -> Optional[LoginCode]:
        return self._state.login_code

    @property
    def login_state(self) -> LoginState:
        return self.device_flow.login_state

    @property
    def user_achievements(self) -> Tuple[UserAchievement, ...]:
        return self._state.user_achievements

    @property
    def is_logged_in(self) -> bool:
        return self._state.user is not None and self._state.token is not None

    @property
    def granted_scopes(self) -> List[str]:
        token = self._state.token
        return list(token.scopes) if token else []

    # Operations

    async def get_access_token(self) -> str:
        return await self.token_manager.ensure_valid_access_token()

    async def request_login_code(self, scopes: Optional[Iterable[str]] = None) -> LoginCode:
        return await self.device_flow.request_code(scopes)

    async def check_login_code_complete(self) -> Tuple[bool, Optional[User]]:
        return await self.device_flow.check_complete()

    def clear_login_code(self) -> None:
        self.device_flow.clear_login_code()

    def logout(self) -> bool:
        return self.token_manager.logout()

    async def refresh_user_profile(self) -> User:
        return await self.profile_sync.refresh_user_profile()

    async def refresh_user_achievements(self) -> List[UserAchievement]:
        return await self.profile_sync.refresh_user_achievements()

    async def get_app_achievements(self) -> List[Achievement]:
        return await self.profile_sync.get_app_achievements()

    async def add_user_achievement(
        self,
        achievement_identifier: str,
        raise_if_exists: bool = False
    ) -> Optional[UserAchievement]:
        return await self.profile_sync.add_user_achievement(achievement_identifier, raise_if_exists)
