#!/usr/bin/env python3
"""
Unit tests for SideQuestSession.

Tests the session manager end to end with an in-memory transport: restoring
a stored session, a complete short code login, and logout.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from sqclient.api_client import SideQuestHttpClient
from sqclient.auth.session_storage import SessionStore
from sqclient.config import ClientConfiguration
from sqclient.device_flow import CHECK_SHORT_CODE_PATH, GET_SHORT_CODE_PATH, LoginState
from sqclient.profile_sync import USER_ACHIEVEMENTS_PATH, USER_PROFILE_PATH
from sqclient.session import SideQuestSession
from sqshared.exceptions import AuthError, ConfigurationError
from sqshared.models import AuthScopes, SessionSnapshot

from conftest import CLIENT_ID, achievement_payload, make_token, make_user, token_payload, user_payload


@pytest.fixture
def session(store, transport, clock):
    return SideQuestSession(CLIENT_ID, store, transport, clock=clock)


class TestSideQuestSession:
    """Test the session manager."""

    def test_new_session_is_logged_out(self, session):
        assert session.is_logged_in is False
        assert session.user is None
        assert session.login_code is None
        assert session.user_achievements == ()
        assert session.granted_scopes == []
        assert session.login_state == LoginState.NO_REQUEST

    def test_stored_session_is_restored(self, data_path, transport, clock):
        SessionStore(data_path).save(SessionSnapshot(user=make_user(), token=make_token(clock())))

        session = SideQuestSession(CLIENT_ID, SessionStore(data_path), transport, clock=clock)

        assert session.is_logged_in is True
        assert session.user.user_id == 42
        assert set(session.granted_scopes) == set(AuthScopes.DEFAULT)

    def test_corrupt_session_starts_logged_out(self, data_path, transport, clock):
        data_path.write_text("{broken")

        session = SideQuestSession(CLIENT_ID, SessionStore(data_path), transport, clock=clock)

        assert session.is_logged_in is False

    def test_blank_client_id_is_rejected(self, store, transport):
        with pytest.raises(ValueError):
            SideQuestSession("  ", store, transport)

    @pytest.mark.asyncio
    async def test_complete_login_and_logout(self, session, transport, clock, data_path):
        events = []
        session.add_auth_callback(events.append)

        transport.queue('POST', GET_SHORT_CODE_PATH, {
            'code': 'ABCD',
            'device_id': 'device-1',
            'expires_at': (clock() + timedelta(minutes=10)).isoformat(),
            'interval': 5,
            'verification_url': 'https://sdq.st/link',
        })
        transport.queue('POST', CHECK_SHORT_CODE_PATH, None)
        transport.queue('POST', CHECK_SHORT_CODE_PATH, token_payload(clock()))
        transport.queue('GET', USER_PROFILE_PATH, user_payload())
        transport.queue('GET', USER_ACHIEVEMENTS_PATH, [achievement_payload("first_win")])

        login_code = await session.request_login_code()
        assert session.login_code == login_code
        assert session.login_state == LoginState.PENDING

        assert await session.check_login_code_complete() == (False, None)
        assert transport.calls_to('POST', CHECK_SHORT_CODE_PATH) == []
        clock.advance(login_code.interval)
        assert await session.check_login_code_complete() == (False, None)
        clock.advance(login_code.interval)
        completed, user = await session.check_login_code_complete()

        assert completed is True
        assert session.is_logged_in
        assert session.user == user
        assert session.login_code is None
        assert len(session.user_achievements) == 1
        assert await session.get_access_token() == "access-new"

        restored = SideQuestSession(CLIENT_ID, SessionStore(data_path), transport, clock=clock)
        assert restored.user == user

        assert session.logout() is True
        assert session.is_logged_in is False
        assert events == [True, False]

        with pytest.raises(AuthError):
            await session.get_access_token()

    @pytest.mark.asyncio
    async def test_context_manager_closes_transport(self, session, transport):
        async with session:
            pass

        assert transport.closed

    @pytest.mark.asyncio
    async def test_operations_delegate(self, session, transport, clock):
        session.token_manager.install_token(make_token(clock()))
        transport.queue('GET', USER_PROFILE_PATH, user_payload(name="refreshed"))
        transport.queue('GET', USER_ACHIEVEMENTS_PATH, None)
        transport.queue('GET', '/v2/apps/me/achievements', [{'achievement_identifier': 'first_win'}])
        transport.queue('POST', USER_ACHIEVEMENTS_PATH, None)
        transport.queue('GET', USER_ACHIEVEMENTS_PATH, [achievement_payload("first_win")])

        user = await session.refresh_user_profile()
        app_achievements = await session.get_app_achievements()
        granted = await session.add_user_achievement("first_win")

        assert user.name == "refreshed"
        assert app_achievements[0].achievement_identifier == "first_win"
        assert granted.achievement_identifier == "first_win"

    def test_clear_login_code_without_request(self, session):
        session.clear_login_code()

        assert session.login_code is None


class TestSessionFromConfig:
    """Test creating a session from configuration."""

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch):
        for name in ('SQ_CLIENT_ID', 'SQ_DATA_DIR', 'SQ_DATA_FILE', 'SQ_TEST_MODE', 'SQ_ENCRYPT_DATA', 'SQ_AUDIT_FILE'):
            monkeypatch.delenv(name, raising=False)

    @pytest.mark.asyncio
    async def test_from_config(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "missing.conf"), overrides={
            'client_id': 'client',
            'data_dir': str(tmp_path),
            'test_mode': False,
        })

        async with SideQuestSession.from_config(config) as session:
            assert isinstance(session.transport, SideQuestHttpClient)
            assert session.transport.base_url == "https://api.sidequestvr.com/"
            assert session.client_id == "client"
            assert session.is_logged_in is False

    def test_from_invalid_config(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "missing.conf"), overrides={'data_dir': str(tmp_path)})

        with pytest.raises(ConfigurationError):
            SideQuestSession.from_config(config)

    @pytest.mark.asyncio
    async def test_from_config_with_encryption(self, tmp_path, monkeypatch):
        key_loader = Mock(return_value=b"A" * 43 + b"=")
        monkeypatch.setattr("sqclient.session.load_or_create_encryption_key", key_loader)
        config = ClientConfiguration(str(tmp_path / "missing.conf"), overrides={
            'client_id': 'client',
            'data_dir': str(tmp_path),
            'encrypt': True,
        })

        async with SideQuestSession.from_config(config) as session:
            assert session.is_logged_in is False

        key_loader.assert_called_once_with(tmp_path / "sqappapi.json")
