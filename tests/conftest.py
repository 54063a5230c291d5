"""
Shared fixtures for the SideQuest session client unit tests.
"""

from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytest

from sqclient.auth.session_storage import SessionStore
from sqclient.auth.token_manager import TokenManager
from sqclient.device_flow import DeviceCodeFlow
from sqclient.profile_sync import ProfileAndAchievementSync
from sqclient.state import SessionState
from sqshared.interfaces import IHttpTransport
from sqshared.models import AuthScopes, TokenInfo, User

CLIENT_ID = "test-client-id"
START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
USER_ID = 42


class FakeClock:
    """Controllable clock."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTransport(IHttpTransport):
    """
    In-memory transport. Responses are queued per (method, path); a queued
    exception is raised instead of returned. Unqueued requests fail the test.
    """

    def __init__(self):
        self._responses = defaultdict(deque)
        self.calls = []
        self.closed = False

    def queue(self, method: str, path: str, response: Any) -> None:
        self._responses[(method, path)].append(response)

    def calls_to(self, method: str, path: str):
        return [call for call in self.calls if call['method'] == method and call['path'] == path]

    def _respond(self, method: str, path: str, **details) -> Any:
        self.calls.append({'method': method, 'path': path, **details})

        responses = self._responses[(method, path)]
        if not responses:
            raise AssertionError(f"Unexpected request: {method} {path}")

        response = responses.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    async def get_json(self, path: str, access_token: Optional[str] = None) -> Any:
        return self._respond('GET', path, access_token=access_token)

    async def post_json(self, path: str, body: Dict[str, Any], access_token: Optional[str] = None) -> Any:
        return self._respond('POST', path, body=body, access_token=access_token)

    async def post_form(self, path: str, form: Dict[str, str]) -> Any:
        return self._respond('POST', path, form=form)

    async def close(self) -> None:
        self.closed = True


class RecordingStore(SessionStore):
    """Session store that counts successful writes."""

    def __init__(self, path, encryption_key=None):
        super().__init__(path, encryption_key=encryption_key)
        self.save_count = 0

    def save(self, snapshot) -> None:
        super().save(snapshot)
        self.save_count += 1


def make_token(
    clock_now: datetime = START_TIME,
    expires_in: Optional[int] = 3600,
    user_id: int = USER_ID,
    scopes=None,
    refresh_token: Optional[str] = "refresh-1",
    access_token: Optional[str] = "access-1",
    client_id: Optional[str] = CLIENT_ID
) -> TokenInfo:
    return TokenInfo(
        refresh_token=refresh_token,
        access_token=access_token,
        access_token_expires_at=clock_now + timedelta(seconds=expires_in) if expires_in is not None else None,
        refresh_token_expires_at=clock_now + timedelta(days=30),
        client_id=client_id,
        user_id=user_id,
        app_id=7,
        scopes=list(AuthScopes.DEFAULT) if scopes is None else scopes,
    )


def make_user(user_id: int = USER_ID, name: str = "player-one") -> User:
    return User(user_id=user_id, name=name, score_points=10)


def user_payload(user_id: int = USER_ID, name: str = "player-one") -> Dict[str, Any]:
    return {
        'users_id': user_id,
        'name': name,
        'preview_image': 'https://cdn.example/avatar.png',
        'score_points': 10,
        'profile_type': 'user',
        'tag_line': 'hello',
        'bio': None,
        'created': '2021-05-01T10:00:00Z',
    }


def token_payload(
    clock_now: datetime = START_TIME,
    user_id: int = USER_ID,
    scopes=None,
    access_token: str = "access-new"
) -> Dict[str, Any]:
    return {
        'access_token': access_token,
        'refresh_token': 'refresh-new',
        'access_token_expires_at': (clock_now + timedelta(hours=1)).isoformat(),
        'refresh_token_expires_at': (clock_now + timedelta(days=30)).isoformat(),
        'client_id': CLIENT_ID,
        'users_id': user_id,
        'apps_id': 7,
        'scopes': list(AuthScopes.DEFAULT) if scopes is None else scopes,
    }


def achievement_payload(identifier: str, user_id: int = USER_ID) -> Dict[str, Any]:
    return {
        'achievement_identifier': identifier,
        'apps_id': 7,
        'users_id': user_id,
        'name': identifier.replace('_', ' ').title(),
        'image': None,
        'icon': None,
        'created_at': '2023-01-01T00:00:00Z',
        'unlocked_at': '2024-01-01T11:00:00Z',
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def data_path(tmp_path):
    return tmp_path / "sqappapi.json"


@pytest.fixture
def store(data_path):
    return RecordingStore(data_path)


@pytest.fixture
def state(store):
    return SessionState.load(store)


@pytest.fixture
def token_manager(state, transport, clock):
    return TokenManager(state, transport, CLIENT_ID, clock=clock)


@pytest.fixture
def profile_sync(state, transport, token_manager):
    return ProfileAndAchievementSync(state, transport, token_manager)


@pytest.fixture
def device_flow(state, transport, token_manager, profile_sync, clock):
    return DeviceCodeFlow(state, transport, token_manager, profile_sync, CLIENT_ID, clock=clock)
