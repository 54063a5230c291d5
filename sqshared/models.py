"""
Core data models for the SideQuest session client.

This module defines the data structures exchanged with the SideQuest API and
persisted in the local session snapshot: the user profile, token information,
short code login requests and achievements.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Type, TypeVar, Union

from .exceptions import DataError, ErrorCode

T = TypeVar('T')

# RFC 8628 default when the server omits a polling interval
DEFAULT_POLL_INTERVAL_SECONDS = 5


class AuthScopes:
    """Scopes that can be requested for a user."""

    # Basic user profile information excluding email address
    READ_BASIC_PROFILE = "user.basic_profile.read"
    READ_APP_ACHIEVEMENTS = "user.app_achievements.read"
    WRITE_APP_ACHIEVEMENTS = "user.app_achievements.write"

    DEFAULT = [READ_BASIC_PROFILE, READ_APP_ACHIEVEMENTS, WRITE_APP_ACHIEVEMENTS]


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """
    Parse a timestamp from the API or the snapshot into an aware UTC datetime.

    Accepts ISO-8601 strings (with or without a trailing ``Z``), epoch seconds
    or milliseconds, and datetimes. Naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime for the snapshot file."""
    return value.isoformat() if value else None


def _serialize(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: format_timestamp(value) if isinstance(value, datetime) else value
        for key, value in data.items()
    }


@dataclass
class User:
    """Basic profile information for a SideQuest user."""
    user_id: int
    name: Optional[str] = None
    preview_image: Optional[str] = None
    score_points: int = 0
    profile_type: Optional[str] = None
    tag_line: Optional[str] = None
    bio: Optional[str] = None
    created: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            user_id=int(data['users_id']),
            name=data.get('name'),
            preview_image=data.get('preview_image'),
            score_points=int(data.get('score_points') or 0),
            profile_type=data.get('profile_type'),
            tag_line=data.get('tag_line'),
            bio=data.get('bio'),
            created=parse_timestamp(data.get('created')),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = _serialize(asdict(self))
        data['users_id'] = data.pop('user_id')
        return data


@dataclass
class TokenInfo:
    """
    Token information issued for a user.

    An access token without an expiry is never considered valid.
    """
    refresh_token: Optional[str] = None
    access_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    client_id: Optional[str] = None
    user_id: int = 0
    app_id: int = 0
    scopes: List[str] = field(default_factory=list)

    def __post_init__(self):
        # Scope values are unique, order carries no meaning
        self.scopes = list(dict.fromkeys(self.scopes or []))

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenInfo':
        scopes = data.get('scopes') or []
        if isinstance(scopes, str):
            scopes = scopes.split()

        return cls(
            refresh_token=data.get('refresh_token'),
            access_token=data.get('access_token'),
            access_token_expires_at=parse_timestamp(data.get('access_token_expires_at')),
            refresh_token_expires_at=parse_timestamp(data.get('refresh_token_expires_at')),
            client_id=data.get('client_id'),
            user_id=int(data.get('users_id') or 0),
            app_id=int(data.get('apps_id') or 0),
            scopes=list(scopes),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = _serialize(asdict(self))
        data['users_id'] = data.pop('user_id')
        data['apps_id'] = data.pop('app_id')
        return data


@dataclass
class LoginCode:
    """A short code login request that is waiting for the user to approve it."""
    code: str
    device_id: str
    expires_at: datetime
    interval: int = DEFAULT_POLL_INTERVAL_SECONDS
    verification_url: Optional[str] = None

    def __post_init__(self):
        if not self.code:
            raise ValueError("Login code cannot be empty")
        if not self.device_id:
            raise ValueError("Device id cannot be empty")
        if self.expires_at is None:
            raise ValueError("Login code expiry cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoginCode':
        interval = data.get('interval')
        return cls(
            code=data['code'],
            device_id=data['device_id'],
            expires_at=parse_timestamp(data['expires_at']),
            interval=int(interval) if interval is not None else DEFAULT_POLL_INTERVAL_SECONDS,
            verification_url=data.get('verification_url'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class Achievement:
    """An achievement defined for the app."""
    achievement_identifier: str
    app_id: int = 0
    name: Optional[str] = None
    image: Optional[str] = None
    icon: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.achievement_identifier:
            raise ValueError("Achievement identifier cannot be empty")

    def matches(self, identifier: str) -> bool:
        """Identifiers are matched case-insensitively."""
        return self.achievement_identifier.casefold() == identifier.casefold()

    @classmethod
    def _fields_from_dict(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'achievement_identifier': data['achievement_identifier'],
            'app_id': int(data.get('apps_id') or 0),
            'name': data.get('name'),
            'image': data.get('image'),
            'icon': data.get('icon'),
            'created_at': parse_timestamp(data.get('created_at')),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Achievement':
        return cls(**cls._fields_from_dict(data))

    def to_dict(self) -> Dict[str, Any]:
        data = _serialize(asdict(self))
        data['apps_id'] = data.pop('app_id')
        return data


@dataclass
class UserAchievement(Achievement):
    """An achievement unlocked by a user."""
    user_id: int = 0
    unlocked_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserAchievement':
        fields = cls._fields_from_dict(data)
        fields['user_id'] = int(data.get('users_id') or 0)
        fields['unlocked_at'] = parse_timestamp(data.get('unlocked_at'))
        return cls(**fields)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['users_id'] = data.pop('user_id')
        return data


@dataclass
class SessionSnapshot:
    """Everything persisted about the current session."""
    user: Optional[User] = None
    token: Optional[TokenInfo] = None
    login_code: Optional[LoginCode] = None
    user_achievements: List[UserAchievement] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return (
            self.user is None
            and self.token is None
            and self.login_code is None
            and not self.user_achievements
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionSnapshot':
        if not isinstance(data, dict):
            raise ValueError("Session snapshot must be a JSON object")

        user = data.get('user')
        token = data.get('token')
        login_code = data.get('login_code')

        return cls(
            user=User.from_dict(user) if user else None,
            token=TokenInfo.from_dict(token) if token else None,
            login_code=LoginCode.from_dict(login_code) if login_code else None,
            user_achievements=[
                UserAchievement.from_dict(item) for item in data.get('user_achievements') or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user': self.user.to_dict() if self.user else None,
            'token': self.token.to_dict() if self.token else None,
            'login_code': self.login_code.to_dict() if self.login_code else None,
            'user_achievements': [item.to_dict() for item in self.user_achievements],
        }


def parse_response(model: Type[T], payload: Any, description: str) -> T:
    """
    Build a model from an API response body.

    Raises:
        DataError: If the body is empty or does not describe a valid ``model``
    """
    if payload is None:
        raise DataError(f"{description} could not be retrieved", error_code=ErrorCode.DATA_EMPTY_RESPONSE)
    if not isinstance(payload, dict):
        raise DataError(f"Unexpected {description} response format")

    try:
        return model.from_dict(payload)
    except (KeyError, ValueError, TypeError) as e:
        raise DataError(f"Invalid {description} in response: {e}", cause=e)


def parse_response_list(model: Type[T], payload: Any, description: str) -> List[T]:
    """Build a list of models from an API response body; an empty body is an empty list."""
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise DataError(f"Unexpected {description} response format")

    try:
        return [model.from_dict(item) for item in payload]
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise DataError(f"Invalid {description} in response: {e}", cause=e)
