"""
Core interfaces for the SideQuest session client.

This module defines the abstract boundary between the session components and
the transport used to reach the SideQuest API.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class IHttpTransport(ABC):
    """
    Interface for issuing requests against the SideQuest API.

    Implementations return the decoded JSON body, or None when the response
    body is empty. Failures are raised as the exceptions defined in
    ``sqshared.exceptions``: TransportError for network problems, AuthError
    for 401/403, AlreadyExistsError for 409, ProtocolError for any other
    non-2xx status and DataError for a body that cannot be decoded.
    """

    @abstractmethod
    async def get_json(self, path: str, access_token: Optional[str] = None) -> Any:
        """Issue a GET request, authenticated when an access token is given."""
        pass

    @abstractmethod
    async def post_json(
        self,
        path: str,
        body: Dict[str, Any],
        access_token: Optional[str] = None
    ) -> Any:
        """Issue a POST request with a JSON body."""
        pass

    @abstractmethod
    async def post_form(self, path: str, form: Dict[str, str]) -> Any:
        """Issue an unauthenticated POST request with a form-encoded body."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release any resources held by the transport."""
        pass
