"""
HTTP API Client for the SideQuest session client.

This module provides the aiohttp transport used to reach the SideQuest API and
maps HTTP and network failures onto the client's exception hierarchy.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from sqclient import __version__
from sqshared.exceptions import (
    AlreadyExistsError, AuthError, DataError, ErrorCode, ProtocolError, TransportError
)
from sqshared.interfaces import IHttpTransport

logger = logging.getLogger(__name__)


class SideQuestHttpClient(IHttpTransport):
    """
    HTTP client for the SideQuest API.

    Requests are issued once; retrying a failed request is left to the caller.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip('/') + '/'
        self.timeout = ClientTimeout(total=timeout)

        self._session: Optional[ClientSession] = None

        logger.info(f"API client initialized for server: {base_url}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': f'SideQuestSessionClient/{__version__}',
                    'Accept': 'application/json'
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get_json(self, path: str, access_token: Optional[str] = None) -> Any:
        return await self._make_request('GET', path, access_token=access_token)

    async def post_json(
        self,
        path: str,
        body: Dict[str, Any],
        access_token: Optional[str] = None
    ) -> Any:
        return await self._make_request('POST', path, json_body=body, access_token=access_token)

    async def post_form(self, path: str, form: Dict[str, str]) -> Any:
        return await self._make_request('POST', path, form=form)

    async def _make_request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None
    ) -> Any:
        """
        Make an HTTP request and decode the JSON response.

        Args:
            method: HTTP method (GET, POST)
            path: API path relative to the base URL
            json_body: Request body sent as JSON
            form: Request body sent form-encoded
            access_token: Bearer token for authenticated calls

        Returns:
            Decoded JSON body, or None when the body is empty

        Raises:
            TransportError: On connection failure or timeout
            AuthError: On 401 or 403
            AlreadyExistsError: On 409
            ProtocolError: On any other non-2xx status
            DataError: If the body is not valid JSON
        """
        await self._ensure_session()

        url = urljoin(self.base_url, path.lstrip('/'))
        headers = {}
        if access_token:
            headers['Authorization'] = f'Bearer {access_token}'

        try:
            logger.debug(f"Making {method} request to {url}")

            async with self._session.request(
                method=method,
                url=url,
                json=json_body,
                data=form,
                headers=headers
            ) as response:
                text = await response.text()

                if 200 <= response.status < 300:
                    return self._decode_body(text, url)

                detail = self._get_error_detail(text) or response.reason or 'Unknown error'

                if response.status in (401, 403):
                    raise AuthError(
                        f"Authentication failed ({response.status}): {detail}",
                        error_code=ErrorCode.AUTH_REJECTED,
                        http_code=response.status
                    )

                if response.status == 409:
                    raise AlreadyExistsError(f"Resource already exists: {detail}", http_code=response.status)

                raise ProtocolError(f"Request failed ({response.status}): {detail}", http_code=response.status)

        except asyncio.TimeoutError as e:
            logger.warning(f"Request to {url} timed out")
            raise TransportError(f"Request to {url} timed out", error_code=ErrorCode.NETWORK_TIMEOUT, cause=e)

        except (ClientError, OSError) as e:
            logger.warning(f"Network error on request to {url}: {e}")
            raise TransportError(f"Network request to {url} failed: {e}", cause=e)

    @staticmethod
    def _decode_body(text: str, url: str) -> Any:
        if not text or not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise DataError(f"Response from {url} is not valid JSON", cause=e)

    @staticmethod
    def _get_error_detail(text: str) -> Optional[str]:
        """Extract error information from a response body."""
        if not text:
            return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return text.strip()[:200]

        if isinstance(data, dict):
            for key in ('message', 'error_description', 'error', 'detail'):
                if data.get(key):
                    return str(data[key])
        return text.strip()[:200]
