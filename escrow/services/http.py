"""
HTTP Service Client Base

Shared request handling for every external collaborator.

GUARANTEES:
===========
1. Transport failures become ServiceUnavailable, never raw httpx errors
2. Non-2xx responses become ServiceUnavailable carrying the status
3. Undecodable bodies become MalformedState
"""

from __future__ import annotations
from typing import Any, Optional
import logging

import httpx

from ..errors import MalformedState, ServiceUnavailable

logger = logging.getLogger(__name__)


class ServiceClient:
    """One client per external service; a fresh connection per request."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = "ShieldedEscrow/1.0"
    ):
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._transport = transport
        self._user_agent = user_agent

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}" if path else self._base_url

    async def _request(
        self,
        method: str,
        path: str = "",
        json: Any = None,
        timeout: Optional[float] = None
    ) -> httpx.Response:
        url = self._url(path)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout if timeout is None else timeout,
                transport=self._transport,
            ) as client:
                return await client.request(
                    method,
                    url,
                    json=json,
                    headers={'User-Agent': self._user_agent},
                    follow_redirects=True,
                )
        except httpx.TimeoutException:
            raise ServiceUnavailable(self.service_name, f"{method} {url} timed out")
        except httpx.TransportError as e:
            raise ServiceUnavailable(self.service_name, f"{method} {url} failed: {e}")

    def _check(self, response: httpx.Response) -> httpx.Response:
        if not response.is_success:
            raise ServiceUnavailable(
                self.service_name,
                f"HTTP {response.status_code}",
                status=response.status_code,
            )
        return response

    def _json(self, response: httpx.Response) -> Any:
        self._check(response)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedState(f"{self.service_name} returned invalid JSON: {e}")

    async def _get_json(self, path: str = "") -> Any:
        return self._json(await self._request('GET', path))

    async def _post_json(
        self,
        path: str = "",
        payload: Any = None,
        timeout: Optional[float] = None
    ) -> Any:
        return self._json(await self._request('POST', path, json=payload, timeout=timeout))
