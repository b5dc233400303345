"""HTTP transport used to reach ESP devices."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

import aiohttp

from ..config import DeviceConfig

LOGGER = logging.getLogger(__name__)


class DeviceResponseError(RuntimeError):
    """Raised when a device answers with an explicit error."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class DeviceClient:
    """Request/response client for a single device endpoint."""

    def __init__(
        self,
        config: DeviceConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config

        self._base_url = self.config.url.rstrip("/")
        self._headers: dict[str, str] = {}
        if self.config.api_key:
            self._headers["X-Api-Key"] = self.config.api_key

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch(self, path: str, *, timeout: float = 5.0) -> Any:
        """GET a JSON document from the device.

        Raises:
            asyncio.TimeoutError: If the device does not answer within ``timeout``
            aiohttp.ClientError: If the device cannot be reached
            DeviceResponseError: If the device reports an error
        """

        return await self._request("GET", path, None, timeout)

    async def send(
        self,
        path: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        timeout: float = 5.0,
    ) -> Any:
        """POST a JSON command and return the device acknowledgement."""

        return await self._request("POST", path, payload, timeout)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Mapping[str, Any]],
        timeout: float,
    ) -> Any:
        session = await self._ensure_session()
        url = f"{self._base_url}/{path.lstrip('/')}"

        try:
            async with asyncio.timeout(timeout):
                async with session.request(
                    method,
                    url,
                    json=dict(payload) if payload is not None else None,
                    headers=self._headers,
                ) as response:
                    body = await _read_body(response)
                    if response.status >= 400:
                        raise DeviceResponseError(
                            _error_message(body) or response.reason or "error",
                            status=response.status,
                        )
        except asyncio.TimeoutError:
            LOGGER.debug(
                "Device request timed out after %.1fs (%s %s)", timeout, method, url
            )
            raise

        if isinstance(body, dict) and body.get("error"):
            raise DeviceResponseError(_error_message(body), status=response.status)
        return body

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None)
            )
            self._owns_session = True
        return self._session


async def _read_body(response: aiohttp.ClientResponse) -> Any:
    text = await response.text()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        message = body.get("message")
        if message:
            return str(message)
    if isinstance(body, str):
        return body.strip()
    return ""
