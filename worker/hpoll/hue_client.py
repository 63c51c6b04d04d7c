# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Async client for the Hue remote API and its OAuth token endpoint.

Stateless apart from the shared aiohttp session: no retries, no caching.
Callers own all resilience policy and classify failures from
ProtocolError.status.
"""

import asyncio
import logging
from typing import Any, Callable, TypeVar

import aiohttp

from .hue_model import (
    APPLICATION_KEY_HEADER,
    CLIP_V2_BASE_URL,
    PATH_DEVICE,
    PATH_DEVICE_POWER,
    PATH_MOTION,
    PATH_TEMPERATURE,
    TOKEN_URL,
    BridgeResponse,
    DevicePowerResource,
    DeviceResource,
    MotionResource,
    TemperatureResource,
    TokenResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BODY_LOG_LIMIT = 500


class ProtocolError(Exception):
    """Raised for transport failures and non-2xx responses.

    status is the HTTP status code, or None when no response was received
    (timeout, connection refused) or the body could not be decoded.
    """

    def __init__(self, status: int | None, message: str):
        super().__init__(message)
        self.status = status


class HueApiClient:
    def __init__(self, client_id: str = "", client_secret: str = "",
                 timeout: float = 30.0,
                 session: aiohttp.ClientSession | None = None,
                 base_url: str = CLIP_V2_BASE_URL,
                 token_url: str = TOKEN_URL):
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")
        self._token_url = token_url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # --- resource API ---

    async def fetch_motion_sensors(
            self, access_token: str, application_key: str) -> BridgeResponse[MotionResource]:
        return await self._get_resource(
            PATH_MOTION, access_token, application_key, MotionResource.from_dict)

    async def fetch_temperature_sensors(
            self, access_token: str, application_key: str) -> BridgeResponse[TemperatureResource]:
        return await self._get_resource(
            PATH_TEMPERATURE, access_token, application_key, TemperatureResource.from_dict)

    async def fetch_devices(
            self, access_token: str, application_key: str) -> BridgeResponse[DeviceResource]:
        return await self._get_resource(
            PATH_DEVICE, access_token, application_key, DeviceResource.from_dict)

    async def fetch_device_power(
            self, access_token: str, application_key: str) -> BridgeResponse[DevicePowerResource]:
        return await self._get_resource(
            PATH_DEVICE_POWER, access_token, application_key, DevicePowerResource.from_dict)

    # --- OAuth ---

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        return await self._post_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    # --- internals ---

    async def _get_resource(self, path: str, access_token: str, application_key: str,
                            parse_item: Callable[[dict], T]) -> BridgeResponse[T]:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            APPLICATION_KEY_HEADER: application_key,
        }
        logger.debug("Requesting Hue API: %s", path)
        body = await self._request("GET", url, what=f"Hue API request for {path}",
                                   headers=headers)
        if not isinstance(body, dict):
            raise ProtocolError(None, f"Unexpected response body for {path}")
        return BridgeResponse.from_dict(body, parse_item)

    async def _post_token(self, form: dict[str, str]) -> TokenResponse:
        auth = aiohttp.BasicAuth(self._client_id, self._client_secret)
        body = await self._request("POST", self._token_url, what="Token request",
                                   data=form, headers={"Authorization": auth.encode()})
        try:
            return TokenResponse.from_dict(body)
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(None, f"Invalid token response: {e}") from e

    async def _request(self, method: str, url: str, what: str, **kwargs) -> Any:
        session = self._get_session()
        try:
            async with session.request(method, url, timeout=self._timeout, **kwargs) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text(errors="replace")
                    logger.warning("%s failed with status %d: %s",
                                   what, resp.status, text[:_BODY_LOG_LIMIT])
                    raise ProtocolError(resp.status,
                                        f"{what} failed with status {resp.status}")
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise ProtocolError(None, f"{what} returned invalid JSON") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProtocolError(None, f"{what} failed: {str(e) or type(e).__name__}") from e
