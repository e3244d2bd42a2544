"""Minimal Home Assistant REST client."""
import aiohttp
import asyncio
import certifi
import json
import logging
import ssl
from aiohttp import ClientSession
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .const import (
    LIGHT_DOMAIN,
    MAX_RETRIES,
    REQUEST_TIMEOUT,
    RETRY_DELAY,
    SCENE_DOMAIN,
    SERVICE_TIMEOUT,
)
from .models import LightState, SceneEntity, ServiceOutcome
from .settings import HassSettings

_LOGGER = logging.getLogger(__name__)

# Rendered server-side; device_attr() returns None for entities without a device
_DEVICE_INFO_TEMPLATE = (
    "{%- set e = '__ENTITY__' -%}"
    "{{ {'manufacturer': device_attr(e, 'manufacturer'),"
    " 'model': device_attr(e, 'model'),"
    " 'identifiers': (device_attr(e, 'identifiers') or []) | list} | tojson }}"
)


class HassError(Exception):
    """Base error for controller access."""


class NotConfigured(HassError):
    """URL/token missing or rejected by the controller."""


class CannotConnect(HassError):
    """Transport failure after exhausting retries."""


class ApiError(HassError):
    """Controller answered with a non-success status."""

    def __init__(self, status: int, message: str):
        super().__init__(f"{message} (HTTP {status})")
        self.status = status


@dataclass
class ApiResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        if not self.text:
            return None
        return json.loads(self.text)


class HassClient:
    def __init__(self, settings: HassSettings):
        self._settings = settings
        self._session: aiohttp.ClientSession | None = None
        self._ssl_context: ssl.SSLContext | bool | None = None

    @classmethod
    async def create(cls, settings: HassSettings):
        """Async-safe constructor."""
        self = cls(settings)
        if settings.verify_ssl:
            self._ssl_context = ssl.create_default_context(cafile=certifi.where())
        else:
            self._ssl_context = False
        await self._init_session()
        return self

    async def _init_session(self):
        """Initialize aiohttp session with SSL context."""
        # Close existing session if already open (reconfigure)
        if self._session and not self._session.closed:
            await self._session.close()

        connector = aiohttp.TCPConnector(ssl=self._ssl_context)
        self._session = ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT),
        )

    async def close(self):
        """Gracefully close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def settings(self) -> HassSettings:
        return self._settings

    async def reconfigure(self, settings: HassSettings):
        self._settings = settings
        await self._init_session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, endpoint: str, payload: Any = None) -> ApiResponse:
        """Send one request, retrying on 5xx and transport errors."""
        if not self._settings.configured:
            raise NotConfigured(
                "Home Assistant not configured. Use the 'scene_configure' tool to set URL and token."
            )
        if self._session is None or self._session.closed:
            await self._init_session()

        url = f"{self._settings.url}{endpoint}"
        body = json.dumps(payload) if payload is not None else None
        last_error: Exception | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                async with self._session.request(method, url, headers=self._headers(), data=body) as resp:
                    text = await resp.text()
                    result = ApiResponse(resp.status, text)
                _LOGGER.debug("%s %s -> %s (attempt %s)", method, endpoint, result.status, attempt)
                if result.status >= 500 and attempt < MAX_RETRIES:
                    await asyncio.sleep(RETRY_DELAY * attempt)
                    continue
                if result.status in (401, 403):
                    raise NotConfigured(f"Home Assistant rejected the access token (HTTP {result.status})")
                return result
            except (aiohttp.ClientError, asyncio.TimeoutError) as ex:
                last_error = ex
                _LOGGER.debug("%s %s failed on attempt %s: %s", method, endpoint, attempt, ex)
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(RETRY_DELAY * attempt)

        raise CannotConnect(f"Failed to reach {endpoint} after {MAX_RETRIES} attempts: {last_error}")

    async def check_api(self) -> str:
        resp = await self._request("GET", "/api/")
        if not resp.ok:
            raise ApiError(resp.status, "Could not connect to Home Assistant")
        data = resp.json() or {}
        return data.get("message", "")

    async def get_states(self) -> List[Dict[str, Any]]:
        resp = await self._request("GET", "/api/states")
        if not resp.ok:
            raise ApiError(resp.status, "Failed to fetch states")
        return resp.json() or []

    async def get_lights(self) -> List[LightState]:
        return [
            LightState.from_json(s)
            for s in await self.get_states()
            if s.get("entity_id", "").startswith(f"{LIGHT_DOMAIN}.")
        ]

    async def get_light(self, entity_id: str) -> Optional[LightState]:
        resp = await self._request("GET", f"/api/states/{entity_id}")
        if resp.status == 404:
            return None
        if not resp.ok:
            raise ApiError(resp.status, "Failed to fetch light state")
        return LightState.from_json(resp.json())

    async def get_scenes(self) -> List[SceneEntity]:
        return [
            SceneEntity.from_json(s)
            for s in await self.get_states()
            if s.get("entity_id", "").startswith(f"{SCENE_DOMAIN}.")
        ]

    async def get_scene_config(self, config_id: str) -> Optional[Dict[str, Any]]:
        resp = await self._request("GET", f"/api/config/scene/config/{config_id}")
        if resp.status == 404:
            return None
        if not resp.ok:
            raise ApiError(resp.status, "Failed to fetch scene config")
        return resp.json()

    async def save_scene_config(self, config: Dict[str, Any]) -> None:
        resp = await self._request("POST", f"/api/config/scene/config/{config['id']}", config)
        if not resp.ok:
            raise ApiError(resp.status, f"Failed to save scene config: {resp.text}")
        _LOGGER.debug("Saved scene config %s (%s entities)", config["id"], len(config.get("entities") or {}))

    async def delete_scene_config(self, config_id: str) -> None:
        resp = await self._request("DELETE", f"/api/config/scene/config/{config_id}")
        if not resp.ok:
            raise ApiError(resp.status, f"Failed to delete scene config: {resp.text}")

    async def call_service(
        self,
        domain: str,
        service: str,
        data: Dict[str, Any],
        timeout: float = SERVICE_TIMEOUT,
    ) -> ServiceOutcome:
        """Call a service; a timeout yields a timed-out outcome instead of raising."""
        try:
            resp = await asyncio.wait_for(
                self._request("POST", f"/api/services/{domain}/{service}", data),
                timeout,
            )
        except asyncio.TimeoutError:
            _LOGGER.warning(
                "Timeout calling %s.%s (%s) - continuing with other lights",
                domain, service, data.get("entity_id"),
            )
            return ServiceOutcome.timeout()

        if not resp.ok:
            raise ApiError(resp.status, f"Failed to call service {domain}.{service}: {resp.text}")
        return ServiceOutcome.ok(resp.json())

    async def get_device_info(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Best-effort device registry lookup; None when unavailable."""
        template = _DEVICE_INFO_TEMPLATE.replace("__ENTITY__", entity_id.replace("'", ""))
        try:
            resp = await self._request("POST", "/api/template", {"template": template})
            if not resp.ok:
                return None
            info = json.loads(resp.text)
        except (HassError, ValueError) as ex:
            _LOGGER.debug("Device info lookup failed for %s: %s", entity_id, ex)
            return None
        if not isinstance(info, dict):
            return None
        return info
