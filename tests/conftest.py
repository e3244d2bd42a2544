"""Shared fixtures: an in-memory Home Assistant and a virtual clock."""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from unittest.mock import patch

import pytest

from hass_scenes.api import ApiError
from hass_scenes.models import LightState, SceneEntity, ServiceOutcome
from hass_scenes.scenes import SceneManager
from hass_scenes.settings import HassSettings
from hass_scenes.storage import SceneBackupStorage

IKEA_INFO = {
    "manufacturer": "IKEA of Sweden",
    "model": "TRADFRI bulb E27 CWS 806lm",
    "identifiers": [["zha", "00:11:22:33"]],
}
HUE_INFO = {
    "manufacturer": "Signify Netherlands B.V.",
    "model": "Hue color lamp",
    "identifiers": [["hue", "abc"]],
}


def light(entity_id: str, on: bool = False, **attrs) -> Dict[str, Any]:
    """Raw /api/states entry for a light."""
    attributes = {"friendly_name": entity_id.split(".", 1)[1].replace("_", " ").title()}
    attributes.update(attrs)
    return {"entity_id": entity_id, "state": "on" if on else "off", "attributes": attributes}


class VirtualClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    async def sleep(self, delay, *args, **kwargs):
        self.sleeps.append(delay)
        self.now += delay


@dataclass
class ServiceCall:
    at: float
    domain: str
    service: str
    data: Dict[str, Any]

    @property
    def targets(self) -> List[str]:
        entity = self.data.get("entity_id")
        return [entity] if isinstance(entity, str) else list(entity or [])


@dataclass
class FakeHassClient:
    """Stands in for HassClient; light commands change the stored states."""

    clock: VirtualClock = field(default_factory=VirtualClock)
    lights: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    scene_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    runtime_scenes: List[Dict[str, Any]] = field(default_factory=list)
    device_info: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    timeouts: set = field(default_factory=set)
    failures: set = field(default_factory=set)
    # Lights that ignore the next turn_off addressed to them
    sticky: set = field(default_factory=set)
    calls: List[ServiceCall] = field(default_factory=list)
    saved: List[Dict[str, Any]] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    api_message: str = "API running."
    settings: HassSettings = field(default_factory=lambda: HassSettings("http://ha.local:8123", "token"))

    def add_light(self, entity_id: str, on: bool = False, **attrs) -> None:
        self.lights[entity_id] = light(entity_id, on, **attrs)

    def light_calls(self, entity_id: Optional[str] = None) -> List[ServiceCall]:
        return [
            c for c in self.calls
            if c.domain == "light" and (entity_id is None or entity_id in c.targets)
        ]

    def lights_on(self) -> set:
        return {eid for eid, s in self.lights.items() if s["state"] == "on"}

    async def check_api(self) -> str:
        return self.api_message

    async def reconfigure(self, settings: HassSettings) -> None:
        self.settings = settings

    async def close(self) -> None:
        return None

    async def get_lights(self) -> List[LightState]:
        return [LightState.from_json(copy.deepcopy(s)) for s in self.lights.values()]

    async def get_light(self, entity_id: str) -> Optional[LightState]:
        raw = self.lights.get(entity_id)
        return LightState.from_json(copy.deepcopy(raw)) if raw else None

    async def get_scenes(self) -> List[SceneEntity]:
        states = []
        for config_id, config in self.scene_configs.items():
            slug = re.sub(r"[^a-z0-9]+", "_", config["name"].lower()).strip("_")
            states.append(
                {
                    "entity_id": f"scene.{slug}",
                    "attributes": {
                        "friendly_name": config["name"],
                        "id": config_id,
                        "entity_id": list(config.get("entities") or {}),
                    },
                }
            )
        states.extend(self.runtime_scenes)
        return [SceneEntity.from_json(s) for s in states]

    async def get_scene_config(self, config_id: str) -> Optional[Dict[str, Any]]:
        config = self.scene_configs.get(config_id)
        return copy.deepcopy(config) if config is not None else None

    async def save_scene_config(self, config: Dict[str, Any]) -> None:
        self.saved.append(copy.deepcopy(config))
        self.scene_configs[config["id"]] = copy.deepcopy(config)

    async def delete_scene_config(self, config_id: str) -> None:
        self.deleted.append(config_id)
        self.scene_configs.pop(config_id, None)

    async def get_device_info(self, entity_id: str) -> Optional[Dict[str, Any]]:
        return self.device_info.get(entity_id)

    async def call_service(self, domain: str, service: str, data: Dict[str, Any], timeout: float = 5.0):
        call = ServiceCall(self.clock.now, domain, service, copy.deepcopy(data))
        self.calls.append(call)
        targets = call.targets
        if any(t in self.timeouts for t in targets):
            return ServiceOutcome.timeout()
        if any(t in self.failures for t in targets):
            raise ApiError(400, f"Failed to call service {domain}.{service}")
        if domain != "light":
            return ServiceOutcome.ok([])

        for entity_id in targets:
            state = self.lights.get(entity_id)
            if state is None:
                continue
            if service == "turn_off":
                if entity_id in self.sticky:
                    self.sticky.discard(entity_id)
                    continue
                state["state"] = "off"
            elif service == "turn_on":
                state["state"] = "on"
                state["attributes"].update({k: v for k, v in data.items() if k != "entity_id"})
        return ServiceOutcome.ok([])


@pytest.fixture
def clock():
    """Replace asyncio.sleep in the activation driver with a virtual clock."""
    virtual = VirtualClock()
    with patch("hass_scenes.activation.asyncio.sleep", virtual.sleep):
        yield virtual


@pytest.fixture
def fake_client(clock):
    return FakeHassClient(clock=clock)


@pytest.fixture
def storage(tmp_path):
    return SceneBackupStorage(str(tmp_path))


@pytest.fixture
def manager(fake_client, storage, tmp_path):
    return SceneManager(fake_client, storage, config_dir=str(tmp_path), writer_id="writer-test")
