"""Drive lights into a scene's target state."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .api import ApiError, CannotConnect
from .const import (
    EXCLUSIVE_SETTLE_DELAY,
    LIGHT_DOMAIN,
    MODE_SWITCH_DELAY,
    RATE_LIMIT_DELAY,
    VERIFY_SETTLE_DELAY,
)
from .models import (
    ActivationResult,
    EntityConfig,
    IssueKind,
    LightState,
    SceneConfiguration,
    SceneIssue,
    SceneMode,
    ServiceOutcome,
)
from .quirks import DeviceProfileResolver

_LOGGER = logging.getLogger(__name__)


class SceneActivator:
    """Sequential, paced light commands with a verification sweep.

    Commands are never fanned out concurrently: the controller and the mesh
    behind it drop commands under bursts.
    """

    def __init__(self, client, profiles: DeviceProfileResolver):
        self._client = client
        self._profiles = profiles

    async def _send(
        self,
        service: str,
        data: Dict[str, Any],
        result: ActivationResult,
    ) -> bool:
        """Send one light command, recording timeouts/failures instead of raising."""
        entity = data.get("entity_id")
        targets = [entity] if isinstance(entity, str) else list(entity or [])
        try:
            outcome: ServiceOutcome = await self._client.call_service(LIGHT_DOMAIN, service, data)
        except (ApiError, CannotConnect) as ex:
            _LOGGER.warning("light.%s failed for %s: %s", service, ", ".join(targets), ex)
            self._record(result.failed, targets, result, IssueKind.COMMAND_FAILED, f"light.{service} failed: {ex}")
            return False
        if outcome.timed_out:
            self._record(
                result.timed_out, targets, result, IssueKind.COMMAND_TIMED_OUT, f"light.{service} timed out, skipped"
            )
            return False
        return True

    @staticmethod
    def _record(
        bucket: List[str],
        targets: List[str],
        result: ActivationResult,
        kind: IssueKind,
        message: str,
    ) -> None:
        for entity_id in targets:
            if entity_id not in bucket:
                bucket.append(entity_id)
            result.issues.append(SceneIssue(kind, message, entity_id))

    async def apply_entity(
        self,
        entity_id: str,
        config: EntityConfig,
        split: bool,
        result: ActivationResult,
        with_extras: bool = False,
    ) -> None:
        """Bring one light to its target, splitting colour and brightness if needed."""
        if not config.wants_on:
            await self._send("turn_off", {"entity_id": entity_id}, result)
            return

        color = config.color_data()
        brightness = config.brightness_data()
        extras = config.extra_data() if with_extras else {}

        if split and color:
            # Colour (mode switch) first, let the bulb settle, then brightness
            await self._send("turn_on", {"entity_id": entity_id, **color}, result)
            await asyncio.sleep(MODE_SWITCH_DELAY)
            if brightness or extras:
                await self._send("turn_on", {"entity_id": entity_id, **brightness, **extras}, result)
            return

        await self._send("turn_on", {"entity_id": entity_id, **color, **brightness, **extras}, result)

    async def activate(self, configuration: SceneConfiguration, lights: List[LightState]) -> ActivationResult:
        result = ActivationResult()
        mode = configuration.effective_mode
        entities = configuration.entities

        if mode is SceneMode.EXCLUSIVE:
            lights_on = [light.entity_id for light in lights if light.is_on]
            if lights_on:
                # Clean baseline: nothing stays on from the previous scene
                await self._send("turn_off", {"entity_id": lights_on}, result)
                await asyncio.sleep(EXCLUSIVE_SETTLE_DELAY)

        standard: List[str] = []
        split: List[str] = []
        for entity_id in entities:
            if await self._profiles.requires_split(entity_id):
                split.append(entity_id)
            else:
                standard.append(entity_id)

        addressed = 0
        for entity_id, is_split in [(e, False) for e in standard] + [(e, True) for e in split]:
            config: Optional[EntityConfig] = entities.get(entity_id)
            if config is None:
                result.issues.append(SceneIssue(IssueKind.MISSING_CONFIG, "no config, skipped", entity_id))
                continue
            if addressed > 0:
                await asyncio.sleep(RATE_LIMIT_DELAY)
            await self.apply_entity(entity_id, config, is_split, result)
            addressed += 1
            if is_split and config.wants_on and config.color_data():
                result.split_sequenced += 1
                result.issues.append(
                    SceneIssue(IssueKind.SPLIT_SEQUENCED, "colour and brightness sent separately", entity_id)
                )
        result.lights_set = addressed

        if mode is SceneMode.EXCLUSIVE:
            await asyncio.sleep(VERIFY_SETTLE_DELAY)
            await self.verify(configuration, result)

        _LOGGER.info(
            "Activated scene %s: %s lights (%s split), %s corrected, %s timed out, %s failed",
            configuration.name or configuration.id, result.lights_set, result.split_sequenced,
            len(result.corrected), len(result.timed_out), len(result.failed),
        )
        return result

    async def verify(self, configuration: SceneConfiguration, result: Optional[ActivationResult] = None) -> List[str]:
        """Turn off every light that is on but should not be; returns the ids turned off."""
        if result is None:
            result = ActivationResult()
        entities = configuration.entities
        current = await self._client.get_lights()
        should_be_off = []
        for light in current:
            if not light.is_on:
                continue
            target = entities.get(light.entity_id)
            if target is None or not target.wants_on:
                should_be_off.append(light.entity_id)

        if should_be_off:
            _LOGGER.debug("Verification turning off %s", should_be_off)
            if not await self._send("turn_off", {"entity_id": should_be_off}, result):
                return []
            result.corrected.extend(should_be_off)
            for entity_id in should_be_off:
                result.issues.append(
                    SceneIssue(IssueKind.VERIFY_CORRECTED, "still on after activation, turned off", entity_id)
                )
        return should_be_off
