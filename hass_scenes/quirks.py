"""Model-specific quirks for lights driven through Home Assistant.

Some Zigbee colour bulbs drop part of a combined turn_on when it also
switches between colour and colour-temperature mode. Those families get
their colour and brightness sent as two separate commands.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import DeviceProfile

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quirk:
    vendor: str
    # Lower-case substrings matched against the manufacturer string
    manufacturer_keywords: Tuple[str, ...] = ()
    # Lower-case substrings matched against the model string
    model_keywords: Tuple[str, ...] = ()
    # Lower-case substrings matched against the entity id when metadata is missing
    entity_keywords: Tuple[str, ...] = ()
    # Colour/CT and brightness must be sent as two time-spaced commands
    split_color_command: bool = False


_QUIRKS: Dict[str, Quirk] = {
    "ikea": Quirk(
        "ikea",
        manufacturer_keywords=("ikea",),
        model_keywords=("tradfri",),
        entity_keywords=("ikea", "tradfri"),
        split_color_command=True,
    ),
}

# Device registry identifier domain -> connection medium
_CONNECTIONS: Dict[str, str] = {
    "zha": "zigbee",
    "deconz": "zigbee",
    "hue": "zigbee",
    "tradfri": "zigbee",
    "mqtt": "mqtt",
    "zwave_js": "zwave",
    "esphome": "wifi",
    "tuya": "wifi",
    "wled": "wifi",
    "matter": "matter",
}


def resolve_quirk(manufacturer: Optional[str], model: Optional[str]) -> Optional[Quirk]:
    """Return a quirk definition for the manufacturer/model if known."""
    manufacturer_l = (manufacturer or "").lower()
    model_l = (model or "").lower()
    for quirk in _QUIRKS.values():
        if manufacturer_l and any(k in manufacturer_l for k in quirk.manufacturer_keywords):
            return quirk
        if model_l and any(k in model_l for k in quirk.model_keywords):
            return quirk
    return None


def resolve_quirk_by_entity(entity_id: str) -> Optional[Quirk]:
    entity_l = entity_id.lower()
    for quirk in _QUIRKS.values():
        if any(k in entity_l for k in quirk.entity_keywords):
            return quirk
    return None


def _connection_from_identifiers(identifiers) -> Optional[str]:
    for ident in identifiers or []:
        if isinstance(ident, (list, tuple)) and ident:
            domain = str(ident[0]).lower()
            return _CONNECTIONS.get(domain, domain)
    return None


class DeviceProfileResolver:
    """Classify lights once per resolver; the cache is only ever populated."""

    def __init__(self, client):
        self._client = client
        self._cache: Dict[str, DeviceProfile] = {}

    def cached(self, entity_id: str) -> Optional[DeviceProfile]:
        return self._cache.get(entity_id)

    async def resolve(self, entity_id: str) -> DeviceProfile:
        profile = self._cache.get(entity_id)
        if profile is not None:
            return profile

        manufacturer = model = connection = None
        try:
            info = await self._client.get_device_info(entity_id)
            if info:
                manufacturer = info.get("manufacturer") or None
                model = info.get("model") or None
                connection = _connection_from_identifiers(info.get("identifiers"))
            if not manufacturer:
                # Some integrations expose the vendor as a state attribute
                light = await self._client.get_light(entity_id)
                if light is not None:
                    manufacturer = light.attributes.get("manufacturer") or None
        except Exception as ex:  # pylint: disable=broad-except
            _LOGGER.debug("Metadata lookup failed for %s: %s", entity_id, ex)

        if manufacturer or model:
            quirk = resolve_quirk(manufacturer, model)
            source = "metadata"
        else:
            quirk = resolve_quirk_by_entity(entity_id)
            source = "entity_id" if quirk else "unknown"

        profile = DeviceProfile(
            entity_id=entity_id,
            manufacturer=manufacturer,
            model=model,
            connection=connection,
            requires_split_color_command=bool(quirk and quirk.split_color_command),
            source=source,
        )
        _LOGGER.debug(
            "Profile ← %s: manufacturer=%s model=%s connection=%s split=%s (%s)",
            entity_id, manufacturer, model, connection,
            profile.requires_split_color_command, source,
        )
        self._cache[entity_id] = profile
        return profile

    async def requires_split(self, entity_id: str) -> bool:
        return (await self.resolve(entity_id)).requires_split_color_command
