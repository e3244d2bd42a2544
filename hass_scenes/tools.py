"""MCP tool definitions for the scene engine.

Each tool has a JSON schema for the agent and a voluptuous schema that the
server applies to the arguments before dispatching.
"""

import voluptuous as vol
from mcp.types import Tool

from .scenes import validate_entity_id

_SCENE_REF = {
    "type": "string",
    "description": "The entity_id of the scene (e.g., scene.evening_mood) or just the scene name",
}
_ENTITY_IDS = {
    "type": "array",
    "items": {"type": "string"},
    "description": "List of entity IDs to capture. If not provided, captures all lights that are currently on.",
}


def _entity_id(value):
    value = vol.Coerce(str)(value)
    try:
        validate_entity_id(value)
    except ValueError as ex:
        raise vol.Invalid(str(ex)) from ex
    return value


_BYTE = vol.All(vol.Coerce(int), vol.Range(min=0, max=255))

ARGUMENT_SCHEMAS = {
    "scene_configure": vol.Schema(
        {vol.Required("url"): str, vol.Required("token"): vol.All(str, vol.Length(min=1))}
    ),
    "scene_show_lights": vol.Schema({vol.Optional("filter"): vol.Any(None, str)}),
    "scene_adjust_light": vol.Schema(
        {
            vol.Required("entity_id"): _entity_id,
            vol.Optional("state"): vol.In(["on", "off"]),
            vol.Optional("brightness"): _BYTE,
            vol.Optional("brightness_pct"): vol.All(vol.Coerce(int), vol.Range(min=0, max=100)),
            vol.Optional("rgb_color"): vol.All([_BYTE], vol.Length(min=3, max=3)),
            vol.Optional("color_temp_kelvin"): vol.All(vol.Coerce(int), vol.Range(min=1000, max=12000)),
            vol.Optional("effect"): str,
        }
    ),
    "scene_create": vol.Schema(
        {
            vol.Required("name"): vol.All(str, vol.Length(min=1)),
            vol.Required("mode"): vol.In(["exclusive", "additive"]),
            vol.Optional("entity_ids"): [_entity_id],
            vol.Optional("icon"): str,
        }
    ),
    "scene_list": vol.Schema({}),
    "scene_activate": vol.Schema({vol.Required("entity_id"): str}),
    "scene_update": vol.Schema(
        {vol.Required("entity_id"): str, vol.Optional("entity_ids"): [_entity_id]}
    ),
    "scene_delete": vol.Schema({vol.Required("entity_id"): str}),
    "scene_blackout": vol.Schema(
        {
            vol.Optional("exclude"): [str],
            vol.Optional("create_scene", default=False): vol.Boolean(),
        }
    ),
    "scene_diagnose": vol.Schema({vol.Optional("entity_id"): vol.Any(None, str)}),
    "scene_repair": vol.Schema({vol.Required("entity_id"): str}),
    "scene_snapshots": vol.Schema({vol.Optional("entity_id"): vol.Any(None, str)}),
    "scene_restore_snapshot": vol.Schema(
        {vol.Required("entity_id"): str, vol.Optional("index"): vol.Any(None, vol.Coerce(int))}
    ),
}


def get_connection_tools() -> list[Tool]:
    return [
        Tool(
            name="scene_configure",
            description=(
                "Configure the Home Assistant connection for the Scene MCP server. "
                "Required before using other scene_ tools if not already configured via environment variables."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "Home Assistant URL (e.g., 'http://192.168.1.100:8123')"},
                    "token": {"type": "string", "description": "Long-lived access token from Home Assistant"},
                },
                "required": ["url", "token"],
            },
        ),
    ]


def get_light_tools() -> list[Tool]:
    return [
        Tool(
            name="scene_show_lights",
            description=(
                "PREFERRED for lights. Shows ALL Home Assistant lights with FULL details: on/off state, "
                "brightness percentage, RGB colors (as rgb_color array and hex_color string like #ff0000), "
                "color temperature. Always include hex_color when showing light status."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "filter": {"type": "string", "description": "Optional filter to search lights by name or entity_id"},
                },
            },
        ),
        Tool(
            name="scene_adjust_light",
            description=(
                "PREFERRED for controlling lights. Turn on/off, set brightness (0-100%), RGB color, "
                "color temperature (Kelvin), or effects. Bulbs that need it get colour and brightness "
                "as separate commands."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_id": {"type": "string", "description": "The entity_id of the light (e.g., light.living_room)"},
                    "state": {"type": "string", "enum": ["on", "off"], "description": "Turn the light on or off"},
                    "brightness": {"type": "number", "minimum": 0, "maximum": 255, "description": "Brightness level (0-255)"},
                    "brightness_pct": {"type": "number", "minimum": 0, "maximum": 100, "description": "Brightness as percentage (0-100)"},
                    "rgb_color": {
                        "type": "array",
                        "items": {"type": "number"},
                        "description": "RGB color as [red, green, blue] (0-255 each)",
                    },
                    "color_temp_kelvin": {
                        "type": "number",
                        "description": "Color temperature in Kelvin (e.g., 2700 for warm, 6500 for cool)",
                    },
                    "effect": {
                        "type": "string",
                        "description": "Light effect (e.g., 'colorloop', 'off'). Use scene_show_lights to see available effects.",
                    },
                },
                "required": ["entity_id"],
            },
        ),
        Tool(
            name="scene_blackout",
            description="Turn off ALL lights. Optionally create/update a 'Blackout' scene.",
            inputSchema={
                "type": "object",
                "properties": {
                    "exclude": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": (
                            "List of entity_ids or partial names to exclude from blackout "
                            "(e.g., ['balcony', 'light.outdoor']). These lights won't be turned off."
                        ),
                    },
                    "create_scene": {
                        "type": "boolean",
                        "description": "If true, creates or updates a 'Blackout' scene with all lights set to off.",
                        "default": False,
                    },
                },
            },
        ),
    ]


def get_scene_tools() -> list[Tool]:
    return [
        Tool(
            name="scene_create",
            description=(
                "Create a new scene in Home Assistant by capturing current light states. Before calling this, "
                "call scene_show_lights so the user can see the current state, and ask the user which mode "
                "they want: 'exclusive' (turns off other lights when activated) or 'additive' (only affects "
                "lights in scene)."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Human-readable name for the scene (e.g., 'Evening Mood')"},
                    "mode": {
                        "type": "string",
                        "enum": ["exclusive", "additive"],
                        "description": (
                            "Scene mode - MUST be asked from user before saving. 'exclusive': turns off lights "
                            "not in scene when activated. 'additive': only sets lights in scene."
                        ),
                    },
                    "entity_ids": _ENTITY_IDS,
                    "icon": {"type": "string", "description": "Optional icon for the scene (e.g., 'mdi:lamp')"},
                },
                "required": ["name", "mode"],
            },
        ),
        Tool(
            name="scene_list",
            description="List all scenes from Home Assistant with their mode and local backup status",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="scene_activate",
            description=(
                "Activate a scene. Reconciles the stored configuration first, then sets each light "
                "in sequence and reports anything it had to adapt or repair."
            ),
            inputSchema={"type": "object", "properties": {"entity_id": _SCENE_REF}, "required": ["entity_id"]},
        ),
        Tool(
            name="scene_update",
            description=(
                "Update an existing scene with current light states. Replaces the scene's light "
                "configuration while keeping the same name and mode."
            ),
            inputSchema={
                "type": "object",
                "properties": {"entity_id": _SCENE_REF, "entity_ids": _ENTITY_IDS},
                "required": ["entity_id"],
            },
        ),
        Tool(
            name="scene_delete",
            description="Delete a scene from Home Assistant. A snapshot is kept so it can be restored.",
            inputSchema={"type": "object", "properties": {"entity_id": _SCENE_REF}, "required": ["entity_id"]},
        ),
    ]


def get_maintenance_tools() -> list[Tool]:
    return [
        Tool(
            name="scene_diagnose",
            description=(
                "Dry-run reconciliation of one scene (or all scenes when entity_id is omitted): reports "
                "conflicts, missing or new lights, corrupt fields and whether a repair would write anything."
            ),
            inputSchema={"type": "object", "properties": {"entity_id": _SCENE_REF}},
        ),
        Tool(
            name="scene_repair",
            description="Write the reconciled configuration of a scene back to Home Assistant and the local backup.",
            inputSchema={"type": "object", "properties": {"entity_id": _SCENE_REF}, "required": ["entity_id"]},
        ),
        Tool(
            name="scene_snapshots",
            description="List snapshots taken before scenes were updated, deleted, repaired or restored.",
            inputSchema={"type": "object", "properties": {"entity_id": _SCENE_REF}},
        ),
        Tool(
            name="scene_restore_snapshot",
            description="Restore a scene from a snapshot (the latest one unless index is given).",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_id": _SCENE_REF,
                    "index": {"type": "integer", "description": "Snapshot index as listed by scene_snapshots"},
                },
                "required": ["entity_id"],
            },
        ),
    ]


def get_all_tools() -> list[Tool]:
    """Get all tool definitions."""
    return get_connection_tools() + get_light_tools() + get_scene_tools() + get_maintenance_tools()
