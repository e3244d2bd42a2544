"""Scene and light operations exposed to the agent."""
from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

import voluptuous as vol

from .activation import SceneActivator
from .api import HassClient, HassError
from .color import rgb_from_attributes, rgb_to_hex
from .const import SCENE_ATTRIBUTES, SCENE_DOMAIN
from .models import (
    ActivationResult,
    Detailed,
    LightState,
    LocalBackupEntry,
    ResolutionSource,
    ResolvedScene,
    SceneConfiguration,
    SceneEntity,
    SceneMode,
    Shorthand,
    Snapshot,
    entities_hash,
)
from .quirks import DeviceProfileResolver
from .reconcile import SceneReconciler
from .settings import URL_VALIDATOR, HassSettings, save_settings
from .storage import SceneBackupStorage

_LOGGER = logging.getLogger(__name__)

_ENTITY_ID_RE = re.compile(r"^[a-z_]+\.[a-z0-9_]+$", re.IGNORECASE)


def validate_entity_id(entity_id: str) -> None:
    if not _ENTITY_ID_RE.match(entity_id or ""):
        raise ValueError(f"Invalid entity_id format: {entity_id}")


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", (name or "").lower()).strip("_")


def scene_entity_id(ref: str) -> str:
    """Accept scene.x, x or a display name like "Evening Mood"."""
    ref = (ref or "").strip()
    if ref.startswith(f"{SCENE_DOMAIN}."):
        return ref
    return f"{SCENE_DOMAIN}.{slugify(ref)}"


def to_title_case(name: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in (name or "").lower().split(" "))


def build_entity_config(light: LightState) -> Detailed:
    """Capture a light's current state; None values are never stored."""
    attrs: Dict[str, Any] = {"state": light.state}
    for key in SCENE_ATTRIBUTES:
        value = light.attributes.get(key)
        if value is not None:
            attrs[key] = value
    return Detailed(attrs)


class SceneManager:
    def __init__(
        self,
        client: HassClient,
        storage: SceneBackupStorage,
        config_dir: Optional[str] = None,
        writer_id: Optional[str] = None,
    ):
        self._client = client
        self._storage = storage
        self._config_dir = config_dir
        # Identifies this process as the writer of local backups
        self.writer_id = writer_id or uuid.uuid4().hex
        self.profiles = DeviceProfileResolver(client)
        self.reconciler = SceneReconciler(client, storage)
        self.activator = SceneActivator(client, self.profiles)

    @property
    def client(self) -> HassClient:
        return self._client

    @property
    def storage(self) -> SceneBackupStorage:
        return self._storage

    # ---------- lookup / persistence helpers ----------

    async def _find_scene(self, ref: str, include_snapshots: bool = False) -> Tuple[str, Optional[str], Optional[SceneEntity]]:
        """Return (entity_id, config_id, remote scene entity) for a scene reference."""
        entity_id = scene_entity_id(ref)
        validate_entity_id(entity_id)
        object_id = entity_id.split(".", 1)[1].lower()

        for scene in await self._client.get_scenes():
            if scene.entity_id == entity_id or (scene.name and slugify(scene.name) == object_id):
                return scene.entity_id, scene.config_id, scene

        # Missing remotely; fall back to our own records
        for entry in self._storage.list_all():
            if entry.scene_id.lower() == object_id or slugify(entry.scene.name) == object_id:
                return entity_id, entry.scene_id, None
        if include_snapshots:
            for snap in reversed(self._storage.list_snapshots()):
                if snap.scene_id.lower() == object_id or slugify(snap.scene_name) == object_id:
                    return entity_id, snap.scene_id, None
        return entity_id, None, None

    def _persist_synced(self, config: SceneConfiguration) -> LocalBackupEntry:
        """Record a config this process just wrote (or adopted) as in sync."""
        entry = LocalBackupEntry(
            scene=config,
            last_known_remote_hash=config.entities_hash(),
            last_writer_id=self.writer_id,
            synced_at=int(time.time()),
        )
        return self._storage.put(entry)

    def _snapshot(self, config: Optional[SceneConfiguration], operation: str) -> None:
        if config is None:
            return
        self._storage.append_snapshot(
            Snapshot(
                scene_id=config.id,
                scene_name=config.name,
                operation=operation,
                entities=config.to_json()["entities"],
                mode=config.mode.value if config.mode else None,
                icon=config.icon,
                taken_at=int(time.time()),
            )
        )

    async def _write_scene(self, config: SceneConfiguration) -> LocalBackupEntry:
        await self._client.save_scene_config(config.to_json())
        return self._persist_synced(config)

    async def _capture(self, entity_ids: Optional[List[str]]) -> List[LightState]:
        lights = await self._client.get_lights()
        if entity_ids:
            wanted = set(entity_ids)
            return [light for light in lights if light.entity_id in wanted]
        return [light for light in lights if light.is_on]

    # ---------- connection ----------

    async def configure(self, url: str, token: str) -> str:
        try:
            url = URL_VALIDATOR(url)
        except vol.Invalid as ex:
            return f"Error: {ex}"

        old_settings = self._client.settings
        new_settings = HassSettings(url=url, token=token, verify_ssl=old_settings.verify_ssl)
        await self._client.reconfigure(new_settings)
        try:
            message = await self._client.check_api()
        except HassError as ex:
            await self._client.reconfigure(old_settings)
            return f"Error connecting to Home Assistant: {ex}"
        if message != "API running.":
            await self._client.reconfigure(old_settings)
            return "Error: Invalid response from Home Assistant API"

        save_settings(new_settings, self._config_dir)
        return f"Successfully connected to Home Assistant at {url}. Configuration saved."

    # ---------- lights ----------

    async def show_lights(self, filter_text: Optional[str] = None) -> List[Dict[str, Any]]:
        lights = await self._client.get_lights()
        if filter_text:
            needle = filter_text.lower()
            lights = [
                light for light in lights
                if needle in light.entity_id.lower() or needle in (light.friendly_name or "").lower()
            ]

        out = []
        for light in lights:
            attrs = light.attributes
            rgb = rgb_from_attributes(attrs)
            data: Dict[str, Any] = {
                "entity_id": light.entity_id,
                "name": light.friendly_name,
                "state": light.state,
                "brightness": light.brightness,
                "brightness_pct": round(light.brightness / 255 * 100) if light.brightness else None,
                "rgb_color": list(rgb) if rgb else None,
                "hex_color": rgb_to_hex(rgb),
                "color_temp_kelvin": attrs.get("color_temp_kelvin"),
                "color_mode": light.color_mode,
                "supported_color_modes": attrs.get("supported_color_modes"),
            }
            if light.effect and light.effect != "off":
                data["effect"] = light.effect
            if attrs.get("effect_list"):
                data["effect_list"] = attrs["effect_list"]
            if "color_temp" in light.supported_color_modes:
                low, high = light.color_temp_range
                data["color_temp_range"] = {"min": low, "max": high}
            profile = self.profiles.cached(light.entity_id)
            if profile is not None and profile.requires_split_color_command:
                data["split_color_command"] = True
            out.append(data)
        return out

    async def adjust_light(
        self,
        entity_id: str,
        state: Optional[str] = None,
        brightness: Optional[int] = None,
        brightness_pct: Optional[int] = None,
        rgb_color: Optional[List[int]] = None,
        color_temp_kelvin: Optional[int] = None,
        effect: Optional[str] = None,
    ) -> str:
        validate_entity_id(entity_id)
        result = ActivationResult()

        if state == "off":
            await self.activator.apply_entity(entity_id, Shorthand(False), False, result)
            return f"Turned off {entity_id}" + _timeout_note(result)

        attrs: Dict[str, Any] = {"state": "on"}
        for key, value in (
            ("rgb_color", rgb_color),
            ("color_temp_kelvin", color_temp_kelvin),
            ("brightness", brightness),
            ("brightness_pct", brightness_pct),
            ("effect", effect),
        ):
            if value is not None:
                attrs[key] = list(value) if key == "rgb_color" else value

        split = await self.profiles.requires_split(entity_id)
        await self.activator.apply_entity(entity_id, Detailed(attrs), split, result, with_extras=True)

        light = await self._client.get_light(entity_id)
        if light is None:
            return f"Light {entity_id} not found."
        kind = " (split commands)" if split and ("rgb_color" in attrs or "color_temp_kelvin" in attrs) else ""
        effect_info = f", effect={light.effect}" if light.effect and light.effect != "off" else ""
        return (
            f"Updated {entity_id}{kind}: state={light.state}, brightness={light.brightness}{effect_info}"
            + _timeout_note(result)
        )

    # ---------- scenes ----------

    async def create_scene(
        self,
        name: str,
        mode: str,
        entity_ids: Optional[List[str]] = None,
        icon: Optional[str] = None,
    ) -> str:
        name = to_title_case(name)
        scene_mode = SceneMode.parse(mode)
        if scene_mode is None:
            return f"Unknown mode '{mode}'. Use 'exclusive' or 'additive'."

        for scene in await self._client.get_scenes():
            if (scene.name or "").lower() == name.lower():
                return f'Scene "{name}" already exists. Use scene_update to modify it, or scene_delete to remove it first.'

        captured = await self._capture(entity_ids)
        if not captured:
            return "No lights to capture. Please turn on some lights or specify entity_ids."

        config = SceneConfiguration(
            id=str(uuid.uuid4()),
            name=name,
            entities={light.entity_id: build_entity_config(light) for light in captured},
            mode=scene_mode,
            icon=icon or None,
        )
        await self._write_scene(config)

        description = (
            "other lights will be turned off when activated"
            if scene_mode is SceneMode.EXCLUSIVE
            else "only affects lights in scene"
        )
        return (
            f'Created scene "{name}" with {len(captured)} lights ({scene_mode.value}: {description}). '
            "The scene is now available in Home Assistant UI."
        )

    async def list_scenes(self) -> List[Dict[str, Any]]:
        scenes = await self._client.get_scenes()

        async def _lookup(scene: SceneEntity) -> Optional[SceneConfiguration]:
            if not scene.config_id:
                return None
            return await self.reconciler.load_remote(scene.config_id)

        # Independent per-scene lookups; completion order does not matter
        configs = await asyncio.gather(*(_lookup(s) for s in scenes), return_exceptions=True)

        out = []
        seen = set()
        for scene, config in zip(scenes, configs):
            if isinstance(config, Exception):
                _LOGGER.debug("Scene config lookup failed for %s: %s", scene.entity_id, config)
                config = None
            entry = self._storage.get(scene.config_id) if scene.config_id else None
            if scene.config_id:
                seen.add(scene.config_id)
            if entry is None:
                backup = "none"
            elif config is not None and entry.last_known_remote_hash == config.entities_hash():
                backup = "synced"
            else:
                backup = "diverged"
            out.append(
                {
                    "entity_id": scene.entity_id,
                    "name": scene.name,
                    "mode": config.mode.value if config is not None and config.mode else "unknown",
                    "lights": len(config.entities) if config is not None else len(scene.entity_ids),
                    "backup": backup,
                }
            )

        for entry in self._storage.list_all():
            if entry.scene_id in seen:
                continue
            out.append(
                {
                    "entity_id": f"{SCENE_DOMAIN}.{slugify(entry.scene.name) or entry.scene_id}",
                    "name": entry.scene.name,
                    "mode": entry.scene.mode.value if entry.scene.mode else "unknown",
                    "lights": len(entry.scene.entities),
                    "backup": "missing_remotely",
                }
            )
        return out

    async def activate_scene(self, ref: str) -> str:
        entity_id, config_id, scene = await self._find_scene(ref)
        if scene is None and config_id is None:
            return f'Scene "{entity_id}" not found.'

        lights = await self._client.get_lights()
        resolved: Optional[ResolvedScene] = None
        if config_id:
            resolved = await self.reconciler.resolve(config_id, lights)

        if resolved is None or not resolved.resolved:
            # No structured config anywhere: let the controller apply it
            await self._client.call_service(SCENE_DOMAIN, "turn_on", {"entity_id": entity_id})
            return f'Activated scene "{entity_id}" (no stored configuration, activated by Home Assistant)'

        config = resolved.to_configuration()
        result = await self.activator.activate(config, lights)

        if resolved.source is ResolutionSource.IMPORTED and resolved.remote is not None:
            # First sight of a scene created elsewhere: keep a shadow copy as-is
            self._persist_synced(resolved.remote)

        mode_info = " (exclusive)" if config.effective_mode is SceneMode.EXCLUSIVE else ""
        split_info = f" ({result.split_sequenced} split-sequenced)" if result.split_sequenced else ""
        extra_info = f" (+{len(result.corrected)} retry)" if result.corrected else ""
        lines = [f'Activated scene "{entity_id}" - set {result.lights_set} lights{mode_info}{split_info}{extra_info}']
        lines.extend(_issue_lines(resolved.issues + result.issues))
        return "\n".join(lines)

    async def update_scene(self, ref: str, entity_ids: Optional[List[str]] = None) -> str:
        entity_id, config_id, scene = await self._find_scene(ref)
        if scene is None and config_id is None:
            return f'Scene "{entity_id}" not found.'
        if not config_id:
            return f'Scene "{entity_id}" has no config ID - it may be a runtime scene that cannot be updated via API.'

        resolved = await self.reconciler.resolve(config_id)
        if not resolved.resolved:
            return f'Could not load config for scene "{entity_id}".'

        captured = await self._capture(entity_ids)
        if not captured:
            return "No lights to capture. Please turn on some lights or specify entity_ids."

        self._snapshot(resolved.remote or (resolved.local.scene if resolved.local else None), "update")
        config = resolved.to_configuration()
        config.entities = {light.entity_id: build_entity_config(light) for light in captured}
        await self._write_scene(config)

        mode = config.mode.value if config.mode else "unknown"
        message = f'Updated scene "{config.name}" with {len(captured)} lights (mode: {mode}).'
        if resolved.conflict:
            message += " The scene had been changed elsewhere since the last sync; the previous version is kept as a snapshot."
        return message

    async def delete_scene(self, ref: str) -> str:
        entity_id, config_id, scene = await self._find_scene(ref)
        if scene is None and config_id is None:
            return f'Scene "{entity_id}" not found.'
        if not config_id:
            return f'Scene "{entity_id}" has no config ID - it may be a runtime scene that cannot be deleted via API.'

        remote = await self.reconciler.load_remote(config_id)
        local = self._storage.get(config_id)
        self._snapshot(remote or (local.scene if local else None), "delete")

        if remote is not None:
            await self._client.delete_scene_config(config_id)
        self._storage.remove(config_id)
        return f'Deleted scene "{entity_id}"'

    async def blackout(self, exclude: Optional[List[str]] = None, create_scene: bool = False) -> str:
        patterns = [p.lower() for p in (exclude or [])]
        lights = await self._client.get_lights()

        def _excluded(light: LightState) -> bool:
            name = (light.friendly_name or "").lower()
            return any(p in light.entity_id.lower() or p in name for p in patterns)

        included = [light for light in lights if not _excluded(light)]
        excluded = [light for light in lights if _excluded(light)]
        message = ""

        if create_scene:
            existing = next((s for s in await self._client.get_scenes() if s.name == "Blackout"), None)
            config = SceneConfiguration(
                id=(existing.config_id if existing and existing.config_id else str(uuid.uuid4())),
                name="Blackout",
                # Plain "off" keeps the controller from adding attributes
                entities={light.entity_id: Shorthand(False) for light in included},
                mode=SceneMode.EXCLUSIVE,
            )
            if existing is not None:
                self._snapshot(await self.reconciler.load_remote(config.id), "update")
            await self._write_scene(config)
            message = f"'Blackout' scene {'updated' if existing else 'created'} ({len(included)} lights). "

        if excluded:
            message += "Excluded: " + ", ".join(light.friendly_name or light.entity_id for light in excluded) + ". "

        to_turn_off = [light.entity_id for light in included if light.is_on]
        if not to_turn_off:
            return f"{message}All lights are already off."
        await self._client.call_service("light", "turn_off", {"entity_id": to_turn_off})
        return f"{message}Turned off {len(to_turn_off)} lights."

    # ---------- diagnosis / repair / recovery ----------

    @staticmethod
    def _describe(entity_id: str, resolved: ResolvedScene) -> Dict[str, Any]:
        return {
            "entity_id": entity_id,
            "config_id": resolved.scene_id,
            "name": resolved.name,
            "source": resolved.source.value,
            "mode": resolved.mode.value if resolved.mode else None,
            "conflict": resolved.conflict,
            "needs_repair": resolved.needs_write,
            "lights": len(resolved.entities),
            "pending": list(resolved.pending_entities),
            "issues": [str(issue) for issue in resolved.issues],
        }

    async def diagnose_scene(self, ref: str) -> Dict[str, Any]:
        entity_id, config_id, scene = await self._find_scene(ref)
        if config_id is None:
            return {"entity_id": entity_id, "error": "not found" if scene is None else "no config ID"}
        resolved = await self.reconciler.resolve(config_id)
        return self._describe(entity_id, resolved)

    async def diagnose_all(self) -> List[Dict[str, Any]]:
        scenes = await self._client.get_scenes()
        lights = await self._client.get_lights()
        targets: Dict[str, str] = {}
        for scene in scenes:
            if scene.config_id:
                targets[scene.config_id] = scene.entity_id
        for entry in self._storage.list_all():
            targets.setdefault(entry.scene_id, f"{SCENE_DOMAIN}.{slugify(entry.scene.name) or entry.scene_id}")

        ids = list(targets)
        resolved = await asyncio.gather(*(self.reconciler.resolve(cid, lights) for cid in ids))
        return [self._describe(targets[cid], res) for cid, res in zip(ids, resolved)]

    async def repair_scene(self, ref: str) -> str:
        entity_id, config_id, scene = await self._find_scene(ref)
        if config_id is None:
            return f'Scene "{entity_id}" not found.' if scene is None else f'Scene "{entity_id}" has no config ID.'

        resolved = await self.reconciler.resolve(config_id)
        if not resolved.resolved:
            return f'Scene "{entity_id}" has no stored configuration to repair.'
        if not resolved.needs_write:
            return f'Scene "{resolved.name or entity_id}" is consistent; nothing to repair.'

        self._snapshot(resolved.remote, "repair")
        config = resolved.to_configuration()
        await self._write_scene(config)
        lines = [f'Repaired scene "{config.name or entity_id}" ({resolved.source.value}, {len(config.entities)} lights).']
        lines.extend(_issue_lines(resolved.issues))
        return "\n".join(lines)

    async def list_snapshots(self, ref: Optional[str] = None) -> List[Dict[str, Any]]:
        scene_id = None
        if ref:
            _, scene_id, _ = await self._find_scene(ref, include_snapshots=True)
            if scene_id is None:
                return []
        return [
            {
                "index": index,
                "scene_id": snap.scene_id,
                "name": snap.scene_name,
                "operation": snap.operation,
                "mode": snap.mode,
                "lights": len(snap.entities),
                "taken_at": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(snap.taken_at)),
            }
            for index, snap in enumerate(self._storage.list_snapshots(scene_id))
        ]

    async def restore_snapshot(self, ref: str, index: Optional[int] = None) -> str:
        entity_id, scene_id, _ = await self._find_scene(ref, include_snapshots=True)
        snapshots = self._storage.list_snapshots(scene_id) if scene_id else []
        if not snapshots:
            return f'No snapshots found for scene "{entity_id}".'
        try:
            snap = snapshots[-1] if index is None else snapshots[index]
        except IndexError:
            return f"Snapshot index {index} out of range (0-{len(snapshots) - 1})."

        current = await self.reconciler.load_remote(snap.scene_id)
        self._snapshot(current, "restore")
        config = snap.to_configuration()
        await self._write_scene(config)
        return (
            f'Restored scene "{config.name}" from {snap.operation} snapshot '
            f"({len(config.entities)} lights, hash {entities_hash(config.entities)[:8]})."
        )


def _issue_lines(issues) -> List[str]:
    return [f"- {issue}" for issue in issues]


def _timeout_note(result: ActivationResult) -> str:
    if result.timed_out:
        return " (command timed out; state may not have changed)"
    if result.failed:
        return " (command failed: " + "; ".join(str(i) for i in result.issues) + ")"
    return ""
