"""Models for the Home Assistant scene engine."""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .const import COLOR_KEYS


class SceneMode(Enum):
    EXCLUSIVE = "exclusive"
    ADDITIVE = "additive"

    @classmethod
    def parse(cls, value: Any) -> Optional["SceneMode"]:
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


class IssueKind(Enum):
    CONFLICT_DETECTED = "conflict_detected"
    MERGED_FROM_OTHER = "merged_from_other"
    KEPT_LOCAL = "kept_local"
    OVERLAP_REMOTE_KEPT = "overlap_remote_kept"
    RESTORED_FROM_BACKUP = "restored_from_backup"
    IMPORTED = "imported"
    REMOVED_MISSING = "removed_missing"
    ADDED_DEFAULT_OFF = "added_default_off"
    NULL_FIELDS = "null_fields"
    SPLIT_SEQUENCED = "split_sequenced"
    COMMAND_TIMED_OUT = "command_timed_out"
    COMMAND_FAILED = "command_failed"
    MISSING_CONFIG = "missing_config"
    VERIFY_CORRECTED = "verify_corrected"


class ResolutionSource(Enum):
    LOCAL = "local"
    MERGED = "merged"
    RESTORED = "restored"
    IMPORTED = "imported"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class SceneIssue:
    kind: IssueKind
    message: str
    entity_id: Optional[str] = None

    def __str__(self) -> str:
        if self.entity_id:
            return f"{self.entity_id}: {self.message}"
        return self.message

    def to_json(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "entity_id": self.entity_id, "message": self.message}


@dataclass
class LightState:
    entity_id: str
    is_on: bool
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "LightState":
        attrs = raw.get("attributes") or {}
        return cls(
            entity_id=raw["entity_id"],
            is_on=raw.get("state") == "on",
            attributes=dict(attrs) if isinstance(attrs, dict) else {},
        )

    @property
    def state(self) -> str:
        return "on" if self.is_on else "off"

    @property
    def friendly_name(self) -> Optional[str]:
        return self.attributes.get("friendly_name")

    @property
    def brightness(self) -> Optional[int]:
        return self.attributes.get("brightness")

    @property
    def color_mode(self) -> Optional[str]:
        return self.attributes.get("color_mode")

    @property
    def supported_color_modes(self) -> set:
        return set(self.attributes.get("supported_color_modes") or [])

    @property
    def effect(self) -> Optional[str]:
        return self.attributes.get("effect")

    @property
    def color_temp_range(self) -> Tuple[Optional[int], Optional[int]]:
        return (
            self.attributes.get("min_color_temp_kelvin"),
            self.attributes.get("max_color_temp_kelvin"),
        )


@dataclass(frozen=True)
class Shorthand:
    """The literal "on" / "off" form of an entity config."""

    on: bool

    @property
    def wants_on(self) -> bool:
        return self.on

    @property
    def has_color(self) -> bool:
        return False

    def color_data(self) -> Dict[str, Any]:
        return {}

    def brightness_data(self) -> Dict[str, Any]:
        return {}

    def extra_data(self) -> Dict[str, Any]:
        return {}

    def to_json(self) -> str:
        return "on" if self.on else "off"


@dataclass
class Detailed:
    """Structured entity config; attributes never hold None values."""

    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def wants_on(self) -> bool:
        return self.attributes.get("state", "on") != "off"

    @property
    def has_color(self) -> bool:
        return any(key in self.attributes for key in COLOR_KEYS)

    def color_data(self) -> Dict[str, Any]:
        # First present wins
        for key in COLOR_KEYS:
            if key in self.attributes:
                return {key: self.attributes[key]}
        return {}

    def brightness_data(self) -> Dict[str, Any]:
        data = {}
        if "brightness" in self.attributes:
            data["brightness"] = self.attributes["brightness"]
        if "brightness_pct" in self.attributes:
            data["brightness_pct"] = self.attributes["brightness_pct"]
        return data

    def extra_data(self) -> Dict[str, Any]:
        if "effect" in self.attributes:
            return {"effect": self.attributes["effect"]}
        return {}

    def to_json(self) -> Dict[str, Any]:
        return dict(self.attributes)


EntityConfig = Union[Shorthand, Detailed]


def entity_config_from_json(raw: Any) -> Tuple[Optional[EntityConfig], List[str]]:
    """Parse a stored entity config, returning it and the null fields stripped."""
    if raw is None:
        return None, []
    if isinstance(raw, str):
        return Shorthand(raw.strip().lower() != "off"), []
    if isinstance(raw, dict):
        stripped = [key for key, value in raw.items() if value is None]
        attrs = {key: value for key, value in raw.items() if value is not None}
        return Detailed(attrs), stripped
    return None, []


def entities_to_json(entities: Dict[str, EntityConfig]) -> Dict[str, Any]:
    return {entity_id: cfg.to_json() for entity_id, cfg in entities.items()}


def entities_hash(entities: Dict[str, EntityConfig]) -> str:
    """Content hash of an entity map, independent of key order."""
    canonical = json.dumps(entities_to_json(entities), sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class SceneConfiguration:
    id: str
    name: str
    entities: Dict[str, EntityConfig] = field(default_factory=dict)
    mode: Optional[SceneMode] = None
    icon: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Filled while parsing: (entity_id, [null keys]) or (entity_id, None) for a null entity
    corrupt: List[Tuple[str, Optional[List[str]]]] = field(default_factory=list, compare=False)

    @property
    def effective_mode(self) -> SceneMode:
        # Scenes created before modes existed behave exclusively
        return self.mode or SceneMode.EXCLUSIVE

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "SceneConfiguration":
        metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
        entities: Dict[str, EntityConfig] = {}
        corrupt: List[Tuple[str, Optional[List[str]]]] = []
        for entity_id, value in (raw.get("entities") or {}).items():
            cfg, stripped = entity_config_from_json(value)
            if cfg is None:
                corrupt.append((entity_id, None))
                continue
            if stripped:
                corrupt.append((entity_id, stripped))
            entities[entity_id] = cfg
        return cls(
            id=str(raw.get("id") or ""),
            name=raw.get("name") or "",
            entities=entities,
            mode=SceneMode.parse(metadata.get("mode")) if metadata.get("mode") else None,
            icon=raw.get("icon") or None,
            metadata={k: v for k, v in metadata.items() if k != "mode" and v is not None},
            corrupt=corrupt,
        )

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "entities": entities_to_json(self.entities),
        }
        metadata = dict(self.metadata)
        if self.mode is not None:
            metadata["mode"] = self.mode.value
        if metadata:
            payload["metadata"] = metadata
        if self.icon:
            payload["icon"] = self.icon
        return payload

    def entities_hash(self) -> str:
        return entities_hash(self.entities)


@dataclass
class LocalBackupEntry:
    scene: SceneConfiguration
    last_known_remote_hash: Optional[str] = None
    last_writer_id: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0
    synced_at: Optional[int] = None
    pending_entities: List[str] = field(default_factory=list)

    @property
    def scene_id(self) -> str:
        return self.scene.id

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "LocalBackupEntry":
        return cls(
            scene=SceneConfiguration.from_json(raw["scene"]),
            last_known_remote_hash=raw.get("last_known_remote_hash"),
            last_writer_id=raw.get("last_writer_id"),
            created_at=int(raw.get("created_at") or 0),
            updated_at=int(raw.get("updated_at") or 0),
            synced_at=raw.get("synced_at"),
            pending_entities=list(raw.get("pending_entities") or []),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "scene": self.scene.to_json(),
            "last_known_remote_hash": self.last_known_remote_hash,
            "last_writer_id": self.last_writer_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "synced_at": self.synced_at,
            "pending_entities": list(self.pending_entities),
        }


@dataclass(frozen=True)
class Snapshot:
    scene_id: str
    scene_name: str
    operation: str
    entities: Dict[str, Any]
    mode: Optional[str] = None
    icon: Optional[str] = None
    taken_at: int = 0

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "Snapshot":
        return cls(
            scene_id=raw["scene_id"],
            scene_name=raw.get("scene_name") or "",
            operation=raw.get("operation") or "update",
            entities=dict(raw.get("entities") or {}),
            mode=raw.get("mode"),
            icon=raw.get("icon"),
            taken_at=int(raw.get("taken_at") or 0),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "scene_id": self.scene_id,
            "scene_name": self.scene_name,
            "operation": self.operation,
            "entities": dict(self.entities),
            "mode": self.mode,
            "icon": self.icon,
            "taken_at": self.taken_at,
        }

    def to_configuration(self) -> SceneConfiguration:
        return SceneConfiguration.from_json(
            {
                "id": self.scene_id,
                "name": self.scene_name,
                "entities": self.entities,
                "metadata": {"mode": self.mode} if self.mode else {},
                "icon": self.icon,
            }
        )


@dataclass
class DeviceProfile:
    entity_id: str
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    connection: Optional[str] = None
    requires_split_color_command: bool = False
    # Where the classification came from: metadata, entity_id or unknown
    source: str = "unknown"


@dataclass(frozen=True)
class ServiceOutcome:
    """Result of a device command; timed_out means the effect is unknown."""

    timed_out: bool = False
    result: Any = None

    @classmethod
    def ok(cls, result: Any = None) -> "ServiceOutcome":
        return cls(timed_out=False, result=result)

    @classmethod
    def timeout(cls) -> "ServiceOutcome":
        return cls(timed_out=True)


@dataclass
class SceneEntity:
    """A scene.* state as the controller reports it."""

    entity_id: str
    name: Optional[str] = None
    config_id: Optional[str] = None
    entity_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "SceneEntity":
        attrs = raw.get("attributes") or {}
        return cls(
            entity_id=raw["entity_id"],
            name=attrs.get("friendly_name"),
            config_id=str(attrs["id"]) if attrs.get("id") else None,
            entity_ids=list(attrs.get("entity_id") or []),
        )


@dataclass
class ResolvedScene:
    scene_id: str
    source: ResolutionSource
    name: str = ""
    mode: Optional[SceneMode] = None
    icon: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    entities: Dict[str, EntityConfig] = field(default_factory=dict)
    issues: List[SceneIssue] = field(default_factory=list)
    remote: Optional[SceneConfiguration] = None
    local: Optional[LocalBackupEntry] = None
    remote_hash: Optional[str] = None
    conflict: bool = False
    pending_entities: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.source is not ResolutionSource.UNRESOLVED

    def to_configuration(self) -> SceneConfiguration:
        return SceneConfiguration(
            id=self.scene_id,
            name=self.name,
            entities=dict(self.entities),
            mode=self.mode,
            icon=self.icon,
            metadata=dict(self.metadata),
        )

    @property
    def needs_write(self) -> bool:
        """True when persisting this result would change the remote or local copy."""
        if not self.resolved:
            return False
        config = self.to_configuration()
        if self.remote is None or self.remote.corrupt:
            return True
        if config.entities_hash() != self.remote_hash or self.remote.mode != self.mode:
            return True
        if self.local is None:
            return True
        return (
            self.local.last_known_remote_hash != self.remote_hash
            or self.local.scene.entities_hash() != self.remote_hash
            or bool(self.local.pending_entities)
        )


@dataclass
class ActivationResult:
    lights_set: int = 0
    split_sequenced: int = 0
    corrected: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    issues: List[SceneIssue] = field(default_factory=list)
