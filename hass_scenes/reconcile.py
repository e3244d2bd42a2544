"""Resolve the working configuration of a scene.

Three inputs can disagree: the controller's scene config, the local backup
written by this process, and the set of lights that currently exist. The
backup carries the hash of the entity map as last seen in sync with the
controller; a different hash on the controller means someone else wrote the
scene since, and the two versions are merged:

* keys on both sides take the controller's value,
* keys only on the controller are adopted,
* keys only in the backup are kept as not yet synced.

Resolution is read-only. Callers decide whether to persist the result
(repair) or only report it (diagnose).
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .models import (
    EntityConfig,
    IssueKind,
    LightState,
    LocalBackupEntry,
    ResolutionSource,
    ResolvedScene,
    SceneConfiguration,
    SceneIssue,
    SceneMode,
    Shorthand,
    entities_hash,
)

_LOGGER = logging.getLogger(__name__)


def merge_entities(
    remote: Dict[str, EntityConfig],
    local: Dict[str, EntityConfig],
) -> tuple[Dict[str, EntityConfig], List[SceneIssue], List[str]]:
    """Merge after a foreign write: remote wins on overlap, union elsewhere."""
    merged: Dict[str, EntityConfig] = {}
    issues: List[SceneIssue] = []
    pending: List[str] = []

    for entity_id, cfg in remote.items():
        merged[entity_id] = cfg
        if entity_id not in local:
            issues.append(SceneIssue(IssueKind.MERGED_FROM_OTHER, "merged from other instance", entity_id))
        elif local[entity_id].to_json() != cfg.to_json():
            # Both sides changed this light; nothing tells which write is newer
            issues.append(
                SceneIssue(
                    IssueKind.OVERLAP_REMOTE_KEPT,
                    "changed on both sides, remote version kept",
                    entity_id,
                )
            )

    for entity_id, cfg in local.items():
        if entity_id in merged:
            continue
        merged[entity_id] = cfg
        pending.append(entity_id)
        issues.append(SceneIssue(IssueKind.KEPT_LOCAL, "kept local, not yet synced", entity_id))

    return merged, issues, pending


def _corruption_issues(config: SceneConfiguration, origin: str) -> List[SceneIssue]:
    issues = []
    for entity_id, fields in config.corrupt:
        if fields is None:
            issues.append(SceneIssue(IssueKind.MISSING_CONFIG, f"empty entry in {origin} config dropped", entity_id))
        else:
            issues.append(
                SceneIssue(
                    IssueKind.NULL_FIELDS,
                    f"null fields stripped from {origin} config: {', '.join(sorted(fields))}",
                    entity_id,
                )
            )
    return issues


class SceneReconciler:
    def __init__(self, client, storage):
        self._client = client
        self._storage = storage

    async def load_remote(self, scene_id: str) -> Optional[SceneConfiguration]:
        raw = await self._client.get_scene_config(scene_id)
        if not raw:
            return None
        config = SceneConfiguration.from_json(raw)
        if not config.id:
            config.id = scene_id
        return config

    async def resolve(self, scene_id: str, lights: Optional[List[LightState]] = None) -> ResolvedScene:
        remote = await self.load_remote(scene_id)
        local: Optional[LocalBackupEntry] = self._storage.get(scene_id)
        remote_hash = remote.entities_hash() if remote is not None else None

        result = ResolvedScene(
            scene_id=scene_id,
            source=ResolutionSource.UNRESOLVED,
            remote=remote,
            local=local,
            remote_hash=remote_hash,
        )

        if remote is not None and local is not None:
            base = local.scene
            result.issues.extend(_corruption_issues(remote, "remote"))
            result.issues.extend(_corruption_issues(base, "local"))
            if local.last_known_remote_hash and local.last_known_remote_hash != remote_hash:
                _LOGGER.info(
                    "Foreign write detected on scene %s (last synced %s, now %s)",
                    scene_id, local.last_known_remote_hash[:12], remote_hash[:12],
                )
                result.conflict = True
                result.issues.append(
                    SceneIssue(IssueKind.CONFLICT_DETECTED, "scene was changed by another writer since last sync")
                )
                entities, merge_issues, pending = merge_entities(remote.entities, base.entities)
                result.issues.extend(merge_issues)
                result.source = ResolutionSource.MERGED
                result.mode = remote.mode or base.mode
                result.pending_entities = pending
            else:
                entities = dict(base.entities)
                result.source = ResolutionSource.LOCAL
                result.mode = base.mode or remote.mode
                result.pending_entities = [e for e in local.pending_entities if e in entities]
            result.name = remote.name or base.name
            result.icon = remote.icon or base.icon
            result.metadata = {**base.metadata, **remote.metadata}
        elif local is not None:
            base = local.scene
            result.issues.extend(_corruption_issues(base, "local"))
            result.issues.append(
                SceneIssue(IssueKind.RESTORED_FROM_BACKUP, "restored from backup - missing remotely")
            )
            entities = dict(base.entities)
            result.source = ResolutionSource.RESTORED
            result.mode = base.mode
            result.name = base.name
            result.icon = base.icon
            result.metadata = dict(base.metadata)
        elif remote is not None:
            result.issues.extend(_corruption_issues(remote, "remote"))
            result.issues.append(SceneIssue(IssueKind.IMPORTED, "imported, no local record"))
            entities = dict(remote.entities)
            result.source = ResolutionSource.IMPORTED
            result.mode = remote.mode
            result.name = remote.name
            result.icon = remote.icon
            result.metadata = dict(remote.metadata)
        else:
            _LOGGER.debug("Scene %s unknown both remotely and locally", scene_id)
            return result

        if lights is None:
            lights = await self._client.get_lights()
        result.entities = self._adapt_to_live(entities, result.mode, lights, result.issues)
        result.pending_entities = [e for e in result.pending_entities if e in result.entities]
        _LOGGER.debug(
            "Resolved scene %s via %s: %s entities, %s issues, hash %s",
            scene_id, result.source.value, len(result.entities), len(result.issues),
            entities_hash(result.entities)[:12],
        )
        return result

    @staticmethod
    def _adapt_to_live(
        entities: Dict[str, EntityConfig],
        mode: Optional[SceneMode],
        lights: List[LightState],
        issues: List[SceneIssue],
    ) -> Dict[str, EntityConfig]:
        live = {light.entity_id for light in lights}
        adapted: Dict[str, EntityConfig] = {}
        for entity_id, cfg in entities.items():
            if entity_id not in live:
                issues.append(SceneIssue(IssueKind.REMOVED_MISSING, "removed - no longer present", entity_id))
                continue
            adapted[entity_id] = cfg

        # Missing mode activates exclusively, so it adapts the same way
        if (mode or SceneMode.EXCLUSIVE) is SceneMode.EXCLUSIVE:
            for light in lights:
                if light.entity_id in adapted:
                    continue
                adapted[light.entity_id] = Shorthand(False)
                issues.append(
                    SceneIssue(IssueKind.ADDED_DEFAULT_OFF, "added - new device defaults to off", light.entity_id)
                )
        return adapted
