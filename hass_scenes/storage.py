"""Simple persistent storage for local scene backups and snapshots."""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Dict, List, Optional

from .const import BACKUP_FILE, CONFIG_DIR, MAX_SNAPSHOTS, STORAGE_SCHEMA_VERSION
from .models import LocalBackupEntry, Snapshot

_LOGGER = logging.getLogger(__name__)


class SceneBackupStorage:
    """Local shadow copies of scenes plus a bounded snapshot log.

    Loaded once; every mutation rewrites the whole document immediately.
    """

    def __init__(self, config_dir: Optional[str] = None, max_snapshots: int = MAX_SNAPSHOTS) -> None:
        self._config_dir = config_dir or CONFIG_DIR
        self._max_snapshots = max_snapshots
        self._scenes: Dict[str, LocalBackupEntry] = {}
        self._snapshots: List[Snapshot] = []
        self._read()

    @property
    def path(self) -> str:
        return os.path.join(self._config_dir, BACKUP_FILE)

    def _read(self) -> None:
        path = self.path
        if not os.path.exists(path):
            return
        try:
            with open(path, "r", encoding="utf-8") as f_handle:
                raw = json.load(f_handle)
        except (OSError, ValueError) as ex:
            _LOGGER.warning("Scene backup %s unreadable, starting empty: %s", path, ex)
            return

        if not isinstance(raw, dict):
            return
        schema = raw.get("__schema_version")
        if schema != STORAGE_SCHEMA_VERSION:
            _LOGGER.warning("Scene backup %s has schema %s, expected %s; ignoring", path, schema, STORAGE_SCHEMA_VERSION)
            return

        scenes = raw.get("scenes")
        if isinstance(scenes, dict):
            for key, value in scenes.items():
                if not isinstance(value, dict):
                    continue
                try:
                    self._scenes[key] = LocalBackupEntry.from_json(value)
                except (KeyError, TypeError, ValueError):
                    _LOGGER.debug("Skipping malformed backup entry %s", key)

        snapshots = raw.get("snapshots")
        if isinstance(snapshots, list):
            for value in snapshots:
                if not isinstance(value, dict):
                    continue
                try:
                    self._snapshots.append(Snapshot.from_json(value))
                except (KeyError, TypeError, ValueError):
                    _LOGGER.debug("Skipping malformed snapshot %s", value)
            self._snapshots = self._snapshots[-self._max_snapshots:]

    def _write(self) -> None:
        path = self.path
        payload = {
            "__schema_version": STORAGE_SCHEMA_VERSION,
            "scenes": {key: entry.to_json() for key, entry in self._scenes.items()},
            "snapshots": [snap.to_json() for snap in self._snapshots],
        }
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as f_handle:
                json.dump(payload, f_handle, ensure_ascii=False, indent=2)
        except OSError as ex:
            # The remote copy is canonical; a failed shadow write is not fatal
            _LOGGER.warning("Could not persist scene backup to %s: %s", path, ex)

    def get(self, scene_id: str) -> Optional[LocalBackupEntry]:
        return self._scenes.get(scene_id)

    def put(self, entry: LocalBackupEntry) -> LocalBackupEntry:
        now = int(time.time())
        existing = self._scenes.get(entry.scene_id)
        if existing is not None and existing.created_at:
            entry.created_at = existing.created_at
        elif not entry.created_at:
            entry.created_at = now
        entry.updated_at = now
        self._scenes[entry.scene_id] = entry
        self._write()
        return entry

    def remove(self, scene_id: str) -> bool:
        if self._scenes.pop(scene_id, None) is None:
            return False
        self._write()
        return True

    def list_all(self) -> List[LocalBackupEntry]:
        return list(self._scenes.values())

    def append_snapshot(self, record: Snapshot) -> None:
        self._snapshots.append(record)
        # FIFO bound: drop the oldest first
        overflow = len(self._snapshots) - self._max_snapshots
        if overflow > 0:
            del self._snapshots[:overflow]
        self._write()

    def list_snapshots(self, scene_id: Optional[str] = None) -> List[Snapshot]:
        if scene_id is None:
            return list(self._snapshots)
        return [snap for snap in self._snapshots if snap.scene_id == scene_id]
