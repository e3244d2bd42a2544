"""Tests for scene reconciliation."""
import pytest

from hass_scenes.models import (
    Detailed,
    IssueKind,
    LocalBackupEntry,
    ResolutionSource,
    SceneConfiguration,
    SceneMode,
    Shorthand,
    entities_hash,
)
from hass_scenes.reconcile import SceneReconciler, merge_entities


def _kinds(resolved):
    return [(issue.kind, issue.entity_id) for issue in resolved.issues]


@pytest.fixture
def reconciler(fake_client, storage):
    for entity_id in ("light.a", "light.b", "light.c"):
        fake_client.add_light(entity_id)
    return SceneReconciler(fake_client, storage)


class TestMergeEntities:
    def test_commutative_on_disjoint_keys(self):
        left = {"light.a": Shorthand(True), "light.b": Detailed({"state": "on", "brightness": 5})}
        right = {"light.c": Shorthand(False)}

        one, _, _ = merge_entities(left, right)
        two, _, _ = merge_entities(right, left)
        assert one == two
        assert entities_hash(one) == entities_hash(two)

    def test_remote_wins_overlap_and_flags_difference(self):
        remote = {"light.a": Detailed({"state": "on", "brightness": 200})}
        local = {"light.a": Shorthand(True)}
        merged, issues, pending = merge_entities(remote, local)
        assert merged["light.a"] == remote["light.a"]
        assert [i.kind for i in issues] == [IssueKind.OVERLAP_REMOTE_KEPT]
        assert pending == []

    def test_identical_overlap_is_silent(self):
        merged, issues, _ = merge_entities({"light.a": Shorthand(True)}, {"light.a": Shorthand(True)})
        assert issues == []
        assert merged == {"light.a": Shorthand(True)}


class TestSceneReconciler:
    async def test_foreign_write_merge(self, reconciler, fake_client, storage):
        # Local {A on, B off}, remote {A on, C off}, last known hash stale
        fake_client.scene_configs["s1"] = {
            "id": "s1",
            "name": "Evening",
            "entities": {"light.a": "on", "light.c": "off"},
            "metadata": {"mode": "additive"},
        }
        storage.put(
            LocalBackupEntry(
                scene=SceneConfiguration(
                    "s1", "Evening", {"light.a": Shorthand(True), "light.b": Shorthand(False)}, SceneMode.EXCLUSIVE
                ),
                last_known_remote_hash="stale",
            )
        )

        resolved = await reconciler.resolve("s1")

        assert resolved.source is ResolutionSource.MERGED
        assert resolved.conflict
        assert resolved.mode is SceneMode.ADDITIVE
        assert resolved.entities == {
            "light.a": Shorthand(True),
            "light.c": Shorthand(False),
            "light.b": Shorthand(False),
        }
        kinds = _kinds(resolved)
        assert (IssueKind.CONFLICT_DETECTED, None) in kinds
        assert (IssueKind.MERGED_FROM_OTHER, "light.c") in kinds
        assert (IssueKind.KEPT_LOCAL, "light.b") in kinds
        assert resolved.pending_entities == ["light.b"]
        assert resolved.needs_write

    async def test_reordered_remote_is_not_a_conflict(self, reconciler, fake_client, storage):
        local = SceneConfiguration(
            "s1", "Evening", {"light.a": Shorthand(True), "light.b": Shorthand(False)}, SceneMode.ADDITIVE
        )
        storage.put(LocalBackupEntry(scene=local, last_known_remote_hash=local.entities_hash()))
        fake_client.scene_configs["s1"] = {
            "id": "s1",
            "name": "Evening",
            "entities": {"light.b": "off", "light.a": "on"},
            "metadata": {"mode": "additive"},
        }

        resolved = await reconciler.resolve("s1")
        assert resolved.source is ResolutionSource.LOCAL
        assert not resolved.conflict
        assert list(resolved.entities) == ["light.a", "light.b"]
        assert resolved.issues == []
        assert not resolved.needs_write

    async def test_local_only_is_restored(self, reconciler, storage):
        storage.put(
            LocalBackupEntry(
                scene=SceneConfiguration("s1", "Gone", {"light.a": Shorthand(True)}, SceneMode.ADDITIVE),
                last_known_remote_hash="x",
            )
        )
        resolved = await reconciler.resolve("s1")
        assert resolved.source is ResolutionSource.RESTORED
        assert (IssueKind.RESTORED_FROM_BACKUP, None) in _kinds(resolved)
        assert resolved.needs_write

    async def test_remote_only_is_imported(self, reconciler, fake_client):
        fake_client.scene_configs["s1"] = {
            "id": "s1",
            "name": "Foreign",
            "entities": {"light.a": {"state": "on", "brightness": 10}},
            "metadata": {"mode": "additive"},
        }
        resolved = await reconciler.resolve("s1")
        assert resolved.source is ResolutionSource.IMPORTED
        assert resolved.entities == {"light.a": Detailed({"state": "on", "brightness": 10})}
        assert (IssueKind.IMPORTED, None) in _kinds(resolved)

    async def test_unknown_scene_is_unresolved(self, reconciler):
        resolved = await reconciler.resolve("nope")
        assert resolved.source is ResolutionSource.UNRESOLVED
        assert not resolved.resolved

    async def test_liveness_exclusive(self, reconciler, fake_client):
        fake_client.scene_configs["s1"] = {
            "id": "s1",
            "name": "Night",
            "entities": {"light.a": "on", "light.removed": "on"},
            "metadata": {"mode": "exclusive"},
        }
        resolved = await reconciler.resolve("s1")
        assert resolved.entities == {
            "light.a": Shorthand(True),
            "light.b": Shorthand(False),
            "light.c": Shorthand(False),
        }
        kinds = _kinds(resolved)
        assert (IssueKind.REMOVED_MISSING, "light.removed") in kinds
        assert (IssueKind.ADDED_DEFAULT_OFF, "light.b") in kinds

    async def test_liveness_additive_adds_nothing(self, reconciler, fake_client):
        fake_client.scene_configs["s1"] = {
            "id": "s1",
            "name": "Desk",
            "entities": {"light.a": "on"},
            "metadata": {"mode": "additive"},
        }
        resolved = await reconciler.resolve("s1")
        assert resolved.entities == {"light.a": Shorthand(True)}

    async def test_missing_mode_adapts_as_exclusive(self, reconciler, fake_client):
        fake_client.scene_configs["s1"] = {"id": "s1", "name": "Old", "entities": {"light.a": "on"}}
        resolved = await reconciler.resolve("s1")
        assert resolved.mode is None
        assert set(resolved.entities) == {"light.a", "light.b", "light.c"}

    async def test_null_fields_are_reported(self, reconciler, fake_client):
        fake_client.scene_configs["s1"] = {
            "id": "s1",
            "name": "Broken",
            "entities": {"light.a": {"state": "on", "rgb_color": None}, "light.b": None},
            "metadata": {"mode": "additive"},
        }
        resolved = await reconciler.resolve("s1")
        kinds = _kinds(resolved)
        assert (IssueKind.NULL_FIELDS, "light.a") in kinds
        assert (IssueKind.MISSING_CONFIG, "light.b") in kinds
        assert resolved.entities == {"light.a": Detailed({"state": "on"})}
        assert resolved.needs_write

    async def test_resolution_is_read_only(self, reconciler, fake_client, storage):
        fake_client.scene_configs["s1"] = {"id": "s1", "name": "X", "entities": {"light.a": "on"}}
        await reconciler.resolve("s1")
        assert fake_client.saved == []
        assert fake_client.calls == []
        assert storage.get("s1") is None
