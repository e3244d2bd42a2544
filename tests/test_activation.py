"""Tests for the activation driver."""
import pytest

from hass_scenes.activation import SceneActivator
from hass_scenes.models import ActivationResult, Detailed, IssueKind, SceneConfiguration, SceneMode, Shorthand
from hass_scenes.quirks import DeviceProfileResolver

from .conftest import IKEA_INFO


@pytest.fixture
def activator(fake_client):
    return SceneActivator(fake_client, DeviceProfileResolver(fake_client))


def _scene(entities, mode=SceneMode.EXCLUSIVE):
    return SceneConfiguration("s1", "Test", entities, mode)


class TestSplitSequencing:
    async def test_split_device_gets_two_commands(self, activator, fake_client):
        fake_client.add_light("light.kitchen", on=True)
        fake_client.device_info["light.kitchen"] = IKEA_INFO
        scene = _scene({"light.kitchen": Detailed({"state": "on", "color_temp_kelvin": 2700, "brightness": 120})})

        result = await activator.activate(scene, await fake_client.get_lights())

        turn_ons = [c for c in fake_client.light_calls("light.kitchen") if c.service == "turn_on"]
        assert len(turn_ons) == 2
        assert turn_ons[0].data == {"entity_id": "light.kitchen", "color_temp_kelvin": 2700}
        assert turn_ons[1].data == {"entity_id": "light.kitchen", "brightness": 120}
        assert turn_ons[1].at - turn_ons[0].at == pytest.approx(0.5)
        assert result.split_sequenced == 1
        assert any(i.kind is IssueKind.SPLIT_SEQUENCED for i in result.issues)

    async def test_split_device_without_colour_single_command(self, activator, fake_client):
        fake_client.add_light("light.kitchen")
        fake_client.device_info["light.kitchen"] = IKEA_INFO
        scene = _scene({"light.kitchen": Detailed({"state": "on", "brightness": 80})}, SceneMode.ADDITIVE)

        result = await activator.activate(scene, await fake_client.get_lights())

        calls = fake_client.light_calls("light.kitchen")
        assert [c.data for c in calls] == [{"entity_id": "light.kitchen", "brightness": 80}]
        assert result.split_sequenced == 0

    async def test_standard_device_single_combined_command(self, activator, fake_client):
        fake_client.add_light("light.desk")
        scene = _scene(
            {"light.desk": Detailed({"state": "on", "rgb_color": [255, 0, 0], "brightness": 200})},
            SceneMode.ADDITIVE,
        )

        await activator.activate(scene, await fake_client.get_lights())

        assert [c.data for c in fake_client.light_calls("light.desk")] == [
            {"entity_id": "light.desk", "rgb_color": [255, 0, 0], "brightness": 200}
        ]

    async def test_standard_devices_before_split(self, activator, fake_client):
        fake_client.add_light("light.ikea_a")
        fake_client.add_light("light.hall")
        scene = _scene({"light.ikea_a": Shorthand(True), "light.hall": Shorthand(True)}, SceneMode.ADDITIVE)

        await activator.activate(scene, await fake_client.get_lights())

        assert [c.targets for c in fake_client.light_calls()] == [["light.hall"], ["light.ikea_a"]]


class TestPacing:
    async def test_fifty_ms_between_devices(self, activator, fake_client):
        for name in ("light.a", "light.b", "light.c"):
            fake_client.add_light(name)
        scene = _scene({n: Shorthand(True) for n in ("light.a", "light.b", "light.c")}, SceneMode.ADDITIVE)

        await activator.activate(scene, await fake_client.get_lights())

        times = [c.at for c in fake_client.light_calls()]
        assert times[0] == 0
        assert [round(b - a, 3) for a, b in zip(times, times[1:])] == [0.05, 0.05]


class TestExclusive:
    async def test_baseline_then_only_targets_on(self, activator, fake_client):
        fake_client.add_light("light.a", on=True)
        fake_client.add_light("light.b", on=True)
        fake_client.add_light("light.c")
        scene = _scene({"light.c": Detailed({"state": "on", "brightness": 50}), "light.a": Shorthand(False)})

        result = await activator.activate(scene, await fake_client.get_lights())

        first = fake_client.calls[0]
        assert first.service == "turn_off"
        assert sorted(first.targets) == ["light.a", "light.b"]
        assert fake_client.lights_on() == {"light.c"}
        assert result.corrected == []
        # Verification pass after a clean run is a no-op
        assert await activator.verify(scene) == []

    async def test_verification_corrects_stragglers(self, activator, fake_client):
        fake_client.add_light("light.a", on=True)
        fake_client.add_light("light.b", on=True)
        fake_client.sticky.add("light.b")
        scene = _scene({"light.a": Shorthand(True)})

        result = await activator.activate(scene, await fake_client.get_lights())

        assert result.corrected == ["light.b"]
        assert any(i.kind is IssueKind.VERIFY_CORRECTED for i in result.issues)
        assert fake_client.lights_on() == {"light.a"}
        assert await activator.verify(scene) == []

    async def test_timed_out_correction_not_reported_as_corrected(self, activator, fake_client):
        fake_client.add_light("light.a", on=True)
        fake_client.add_light("light.b", on=True)
        fake_client.timeouts.add("light.b")
        scene = _scene({"light.a": Shorthand(True)})

        result = await activator.activate(scene, await fake_client.get_lights())

        assert "light.b" not in result.corrected
        assert "light.b" in result.timed_out
        assert not any(i.kind is IssueKind.VERIFY_CORRECTED for i in result.issues)
        assert fake_client.lights_on() == {"light.a", "light.b"}
        assert await activator.verify(scene) == []

    async def test_additive_leaves_others_alone(self, activator, fake_client):
        fake_client.add_light("light.a")
        fake_client.add_light("light.b", on=True)
        scene = _scene({"light.a": Shorthand(True)}, SceneMode.ADDITIVE)

        await activator.activate(scene, await fake_client.get_lights())

        assert fake_client.lights_on() == {"light.a", "light.b"}
        assert all(c.service == "turn_on" for c in fake_client.light_calls())


class TestPartialFailure:
    async def test_timeout_does_not_abort(self, activator, fake_client):
        fake_client.add_light("light.a")
        fake_client.add_light("light.b")
        fake_client.timeouts.add("light.a")
        scene = _scene({"light.a": Shorthand(True), "light.b": Shorthand(True)}, SceneMode.ADDITIVE)

        result = await activator.activate(scene, await fake_client.get_lights())

        assert result.timed_out == ["light.a"]
        assert result.lights_set == 2
        assert fake_client.lights_on() == {"light.b"}
        assert any(i.kind is IssueKind.COMMAND_TIMED_OUT for i in result.issues)

    async def test_api_error_does_not_abort(self, activator, fake_client):
        fake_client.add_light("light.a")
        fake_client.add_light("light.b")
        fake_client.failures.add("light.a")
        scene = _scene({"light.a": Shorthand(True), "light.b": Shorthand(True)}, SceneMode.ADDITIVE)

        result = await activator.activate(scene, await fake_client.get_lights())

        assert result.failed == ["light.a"]
        assert fake_client.lights_on() == {"light.b"}

    async def test_bulk_timeout_records_entity_ids(self, activator, fake_client):
        fake_client.add_light("light.a", on=True)
        fake_client.add_light("light.b", on=True)
        fake_client.add_light("light.c")
        fake_client.timeouts.add("light.a")
        scene = _scene({"light.c": Shorthand(True)})

        result = await activator.activate(scene, await fake_client.get_lights())

        assert result.timed_out == ["light.a", "light.b"]
        timed_out_issues = [i.entity_id for i in result.issues if i.kind is IssueKind.COMMAND_TIMED_OUT]
        assert set(timed_out_issues) == {"light.a", "light.b"}


class TestApplyEntity:
    async def test_extras_only_when_requested(self, activator, fake_client):
        fake_client.add_light("light.a")
        cfg = Detailed({"state": "on", "brightness_pct": 40, "effect": "colorloop"})

        await activator.apply_entity("light.a", cfg, False, ActivationResult(), with_extras=True)
        await activator.apply_entity("light.a", cfg, False, ActivationResult())

        assert [c.data for c in fake_client.light_calls()] == [
            {"entity_id": "light.a", "brightness_pct": 40, "effect": "colorloop"},
            {"entity_id": "light.a", "brightness_pct": 40},
        ]
