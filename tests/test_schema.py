"""Tests for scene export and lenient bulk load."""

import math

import pytest

from lorahive_sim.config import SimulationConfig
from lorahive_sim.core import Simulation
from lorahive_sim.io.schema import SceneLoadError, SceneSnapshot


@pytest.fixture
def scene():
    sim = Simulation(config=SimulationConfig(spreading_factor=9, meters_per_pixel=3.5))
    sim.add_hive(100, 200, tx_power_dbm=12)
    sim.add_hive(300, 250, amplitude=1.4)
    sim.add_circle_obstacle(200, 220, radius=5, material="field")
    sim.add_polygon_obstacle([(0, 0), (50, 0), (50, 40)], material="concrete", absorption=0.001)
    sim.emit("Hive 1")
    for now in (10_000, 20_000, 30_000):
        sim.tick(now)
    return sim


def test_export_contents(scene):
    snap = scene.export_scene()
    assert isinstance(snap, SceneSnapshot)
    assert snap.version == 1
    assert snap.settings.spreading_factor == 9
    assert [h.id for h in snap.hives] == ["Hive 1", "Hive 2"]
    assert [o.type for o in snap.obstacles] == ["circle", "polygon"]
    assert snap.server.seen_data == ["Hive 1#1"]
    assert snap.seq_counter == 2


def test_round_trip_is_exact(scene):
    exported = scene.export_scene().model_dump()
    fresh = Simulation()
    fresh.load_scene(exported)
    assert fresh.export_scene().model_dump() == exported
    assert fresh.config == scene.config
    assert fresh.node("Hive 2").seen_data == scene.node("Hive 2").seen_data
    assert fresh.obstacle(2).absorption == 0.001


def test_sequence_resumes(scene):
    fresh = Simulation()
    fresh.load_scene(scene.export_scene())
    assert fresh.emit("Hive 2").payload.seq == 2


def test_replace_clears_waves(scene):
    scene.emit("Hive 2")
    scene.load_scene({"hives": [{"x": 1, "y": 2}]})
    assert scene.waves == []
    assert [h.id for h in scene.hives] == ["Hive 1"]
    assert scene.obstacles == []


def test_extend_keeps_existing(scene):
    scene.load_scene({"hives": [{"id": "Hive 1", "x": 5, "y": 5}], "obstacles": [{"id": 1, "x": 9, "y": 9}]},
                     replace=False)
    assert [h.id for h in scene.hives] == ["Hive 1", "Hive 2", "Hive 3"]
    assert sorted(o.id for o in scene.obstacles) == [1, 2, 3]


class TestLenientLoad:
    def test_bad_coordinates_default_to_zero(self):
        sim = Simulation()
        sim.load_scene({"hives": [{"id": "A", "x": "left", "y": math.nan}]})
        assert (sim.node("A").x, sim.node("A").y) == (0.0, 0.0)

    def test_non_string_id_generated(self):
        sim = Simulation()
        sim.load_scene({"hives": [{"id": 42, "x": 1, "y": 1}, {"x": 2, "y": 2}]})
        assert [h.id for h in sim.hives] == ["Hive 1", "Hive 2"]

    def test_invalid_dedup_keys_dropped(self):
        sim = Simulation()
        sim.load_scene({"hives": [{"id": "A", "seen_data": ["B#3", "nonsense", 7, "C#x"]}]})
        assert sim.node("A").seen_data == {("B", 3)}

    def test_short_polygon_skipped(self):
        sim = Simulation()
        sim.load_scene({"obstacles": [
            {"type": "polygon", "points": [[0, 0], [1, 1], ["a", 2]]},
            {"type": "polygon", "points": [{"x": 0, "y": 0}, {"x": 5, "y": 0}, {"x": 5, "y": 5}]},
        ]})
        assert len(sim.obstacles) == 1
        assert sim.obstacles[0].material == "brick"

    def test_settings_clamped(self):
        sim = Simulation()
        sim.load_scene({"settings": {"spreading_factor": 99, "meters_per_pixel": "x", "max_retrans": 2.6}})
        assert sim.config.spreading_factor == 12
        assert sim.config.meters_per_pixel == 2.0
        assert sim.config.max_retrans == 3

    def test_garbage_entries_skipped(self):
        sim = Simulation()
        sim.load_scene({"hives": ["oops", None, {"x": 1}], "obstacles": [3, "x"]})
        assert len(sim.hives) == 1
        assert sim.obstacles == []

    def test_server_relocated(self):
        sim = Simulation()
        sim.load_scene({"server": {"x": 10, "y": 20, "id": "Gateway"}})
        assert sim.server.id == "Gateway"
        assert (sim.server.x, sim.server.y) == (10.0, 20.0)

    @pytest.mark.parametrize("bad", [None, 5, "scene", [1, 2]])
    def test_non_mapping_rejected_without_change(self, bad):
        sim = Simulation()
        sim.add_hive(1, 1)
        with pytest.raises(SceneLoadError):
            sim.load_scene(bad)
        assert len(sim.hives) == 1

    def test_wrong_section_shape_rejected(self):
        sim = Simulation()
        sim.add_hive(1, 1)
        with pytest.raises(SceneLoadError):
            sim.load_scene({"settings": "fast"})
        assert len(sim.hives) == 1
