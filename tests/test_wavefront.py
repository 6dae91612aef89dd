"""Tests for wave expansion, obstacle attenuation and reception."""

import math

import numpy as np
import pytest

from lorahive_sim.config import SimulationConfig
from lorahive_sim.core import Simulation, UnknownNodeError, ease
from lorahive_sim.core.wave import Wave
from lorahive_sim.propagation.attenuation import obstacle_loss_db
from lorahive_sim.protocols.packet import Payload, WaveKind


@pytest.fixture
def sim():
    return Simulation()


class TestEase:
    def test_phase_boundaries(self):
        assert ease(0.0) == 0.0
        assert ease(0.2) == pytest.approx(0.01)
        assert ease(0.6) == pytest.approx(0.4)
        assert ease(1.0) == pytest.approx(1.0)

    def test_clamped(self):
        assert ease(-1.0) == 0.0
        assert ease(3.0) == pytest.approx(1.0)

    def test_monotonic(self):
        values = [ease(p) for p in np.linspace(0.0, 1.0, 201)]
        assert all(b >= a for a, b in zip(values, values[1:]))


class TestExpansion:
    def test_radius_follows_curve(self, sim):
        hive = sim.add_hive(100, 100)
        wave = sim.emit(hive.id)
        sim.tick(6000)
        assert wave.radius == pytest.approx(0.4 * wave.max_radius)
        sim.tick(10_000)
        assert wave.radius == pytest.approx(wave.max_radius)
        sim.tick(10_500)
        assert wave.radius == pytest.approx(wave.max_radius)

    def test_realistic_fade_floor(self, sim):
        wave = sim.emit(sim.add_hive(0, 0).id)
        sim.tick(10_000)
        assert wave.fade == pytest.approx(0.05)

    def test_realistic_lifespan(self, sim):
        sim.emit(sim.add_hive(0, 0).id)
        sim.tick(10_999)
        assert len(sim.waves) >= 1
        sim.tick(11_000)
        assert all(w.emitter_id != "Hive 1" for w in sim.waves)

    def test_simplified_fade_per_frame(self):
        sim = Simulation(config=SimulationConfig(realistic=False, attenuation=0.01))
        wave = sim.emit(sim.add_hive(0, 0, amplitude=1.5).id)
        assert wave.fade == 1.5
        sim.tick(16.67)
        assert wave.fade == pytest.approx(1.49)
        sim.tick(16.67 * 11)
        assert wave.fade == pytest.approx(1.39)

    def test_simplified_wave_dies_when_faded(self):
        sim = Simulation(config=SimulationConfig(realistic=False, attenuation=0.05))
        sim.emit(sim.add_hive(0, 0).id)
        sim.tick(16.67 * 25)
        assert sim.waves[0].fade == 0.0
        sim.tick(16.67 * 26)
        assert sim.waves == []

    def test_max_radius_modes(self, sim):
        hive = sim.add_hive(0, 0)
        expected = sim.los_range_m(hive.tx_power_dbm) / sim.config.meters_per_pixel
        assert sim.max_radius_for(hive) == pytest.approx(expected)
        sim.configure(realistic=False)
        assert sim.max_radius_for(hive) == pytest.approx(408.0)

    def test_wave_view(self, sim):
        wave = sim.emit(sim.add_hive(3, 4).id)
        view = wave.view()
        assert (view["x"], view["y"], view["kind"], view["ttl"]) == (3.0, 4.0, "DATA", 2)
        assert len(view["sectors"]) == 72


class TestObstacles:
    def test_applied_once(self, sim):
        # field: alpha 0.03, diameter 20 px at 2 m/px -> 40 m
        sim.add_circle_obstacle(110, 100, radius=10, material="field")
        wave = sim.emit(sim.add_hive(100, 100).id)
        expected = math.exp(-0.03 * 40.0)
        for now in (5000, 8000, 10_000, 10_500):
            sim.tick(now)
            assert np.allclose(wave.sectors, expected)
        assert wave.applied_obstacles == {1}

    def test_uniform_across_sectors(self, sim):
        sim.add_polygon_obstacle([(200, 0), (210, 0), (210, 10), (200, 10)], material="brick")
        wave = sim.emit(sim.add_hive(0, 0).id)
        sim.tick(10_000)
        assert np.all(wave.sectors == wave.sectors[0])
        assert wave.sectors[0] < 1.0

    def test_sectors_never_increase(self, sim):
        sim.add_circle_obstacle(150, 100, radius=10, material="forest")
        sim.add_circle_obstacle(400, 100, radius=20, material="water")
        wave = sim.emit(sim.add_hive(100, 100).id)
        previous = wave.sectors.copy()
        for now in range(1000, 11_000, 1000):
            sim.tick(now)
            assert np.all(wave.sectors <= previous)
            previous = wave.sectors.copy()

    def test_weight_falls_as_absorption_rises(self):
        weights = []
        for alpha in (0.1, 1.0, 5.0):
            sim = Simulation()
            sim.add_circle_obstacle(150, 100, radius=10, material="brick", absorption=alpha)
            wave = sim.emit(sim.add_hive(100, 100).id)
            sim.tick(10_000)
            weights.append(float(wave.sectors[0]))
        assert weights == sorted(weights, reverse=True)
        assert weights[0] > weights[1] > weights[2]
        losses = [obstacle_loss_db(w) for w in weights]
        assert losses == sorted(losses)

    def test_untouched_obstacle_ignored(self, sim):
        sim.add_circle_obstacle(100_000, 100_000, radius=10)
        wave = sim.emit(sim.add_hive(0, 0).id)
        sim.tick(1000)
        assert np.all(wave.sectors == 1.0)

    def test_set_material(self, sim):
        ob = sim.add_circle_obstacle(0, 0)
        sim.set_obstacle_material(ob.id, "Water")
        assert (ob.material, ob.absorption) == ("water", 3.0)
        assert ob.loss == pytest.approx(0.3)
        sim.set_obstacle_material(ob.id, "field", loss=0.5)
        assert (ob.absorption, ob.loss) == (0.03, 0.5)
        with pytest.raises(ValueError):
            sim.set_obstacle_material(ob.id, "lava")


class TestReception:
    def test_self_exclusion(self, sim):
        hive = sim.add_hive(100, 100)
        wave = sim.emit(hive.id)
        sim.tick(10_000)
        assert hive.id in wave.evaluated
        assert hive.seen_data == set()
        assert sim.stats.dup_ignored == 0

    def test_each_node_evaluated_once(self, sim):
        sim.add_hive(100, 280)
        sim.emit("Hive 1")
        for now in (8000, 9000, 10_000):
            sim.tick(now)
        assert sim.stats.data_delivered == 1
        assert sim.stats.dup_ignored == 0

    def test_inclusive_sensitivity_boundary(self, sim, monkeypatch):
        monkeypatch.setattr(
            "lorahive_sim.propagation.attenuation.free_space_path_loss", lambda d, f: 132.0
        )
        hive = sim.add_hive(100, 280, tx_power_dbm=14)
        wave = sim.emit(hive.id)
        # 14 dBm - 132 dB = -118 dBm, exactly the SF7/125 kHz sensitivity
        assert sim.can_receive(wave, sim.server)
        hive.tx_power_dbm = 13.9
        assert not sim.can_receive(wave, sim.server)

    def test_inclusive_radius_boundary(self):
        sim = Simulation(config=SimulationConfig(meters_per_pixel=0.001))
        sender = sim.add_hive(0, 0)
        edge = sim.add_hive(200_000, 0)
        beyond = sim.add_hive(0, 200_000.5)
        wave = sim.emit(sender.id)
        assert wave.max_radius == 200_000.0
        sim.tick(10_000)
        assert wave.radius == 200_000.0
        assert edge.id in wave.evaluated
        assert beyond.id not in wave.evaluated

    def test_server_ignores_ack(self, sim):
        sim.add_hive(100, 280)
        payload = Payload(origin="Hive 1", seq=7, created_ms=0.0)
        wave = sim.emit("Hive 1", WaveKind.ACK, payload, ttl=1)
        sim.tick(10_000)
        assert sim.server.id not in wave.evaluated
        assert sim.stats.shadow_drops == 0

    def test_metal_obstacle_shadows_server(self, sim):
        sim.add_hive(150, 280)
        sim.add_circle_obstacle(300, 280, radius=40, material="metal", absorption=5)
        wave = sim.emit("Hive 1")
        sim.tick(10_000)
        weight = float(wave.sectors[wave.sector_toward(sim.server.x, sim.server.y)])
        assert obstacle_loss_db(weight) == 60.0
        assert not sim.can_receive(wave, sim.server)
        assert sim.stats.shadow_drops == 1
        assert sim.stats.server_shadow_drops == 1
        assert sim.stats.data_delivered == 0

    def test_simplified_threshold(self):
        sim = Simulation(config=SimulationConfig(realistic=False, attenuation=0.0005))
        sim.add_hive(400, 280)
        wave = sim.emit("Hive 1")
        sim.tick(100)
        assert sim.can_receive(wave, sim.server)
        wave.fade = 0.05
        assert not sim.can_receive(wave, sim.server)


class TestEmit:
    def test_unknown_node(self, sim):
        with pytest.raises(UnknownNodeError):
            sim.emit("ghost")

    def test_ack_requires_payload(self, sim):
        sim.add_hive(0, 0)
        with pytest.raises(ValueError):
            sim.emit("Hive 1", "ACK")

    def test_sequence_numbers(self, sim):
        sim.add_hive(0, 0)
        first = sim.emit("Hive 1")
        second = sim.emit("Hive 1")
        assert (first.payload.seq, second.payload.seq) == (1, 2)
        assert sim.stats.data_sent == 2

    def test_waves_from_removed_emitter_keep_running(self, sim):
        sim.add_hive(100, 280)
        wave = sim.emit("Hive 1")
        sim.remove_hive("Hive 1")
        sim.tick(10_000)
        assert sim.stats.data_delivered == 1
        assert isinstance(wave, Wave)

    def test_server_cannot_be_removed(self, sim):
        with pytest.raises(ValueError):
            sim.remove_hive(sim.server.id)


class TestClock:
    EPOCH = 1.7e12

    def test_emit_at_wall_clock_time(self, sim):
        sim.add_hive(150, 280)
        wave = sim.emit("Hive 1", now_ms=self.EPOCH)
        assert wave.start_ms == self.EPOCH
        assert wave.payload.created_ms == self.EPOCH
        for step in range(1, 31):
            sim.tick(self.EPOCH + step * 1000.0)
        assert sim.stats.data_delivered == 1
        assert sim.stats.origin_acked == 1
        assert 0 < sim.stats.avg_latency_ms < 30_000

    def test_emit_after_first_tick_uses_its_time(self, sim):
        sim.add_hive(150, 280)
        sim.tick(self.EPOCH)
        wave = sim.emit("Hive 1")
        assert wave.start_ms == self.EPOCH
        sim.tick(self.EPOCH + 10_000)
        assert sim.stats.data_delivered == 1

    def test_non_finite_emit_time_rejected(self, sim):
        sim.add_hive(0, 0)
        with pytest.raises(ValueError):
            sim.emit("Hive 1", now_ms=math.nan)
        assert sim.stats.data_sent == 0


class TestNonFiniteNodes:
    def test_add_and_move_rejected(self, sim):
        with pytest.raises(ValueError):
            sim.add_hive(math.nan, 0)
        hive = sim.add_hive(150, 280)
        with pytest.raises(ValueError):
            sim.move_node(hive.id, 0, math.inf)
        assert sim.hives == [hive]
        assert (hive.x, hive.y) == (150.0, 280.0)

    def test_corrupted_node_is_skipped_by_tick(self, sim):
        sim.add_hive(150, 280)
        ghost = sim.add_hive(200, 280)
        ghost.x = math.nan
        wave = sim.emit("Hive 1")
        for now in (5000, 10_000, 20_000):
            sim.tick(now)
        assert ghost.id not in wave.evaluated
        assert sim.stats.data_delivered == 1
