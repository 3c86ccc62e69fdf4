"""
正向光线追迹器单元测试
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose

from optical_bench import ComponentKind, Ray, SpectralProfile, TraceConfig
from ray_tracing import Termination, nearest_hit, trace_scene


RING_POWER = 1.0 + 24 * math.exp(-2.0)


class TestBasicTrace:
    """基本追迹场景"""

    def test_laser_to_card(self, make_component):
        laser = make_component(ComponentKind.LASER)
        card = make_component(ComponentKind.CARD, position=(0, 0, 200), direction=(0, 0, -1))
        result = trace_scene([laser, card])
        assert len(result.detector_hits[card.id]) == 25
        assert result.detected_power(card.id) == pytest.approx(RING_POWER)
        assert result.dropped_count == 0
        assert all(p.termination is Termination.DETECTED for p in result.paths)

    def test_laser_alone_drops_all_seeds(self, make_component):
        """从未命中任何元件的种子光线计入丢弃数"""
        laser = make_component(ComponentKind.LASER)
        result = trace_scene([laser])
        assert result.paths == []
        assert result.dropped_count == 25

    def test_blocker_absorbs(self, make_component):
        laser = make_component(ComponentKind.LASER)
        blocker = make_component(ComponentKind.BLOCKER, position=(0, 0, 100))
        result = trace_scene([laser, blocker])
        assert len(result.paths) == 25
        assert all(p.termination is Termination.ABSORBED for p in result.paths)

    def test_escaped_path_points(self, make_component):
        laser = make_component(ComponentKind.LASER)
        lens = make_component(ComponentKind.IDEAL_LENS, position=(0, 0, 100))
        result = trace_scene([laser, lens], config=TraceConfig(seed_mode='center'))
        path = result.paths[0]
        assert path.escaped
        assert path.terminal_hit is None
        assert path.points.shape == (3, 3)
        assert path.component_ids == [lens.id]

    def test_main_path_and_source_id(self, make_component):
        laser = make_component(ComponentKind.LASER)
        card = make_component(ComponentKind.CARD, position=(0, 0, 100))
        result = trace_scene([laser, card])
        main = result.main_paths()
        assert len(main) == 1
        assert main[0].source_id == laser.id
        assert len(result.paths_from(laser.id)) == 25

    def test_lamp_paths_share_source_id(self, make_component):
        """灯源各波长的光线都归属同一光源"""
        lamp = make_component(ComponentKind.LAMP, wavelengths_nm=(450.0, 550.0))
        card = make_component(ComponentKind.CARD, position=(0, 0, 100))
        result = trace_scene([lamp, card])
        paths = result.paths_from(lamp.id)
        assert len(paths) == 50
        assert {p.rays[0].wavelength_nm for p in paths} == {450.0, 550.0}
        assert len(result.main_paths()) == 2

    def test_first_segment_ignores_emitter(self, make_component):
        """光源外壳不会拦截自身发出的光线"""
        laser = make_component(ComponentKind.LASER)
        card = make_component(ComponentKind.CARD, position=(0, 0, 50))
        result = trace_scene([laser, card], config=TraceConfig(seed_mode='center'))
        assert result.paths[0].component_ids == [card.id]


class TestBranching:
    """分光与荧光分支"""

    def test_dichroic_splits_into_two_detectors(self, make_component):
        laser = make_component(ComponentKind.LASER, wavelength_nm=500.0)
        dichroic = make_component(
            ComponentKind.DICHROIC, position=(0, 0, 100), direction=(-1, 0, 1),
            profile=SpectralProfile.longpass(500),
        )
        card_t = make_component(ComponentKind.CARD, position=(0, 0, 200))
        card_r = make_component(ComponentKind.CARD, position=(100, 0, 100), direction=(1, 0, 0))
        result = trace_scene([laser, dichroic, card_t, card_r])
        assert result.detected_power(card_t.id) == pytest.approx(0.5 * RING_POWER)
        assert result.detected_power(card_r.id) == pytest.approx(0.5 * RING_POWER)
        assert len(result.paths) == 50

    def test_sample_emits_fluorescence_branch(self, make_component):
        laser = make_component(ComponentKind.LASER, wavelength_nm=488.0)
        sample = make_component(ComponentKind.SAMPLE, position=(0, 0, 100))
        result = trace_scene([laser, sample], config=TraceConfig(seed=7))
        main = result.main_paths()
        assert len(main) >= 2
        emitted = [r for p in main for r in p.rays[1:] if not r.is_main]
        assert emitted
        assert all(400.0 < r.wavelength_nm < 650.0 for r in emitted)


class TestPolarizationAndSplitting:
    """偏振片与分束镜场景"""

    def test_crossed_polarizers_leave_card_dark(self, make_component):
        laser = make_component(ComponentKind.LASER)
        polarizer = make_component(ComponentKind.WAVEPLATE, position=(0, 0, 50), mode='polarizer')
        analyzer = make_component(
            ComponentKind.WAVEPLATE, position=(0, 0, 100), mode='polarizer', fast_axis_angle=math.pi / 2,
        )
        card = make_component(ComponentKind.CARD, position=(0, 0, 200))
        result = trace_scene([laser, polarizer, analyzer, card])
        assert result.detected_power(card.id) == 0.0
        assert all(p.termination is Termination.ABSORBED for p in result.paths)

    def test_half_wave_plate_between_crossed_polarizers(self, make_component):
        laser = make_component(ComponentKind.LASER)
        plate = make_component(ComponentKind.WAVEPLATE, position=(0, 0, 75), fast_axis_angle=math.pi / 4)
        analyzer = make_component(
            ComponentKind.WAVEPLATE, position=(0, 0, 100), mode='polarizer', fast_axis_angle=math.pi / 2,
        )
        card = make_component(ComponentKind.CARD, position=(0, 0, 200))
        result = trace_scene([laser, plate, analyzer, card])
        assert result.detected_power(card.id) == pytest.approx(RING_POWER)

    def test_even_splitter_conserves_power(self, make_component):
        laser = make_component(ComponentKind.LASER)
        splitter = make_component(ComponentKind.BEAM_SPLITTER, position=(0, 0, 100), direction=(-1, 0, 1))
        card_t = make_component(ComponentKind.CARD, position=(0, 0, 200))
        card_r = make_component(ComponentKind.CARD, position=(100, 0, 100), direction=(1, 0, 0))
        result = trace_scene([laser, splitter, card_t, card_r])
        transmitted = result.detected_power(card_t.id)
        reflected = result.detected_power(card_r.id)
        assert transmitted == pytest.approx(0.5 * RING_POWER)
        assert reflected == pytest.approx(0.5 * RING_POWER)
        assert transmitted + reflected == pytest.approx(RING_POWER)

    def test_point_source_fan_reaches_card(self, make_component):
        source = make_component(ComponentKind.POINT_SOURCE, cone_half_angle=math.radians(10.0))
        card = make_component(ComponentKind.CARD, position=(0, 0, 100))
        result = trace_scene([source, card])
        hits = result.detector_hits[card.id]
        assert len(hits) == 11
        xs = sorted(h.hit.point[0] for h in hits)
        assert xs[0] == pytest.approx(-100.0 * math.tan(math.radians(10.0)))
        assert xs[-1] == pytest.approx(100.0 * math.tan(math.radians(10.0)))
        assert len(result.paths_from(source.id)) == 11


class TestDropping:
    """丢弃与警告"""

    def test_unknown_emitter_warns(self, make_component):
        card = make_component(ComponentKind.CARD)
        with pytest.warns(UserWarning):
            result = trace_scene([card], emitters=['missing'])
        assert result.paths == []

    def test_nan_seed_warns_and_drops(self, make_component, monkeypatch):
        import ray_tracing.forward_tracer as forward_tracer

        laser = make_component(ComponentKind.LASER)
        bad = Ray(origin=(math.nan, 0, 0), direction=(0, 0, 1))
        monkeypatch.setattr(forward_tracer, 'seed_rays', lambda *args, **kwargs: [bad])
        with pytest.warns(UserWarning):
            result = trace_scene([laser])
        assert result.dropped_count == 1

    def test_max_bounces_override(self, make_component):
        laser = make_component(ComponentKind.LASER)
        card = make_component(ComponentKind.CARD, position=(0, 0, 100))
        result = trace_scene([laser, card], max_bounces=1, ray_count_per_emitter=36)
        assert len(result.detector_hits[card.id]) == 37

    def test_deterministic_without_randomness(self, make_component):
        laser = make_component(ComponentKind.LASER)
        lens = make_component(ComponentKind.SPHERICAL_LENS, position=(0, 0, 50))
        card = make_component(ComponentKind.CARD, position=(0, 0, 150))
        first = trace_scene([laser, lens, card])
        second = trace_scene([laser, lens, card])
        a = np.array([h.hit.point for h in first.detector_hits[card.id]])
        b = np.array([h.hit.point for h in second.detector_hits[card.id]])
        assert_allclose(a, b)


class TestNearestHit:
    """最近命中搜索"""

    def test_picks_closest(self, make_component, axial_ray):
        near = make_component(ComponentKind.CARD, position=(0, 0, 10))
        far = make_component(ComponentKind.CARD, position=(0, 0, 20))
        component, hit = nearest_hit([far, near], axial_ray(z=0.0), 1e-3)
        assert component is near
        assert hit.t == pytest.approx(10.0)

    def test_skip_id(self, make_component, axial_ray):
        near = make_component(ComponentKind.CARD, position=(0, 0, 10))
        far = make_component(ComponentKind.CARD, position=(0, 0, 20))
        component, _ = nearest_hit([far, near], axial_ray(z=0.0), 1e-3, skip_id=near.id)
        assert component is far

    def test_no_hit(self, make_component, axial_ray):
        card = make_component(ComponentKind.CARD, position=(0, 0, -10))
        assert nearest_hit([card], axial_ray(z=0.0), 1e-3) is None
