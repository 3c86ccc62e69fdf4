"""
反向成像追迹器单元测试
"""

import math

import numpy as np
import pytest

from beam_propagation import BeamSegment, GaussianBeamField, initial_q, nm_to_mm
from optical_bench import (
    AnimationChannel,
    ComponentKind,
    ImagingConfig,
    Ray,
    UnknownComponentError,
)
from optical_bench.components import SampleFeature
from ray_tracing import (
    ScanConfig,
    ScanController,
    ScanError,
    ScanState,
    imaging_wavelengths,
    render_camera,
    render_image,
    request_scan,
    trace_backward,
)


def axial_field(wavelength_nm=532.0, waist=2.0, length=1000.0):
    """沿 +Z 从原点出发的单段光束场"""
    q = initial_q(waist, nm_to_mm(wavelength_nm))
    segment = BeamSegment(
        start=np.zeros(3),
        direction=np.array([0.0, 0.0, 1.0]),
        length=length,
        q_x=q,
        q_y=q,
        power=1.0,
    )
    return GaussianBeamField([segment], wavelength_nm)


@pytest.fixture
def brightfield(make_component):
    """相机正对一台激光器"""
    def build(wavelength_nm=532.0):
        camera = make_component(
            ComponentKind.CAMERA, width=4.0, height=4.0, res_x=4, res_y=3,
            sensor_na=0.01, samples_per_pixel=2,
        )
        laser = make_component(
            ComponentKind.LASER, position=(0, 0, 200), direction=(0, 0, -1), wavelength_nm=wavelength_nm,
        )
        return [camera, laser], camera
    return build


class TestBackwardTrace:
    """单条反向光线"""

    def test_laser_within_tolerance(self, make_component):
        laser = make_component(ComponentKind.LASER, position=(0, 0, 100), direction=(0, 0, -1), power=0.7)
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1), wavelength_nm=540.0)
        sample = trace_backward([laser], ray)
        assert sample.radiance == pytest.approx(0.7)
        assert not sample.absorbed

    def test_laser_outside_tolerance(self, make_component):
        laser = make_component(ComponentKind.LASER, position=(0, 0, 100), direction=(0, 0, -1))
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1), wavelength_nm=560.0)
        sample = trace_backward([laser], ray)
        assert sample.radiance == 0.0
        assert sample.absorbed

    def test_lamp_always_contributes(self, make_component):
        lamp = make_component(ComponentKind.LAMP, position=(0, 0, 100), direction=(0, 0, -1), power=0.3)
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1), wavelength_nm=900.0)
        assert trace_backward([lamp], ray).radiance == pytest.approx(0.3)

    def test_blocker_terminates(self, make_component):
        blocker = make_component(ComponentKind.BLOCKER, position=(0, 0, 50))
        lamp = make_component(ComponentKind.LAMP, position=(0, 0, 100), direction=(0, 0, -1))
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1))
        sample = trace_backward([blocker, lamp], ray)
        assert sample.radiance == 0.0
        assert sample.absorbed

    def test_mirror_redirects_to_source(self, make_component):
        mirror = make_component(ComponentKind.MIRROR, position=(0, 0, 100), direction=(-1, 0, 1))
        lamp = make_component(ComponentKind.LAMP, position=(100, 0, 100), direction=(-1, 0, 0))
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1))
        sample = trace_backward([mirror, lamp], ray)
        assert sample.radiance == pytest.approx(1.0)
        assert len(sample.rays) == 2

    def test_escaped_ray_has_no_radiance(self):
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1))
        sample = trace_backward([], ray)
        assert sample.radiance == 0.0
        assert sample.hits == []

    def test_sample_background_transmission(self, make_component):
        """样品背景 = 弦远端的光束强度 × exp(-α·弦长)"""
        sample_component = make_component(
            ComponentKind.SAMPLE, position=(0, 0, 100),
            features=(SampleFeature((0, 0, 0), 5.0),), fluorescence_efficiency=0.0,
        )
        sample_component.set_absorption(0.1)
        field = axial_field()
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1), wavelength_nm=532.0)
        result = trace_backward([sample_component], ray, beam_fields=[field])
        expected = field.intensity_at([0, 0, 105]) * math.exp(-1.0)
        assert result.radiance == pytest.approx(expected)

    def test_sample_fluorescence_adds(self, make_component):
        sample_component = make_component(
            ComponentKind.SAMPLE, position=(0, 0, 100), features=(SampleFeature((0, 0, 0), 5.0),),
        )
        field = axial_field(wavelength_nm=488.0)
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1), wavelength_nm=520.0)
        result = trace_backward([sample_component], ray, beam_fields=[field])
        assert result.radiance > 0.0


class TestWavelengths:
    """反向追迹波长"""

    def test_emission_first(self, make_component):
        sample_component = make_component(ComponentKind.SAMPLE)
        fields = [axial_field(488.0), axial_field(488.0), axial_field(633.0)]
        assert imaging_wavelengths([sample_component], fields) == [520.0, 488.0, 633.0]

    def test_fallback(self, make_component):
        assert imaging_wavelengths([make_component(ComponentKind.MIRROR)]) == [532.0]


class TestCamera:
    """相机渲染"""

    def test_brightfield_image(self, brightfield):
        components, camera = brightfield()
        image = render_camera(components, camera)
        assert image.shape == (3, 4)
        np.testing.assert_allclose(image, 1.0)

    def test_wavelength_mismatch_is_dark(self, brightfield):
        components, camera = brightfield(wavelength_nm=650.0)
        image = render_camera(components, camera)
        assert not image.any()

    def test_render_image_camera(self, brightfield):
        components, camera = brightfield()
        result = render_image(components, camera.id, config=ImagingConfig(samples_per_pixel=1))
        assert result.state is ScanState.DONE
        assert result.complete
        assert result.image.shape == (3, 4)
        assert result.writes[:5] == [(0, 0), (1, 0), (2, 0), (3, 0), (0, 1)]
        assert result.progress_log[-1] == 1.0


class TestRenderImage:
    """成像入口"""

    def test_unknown_detector(self, make_component):
        with pytest.raises(UnknownComponentError):
            render_image([make_component(ComponentKind.CAMERA)], 'missing')

    def test_non_imaging_detector(self, make_component):
        card = make_component(ComponentKind.CARD)
        with pytest.raises(ScanError):
            render_image([card], card.id)

    def test_pmt_without_scan(self, make_component):
        pmt = make_component(ComponentKind.PMT)
        lamp = make_component(ComponentKind.LAMP, position=(0, 0, 100), direction=(0, 0, -1))
        result = render_image([pmt, lamp], pmt.id, config=ImagingConfig(samples_per_pixel=1))
        assert result.image.shape == (1, 1)
        assert result.image[0, 0] == pytest.approx(1.0)

    def test_pmt_scan(self, make_component):
        pmt = make_component(ComponentKind.PMT)
        mirror = make_component(ComponentKind.MIRROR, position=(0, 0, 100), direction=(-1, 0, 1))
        lamp = make_component(ComponentKind.LAMP, position=(100, 0, 100), direction=(-1, 0, 0))
        channel = AnimationChannel(mirror.id, 'position.x', -0.5, 0.5)
        scan = ScanConfig(channel, res_x=4, res_y=4, chunk_size=3)
        result = render_image(
            [pmt, mirror, lamp], pmt.id, scan_config=scan, config=ImagingConfig(samples_per_pixel=1),
        )
        assert result.state is ScanState.DONE
        assert result.image.shape == (4, 4)
        assert result.writes == [(ix, iy) for iy in range(4) for ix in range(4)]
        np.testing.assert_allclose(result.image, 1.0)

    def test_request_scan_supersedes(self, make_component):
        pmt = make_component(ComponentKind.PMT)
        mirror = make_component(ComponentKind.MIRROR, position=(0, 0, 100))
        channel = AnimationChannel(mirror.id, 'position.x', -1.0, 1.0)
        scan = ScanConfig(channel, res_x=2, res_y=2)
        config = ImagingConfig(samples_per_pixel=1)
        controller = ScanController()
        first = request_scan(controller, [pmt, mirror], pmt.id, scan, config=config)
        second = request_scan(controller, [pmt, mirror], pmt.id, scan, config=config)
        assert first.run().state is ScanState.CANCELLED
        assert second.run().state is ScanState.DONE
