"""
扫描累积与协作式取消单元测试
"""

import pytest
from numpy.testing import assert_allclose

from optical_bench import AnimationChannel, ComponentKind
from ray_tracing import (
    ScanConfig,
    ScanController,
    ScanError,
    ScanState,
    default_scan_resolution,
)


@pytest.fixture
def scene(make_component):
    """PMT 与一块沿 X 扫描的平面镜"""
    pmt = make_component(ComponentKind.PMT)
    mirror = make_component(ComponentKind.MIRROR, position=(0, 0, 50), direction=(0, 0, -1))
    return [pmt, mirror], mirror


def mirror_x(mirror_id):
    """单步渲染函数：返回平面镜当前的 X 坐标"""
    def render_step(components):
        return next(c for c in components if c.id == mirror_id).position[0]
    return render_step


class TestScanConfig:
    """扫描配置"""

    def test_pixel_order_x_fast(self):
        config = ScanConfig(AnimationChannel('m', 'position.x', 0, 1), res_x=4, res_y=3)
        assert config.steps == 12
        assert config.pixel_of(0) == (0, 0)
        assert config.pixel_of(3) == (3, 0)
        assert config.pixel_of(4) == (0, 1)
        assert config.pixel_of(11) == (3, 2)

    def test_channel_values_at_pixel_centers(self):
        x = AnimationChannel('m', 'position.x', -0.1, 0.1)
        y = AnimationChannel('m', 'position.y', 0.0, 1.0)
        config = ScanConfig(x, res_x=4, res_y=2, y_channel=y)
        values = config.channel_values(5)
        assert values[x] == pytest.approx(-0.1 + 0.2 * 1.5 / 4)
        assert values[y] == pytest.approx(0.75)

    @pytest.mark.parametrize("kwargs", [dict(res_x=0), dict(res_y=-1), dict(chunk_size=0)])
    def test_invalid_config_raises(self, kwargs):
        with pytest.raises(ScanError):
            ScanConfig(AnimationChannel('m', 'position.x', 0, 1), **kwargs)

    def test_default_resolution(self):
        x = AnimationChannel('g', 'rotation.y', -0.1, 0.1, period_s=1 / 64)
        y = AnimationChannel('g2', 'rotation.x', -0.1, 0.1, period_s=1.0)
        assert default_scan_resolution(4096, x, y) == (64, 64)
        assert default_scan_resolution(4096, x) == (64, 1)

    def test_default_resolution_invalid_rate(self):
        x = AnimationChannel('g', 'rotation.y', -0.1, 0.1)
        with pytest.raises(ScanError):
            default_scan_resolution(0.0, x)


class TestScanJob:
    """扫描任务"""

    def test_full_scan_order_and_progress(self, scene):
        components, mirror = scene
        channel = AnimationChannel(mirror.id, 'position.x', -0.1, 0.1)
        config = ScanConfig(channel, res_x=4, res_y=4, chunk_size=3)
        job = ScanController().request(components, config, mirror_x(mirror.id))
        result = job.run()

        assert result.state is ScanState.DONE
        assert result.writes == [(ix, iy) for iy in range(4) for ix in range(4)]
        assert result.progress_log == pytest.approx([(k + 1) / 16 for k in range(16)])
        assert result.progress == 1.0
        for iy in range(4):
            for ix in range(4):
                assert result.image[iy, ix] == pytest.approx(-0.1 + 0.2 * (ix + 0.5) / 4)

    def test_scan_uses_private_copy(self, scene):
        components, mirror = scene
        channel = AnimationChannel(mirror.id, 'position.x', 5.0, 6.0)
        job = ScanController().request(components, ScanConfig(channel, res_x=2, res_y=1), mirror_x(mirror.id))
        job.run()
        assert_allclose(mirror.position, [0, 0, 50])

    def test_chunks_yield_progress(self, scene):
        components, mirror = scene
        channel = AnimationChannel(mirror.id, 'position.x', 0.0, 1.0)
        config = ScanConfig(channel, res_x=4, res_y=2, chunk_size=3)
        job = ScanController().request(components, config, mirror_x(mirror.id))
        assert list(job.run_chunks()) == pytest.approx([3 / 8, 6 / 8, 1.0])

    def test_progress_callback(self, scene):
        components, mirror = scene
        seen = []
        channel = AnimationChannel(mirror.id, 'position.x', 0.0, 1.0)
        job = ScanController().request(
            components, ScanConfig(channel, res_x=3, res_y=2), mirror_x(mirror.id), seen.append,
        )
        job.run()
        assert seen == pytest.approx([(k + 1) / 6 for k in range(6)])

    def test_cannot_run_twice(self, scene):
        components, mirror = scene
        channel = AnimationChannel(mirror.id, 'position.x', 0.0, 1.0)
        job = ScanController().request(components, ScanConfig(channel, res_x=2, res_y=1), mirror_x(mirror.id))
        job.run()
        with pytest.raises(ScanError):
            job.run()


class TestCancellation:
    """代号过期与取消"""

    def test_new_request_cancels_previous(self, scene):
        components, mirror = scene
        controller = ScanController()
        channel = AnimationChannel(mirror.id, 'position.x', 0.0, 1.0)
        config = ScanConfig(channel, res_x=4, res_y=4, chunk_size=3)

        first = controller.request(components, config, mirror_x(mirror.id))
        chunks = first.run_chunks()
        next(chunks)
        second = controller.request(components, config, mirror_x(mirror.id))
        assert list(chunks) == []

        assert first.state is ScanState.CANCELLED
        assert len(first.result.writes) == 3
        assert controller.active_job is second
        assert second.run().state is ScanState.DONE
        assert len(second.result.writes) == 16

    def test_cancel_mid_chunk_discards_chunk(self, scene):
        """分块内发生的取消使整个分块不被提交"""
        components, mirror = scene
        controller = ScanController()
        calls = []

        def render_step(step_components):
            calls.append(1)
            if len(calls) == 2:
                controller.cancel()
            return 1.0

        channel = AnimationChannel(mirror.id, 'position.x', 0.0, 1.0)
        job = controller.request(components, ScanConfig(channel, res_x=4, res_y=4, chunk_size=3), render_step)
        result = job.run()
        assert result.state is ScanState.CANCELLED
        assert result.writes == []
        assert result.progress == 0.0
        assert not result.image.any()

    def test_cancel_idle_job(self, scene):
        components, mirror = scene
        controller = ScanController()
        channel = AnimationChannel(mirror.id, 'position.x', 0.0, 1.0)
        job = controller.request(components, ScanConfig(channel, res_x=2, res_y=2), mirror_x(mirror.id))
        generation = controller.generation
        job.cancel()
        assert job.state is ScanState.CANCELLED
        assert controller.generation == generation + 1
        assert not controller.is_current(job.generation)
