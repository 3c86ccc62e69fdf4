"""
表面几何单元测试

验证各类元件在局部与全局坐标系下的光线求交。
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose

from optical_bench import ComponentKind, OpticalComponent, Ray, SampleFeature, find_intersection, intersect
from optical_bench.geometry import prism_planes, sample_chord


class TestPlanar:
    """平面类元件"""

    def test_mirror_hit_at_origin(self, axial_ray):
        mirror = OpticalComponent.create(ComponentKind.MIRROR)
        hit = find_intersection(mirror, axial_ray(z=-10.0))
        assert hit is not None
        assert hit.t == pytest.approx(10.0)
        assert_allclose(hit.point, [0, 0, 0], atol=1e-12)
        assert hit.component_id == mirror.id

    def test_mirror_miss_outside_extent(self, axial_ray):
        mirror = OpticalComponent.create(ComponentKind.MIRROR, width=10.0, height=10.0)
        assert find_intersection(mirror, axial_ray(x=6.0, z=-10.0)) is None

    def test_parallel_ray_misses(self):
        mirror = OpticalComponent.create(ComponentKind.MIRROR)
        ray = Ray(origin=(0, 0, -10), direction=(1, 0, 0))
        assert find_intersection(mirror, ray) is None

    def test_hit_behind_origin_ignored(self, axial_ray):
        """t 不大于 t_min 的交点无效"""
        mirror = OpticalComponent.create(ComponentKind.MIRROR)
        assert find_intersection(mirror, axial_ray(z=10.0)) is None
        assert find_intersection(mirror, axial_ray(z=0.0)) is None

    def test_transformed_mirror(self):
        """全局求交经过元件位姿变换"""
        mirror = OpticalComponent.create(ComponentKind.MIRROR, position=(50, 0, 0))
        mirror.point_along((-1, 0, 0))
        ray = Ray(origin=(0, 1, 0), direction=(1, 0, 0))
        hit = find_intersection(mirror, ray)
        assert hit.t == pytest.approx(50.0)
        assert_allclose(hit.point, [50, 1, 0], atol=1e-9)
        assert abs(hit.normal[0]) == pytest.approx(1.0)

    def test_aperture_opening_flag(self, axial_ray):
        aperture = OpticalComponent.create(ComponentKind.APERTURE, opening_diameter=4.0)
        assert find_intersection(aperture, axial_ray(x=1.0)).extra['in_opening']
        assert not find_intersection(aperture, axial_ray(x=5.0)).extra['in_opening']

    def test_closed_aperture_blocks_center(self, axial_ray):
        aperture = OpticalComponent.create(ComponentKind.APERTURE, opening_diameter=0.0)
        assert not find_intersection(aperture, axial_ray()).extra['in_opening']

    def test_slit_opening(self, axial_ray):
        slit = OpticalComponent.create(ComponentKind.SLIT, slit_width=2.0, slit_height=10.0)
        assert find_intersection(slit, axial_ray(x=0.5, y=4.0)).extra['in_opening']
        assert not find_intersection(slit, axial_ray(x=2.0, y=0.0)).extra['in_opening']


class TestLenses:
    """折射元件"""

    def test_front_vertex_hit(self, axial_ray):
        """轴上光线命中前表面顶点 z = -t/2"""
        lens = OpticalComponent.create(ComponentKind.SPHERICAL_LENS, thickness=5.0)
        hit = find_intersection(lens, axial_ray(z=-20.0))
        assert hit.t == pytest.approx(17.5)
        assert hit.extra['ior'] == pytest.approx(lens.params.ior)
        assert hit.normal[2] < 0

    def test_from_inside_hits_back_surface(self):
        lens = OpticalComponent.create(ComponentKind.SPHERICAL_LENS, thickness=5.0)
        ray = Ray(origin=(0, 0, 0), direction=(0, 0, 1))
        hit = find_intersection(lens, ray)
        assert hit.point[2] == pytest.approx(2.5)
        assert hit.normal[2] > 0

    def test_outside_aperture_misses_faces(self, axial_ray):
        lens = OpticalComponent.create(ComponentKind.SPHERICAL_LENS, aperture_radius=5.0)
        hit = find_intersection(lens, axial_ray(x=8.0))
        assert hit is None or hit.extra.get('rim')

    def test_cylindrical_lens_front_surface(self, axial_ray):
        """柱面透镜：Y 方向有矢高，X 方向没有"""
        lens = OpticalComponent.create(ComponentKind.CYLINDRICAL_LENS, r1=50.0, thickness=5.0)
        on_axis = find_intersection(lens, axial_ray(z=-20.0))
        off_x = find_intersection(lens, axial_ray(x=5.0, z=-20.0))
        off_y = find_intersection(lens, axial_ray(y=5.0, z=-20.0))
        assert off_x.t == pytest.approx(on_axis.t)
        assert off_y.t > on_axis.t

    def test_prism_planes_are_outward(self):
        prism = OpticalComponent.create(ComponentKind.PRISM)
        for name, normal, offset in prism_planes(prism.params):
            assert offset > 0, name
            assert np.linalg.norm(normal) == pytest.approx(1.0)

    def test_prism_hit_from_outside(self):
        prism = OpticalComponent.create(ComponentKind.PRISM)
        ray = Ray(origin=(0, 0, -50), direction=(0, 0, 1))
        hit = find_intersection(prism, ray)
        assert hit is not None
        assert hit.extra['surface'] == 'entrance'


class TestMirrors:
    """曲面与多边形反射镜"""

    def test_curved_mirror_front_hit(self, axial_ray):
        mirror = OpticalComponent.create(ComponentKind.CURVED_MIRROR, thickness=3.0)
        hit = find_intersection(mirror, axial_ray(z=-20.0))
        assert hit.extra['surface'] == 'front'
        assert hit.point[2] == pytest.approx(-1.5)

    def test_curved_mirror_back_hit(self):
        mirror = OpticalComponent.create(ComponentKind.CURVED_MIRROR, thickness=3.0)
        ray = Ray(origin=(0, 0, 20), direction=(0, 0, -1))
        hit = find_intersection(mirror, ray)
        assert hit.extra['surface'] != 'front'

    def test_polygon_face_hit(self):
        """正六边形扫描镜：内切圆半径 10 处命中正对的面"""
        polygon = OpticalComponent.create(ComponentKind.POLYGON_SCANNER, num_faces=6, inscribed_radius=10.0)
        c, s = math.cos(math.pi / 6), math.sin(math.pi / 6)
        ray = Ray(origin=(50 * c, 50 * s, 0), direction=(-c, -s, 0))
        hit = find_intersection(polygon, ray)
        assert hit is not None
        assert hit.t == pytest.approx(40.0)


class TestVolumes:
    """体元件"""

    def test_blocker_box(self, axial_ray):
        blocker = OpticalComponent.create(ComponentKind.BLOCKER, depth=4.0)
        hit = find_intersection(blocker, axial_ray(z=-10.0))
        assert hit.point[2] == pytest.approx(-2.0)

    def test_laser_housing_hit(self):
        """激光器外壳位于发射面之后"""
        laser = OpticalComponent.create(ComponentKind.LASER)
        ray = Ray(origin=(0, 0, 10), direction=(0, 0, -1))
        hit = find_intersection(laser, ray)
        assert hit.point[2] == pytest.approx(0.0)

    def test_sample_chord(self):
        sample = OpticalComponent.create(
            ComponentKind.SAMPLE, features=(SampleFeature((0.0, 0.0, 0.0), 5.0),)
        )
        ray = Ray(origin=(0, 0, -20), direction=(0, 0, 1))
        hit = find_intersection(sample, ray)
        assert hit.t == pytest.approx(15.0)
        assert hit.extra['t_far'] == pytest.approx(25.0)
        assert hit.extra['chord'] == pytest.approx(10.0)

    def test_sample_chord_merges_overlapping_spheres(self):
        features = (SampleFeature((0.0, 0.0, 0.0), 2.0), SampleFeature((0.0, 0.0, 3.0), 2.0))
        sample = OpticalComponent.create(ComponentKind.SAMPLE, features=features)
        chord = sample_chord(sample.params, np.array([0.0, 0.0, -10.0]), np.array([0.0, 0.0, 1.0]))
        assert chord is not None
        assert chord[2] == pytest.approx(7.0)

    def test_sample_miss(self):
        sample = OpticalComponent.create(
            ComponentKind.SAMPLE, features=(SampleFeature((0.0, 0.0, 0.0), 1.0),)
        )
        ray = Ray(origin=(5, 0, -20), direction=(0, 0, 1))
        assert find_intersection(sample, ray) is None


class TestLocalIntersect:
    """局部求交入口"""

    def test_nan_ray_returns_none(self):
        mirror = OpticalComponent.create(ComponentKind.MIRROR)
        ray = Ray(origin=(math.nan, 0, -10), direction=(0, 0, 1))
        assert intersect(mirror, ray) is None
        assert find_intersection(mirror, ray) is None

    def test_local_hit_has_component_id(self):
        card = OpticalComponent.create(ComponentKind.CARD)
        hit = intersect(card, Ray(origin=(0, 0, -1), direction=(0, 0, 1)))
        assert hit.component_id == card.id
