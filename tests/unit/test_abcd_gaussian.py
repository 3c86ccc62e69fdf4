"""
ABCD 矩阵与高斯光束复参数单元测试
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose

from beam_propagation import (
    GaussianBeam,
    PropagationError,
    apply_abcd,
    beam_radius,
    initial_q,
    nm_to_mm,
    wavefront_radius,
)
from optical_bench import ComponentKind, OpticalComponent, abcd_descriptor
from optical_bench.abcd import (
    CLOSED_APERTURE,
    centered,
    free_space_matrix,
    mirror_matrix,
    refraction_matrix,
    thick_lens_matrix,
    thin_lens_matrix,
)


WAVELENGTH_MM = nm_to_mm(532.0)


# ============================================================================
# 矩阵构造
# ============================================================================

class TestMatrices:
    """基本 ABCD 矩阵"""

    def test_free_space(self):
        assert_allclose(free_space_matrix(10.0), [[1, 10], [0, 1]])

    def test_thin_lens(self):
        assert_allclose(thin_lens_matrix(50.0), [[1, 0], [-0.02, 1]])

    def test_flat_mirror_is_identity(self):
        assert_allclose(mirror_matrix(math.inf), np.eye(2))

    def test_curved_mirror(self):
        assert mirror_matrix(200.0)[1, 0] == pytest.approx(-0.01)

    def test_flat_refraction(self):
        m = refraction_matrix(math.inf, 1.0, 1.5)
        assert m[1, 0] == 0.0
        assert m[1, 1] == pytest.approx(1 / 1.5)

    def test_thick_lens_unit_determinant(self):
        """空气中的厚透镜矩阵行列式为 1"""
        m = thick_lens_matrix(50.0, -50.0, 5.0, 1.5)
        assert np.linalg.det(m) == pytest.approx(1.0)

    def test_centering_keeps_power(self):
        m = thick_lens_matrix(50.0, -50.0, 5.0, 1.5)
        assert centered(m, 5.0)[1, 0] == pytest.approx(m[1, 0])


# ============================================================================
# 元件描述
# ============================================================================

class TestDescriptors:
    """各类型元件的 ABCD 描述"""

    def test_spherical_lens_power_matches_focal_length(self):
        lens = OpticalComponent.create(ComponentKind.SPHERICAL_LENS, r1=50.0, r2=-50.0, ior=1.5)
        d = abcd_descriptor(lens)
        assert -1.0 / d.abcd_x[1, 0] == pytest.approx(lens.params.focal_length)
        assert not d.is_astigmatic

    def test_ideal_lens(self):
        lens = OpticalComponent.create(ComponentKind.IDEAL_LENS, focal_length=80.0, aperture_radius=6.0)
        d = abcd_descriptor(lens)
        assert_allclose(d.abcd_x, thin_lens_matrix(80.0))
        assert d.aperture_xy == (6.0, 6.0)

    def test_curved_mirror(self):
        mirror = OpticalComponent.create(ComponentKind.CURVED_MIRROR, radius_of_curvature=200.0)
        assert abcd_descriptor(mirror).abcd_y[1, 0] == pytest.approx(-0.01)

    def test_cylindrical_lens_is_astigmatic(self):
        lens = OpticalComponent.create(ComponentKind.CYLINDRICAL_LENS, r1=50.0, width=30.0, aperture_radius=8.0)
        d = abcd_descriptor(lens)
        assert d.is_astigmatic
        assert d.abcd_x[1, 0] == 0.0
        assert d.abcd_y[1, 0] < 0.0
        assert d.aperture_xy == (15.0, 8.0)

    def test_slit_has_separate_apertures(self):
        slit = OpticalComponent.create(ComponentKind.SLIT, slit_width=2.0, slit_height=10.0)
        assert abcd_descriptor(slit).aperture_xy == (1.0, 5.0)

    def test_closed_aperture(self):
        aperture = OpticalComponent.create(ComponentKind.APERTURE, opening_diameter=0.0)
        assert abcd_descriptor(aperture).aperture_radius == CLOSED_APERTURE

    def test_prism_matrices_preserve_determinant(self):
        prism = OpticalComponent.create(ComponentKind.PRISM)
        d = abcd_descriptor(prism, 532.0)
        assert np.linalg.det(d.abcd_x) == pytest.approx(1.0)
        assert np.linalg.det(d.abcd_y) == pytest.approx(1.0)
        assert d.aperture_xy == (10.0, 10.0)

    def test_mirror_aperture(self):
        mirror = OpticalComponent.create(ComponentKind.MIRROR, width=20.0, height=10.0)
        d = abcd_descriptor(mirror)
        assert d.aperture_radius == 5.0
        assert_allclose(d.abcd_x, np.eye(2))


# ============================================================================
# 高斯光束复参数
# ============================================================================

class TestComplexBeamParameter:
    """q 参数运算"""

    def test_initial_q_recovers_waist(self):
        q = initial_q(1.5, WAVELENGTH_MM)
        assert beam_radius(q, WAVELENGTH_MM) == pytest.approx(1.5)
        assert wavefront_radius(q) == math.inf

    def test_free_space_round_trip(self):
        q = initial_q(1.0, WAVELENGTH_MM)
        q2 = apply_abcd(apply_abcd(q, free_space_matrix(250.0)), free_space_matrix(-250.0))
        assert q2 == pytest.approx(q)

    def test_thin_lens_sets_curvature(self):
        """准直光束经过 f = 100 的薄透镜后 R ≈ -100（会聚）"""
        q = apply_abcd(initial_q(1.0, WAVELENGTH_MM), thin_lens_matrix(100.0))
        assert wavefront_radius(q) == pytest.approx(-100.0, rel=1e-3)

    def test_beam_expands_with_distance(self):
        beam = GaussianBeam(wavelength_nm=532.0, w0=0.5)
        q = apply_abcd(beam.q_at(0.0), free_space_matrix(2 * beam.zR))
        assert beam_radius(q, WAVELENGTH_MM) == pytest.approx(beam.radius_at(2 * beam.zR))


class TestGaussianBeam:
    """GaussianBeam 数据类"""

    def test_rayleigh_range(self):
        beam = GaussianBeam(wavelength_nm=532.0, w0=1.0)
        assert beam.zR == pytest.approx(math.pi / WAVELENGTH_MM)

    def test_radius_at_rayleigh_range(self):
        beam = GaussianBeam(wavelength_nm=632.8, w0=0.8)
        assert beam.radius_at(beam.zR) == pytest.approx(0.8 * math.sqrt(2))

    def test_divergence(self):
        beam = GaussianBeam(wavelength_nm=1064.0, w0=2.0)
        assert beam.divergence == pytest.approx(beam.w0 / beam.zR)

    @pytest.mark.parametrize("kwargs", [
        dict(wavelength_nm=0.0, w0=1.0),
        dict(wavelength_nm=532.0, w0=-1.0),
        dict(wavelength_nm=532.0, w0=1.0, m2=0.5),
    ])
    def test_invalid_parameters_raise(self, kwargs):
        with pytest.raises(PropagationError):
            GaussianBeam(**kwargs)
