"""
光谱、ABCD 矩阵与高斯光束属性基测试

使用 hypothesis 库验证透过率范围、能量守恒与 ABCD 变换的不变量。
"""

import math

import numpy as np
from numpy.testing import assert_allclose
from hypothesis import given, strategies as st, settings

from beam_propagation import (
    GaussianBeam,
    apply_abcd,
    beam_radius,
    free_space_matrix,
    initial_q,
    nm_to_mm,
    thick_lens_matrix,
)
from optical_bench import (
    ComponentKind,
    OpticalComponent,
    Ray,
    SpectralProfile,
    find_intersection,
    interact,
)


# ============================================================================
# 测试策略定义
# ============================================================================

# 波长策略（单位 nm，紫外到近红外）
wavelength_strategy = st.floats(min_value=300.0, max_value=1100.0, allow_nan=False, allow_infinity=False)

# 截止波长策略（单位 nm）
cutoff_strategy = st.floats(min_value=350.0, max_value=900.0, allow_nan=False, allow_infinity=False)

# 边缘陡度策略（单位 nm）
steepness_strategy = st.floats(min_value=1.0, max_value=50.0, allow_nan=False, allow_infinity=False)

# 束腰半径策略（单位 mm）
waist_strategy = st.floats(min_value=0.05, max_value=10.0, allow_nan=False, allow_infinity=False)

# 传播距离策略（单位 mm）
distance_strategy = st.floats(min_value=-5000.0, max_value=5000.0, allow_nan=False, allow_infinity=False)

# 曲率半径策略（单位 mm，正负均可，避开零附近）
radius_strategy = st.one_of(
    st.floats(min_value=10.0, max_value=1000.0),
    st.floats(min_value=-1000.0, max_value=-10.0),
    st.just(math.inf),
)

# 折射率策略
index_strategy = st.floats(min_value=1.3, max_value=2.0, allow_nan=False, allow_infinity=False)


# ============================================================================
# 光谱曲线
# ============================================================================

@settings(max_examples=100)
@given(wavelength=wavelength_strategy, cutoff=cutoff_strategy, steepness=steepness_strategy)
def test_transmission_within_unit_interval(wavelength, cutoff, steepness):
    """
    任意预设的透过率都位于 [0, 1]。
    """
    profiles = [
        SpectralProfile.longpass(cutoff, steepness),
        SpectralProfile.shortpass(cutoff, steepness),
        SpectralProfile.bandpass(cutoff, 40.0, steepness),
        SpectralProfile.multiband([(cutoff, 20.0), (cutoff + 100.0, 30.0)], steepness),
    ]
    for profile in profiles:
        t = profile.transmission(wavelength)
        assert 0.0 <= t <= 1.0
        assert_allclose(profile.reflection(wavelength), 1.0 - t)


@settings(max_examples=100)
@given(wavelength=wavelength_strategy, cutoff=cutoff_strategy, steepness=steepness_strategy)
def test_longpass_shortpass_complement(wavelength, cutoff, steepness):
    """
    同一截止波长与陡度的长通与短通透过率之和为 1。
    """
    lp = SpectralProfile.longpass(cutoff, steepness).transmission(wavelength)
    sp = SpectralProfile.shortpass(cutoff, steepness).transmission(wavelength)
    assert_allclose(lp + sp, 1.0, atol=1e-12)


@settings(max_examples=100)
@given(wavelength=wavelength_strategy, cutoff=cutoff_strategy)
def test_dichroic_conserves_power(wavelength, cutoff):
    """
    二向色镜的透射与反射子光线功率之和等于入射功率（被丢弃的分支小于 1e-3）。
    """
    dichroic = OpticalComponent.create(ComponentKind.DICHROIC, profile=SpectralProfile.longpass(cutoff))
    ray = Ray(origin=(0, 0, -50), direction=(0, 0, 1), wavelength_nm=wavelength, power=1.0)
    hit = find_intersection(dichroic, ray)
    result = interact(dichroic, ray, hit, np.random.default_rng(0))
    total = sum(child.power for child in result.rays)
    assert 1.0 - 1e-3 <= total <= 1.0 + 1e-12


# ============================================================================
# ABCD 变换
# ============================================================================

@settings(max_examples=100)
@given(r1=radius_strategy, r2=radius_strategy, thickness=st.floats(min_value=0.5, max_value=50.0), n=index_strategy)
def test_thick_lens_unit_determinant(r1, r2, thickness, n):
    """
    空气中厚透镜的 ABCD 矩阵行列式为 1。
    """
    matrix = thick_lens_matrix(r1, r2, thickness, n)
    assert_allclose(np.linalg.det(matrix), 1.0, rtol=1e-9)


@settings(max_examples=100)
@given(w0=waist_strategy, d=distance_strategy, wavelength=wavelength_strategy)
def test_free_space_round_trip(w0, d, wavelength):
    """
    传播 d 后再传播 -d 回到原复参数。
    """
    q0 = initial_q(w0, nm_to_mm(wavelength))
    q = apply_abcd(apply_abcd(q0, free_space_matrix(d)), free_space_matrix(-d))
    assert abs(q - q0) <= 1e-9 * abs(q0) + 1e-9


@settings(max_examples=100)
@given(w0=waist_strategy, d=distance_strategy, wavelength=wavelength_strategy)
def test_free_space_matches_closed_form(w0, d, wavelength):
    """
    ABCD 传播得到的光束半径与 w(z) = w0·sqrt(1 + (z/zR)²) 一致。
    """
    beam = GaussianBeam(wavelength_nm=wavelength, w0=w0)
    q = apply_abcd(initial_q(w0, beam.wavelength_mm), free_space_matrix(d))
    assert_allclose(beam_radius(q, beam.wavelength_mm), beam.radius_at(d), rtol=1e-9)
    assert beam.radius_at(d) >= w0
