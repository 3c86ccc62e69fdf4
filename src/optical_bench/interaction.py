"""
相互作用模块

根据元件类型，计算光线命中元件后的响应（按参数类型分派，见 INTERACTORS 表）：

| 元件 | 响应 |
|------|------|
| 平面镜 / 球面镜 / 多边形扫描镜 | 镜面反射，Jones 矢量取反（π 相移） |
| 二向色镜 | 透射 T(λ)、反射 1 - T(λ) 两路分光 |
| 透镜 / 棱镜表面 | 矢量 Snell 折射；全内反射时输出反射光线；离开玻璃时 Beer-Lambert 衰减 |
| 滤光片 | power *= T(λ) |
| 波片 / 偏振片 | Jones 矢量左乘 Jones 矩阵（局部 X/Y 基）；偏振片按 |J_out|²/|J_in|² 衰减 |
| 分束镜 | 反射 split_ratio、透射 1 - split_ratio 两路分光 |
| 光阑 / 狭缝 | 开口内原样通过，外壳上吸收 |
| 挡光块 / 光源外壳 / 点光源 / 侧壁 | 吸收 |
| 观察卡 / PMT / 相机 | 记录入射光线，光线终止 |
| 理想透镜 / 物镜 | 薄透镜偏折 tanθ' = tanθ - h/f，光程变化 -h²/(2f) |
| 样品 | 弦长 Beer-Lambert 衰减后继续传播，并按激发匹配度再发射荧光 |

输出光线均位于全局坐标系，bounce_count 递增。

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional
import numpy as np

from .components import (
    AMBIENT_INDEX,
    ApertureParams,
    BeamSplitterParams,
    BlockerParams,
    CameraParams,
    CardParams,
    CompoundLensParams,
    CurvedMirrorParams,
    CylindricalLensParams,
    DichroicParams,
    FilterParams,
    IdealLensParams,
    LampParams,
    LaserParams,
    MirrorParams,
    ObjectiveParams,
    OpticalComponent,
    PMTParams,
    PointSourceParams,
    PolygonScannerParams,
    PrismParams,
    SampleParams,
    SlitParams,
    SphericalLensParams,
    WaveplateParams,
)
from .rays import HitRecord, InteractionResult, Ray
from .vector_math import normalize, reflect_vector, refract_vector


# 滤光片透过率低于该值时光线终止
FILTER_MIN_TRANSMISSION = 1e-5

# 二向色镜分光后功率占比低于该值的分支被丢弃
DICHROIC_MIN_FRACTION = 1e-3

# 偏振片透过率低于该值时光线终止
POLARIZER_MIN_TRANSMISSION = 1e-9

# 荧光光线的最小功率
FLUORESCENCE_MIN_POWER = 1e-12

# FWHM 与高斯标准差之比 2·sqrt(2·ln2)
FWHM_TO_SIGMA = 2.0 * math.sqrt(2.0 * math.log(2.0))


def _negated(polarization):
    return tuple(-c for c in polarization)


def _advance(ray: Ray, hit: HitRecord) -> float:
    """到达命中点后的累积光程"""
    return ray.optical_path_length + ray.medium_index * hit.t


def _absorbed() -> InteractionResult:
    return InteractionResult(rays=(), attenuation=0.0, absorbed=True)


# =============================================================================
# 反射
# =============================================================================

def _reflected(ray: Ray, hit: HitRecord, power: Optional[float] = None) -> Ray:
    return ray.child(
        origin=hit.point,
        direction=reflect_vector(ray.direction, hit.normal),
        polarization=_negated(ray.polarization),
        power=ray.power if power is None else power,
        optical_path_length=_advance(ray, hit),
    )


def _interact_mirror(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    return InteractionResult(rays=(_reflected(ray, hit),))


def _interact_curved_mirror(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    if hit.extra.get('surface') != 'front':
        return _absorbed()
    return InteractionResult(rays=(_reflected(ray, hit),))


def _interact_dichroic(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    p: DichroicParams = component.params
    transmission = float(p.profile.transmission(ray.wavelength_nm))
    rays: List[Ray] = []
    if transmission >= DICHROIC_MIN_FRACTION:
        rays.append(ray.child(
            origin=hit.point,
            power=ray.power * transmission,
            optical_path_length=_advance(ray, hit),
        ))
    if 1.0 - transmission >= DICHROIC_MIN_FRACTION:
        rays.append(_reflected(ray, hit, power=ray.power * (1.0 - transmission)))
    return InteractionResult(rays=tuple(rays), absorbed=not rays)


def _interact_filter(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    p: FilterParams = component.params
    transmission = float(p.profile.transmission(ray.wavelength_nm))
    if transmission < FILTER_MIN_TRANSMISSION:
        return InteractionResult(rays=(), attenuation=transmission, absorbed=True)
    child = ray.child(
        origin=hit.point,
        power=ray.power * transmission,
        optical_path_length=_advance(ray, hit),
    )
    return InteractionResult(rays=(child,), attenuation=transmission)


# =============================================================================
# 偏振与分束
# =============================================================================

def _interact_waveplate(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    p: WaveplateParams = component.params
    polarization, transmission = p.transmit(ray.polarization)
    if transmission < POLARIZER_MIN_TRANSMISSION:
        return InteractionResult(rays=(), attenuation=transmission, absorbed=True)
    child = ray.child(
        origin=hit.point,
        polarization=polarization,
        power=ray.power * transmission,
        optical_path_length=_advance(ray, hit),
    )
    return InteractionResult(rays=(child,), attenuation=transmission)


def _interact_beam_splitter(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    r = component.params.split_ratio
    rays: List[Ray] = []
    if r > 0.0:
        rays.append(_reflected(ray, hit, power=ray.power * r))
    if r < 1.0:
        rays.append(ray.child(
            origin=hit.point,
            power=ray.power * (1.0 - r),
            optical_path_length=_advance(ray, hit),
        ))
    return InteractionResult(rays=tuple(rays))


# =============================================================================
# 折射
# =============================================================================

def _glass_index(component: OpticalComponent, ray: Ray, hit: HitRecord) -> float:
    if isinstance(component.params, PrismParams):
        return component.params.index_at(ray.wavelength_nm)
    return float(hit.extra['ior'])


def _interact_refractive(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    if hit.extra.get('rim'):
        return _absorbed()

    n_glass = _glass_index(component, ray, hit)
    d = ray.direction
    normal = np.asarray(hit.normal)
    entering = float(np.dot(d, normal)) < 0.0

    if entering:
        n1, n2 = AMBIENT_INDEX, n_glass
        facing = normal
        attenuation = 1.0
    else:
        n1, n2 = n_glass, AMBIENT_INDEX
        facing = -normal
        # 在玻璃内部传播了 hit.t
        attenuation = math.exp(-component.absorption_coeff * hit.t)

    opl = ray.optical_path_length + n1 * hit.t
    power = ray.power * attenuation
    refracted = refract_vector(d, facing, n1, n2)
    if refracted is None:
        # 全内反射：留在原介质中
        child = ray.child(
            origin=hit.point,
            direction=reflect_vector(d, facing),
            power=power,
            medium_index=n1,
            optical_path_length=opl,
        )
        return InteractionResult(rays=(child,), attenuation=attenuation)

    child = ray.child(
        origin=hit.point,
        direction=refracted,
        power=power,
        medium_index=n2,
        optical_path_length=opl,
    )
    return InteractionResult(rays=(child,), attenuation=attenuation)


# =============================================================================
# 光阑、遮挡与探测
# =============================================================================

def _interact_opening(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    if not hit.extra.get('in_opening'):
        return _absorbed()
    child = ray.child(origin=hit.point, optical_path_length=_advance(ray, hit))
    return InteractionResult(rays=(child,))


def _interact_absorber(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    return _absorbed()


def _interact_detector(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    return InteractionResult(rays=(), detected=True)


# =============================================================================
# 理想相位面
# =============================================================================

def _interact_thin_lens(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    f = component.params.focal_length
    local_point = hit.local_point
    d_local = np.asarray(hit.local_direction, dtype=np.float64)
    h = math.hypot(local_point[0], local_point[1])

    if h < 1e-12:
        direction = ray.direction
    else:
        r_hat = np.array([local_point[0] / h, local_point[1] / h, 0.0])
        # 斜率形式：横向斜率减去 h/f
        slopes = d_local / abs(d_local[2])
        out_local = normalize(slopes - (h / f) * r_hat)
        direction = component.frame.to_world_direction(out_local)

    child = ray.child(
        origin=hit.point,
        direction=direction,
        optical_path_length=_advance(ray, hit) - h * h / (2.0 * f),
    )
    return InteractionResult(rays=(child,))


# =============================================================================
# 样品
# =============================================================================

def _interact_sample(component: OpticalComponent, ray: Ray, hit: HitRecord, rng) -> InteractionResult:
    p: SampleParams = component.params
    chord = float(hit.extra.get('chord', 0.0))
    t_far = float(hit.extra.get('t_far', hit.t))
    attenuation = math.exp(-component.absorption_coeff * chord)

    exit_point = ray.origin + t_far * ray.direction
    rays: List[Ray] = [ray.child(
        origin=exit_point,
        power=ray.power * attenuation,
        optical_path_length=ray.optical_path_length + ray.medium_index * t_far,
    )]

    excitation_match = float(p.excitation_spectrum.transmission(ray.wavelength_nm))
    fluorescence_power = ray.power * excitation_match * p.fluorescence_efficiency
    if chord > 0.0 and fluorescence_power > FLUORESCENCE_MIN_POWER:
        if rng is None:
            rng = np.random.default_rng()
        sigma = p.emission_bandwidth_nm / FWHM_TO_SIGMA
        wavelength = max(1.0, float(rng.normal(p.emission_nm, sigma)))
        direction = rng.normal(size=3)
        while np.linalg.norm(direction) < 1e-9:
            direction = rng.normal(size=3)
        midpoint = ray.origin + 0.5 * (hit.t + t_far) * ray.direction
        # 荧光为非偏振光，随机取线偏振方向
        angle = float(rng.uniform(0.0, math.pi))
        rays.append(ray.child(
            origin=midpoint,
            direction=direction,
            wavelength_nm=wavelength,
            power=fluorescence_power,
            polarization=(complex(math.cos(angle)), complex(math.sin(angle))),
            optical_path_length=ray.optical_path_length + ray.medium_index * 0.5 * (hit.t + t_far),
            is_main=False,
        ))

    return InteractionResult(rays=tuple(rays), attenuation=attenuation)


# =============================================================================
# 分派表
# =============================================================================

Interactor = Callable[[OpticalComponent, Ray, HitRecord, Optional[np.random.Generator]], InteractionResult]

INTERACTORS: Dict[type, Interactor] = {
    MirrorParams: _interact_mirror,
    PolygonScannerParams: _interact_mirror,
    CurvedMirrorParams: _interact_curved_mirror,
    DichroicParams: _interact_dichroic,
    BeamSplitterParams: _interact_beam_splitter,
    WaveplateParams: _interact_waveplate,
    FilterParams: _interact_filter,
    SphericalLensParams: _interact_refractive,
    CompoundLensParams: _interact_refractive,
    CylindricalLensParams: _interact_refractive,
    PrismParams: _interact_refractive,
    ApertureParams: _interact_opening,
    SlitParams: _interact_opening,
    BlockerParams: _interact_absorber,
    LaserParams: _interact_absorber,
    LampParams: _interact_absorber,
    PointSourceParams: _interact_absorber,
    CardParams: _interact_detector,
    PMTParams: _interact_detector,
    CameraParams: _interact_detector,
    IdealLensParams: _interact_thin_lens,
    ObjectiveParams: _interact_thin_lens,
    SampleParams: _interact_sample,
}


def interact(
    component: OpticalComponent,
    ray: Ray,
    hit: HitRecord,
    rng: Optional[np.random.Generator] = None,
) -> InteractionResult:
    """计算光线命中元件后的响应

    参数:
        component: 被命中的元件
        ray: 入射光线（全局坐标）
        hit: find_intersection() 返回的命中记录
        rng: 随机数生成器（仅样品荧光使用）

    返回:
        InteractionResult
    """
    try:
        interactor = INTERACTORS[type(component.params)]
    except KeyError:
        raise TypeError(f"元件类型 {type(component.params).__name__} 没有注册相互作用函数")
    return interactor(component, ray, hit, rng)
