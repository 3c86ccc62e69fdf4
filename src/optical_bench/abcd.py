"""
ABCD 矩阵描述模块

为每种元件提供弧矢面（x）与子午面（y）的 2×2 光线传输矩阵及通光口径，
供高斯光束传播器使用。

常用 ABCD 矩阵：
- 自由空间传播距离 d：[[1, d], [0, 1]]
- 薄透镜焦距 f：[[1, 0], [-1/f, 1]]
- 球面镜曲率半径 R：[[1, 0], [-2/R, 1]]
- 球面折射（n1 → n2，半径 R）：[[1, 0], [(n1 - n2)/(R·n2), n1/n2]]

有厚度的元件（厚透镜、柱面镜、棱镜）的矩阵以元件参考面（中心）为基准：
M_c = F(-L/2) · M · F(-L/2)，其中 L 为元件内的几何路径长度，
因此传播器可以直接使用元件中心之间的距离作为自由空间间隔。

像散元件：
- 柱面透镜：子午面（y）为厚透镜，弧矢面（x）为平板
- 狭缝：x/y 方向口径不同
- 棱镜：子午面为变形放大矩阵，弧矢面为平板 [[1, d/n], [0, 1]]

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple
import numpy as np
from numpy.typing import NDArray

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
    is_flat,
)
from .geometry import intersect
from .rays import Ray
from .vector_math import refract_vector


# 完全关闭的光阑使用的等效口径 (mm)
CLOSED_APERTURE = 1e-9


# =============================================================================
# 矩阵构造
# =============================================================================

def free_space_matrix(d: float) -> NDArray:
    """自由空间传播矩阵"""
    return np.array([[1.0, d], [0.0, 1.0]], dtype=np.float64)


def thin_lens_matrix(f: float) -> NDArray:
    """薄透镜矩阵"""
    return np.array([[1.0, 0.0], [-1.0 / f, 1.0]], dtype=np.float64)


def mirror_matrix(radius: float) -> NDArray:
    """球面反射镜矩阵（R > 0 为凹面，平面镜为单位矩阵）"""
    if is_flat(radius):
        return np.eye(2)
    return np.array([[1.0, 0.0], [-2.0 / radius, 1.0]], dtype=np.float64)


def refraction_matrix(radius: float, n1: float, n2: float) -> NDArray:
    """球面折射矩阵（平面时 C = 0）"""
    c = 0.0 if is_flat(radius) else (n1 - n2) / (radius * n2)
    return np.array([[1.0, 0.0], [c, n1 / n2]], dtype=np.float64)


def thick_lens_matrix(r1: float, r2: float, thickness: float, n: float) -> NDArray:
    """厚透镜矩阵（前表面顶点到后表面顶点）"""
    return (
        refraction_matrix(r2, n, AMBIENT_INDEX)
        @ free_space_matrix(thickness)
        @ refraction_matrix(r1, AMBIENT_INDEX, n)
    )


def centered(matrix: NDArray, length: float) -> NDArray:
    """把矩阵的参考面从元件两端移到元件中心"""
    return free_space_matrix(-length / 2) @ matrix @ free_space_matrix(-length / 2)


# =============================================================================
# 描述数据
# =============================================================================

@dataclass(frozen=True)
class ABCDDescriptor:
    """元件的 ABCD 描述

    属性:
        abcd_x: 弧矢面（x）矩阵
        abcd_y: 子午面（y）矩阵
        aperture_radius: 通光口径半径 (mm)，0 表示不限制
        aperture_radius_y: y 方向口径（None 时与 aperture_radius 相同）
    """
    abcd_x: NDArray = field(default_factory=lambda: np.eye(2))
    abcd_y: NDArray = field(default_factory=lambda: np.eye(2))
    aperture_radius: float = 0.0
    aperture_radius_y: Optional[float] = None

    @property
    def aperture_xy(self) -> Tuple[float, float]:
        y = self.aperture_radius if self.aperture_radius_y is None else self.aperture_radius_y
        return self.aperture_radius, y

    @property
    def is_astigmatic(self) -> bool:
        return not np.allclose(self.abcd_x, self.abcd_y)


def _isotropic(matrix: NDArray, aperture: float) -> ABCDDescriptor:
    return ABCDDescriptor(abcd_x=matrix, abcd_y=matrix.copy(), aperture_radius=aperture)


# =============================================================================
# 各类型描述
# =============================================================================

def _identity_with(aperture_of: Callable[[object], float]):
    def describe(component: OpticalComponent, wavelength_nm: float, local_ray) -> ABCDDescriptor:
        return _isotropic(np.eye(2), aperture_of(component.params))
    return describe


def _describe_spherical_lens(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: SphericalLensParams = component.params
    m = centered(thick_lens_matrix(p.r1, p.r2, p.thickness, p.ior), p.thickness)
    return _isotropic(m, p.aperture_radius)


def _describe_compound_lens(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: CompoundLensParams = component.params
    m = np.eye(2)
    z = 0.0
    for element in p.elements:
        m = free_space_matrix(element.z_offset - z) @ m
        m = centered(thick_lens_matrix(element.r1, element.r2, element.thickness, element.ior),
                     element.thickness) @ m
        z = element.z_offset
    m = free_space_matrix(-z) @ m
    return _isotropic(m, p.aperture_radius)


def _describe_cylindrical_lens(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: CylindricalLensParams = component.params
    tangential = centered(thick_lens_matrix(p.r1, p.r2, p.thickness, p.ior), p.thickness)
    sagittal = centered(free_space_matrix(p.thickness / p.ior), p.thickness)
    return ABCDDescriptor(
        abcd_x=sagittal,
        abcd_y=tangential,
        aperture_radius=p.width / 2,
        aperture_radius_y=p.aperture_radius,
    )


def _prism_chief_ray(component: OpticalComponent, wavelength_nm: float, local_ray: Optional[Ray]):
    """在局部坐标系中追迹棱镜主光线，返回 (cos1, cos2, cos3, cos4, d, n)"""
    p: PrismParams = component.params
    n = p.index_at(wavelength_nm)
    if local_ray is None:
        local_ray = Ray(origin=(0.0, 0.0, -10.0 * p.height), direction=(0.0, 0.0, 1.0))

    first = intersect(component, local_ray)
    if first is None:
        return None
    n_in = first.local_normal
    d_in = refract_vector(local_ray.direction, n_in, AMBIENT_INDEX, n)
    if d_in is None:
        return None
    inner = Ray(origin=first.local_point, direction=d_in)
    second = intersect(component, inner)
    if second is None:
        return None
    n_out = second.local_normal
    d_out = refract_vector(d_in, -n_out, n, AMBIENT_INDEX)
    if d_out is None:
        return None

    cos1 = abs(float(np.dot(local_ray.direction, n_in)))
    cos2 = abs(float(np.dot(d_in, n_in)))
    cos3 = abs(float(np.dot(d_in, n_out)))
    cos4 = abs(float(np.dot(d_out, n_out)))
    return cos1, cos2, cos3, cos4, second.t, n


def _describe_prism(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: PrismParams = component.params
    aperture_y = p.height / 2
    chief = _prism_chief_ray(component, wavelength_nm, local_ray)
    if chief is None:
        return ABCDDescriptor(aperture_radius=p.width / 2, aperture_radius_y=aperture_y)
    cos1, cos2, cos3, cos4, d, n = chief
    tangential = np.array([
        [cos4 * cos2 / (cos3 * cos1), d * cos4 * cos1 / (n * cos3 * cos2)],
        [0.0, cos3 * cos1 / (cos4 * cos2)],
    ])
    sagittal = free_space_matrix(d / n)
    return ABCDDescriptor(
        abcd_x=centered(sagittal, d),
        abcd_y=centered(tangential, d),
        aperture_radius=p.width / 2,
        aperture_radius_y=aperture_y,
    )


def _describe_thin_lens(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p = component.params
    return _isotropic(thin_lens_matrix(p.focal_length), p.aperture_radius)


def _describe_curved_mirror(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: CurvedMirrorParams = component.params
    return _isotropic(mirror_matrix(p.radius_of_curvature), p.diameter / 2)


def _describe_aperture(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: ApertureParams = component.params
    return _isotropic(np.eye(2), max(p.opening_diameter / 2, CLOSED_APERTURE))


def _describe_slit(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: SlitParams = component.params
    return ABCDDescriptor(
        aperture_radius=max(p.slit_width / 2, CLOSED_APERTURE),
        aperture_radius_y=max(p.slit_height / 2, CLOSED_APERTURE),
    )


def _describe_polygon(component, wavelength_nm, local_ray) -> ABCDDescriptor:
    p: PolygonScannerParams = component.params
    return ABCDDescriptor(aperture_radius=p.face_half_width, aperture_radius_y=p.face_height / 2)


Describer = Callable[[OpticalComponent, float, Optional[Ray]], ABCDDescriptor]

DESCRIBERS: Dict[type, Describer] = {
    MirrorParams: _identity_with(lambda p: min(p.width, p.height) / 2),
    CurvedMirrorParams: _describe_curved_mirror,
    PolygonScannerParams: _describe_polygon,
    SphericalLensParams: _describe_spherical_lens,
    CompoundLensParams: _describe_compound_lens,
    CylindricalLensParams: _describe_cylindrical_lens,
    PrismParams: _describe_prism,
    ApertureParams: _describe_aperture,
    SlitParams: _describe_slit,
    BlockerParams: _identity_with(lambda p: 0.0),
    CardParams: _identity_with(lambda p: min(p.width, p.height) / 2),
    PMTParams: _identity_with(lambda p: min(p.width, p.height) / 2),
    CameraParams: _identity_with(lambda p: min(p.width, p.height) / 2),
    IdealLensParams: _describe_thin_lens,
    ObjectiveParams: _describe_thin_lens,
    FilterParams: _identity_with(lambda p: p.diameter / 2),
    DichroicParams: _identity_with(lambda p: p.diameter / 2),
    SampleParams: _identity_with(lambda p: 0.0),
    WaveplateParams: _identity_with(lambda p: p.aperture_radius),
    BeamSplitterParams: _identity_with(lambda p: p.diameter / 2),
    LaserParams: _identity_with(lambda p: 0.0),
    LampParams: _identity_with(lambda p: 0.0),
    PointSourceParams: _identity_with(lambda p: 0.0),
}


def abcd_descriptor(
    component: OpticalComponent,
    wavelength_nm: float = 532.0,
    local_ray: Optional[Ray] = None,
) -> ABCDDescriptor:
    """元件的 ABCD 描述

    参数:
        component: 元件
        wavelength_nm: 波长 (nm)，棱镜色散使用
        local_ray: 局部坐标系中的入射主光线，棱镜据此计算变形矩阵；
            None 时使用沿局部 +Z 的默认主光线

    返回:
        ABCDDescriptor
    """
    try:
        describer = DESCRIBERS[type(component.params)]
    except KeyError:
        raise TypeError(f"元件类型 {type(component.params).__name__} 没有注册 ABCD 描述")
    return describer(component, wavelength_nm, local_ray)
