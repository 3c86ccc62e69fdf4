"""
光源种子光线模块

根据光源的位姿与参数生成追迹起始光线。

激光器与灯源：
- 中心主光线（is_main=True）
- 同心环光线：最外环（边缘光线）24 条，内环每环 12 条，
  环半径比例按层级二分 1, 1/2, 1/4, 3/4, 1/8, 3/8, ...

点光源：自光源位置发出的主光线加局部 X-Z 平面内的扇形光线，
扇形光线数由元件自身的 ray_count 决定。

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from typing import Iterable, List
import numpy as np

from .components import (
    LampParams,
    LaserParams,
    OpticalComponent,
    PointSourceParams,
)
from .exceptions import ConfigurationError
from .rays import Ray


# 光线从光源出射面前方该距离处发出 (mm)
EMIT_OFFSET = 3.0

FIRST_RING_COUNT = 24
INNER_RING_COUNT = 12

# 灯源每个波长的光线数减半的阈值
LAMP_HALVING_THRESHOLD = 16

# 与主光线夹角小于该值 (rad) 的扇形光线不重复发射
FAN_AXIS_EPS = 1e-9

SEED_MODES = ('full', 'center')


def _build_radius_fractions(count: int = 100) -> List[float]:
    fractions = [1.0]
    level = 1
    while len(fractions) < count:
        denom = 1 << level
        fractions.extend(k / denom for k in range(1, denom, 2))
        level += 1
    return fractions


RADIUS_FRACTIONS = _build_radius_fractions()


def snap_to_ring_boundary(n: int) -> int:
    """把光线数向上取整到完整的环

    有效值为 24, 36, 48, 60, ...

    示例:
        >>> snap_to_ring_boundary(7)
        24
        >>> snap_to_ring_boundary(25)
        36
    """
    if n <= FIRST_RING_COUNT:
        return FIRST_RING_COUNT
    k = math.ceil((n - FIRST_RING_COUNT) / INNER_RING_COUNT)
    return FIRST_RING_COUNT + k * INNER_RING_COUNT


def ring_offsets(beam_radius: float, ray_count: int):
    """生成环光线的横向偏移

    参数:
        beam_radius: 光束半径 (mm)
        ray_count: 请求的光线数（向上取整到完整的环）

    返回:
        (radius_fraction, x, y) 元组的列表，x/y 为光源局部横向坐标
    """
    snapped = snap_to_ring_boundary(ray_count)
    offsets = []
    ring = 0
    while len(offsets) < snapped and ring < len(RADIUS_FRACTIONS):
        fraction = RADIUS_FRACTIONS[ring]
        radius = beam_radius * fraction
        n = FIRST_RING_COUNT if ring == 0 else INNER_RING_COUNT
        phase = ring * math.pi / 7
        for i in range(n):
            phi = phase + 2.0 * math.pi * i / n
            offsets.append((fraction, radius * math.cos(phi), radius * math.sin(phi)))
        ring += 1
    return offsets


def _emit(
    component: OpticalComponent,
    wavelength_nm: float,
    power: float,
    beam_radius: float,
    ray_count: int,
    mode: str,
    gaussian: bool,
    source_id: str,
) -> List[Ray]:
    frame = component.frame
    frame.refresh()
    forward = frame.forward
    right = frame.right
    up = frame.up
    origin = frame.position + EMIT_OFFSET * forward

    rays = [Ray(
        origin=origin,
        direction=forward,
        wavelength_nm=wavelength_nm,
        power=power,
        source_id=source_id,
        is_main=True,
    )]
    if mode == 'center':
        return rays

    for fraction, x, y in ring_offsets(beam_radius, max(1, ray_count)):
        weight = power * math.exp(-2.0 * fraction * fraction) if gaussian else power
        rays.append(Ray(
            origin=origin + x * right + y * up,
            direction=forward,
            wavelength_nm=wavelength_nm,
            power=weight,
            source_id=source_id,
        ))
    return rays


def _emit_fan(component: OpticalComponent, params: PointSourceParams, mode: str) -> List[Ray]:
    frame = component.frame
    frame.refresh()
    forward = frame.forward
    right = frame.right
    origin = frame.position

    def ray_at(angle: float, is_main: bool = False) -> Ray:
        return Ray(
            origin=origin,
            direction=math.cos(angle) * forward + math.sin(angle) * right,
            wavelength_nm=params.wavelength_nm,
            power=params.power,
            source_id=component.id,
            is_main=is_main,
        )

    rays = [ray_at(0.0, is_main=True)]
    if mode == 'center':
        return rays

    half = params.cone_half_angle
    if params.ray_count == 1:
        angles = np.array([0.0])
    else:
        angles = np.linspace(-half, half, params.ray_count)
    rays.extend(ray_at(float(a)) for a in angles if abs(a) > FAN_AXIS_EPS)
    return rays


def seed_rays(
    component: OpticalComponent,
    ray_count: int = FIRST_RING_COUNT,
    mode: str = 'full',
) -> List[Ray]:
    """生成单个光源的种子光线

    参数:
        component: 光源元件
        ray_count: 每个波长的环光线数（点光源使用自身的 ray_count）
        mode: 'full' 为主光线加环光线，'center' 仅主光线

    返回:
        全局坐标系中的光线列表；非光源元件返回空列表

    异常:
        ConfigurationError: mode 无效
    """
    if mode not in SEED_MODES:
        raise ConfigurationError(f"参数 'mode' 必须为 {SEED_MODES} 之一，实际为 '{mode}'")

    params = component.params
    if isinstance(params, LaserParams):
        return _emit(
            component, params.wavelength_nm, params.power, params.beam_radius,
            ray_count, mode, gaussian=True, source_id=component.id,
        )

    if isinstance(params, LampParams):
        per_wavelength = ray_count
        if ray_count >= LAMP_HALVING_THRESHOLD:
            per_wavelength = max(1, ray_count // 2)
        rays: List[Ray] = []
        for wavelength in params.wavelengths_nm:
            rays.extend(_emit(
                component, wavelength, params.power, params.beam_radius,
                per_wavelength, mode, gaussian=False,
                source_id=component.id,
            ))
        return rays

    if isinstance(params, PointSourceParams):
        return _emit_fan(component, params, mode)

    return []


def seed_scene(
    components: Iterable[OpticalComponent],
    ray_count: int = FIRST_RING_COUNT,
    mode: str = 'full',
) -> List[Ray]:
    """生成场景中所有光源的种子光线"""
    rays: List[Ray] = []
    for component in components:
        if component.is_emitter:
            rays.extend(seed_rays(component, ray_count, mode))
    return rays
