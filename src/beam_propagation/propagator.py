"""
ABCD 高斯光束传播器

沿给定的元件顺序，在弧矢面（x）与子午面（y）上分别传播复参数 q：

    q' = (A·q + B) / (C·q + D)

相邻元件之间插入自由空间矩阵 [[1, d], [0, 1]]，每个元件的 ABCD 描述
由 optical_bench.abcd 给出（有厚度的元件以元件中心为参考面）。

光路可以是：
- 元件 id 列表：以元件中心作为传播站点
- BeamPathStop 列表：通常由 beam_path_from_trace() 从正向追迹的主光线路径生成，
  同一元件上的连续命中（例如透镜前后表面）合并为一个站点

每个站点输出一条 BeamSurfaceRecord：入射光束半径、出射波前曲率、
是否被光阑截断（非致命，继续传播）以及累积功率。

传播过程中同时携带 Jones 矢量：偏振片按投影衰减功率，分束镜按光路
是否转折取反射或透射分量。

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
import numpy as np
from numpy.typing import NDArray
from scipy.special import erf

from optical_bench.abcd import abcd_descriptor, ABCDDescriptor
from optical_bench.components import (
    BeamSplitterParams,
    BlockerParams,
    DichroicParams,
    FilterParams,
    LampParams,
    LaserParams,
    OpticalComponent,
    PointSourceParams,
    WaveplateParams,
)
from optical_bench.rays import Ray
from optical_bench.vector_math import normalize

from .exceptions import PropagationError
from .gaussian_beam import (
    GaussianBeam,
    apply_abcd,
    beam_radius,
    nm_to_mm,
    wavefront_radius,
)


# 出射方向与入射方向夹角余弦低于该值时视为光路在该站点转折（反射）
TURN_COSINE = 0.999

# 站点位置重合时的最小方向求取距离 (mm)
MIN_SEPARATION = 1e-9

# 横向轴投影长度低于该值时视为与传播方向平行
AXIS_EPS = 1e-6


# =============================================================================
# 光路站点
# =============================================================================

@dataclass
class BeamPathStop:
    """光路站点

    属性:
        component_id: 元件 id；None 表示光束起点（只提供位置与方向）
        entry_point: 光束进入元件的位置 (mm)
        exit_point: 光束离开元件的位置 (mm)
        direction_in: 入射方向；None 时由相邻站点位置推断
        direction_out: 出射方向；None 时由相邻站点位置推断
        inner_length: 元件内部的几何路径长度 (mm)
    """
    component_id: Optional[str]
    entry_point: NDArray[np.floating]
    exit_point: Optional[NDArray[np.floating]] = None
    direction_in: Optional[NDArray[np.floating]] = None
    direction_out: Optional[NDArray[np.floating]] = None
    inner_length: float = 0.0

    def __post_init__(self) -> None:
        self.entry_point = np.asarray(self.entry_point, dtype=np.float64).reshape(3)
        if self.exit_point is None:
            self.exit_point = self.entry_point.copy()
        else:
            self.exit_point = np.asarray(self.exit_point, dtype=np.float64).reshape(3)
        if self.direction_in is not None:
            self.direction_in = normalize(self.direction_in)
        if self.direction_out is not None:
            self.direction_out = normalize(self.direction_out)

    @property
    def position(self) -> NDArray[np.floating]:
        """站点参考位置（进出点中点）"""
        return 0.5 * (self.entry_point + self.exit_point)

    @property
    def is_origin(self) -> bool:
        return self.component_id is None

    @property
    def turned(self) -> bool:
        """光路是否在该站点转折"""
        if self.direction_in is None or self.direction_out is None:
            return False
        return float(np.dot(self.direction_in, self.direction_out)) < TURN_COSINE


@dataclass
class BeamSurfaceRecord:
    """单个站点的光束参数

    属性:
        component_id: 元件 id
        waist_x: 到达元件时 x 方向 1/e² 光束半径 (mm)
        waist_y: 到达元件时 y 方向 1/e² 光束半径 (mm)
        curvature_x: 经过元件后 x 方向波前曲率半径 (mm)，平面为 inf
        curvature_y: 经过元件后 y 方向波前曲率半径 (mm)，平面为 inf
        clipped: 光阑口径是否小于入射光束半径
        q_x: 经过元件后 x 方向复参数
        q_y: 经过元件后 y 方向复参数
        q_in_x: 到达元件时 x 方向复参数
        q_in_y: 到达元件时 y 方向复参数
        position: 站点参考位置 (mm)
        direction_in: 入射方向
        direction: 出射方向
        power: 经过元件后的功率
        power_in: 到达元件时的功率
        distance: 从光束起点累积的传播距离 (mm)
        segment_length: 与上一站点之间的传播距离 (mm)
        wavelength_nm: 波长 (nm)
        axis_x_in: 到达元件时 q_x 所在横向轴（单位向量）
        axis_x: 经过元件后 q_x 所在横向轴（单位向量），像散元件取其局部 +X
        polarization: 经过元件后的 Jones 矢量（归一化）；波片按其 Jones 矩阵变换，转折站点取反
    """
    component_id: str
    waist_x: float
    waist_y: float
    curvature_x: float
    curvature_y: float
    clipped: bool
    q_x: complex
    q_y: complex
    q_in_x: complex
    q_in_y: complex
    position: NDArray[np.floating]
    direction_in: NDArray[np.floating]
    direction: NDArray[np.floating]
    power: float
    power_in: float
    distance: float
    segment_length: float
    wavelength_nm: float
    axis_x_in: Optional[NDArray[np.floating]] = None
    axis_x: Optional[NDArray[np.floating]] = None
    polarization: Tuple[complex, complex] = (1.0 + 0j, 0j)

    def to_dict(self) -> Dict[str, object]:
        """导出为外部接口使用的字段集合"""
        return {
            'componentId': self.component_id,
            'waistX': self.waist_x,
            'waistY': self.waist_y,
            'curvatureX': self.curvature_x,
            'curvatureY': self.curvature_y,
            'clipped': self.clipped,
        }


PathEntry = Union[str, BeamPathStop]


# =============================================================================
# 从追迹路径提取光路
# =============================================================================

def beam_path_from_trace(path) -> List[BeamPathStop]:
    """从正向追迹的一条光线路径提取光路站点

    参数:
        path: RayPath（需提供 rays 与 hits，rays[i] 为第 i 段光线，
            hits[i] 为第 i 段的终点命中）

    返回:
        BeamPathStop 列表，首个站点为光束起点（component_id 为 None）
    """
    rays: Sequence[Ray] = path.rays
    hits = path.hits
    if not rays:
        return []

    first = rays[0]
    stops = [BeamPathStop(
        component_id=None,
        entry_point=first.origin,
        direction_in=first.direction,
        direction_out=first.direction,
    )]

    i = 0
    while i < len(hits):
        j = i
        while j + 1 < len(hits) and hits[j + 1].component_id == hits[i].component_id:
            j += 1
        exit_point = rays[j + 1].origin if j + 1 < len(rays) else hits[j].point
        inner = 0.0
        for k in range(i, j):
            inner += float(np.linalg.norm(hits[k + 1].point - hits[k].point))
        inner += float(np.linalg.norm(np.asarray(exit_point) - hits[j].point))
        direction_out = rays[j + 1].direction if j + 1 < len(rays) else rays[j].direction
        stops.append(BeamPathStop(
            component_id=hits[i].component_id,
            entry_point=hits[i].point,
            exit_point=exit_point,
            direction_in=rays[i].direction,
            direction_out=direction_out,
            inner_length=inner,
        ))
        i = j + 1
    return stops


def _lookup(components: Iterable[OpticalComponent]) -> Dict[str, OpticalComponent]:
    if isinstance(components, dict):
        return dict(components)
    return {c.id: c for c in components}


def _resolve_stops(
    lookup: Dict[str, OpticalComponent],
    path_order: Sequence[PathEntry],
) -> List[BeamPathStop]:
    stops: List[BeamPathStop] = []
    for entry in path_order:
        if isinstance(entry, BeamPathStop):
            stop = replace(entry)
        else:
            stop = BeamPathStop(component_id=str(entry), entry_point=np.zeros(3))
            if stop.component_id in lookup:
                stop.entry_point = lookup[stop.component_id].position
                stop.exit_point = stop.entry_point.copy()
        if stop.component_id is not None and stop.component_id not in lookup:
            raise PropagationError(f"光路中的元件 '{stop.component_id}' 不在场景中")
        stops.append(stop)

    # 由相邻站点位置补全方向
    for i, stop in enumerate(stops):
        if stop.direction_in is None:
            if i > 0:
                stop.direction_in = _direction_between(stops[i - 1].exit_point, stop.entry_point)
            if stop.direction_in is None and stop.component_id is not None:
                stop.direction_in = lookup[stop.component_id].frame.forward
        if stop.direction_out is None:
            if i + 1 < len(stops):
                stop.direction_out = _direction_between(stop.exit_point, stops[i + 1].entry_point)
            if stop.direction_out is None:
                stop.direction_out = stop.direction_in
    return stops


def _direction_between(a: NDArray, b: NDArray) -> Optional[NDArray]:
    delta = np.asarray(b) - np.asarray(a)
    if np.linalg.norm(delta) < MIN_SEPARATION:
        return None
    return normalize(delta)


def transverse_axis(axis, direction) -> Optional[NDArray]:
    """axis 在垂直于 direction 的平面内的单位投影；近乎平行时返回 None"""
    if axis is None or direction is None:
        return None
    d = normalize(direction)
    projected = np.asarray(axis, dtype=np.float64) - np.dot(axis, d) * d
    length = float(np.linalg.norm(projected))
    if length < AXIS_EPS:
        return None
    return projected / length


def _first_axis(direction, *candidates) -> Optional[NDArray]:
    for candidate in candidates:
        axis = transverse_axis(candidate, direction)
        if axis is not None:
            return axis
    return None


# =============================================================================
# 传播
# =============================================================================

def _local_chief_ray(component: OpticalComponent, stop: BeamPathStop) -> Optional[Ray]:
    if stop.direction_in is None:
        return None
    frame = component.frame
    frame.refresh()
    lo, hi = component.bounds
    backoff = 2.0 * float(max(np.max(np.abs(lo)), np.max(np.abs(hi)))) + 1.0
    origin = stop.entry_point - backoff * stop.direction_in
    return Ray(
        origin=frame.to_local_point(origin),
        direction=frame.to_local_direction(stop.direction_in),
    )


def _stop_transmission(component: OpticalComponent, stop: BeamPathStop, wavelength_nm: float) -> float:
    params = component.params
    factor = 1.0
    if isinstance(params, FilterParams):
        factor *= float(params.profile.transmission(wavelength_nm))
    elif isinstance(params, DichroicParams):
        t = float(params.profile.transmission(wavelength_nm))
        factor *= (1.0 - t) if stop.turned else t
    elif isinstance(params, BeamSplitterParams):
        r = params.split_ratio
        factor *= r if stop.turned else 1.0 - r
    elif isinstance(params, (BlockerParams, LaserParams, LampParams, PointSourceParams)):
        return 0.0

    if component.absorption_coeff > 0.0:
        length = stop.inner_length if stop.inner_length > 0.0 else float(getattr(params, 'thickness', 0.0))
        factor *= math.exp(-component.absorption_coeff * length)
    return factor


def _clip_transmission(descriptor: ABCDDescriptor, wx: float, wy: float) -> float:
    """高斯光束通过光阑的功率透过率"""
    ax, ay = descriptor.aperture_xy
    if descriptor.aperture_radius_y is None:
        return 1.0 - math.exp(-2.0 * ax * ax / (wx * wy))
    return float(erf(math.sqrt(2.0) * ax / wx) * erf(math.sqrt(2.0) * ay / wy))


def _is_clipped(descriptor: ABCDDescriptor, wx: float, wy: float) -> bool:
    ax, ay = descriptor.aperture_xy
    return (ax > 0.0 and ax < wx) or (ay > 0.0 and ay < wy)


def propagate_beam(
    components,
    path_order: Sequence[PathEntry],
    wavelength_nm: float,
    initial_waist: float,
    initial_power: float = 1.0,
    initial_polarization: Tuple[complex, complex] = (1.0 + 0j, 0j),
) -> List[BeamSurfaceRecord]:
    """沿光路传播高斯光束

    参数:
        components: 元件快照（序列或 id → 元件字典）
        path_order: 元件 id 或 BeamPathStop 的有序列表
        wavelength_nm: 波长 (nm)
        initial_waist: 光路起点处的束腰半径 (mm)
        initial_power: 初始功率
        initial_polarization: 初始 Jones 矢量

    返回:
        每个元件站点一条 BeamSurfaceRecord（光束起点与起始光源不产生记录）

    异常:
        PropagationError: 光路为空、引用未知元件、波长或束腰不为正值

    示例:
        >>> records = propagate_beam(bench.snapshot(), [laser.id, lens.id, card.id],
        ...                          wavelength_nm=532.0, initial_waist=1.0)
        >>> records[-1].to_dict()['waistX']
    """
    if not path_order:
        raise PropagationError("光路为空，至少需要一个元件")
    beam = GaussianBeam(wavelength_nm=wavelength_nm, w0=initial_waist)
    if not np.isfinite(initial_power) or initial_power < 0:
        raise PropagationError(f"参数 'initial_power' 不能为负，实际为 {initial_power}")

    lookup = _lookup(components)
    stops = _resolve_stops(lookup, path_order)
    wavelength_mm = nm_to_mm(wavelength_nm)

    q_x = beam.q_at(0.0)
    q_y = beam.q_at(0.0)
    power = float(initial_power)
    jones = tuple(complex(c) for c in initial_polarization)
    distance = 0.0
    records: List[BeamSurfaceRecord] = []
    previous: Optional[BeamPathStop] = None
    axis: Optional[NDArray] = None

    for index, stop in enumerate(stops):
        if previous is not None:
            segment = float(np.linalg.norm(stop.entry_point - previous.exit_point))
            segment += 0.5 * (previous.inner_length + stop.inner_length)
        else:
            segment = 0.0
        q_x += segment
        q_y += segment
        distance += segment
        previous = stop

        if stop.is_origin:
            continue
        component = lookup[stop.component_id]
        frame = component.frame
        if index == 0:
            axis = frame.right
            if component.is_emitter:
                continue

        q_in_x, q_in_y = q_x, q_y
        power_in = power
        wx = beam_radius(q_in_x, wavelength_mm)
        wy = beam_radius(q_in_y, wavelength_mm)

        descriptor = abcd_descriptor(component, wavelength_nm, _local_chief_ray(component, stop))
        clipped = _is_clipped(descriptor, wx, wy)
        if clipped:
            power *= _clip_transmission(descriptor, wx, wy)
        power *= _stop_transmission(component, stop, wavelength_nm)
        if isinstance(component.params, WaveplateParams):
            jones, throughput = component.params.transmit(jones)
            power *= throughput
        elif stop.turned:
            jones = (-jones[0], -jones[1])

        q_x = apply_abcd(q_x, descriptor.abcd_x)
        q_y = apply_abcd(q_y, descriptor.abcd_y)

        # 像散元件的 x/y 平面为其局部 X/Y，其余元件沿用入射轴
        axis_in = _first_axis(stop.direction_in, axis, frame.right, frame.up)
        if descriptor.is_astigmatic or descriptor.aperture_radius_y is not None:
            axis = _first_axis(stop.direction_out, frame.right, frame.up)
        else:
            axis = _first_axis(stop.direction_out, axis_in, frame.right, frame.up)

        records.append(BeamSurfaceRecord(
            component_id=component.id,
            waist_x=wx,
            waist_y=wy,
            curvature_x=wavefront_radius(q_x),
            curvature_y=wavefront_radius(q_y),
            clipped=clipped,
            q_x=q_x,
            q_y=q_y,
            q_in_x=q_in_x,
            q_in_y=q_in_y,
            position=stop.position,
            direction_in=stop.direction_in,
            direction=stop.direction_out,
            power=power,
            power_in=power_in,
            distance=distance,
            segment_length=segment,
            wavelength_nm=wavelength_nm,
            axis_x_in=axis_in,
            axis_x=axis,
            polarization=jones,
        ))

    return records


def propagate_main_paths(components, trace_result):
    """对正向追迹结果中每条来自激光器的主光线路径传播高斯光束

    初始束腰取激光器光束半径，初始功率取激光器功率。

    返回:
        (RayPath, List[BeamSurfaceRecord]) 元组的列表
    """
    lookup = _lookup(components)
    results = []
    for path in trace_result.main_paths():
        source = lookup.get(path.source_id)
        if source is None or not isinstance(source.params, LaserParams):
            continue
        stops = beam_path_from_trace(path)
        if len(stops) < 2:
            continue
        records = propagate_beam(
            lookup,
            stops,
            wavelength_nm=path.rays[0].wavelength_nm,
            initial_waist=source.params.beam_radius,
            initial_power=source.params.power,
            initial_polarization=path.rays[0].polarization,
        )
        results.append((path, records))
    return results
