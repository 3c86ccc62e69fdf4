"""
高斯光束场查询模块

由传播记录构建分段的高斯光束包络，回答任意空间点的光强查询：

    I(x, y) = P / (π·wx·wy) · exp(-2·(x²/wx² + y²/wy²))

其中 (x, y) 为查询点相对最近光束段轴线的横向坐标，x 轴沿 q_x 所在平面
（经过像散元件后为该元件的局部 X），
wx、wy 为该投影位置处的光束半径。距最近段轴线超过 5 倍光束半径的点返回 0。

反向成像追迹使用该查询获取样品处的照明强度。

作者：混合光学仿真项目
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import numpy as np
from numpy.typing import NDArray

from optical_bench.vector_math import normalize, orthonormal_basis

from .gaussian_beam import beam_radius, nm_to_mm
from .propagator import BeamSurfaceRecord, propagate_main_paths, transverse_axis


# 超出该倍数光束半径的查询点视为不在光束内
FIELD_EXTENT = 5.0

# 最后一个站点之后的光束延伸长度 (mm)
DEFAULT_TAIL_LENGTH = 200.0

MIN_SEGMENT_LENGTH = 1e-6


@dataclass
class BeamSegment:
    """两个站点之间的一段光束

    属性:
        start: 起点 (mm)
        direction: 单位传播方向
        length: 段长 (mm)
        q_x: 起点处 x 方向复参数
        q_y: 起点处 y 方向复参数
        power: 段内功率
        axis_x: q_x 所在的横向轴；None 时取与传播方向正交的任意基
    """
    start: NDArray[np.floating]
    direction: NDArray[np.floating]
    length: float
    q_x: complex
    q_y: complex
    power: float
    axis_x: Optional[NDArray[np.floating]] = None

    @property
    def end(self) -> NDArray[np.floating]:
        return self.start + self.length * self.direction

    def transverse_axes(self) -> Tuple[NDArray[np.floating], NDArray[np.floating]]:
        """(x 轴, y 轴)：分别对应 q_x 与 q_y 的横向单位向量"""
        u = transverse_axis(self.axis_x, self.direction)
        if u is None:
            u, _ = orthonormal_basis(self.direction)
        return u, np.cross(self.direction, u)


class GaussianBeamField:
    """分段高斯光束场

    参数:
        segments: 光束段列表
        wavelength_nm: 波长 (nm)

    示例:
        >>> field = GaussianBeamField.from_records(records, origin=laser.position)
        >>> field.intensity_at([0.0, 0.0, 120.0])
    """

    def __init__(self, segments: Sequence[BeamSegment], wavelength_nm: float) -> None:
        self.segments: List[BeamSegment] = [
            s for s in segments if s.length > MIN_SEGMENT_LENGTH
        ]
        self.wavelength_nm = float(wavelength_nm)
        self._wavelength_mm = nm_to_mm(self.wavelength_nm)

    @classmethod
    def from_records(
        cls,
        records: Sequence[BeamSurfaceRecord],
        origin=None,
        tail_length: float = DEFAULT_TAIL_LENGTH,
    ) -> "GaussianBeamField":
        """由传播记录构建光束场

        参数:
            records: propagate_beam() 的输出
            origin: 光束起点；None 时由第一条记录的入射方向与段长倒推
            tail_length: 最后一个站点之后的延伸长度 (mm)，0 表示光束在最后站点终止
        """
        if not records:
            return cls([], 532.0)

        first = records[0]
        if origin is not None:
            start = np.asarray(origin, dtype=np.float64)
        else:
            start = first.position - first.segment_length * first.direction_in

        segments: List[BeamSegment] = []
        for record in records:
            delta = record.position - start
            length = float(np.linalg.norm(delta))
            if length > MIN_SEGMENT_LENGTH:
                segments.append(BeamSegment(
                    start=start,
                    direction=normalize(delta),
                    length=length,
                    q_x=record.q_in_x - length,
                    q_y=record.q_in_y - length,
                    power=record.power_in,
                    axis_x=record.axis_x_in,
                ))
            start = record.position

        last = records[-1]
        if tail_length > 0 and last.power > 0:
            segments.append(BeamSegment(
                start=start,
                direction=normalize(last.direction),
                length=float(tail_length),
                q_x=last.q_x,
                q_y=last.q_y,
                power=last.power,
                axis_x=last.axis_x,
            ))
        return cls(segments, last.wavelength_nm)

    def _nearest(self, point: NDArray) -> Optional[Tuple[BeamSegment, float, float]]:
        best = None
        best_distance = np.inf
        for segment in self.segments:
            along = float(np.dot(point - segment.start, segment.direction))
            t = min(max(along, 0.0), segment.length)
            distance = float(np.linalg.norm(point - (segment.start + t * segment.direction)))
            if distance < best_distance:
                best_distance = distance
                best = (segment, t, distance)
        return best

    def radii_at(self, segment: BeamSegment, t: float) -> Tuple[float, float]:
        """光束段上距起点 t 处的 (wx, wy)"""
        return (
            beam_radius(segment.q_x + t, self._wavelength_mm),
            beam_radius(segment.q_y + t, self._wavelength_mm),
        )

    def intensity_at(self, point) -> float:
        """查询点处的光强 (W/mm²)，不在光束内时返回 0.0"""
        point = np.asarray(point, dtype=np.float64)
        nearest = self._nearest(point)
        if nearest is None:
            return 0.0
        segment, t, distance = nearest
        wx, wy = self.radii_at(segment, t)
        if not (np.isfinite(wx) and np.isfinite(wy)) or wx <= 0 or wy <= 0:
            return 0.0
        if distance > FIELD_EXTENT * max(wx, wy):
            return 0.0

        u, v = segment.transverse_axes()
        offset = point - segment.start
        transverse = offset - np.dot(offset, segment.direction) * segment.direction
        x = float(np.dot(transverse, u))
        y = float(np.dot(transverse, v))
        exponent = 2.0 * (x * x / (wx * wx) + y * y / (wy * wy))
        return float(segment.power / (np.pi * wx * wy) * np.exp(-exponent))

    def sample_profile(self, num_samples: int = 20) -> List[Tuple[NDArray, NDArray, NDArray]]:
        """沿每段光束等间距采样包络

        返回:
            每段一个 (z_array, wx_array, wy_array) 元组，z 为距段起点的距离
        """
        profiles = []
        for segment in self.segments:
            z_array = np.linspace(0.0, segment.length, num_samples + 1)
            wx_array = np.array([beam_radius(segment.q_x + z, self._wavelength_mm) for z in z_array])
            wy_array = np.array([beam_radius(segment.q_y + z, self._wavelength_mm) for z in z_array])
            profiles.append((z_array, wx_array, wy_array))
        return profiles

    def __len__(self) -> int:
        return len(self.segments)


def beam_fields_from_trace(components, trace_result) -> List[GaussianBeamField]:
    """由正向追迹结果为每条激光主光线路径构建光束场

    逃逸出场景的路径在最后站点之后延伸 DEFAULT_TAIL_LENGTH，
    终止于探测器或吸收体的路径不延伸。
    """
    fields: List[GaussianBeamField] = []
    for path, records in propagate_main_paths(components, trace_result):
        if not records:
            continue
        tail = DEFAULT_TAIL_LENGTH if path.escaped else 0.0
        fields.append(GaussianBeamField.from_records(
            records, origin=path.rays[0].origin, tail_length=tail,
        ))
    return fields
