"""
光线与命中记录数据模型

定义光线追迹中流转的三种数据：
- Ray：光线（起点、单位方向、波长、功率、偏振等）
- HitRecord：光线与元件表面的命中记录
- InteractionResult：元件对一次命中的响应（子光线、功率衰减、是否被探测）

作者：混合光学仿真项目
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
import numpy as np
from numpy.typing import NDArray

from .vector_math import is_finite_vector


DEFAULT_WAVELENGTH_NM = 532.0


@dataclass(frozen=True, eq=False)
class Ray:
    """光线

    方向在构造时归一化；零长度方向会抛出 ValueError。
    含 NaN 的光线允许构造，由追迹器检测（is_finite）后丢弃。

    属性:
        origin: 起点 (mm)
        direction: 单位方向向量
        wavelength_nm: 波长 (nm)
        power: 功率（任意单位）
        polarization: Jones 矢量 (Ex, Ey)，复数
        bounce_count: 已发生的相互作用次数
        medium_index: 当前所在介质折射率
        optical_path_length: 累积光程 (mm)
        source_id: 发出该光线的光源 id
        is_main: 是否为主光线（光源中心光线）
    """
    origin: NDArray[np.floating]
    direction: NDArray[np.floating]
    wavelength_nm: float = DEFAULT_WAVELENGTH_NM
    power: float = 1.0
    polarization: Tuple[complex, complex] = (1.0 + 0j, 0j)
    bounce_count: int = 0
    medium_index: float = 1.0
    optical_path_length: float = 0.0
    source_id: Optional[str] = None
    is_main: bool = False

    def __post_init__(self) -> None:
        origin = np.asarray(self.origin, dtype=np.float64).reshape(3).copy()
        direction = np.asarray(self.direction, dtype=np.float64).reshape(3).copy()
        length = np.linalg.norm(direction)
        if np.isfinite(length):
            if length < 1e-15:
                raise ValueError(f"光线方向不能为零向量，实际为 {direction}")
            direction = direction / length
        origin.setflags(write=False)
        direction.setflags(write=False)
        object.__setattr__(self, 'origin', origin)
        object.__setattr__(self, 'direction', direction)
        object.__setattr__(self, 'polarization', tuple(complex(c) for c in self.polarization))

    @property
    def is_finite(self) -> bool:
        """起点、方向与功率是否均为有限值"""
        return (
            is_finite_vector(self.origin)
            and is_finite_vector(self.direction)
            and bool(np.isfinite(self.power))
        )

    def at(self, t: float) -> NDArray[np.floating]:
        """光线上参数 t 处的点"""
        return self.origin + t * self.direction

    def replace(self, **changes) -> "Ray":
        """返回修改了部分字段的副本（不改变 bounce_count）"""
        return replace(self, **changes)

    def child(self, **changes) -> "Ray":
        """返回一次相互作用后产生的子光线（bounce_count + 1）"""
        changes.setdefault('bounce_count', self.bounce_count + 1)
        return replace(self, **changes)


@dataclass
class HitRecord:
    """命中记录

    属性:
        t: 光线参数距离 (mm)
        point: 全局命中点
        normal: 全局表面法向量
        local_point: 局部命中点
        local_normal: 局部表面法向量
        local_direction: 局部入射方向
        component_id: 被命中元件 id
        extra: 各元件类型的附加字段（例如 'surface'、'rim'、'chord'）
    """
    t: float
    point: NDArray[np.floating]
    normal: NDArray[np.floating]
    local_point: NDArray[np.floating]
    local_normal: NDArray[np.floating]
    local_direction: NDArray[np.floating]
    component_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InteractionResult:
    """相互作用结果

    属性:
        rays: 产生的子光线（全局坐标）
        attenuation: 作用于入射功率的衰减因子
        detected: 光线是否被探测器记录
        absorbed: 光线是否被吸收终止
    """
    rays: Tuple[Ray, ...] = ()
    attenuation: float = 1.0
    detected: bool = False
    absorbed: bool = False

    @property
    def terminated(self) -> bool:
        return len(self.rays) == 0
