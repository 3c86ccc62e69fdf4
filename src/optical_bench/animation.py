"""
动画通道模块

动画通道描述某个元件属性随时间的振荡（例如振镜的 rotation.y、
多边形扫描镜的 scan_angle）。内核不持有时钟，只在每个扫描步
读取通道在给定时刻或给定归一化位置上的瞬时值。

属性路径：
- 'position.x' / 'position.y' / 'position.z'
- 'rotation.x' / 'rotation.y' / 'rotation.z'（内旋 XYZ 欧拉角，弧度）
- 其它字符串视为元件参数字段名（例如 'scan_angle'、'opening_diameter'）

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import Dict, Iterable, Mapping

from .components import OpticalComponent
from .exceptions import ConfigurationError, UnknownComponentError


class Easing(Enum):
    """通道插值方式"""
    LINEAR = "linear"
    SINUSOIDAL = "sinusoidal"
    DISCRETE = "discrete"


_AXES = {'x': 0, 'y': 1, 'z': 2}


@dataclass(frozen=True)
class AnimationChannel:
    """动画通道（只读）

    属性:
        target_id: 目标元件 id
        property_path: 属性路径
        range_min: 振荡范围起点
        range_max: 振荡范围终点
        period_s: 一个完整周期的时长 (s)
        easing: 插值方式
        repeat: 是否循环；否则在一个周期后停在终点
        discrete_steps: 离散模式下的档位数
    """
    target_id: str
    property_path: str
    range_min: float
    range_max: float
    period_s: float = 1.0
    easing: Easing = Easing.SINUSOIDAL
    repeat: bool = True
    discrete_steps: int = 4

    def __post_init__(self) -> None:
        object.__setattr__(self, 'easing', Easing(self.easing))
        if not math.isfinite(self.period_s) or self.period_s <= 0:
            raise ConfigurationError(f"参数 'period_s' 必须为正值，实际为 {self.period_s} s")
        if not (math.isfinite(self.range_min) and math.isfinite(self.range_max)):
            raise ConfigurationError(
                f"通道范围必须为有限值，实际为 [{self.range_min}, {self.range_max}]"
            )
        if self.discrete_steps < 1:
            raise ConfigurationError(f"参数 'discrete_steps' 必须 >= 1，实际为 {self.discrete_steps}")

    @property
    def frequency_hz(self) -> float:
        return 1.0 / self.period_s

    @property
    def span(self) -> float:
        return self.range_max - self.range_min

    def value_at(self, time_s: float) -> float:
        """时刻 time_s 处的通道值"""
        if self.repeat:
            t = (time_s % self.period_s) / self.period_s
        else:
            t = min(max(time_s / self.period_s, 0.0), 1.0)

        if self.easing is Easing.SINUSOIDAL:
            mid = (self.range_min + self.range_max) / 2
            return mid + self.span / 2 * math.sin(2 * math.pi * t)
        if self.easing is Easing.DISCRETE:
            n = self.discrete_steps
            step = int(math.floor(t * n)) % n
            return self.range_min + step * self.span / max(n - 1, 1)
        return self.range_min + self.span * t

    def value_at_fraction(self, fraction: float) -> float:
        """扫描范围内归一化位置 fraction ∈ [0, 1] 处的值（线性扫过整个范围）"""
        return self.range_min + self.span * fraction


# =============================================================================
# 属性读写
# =============================================================================

def get_property(component: OpticalComponent, property_path: str) -> float:
    """读取元件属性值"""
    head, _, axis = property_path.partition('.')
    if head == 'position' and axis in _AXES:
        return float(component.frame.position[_AXES[axis]])
    if head == 'rotation' and axis in _AXES:
        return float(component.frame.euler[_AXES[axis]])
    names = {f.name for f in fields(component.params)}
    if property_path not in names:
        raise ConfigurationError(
            f"{component.kind.value} 元件没有属性 '{property_path}'"
        )
    return float(getattr(component.params, property_path))


def set_property(component: OpticalComponent, property_path: str, value: float) -> None:
    """通过元件的设置接口写入属性值（修订号随之递增）"""
    head, _, axis = property_path.partition('.')
    if head == 'position' and axis in _AXES:
        position = component.frame.position
        position[_AXES[axis]] = value
        component.set_position(*position)
        return
    if head == 'rotation' and axis in _AXES:
        euler = component.frame.euler
        euler[_AXES[axis]] = value
        component.set_rotation(*euler)
        return
    names = {f.name for f in fields(component.params)}
    if property_path not in names:
        raise ConfigurationError(
            f"{component.kind.value} 元件没有属性 '{property_path}'"
        )
    component.set_params(**{property_path: value})


def apply_channels(
    components: Mapping[str, OpticalComponent],
    channels: Iterable[AnimationChannel],
    time_s: float,
) -> None:
    """把各通道在 time_s 时刻的值写入对应元件"""
    for channel in channels:
        target = components.get(channel.target_id)
        if target is None:
            raise UnknownComponentError(channel.target_id)
        set_property(target, channel.property_path, channel.value_at(time_s))


def apply_values(
    components: Mapping[str, OpticalComponent],
    values: Dict[AnimationChannel, float],
) -> None:
    """把给定的通道值写入对应元件"""
    for channel, value in values.items():
        target = components.get(channel.target_id)
        if target is None:
            raise UnknownComponentError(channel.target_id)
        set_property(target, channel.property_path, value)
