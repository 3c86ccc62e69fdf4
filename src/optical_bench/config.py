"""
求解器配置数据模型

定义正向追迹与反向成像的配置参数。所有配置在构造时校验，
无效值抛出 ConfigurationError。

作者：混合光学仿真项目
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError


@dataclass
class TraceConfig:
    """正向光线追迹配置

    属性:
        max_bounces: 每条光线最多发生的相互作用次数，超过后丢弃
        ray_count_per_emitter: 每个光源（每个波长）的环光线数，
            向上取整到完整的环（24, 36, 48, ...）
        hit_epsilon: 命中判定的最小参数距离 (mm)，避免在上一命中点自相交
        min_power: 功率低于该值的光线被吸收终止
        seed: 随机数种子（样品荧光使用），None 表示不固定
        seed_mode: 'full' 为主光线加环光线，'center' 仅主光线
    """
    max_bounces: int = 20
    ray_count_per_emitter: int = 24
    hit_epsilon: float = 1e-3
    min_power: float = 1e-9
    seed: Optional[int] = None
    seed_mode: str = 'full'

    def __post_init__(self) -> None:
        if self.max_bounces < 1:
            raise ConfigurationError(f"参数 'max_bounces' 必须 >= 1，实际为 {self.max_bounces}")
        if self.ray_count_per_emitter < 1:
            raise ConfigurationError(
                f"参数 'ray_count_per_emitter' 必须 >= 1，实际为 {self.ray_count_per_emitter}"
            )
        if not self.hit_epsilon > 0:
            raise ConfigurationError(f"参数 'hit_epsilon' 必须为正值，实际为 {self.hit_epsilon} mm")
        if self.min_power < 0:
            raise ConfigurationError(f"参数 'min_power' 不能为负，实际为 {self.min_power}")
        if self.seed_mode not in ('full', 'center'):
            raise ConfigurationError(
                f"参数 'seed_mode' 必须为 'full' 或 'center'，实际为 '{self.seed_mode}'"
            )


@dataclass
class ImagingConfig:
    """反向成像配置

    属性:
        samples_per_pixel: 每个像素的反向光线数；None 表示使用探测器自身的设置
        max_bounces: 反向追迹的最大相互作用次数
        seed: 接收锥内采样方向的随机数种子
        wavelength_tolerance_nm: 反向光线命中激光器时判定为同波长的容差 (nm)
        min_throughput: 通量低于该值时停止反向追迹
    """
    samples_per_pixel: Optional[int] = None
    max_bounces: int = 20
    seed: Optional[int] = 0
    wavelength_tolerance_nm: float = 15.0
    min_throughput: float = 1e-6

    def __post_init__(self) -> None:
        if self.samples_per_pixel is not None and self.samples_per_pixel < 1:
            raise ConfigurationError(
                f"参数 'samples_per_pixel' 必须 >= 1，实际为 {self.samples_per_pixel}"
            )
        if self.max_bounces < 1:
            raise ConfigurationError(f"参数 'max_bounces' 必须 >= 1，实际为 {self.max_bounces}")
        if self.wavelength_tolerance_nm < 0:
            raise ConfigurationError(
                f"参数 'wavelength_tolerance_nm' 不能为负，实际为 {self.wavelength_tolerance_nm} nm"
            )
        if self.min_throughput < 0:
            raise ConfigurationError(f"参数 'min_throughput' 不能为负，实际为 {self.min_throughput}")
