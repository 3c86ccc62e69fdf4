"""
光谱透过率模块

定义波长 → 透过率 ∈ [0, 1] 的纯函数，用于滤光片与二向色镜。

四种预设形状：
- longpass：长通，λ > cutoff 透过
- shortpass：短通，λ < cutoff 透过
- bandpass：带通，以 center 为中心、宽度 width 的通带
- multiband：多通带，取各通带透过率的最大值

边缘采用 logistic sigmoid 函数：
    σ(x) = 1 / (1 + exp(-k·x))，k = 4 / edge_steepness

其中 edge_steepness（nm）为边缘 10%–90% 过渡的特征宽度，下限为 1 nm。
带通透过率为上升沿与下降沿 sigmoid 的乘积：
    T(λ) = σ(λ - (c - w/2)) · σ((c + w/2) - λ)

作者：混合光学仿真项目
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union
import numpy as np
from numpy.typing import NDArray
from scipy.special import expit

from .exceptions import ComponentConfigurationError


# 光谱采样曲线的默认范围（nm）
CURVE_START_NM = 350.0
CURVE_END_NM = 850.0

# 可见光范围（nm），用于主通过波长搜索
VISIBLE_START_NM = 380.0
VISIBLE_END_NM = 780.0
VISIBLE_STEP_NM = 5.0

# 主通过波长的最小透过率
DOMINANT_MIN_TRANSMISSION = 0.1


class SpectralPreset(Enum):
    """光谱形状预设"""
    LONGPASS = "longpass"
    SHORTPASS = "shortpass"
    BANDPASS = "bandpass"
    MULTIBAND = "multiband"


@dataclass(frozen=True)
class SpectralBand:
    """通带定义

    属性:
        center_nm: 中心波长 (nm)
        width_nm: 通带宽度 (nm)，必须为正值
    """
    center_nm: float
    width_nm: float

    def __post_init__(self) -> None:
        if not np.isfinite(self.center_nm) or self.center_nm <= 0:
            raise ComponentConfigurationError(
                f"参数 'center_nm'（中心波长）必须为正的有限值，实际为 {self.center_nm} nm"
            )
        if not np.isfinite(self.width_nm) or self.width_nm <= 0:
            raise ComponentConfigurationError(
                f"参数 'width_nm'（通带宽度）必须为正的有限值，实际为 {self.width_nm} nm"
            )


WavelengthLike = Union[float, NDArray[np.floating]]


@dataclass(frozen=True)
class SpectralProfile:
    """光谱透过率曲线

    参数:
        preset: 形状预设（SpectralPreset 或其字符串值）
        cutoff_nm: 长通/短通的截止波长 (nm)
        bands: 通带列表，元素为 SpectralBand 或 (center, width) 元组
        edge_steepness: 边缘过渡宽度 (nm)，小于 1 时钳位为 1

    示例:
        >>> profile = SpectralProfile.bandpass(525, 50)
        >>> round(profile.transmission(525.0), 2)
        1.0
        >>> profile.label
        'BP 525/50'
    """
    preset: SpectralPreset = SpectralPreset.LONGPASS
    cutoff_nm: float = 500.0
    bands: Tuple[SpectralBand, ...] = field(
        default_factory=lambda: (SpectralBand(525.0, 50.0),)
    )
    edge_steepness: float = 15.0

    def __post_init__(self) -> None:
        try:
            preset = SpectralPreset(self.preset)
        except ValueError:
            raise ComponentConfigurationError(
                f"未知的光谱预设 '{self.preset}'，"
                f"可选值为 {[p.value for p in SpectralPreset]}"
            )
        object.__setattr__(self, 'preset', preset)

        if not np.isfinite(self.cutoff_nm) or self.cutoff_nm <= 0:
            raise ComponentConfigurationError(
                f"参数 'cutoff_nm'（截止波长）必须为正的有限值，实际为 {self.cutoff_nm} nm"
            )

        bands = tuple(
            b if isinstance(b, SpectralBand) else SpectralBand(float(b[0]), float(b[1]))
            for b in self.bands
        )
        object.__setattr__(self, 'bands', bands)

        if not np.isfinite(self.edge_steepness):
            raise ComponentConfigurationError(
                f"参数 'edge_steepness' 必须为有限值，实际为 {self.edge_steepness}"
            )
        # 边缘过渡宽度下限 1 nm
        object.__setattr__(self, 'edge_steepness', max(1.0, float(self.edge_steepness)))

    # =========================================================================
    # 构造便捷方法
    # =========================================================================

    @classmethod
    def longpass(cls, cutoff_nm: float, edge_steepness: float = 15.0) -> "SpectralProfile":
        return cls(SpectralPreset.LONGPASS, cutoff_nm=cutoff_nm, edge_steepness=edge_steepness)

    @classmethod
    def shortpass(cls, cutoff_nm: float, edge_steepness: float = 15.0) -> "SpectralProfile":
        return cls(SpectralPreset.SHORTPASS, cutoff_nm=cutoff_nm, edge_steepness=edge_steepness)

    @classmethod
    def bandpass(
        cls,
        center_nm: float,
        width_nm: float,
        edge_steepness: float = 15.0,
    ) -> "SpectralProfile":
        return cls(
            SpectralPreset.BANDPASS,
            bands=(SpectralBand(center_nm, width_nm),),
            edge_steepness=edge_steepness,
        )

    @classmethod
    def multiband(cls, bands, edge_steepness: float = 15.0) -> "SpectralProfile":
        return cls(SpectralPreset.MULTIBAND, bands=tuple(bands), edge_steepness=edge_steepness)

    # =========================================================================
    # 透过率计算
    # =========================================================================

    def _sigmoid(self, x: NDArray[np.floating]) -> NDArray[np.floating]:
        return expit(4.0 / self.edge_steepness * x)

    def _band(self, wavelength: NDArray[np.floating], band: SpectralBand) -> NDArray[np.floating]:
        lower = band.center_nm - band.width_nm / 2.0
        upper = band.center_nm + band.width_nm / 2.0
        return self._sigmoid(wavelength - lower) * self._sigmoid(upper - wavelength)

    def transmission(self, wavelength_nm: WavelengthLike) -> WavelengthLike:
        """计算给定波长的透过率

        参数:
            wavelength_nm: 波长 (nm)，标量或数组

        返回:
            透过率 ∈ [0, 1]；标量输入返回 float，数组输入返回同形状数组
        """
        wavelength = np.asarray(wavelength_nm, dtype=np.float64)

        if self.preset is SpectralPreset.LONGPASS:
            result = self._sigmoid(wavelength - self.cutoff_nm)
        elif self.preset is SpectralPreset.SHORTPASS:
            result = self._sigmoid(self.cutoff_nm - wavelength)
        elif self.preset is SpectralPreset.BANDPASS:
            if self.bands:
                result = self._band(wavelength, self.bands[0])
            else:
                result = np.zeros_like(wavelength)
        else:
            result = np.zeros_like(wavelength)
            for band in self.bands:
                result = np.maximum(result, self._band(wavelength, band))

        result = np.clip(result, 0.0, 1.0)
        if result.ndim == 0:
            return float(result)
        return result

    def reflection(self, wavelength_nm: WavelengthLike) -> WavelengthLike:
        """二向色镜的反射率 1 - T(λ)"""
        t = self.transmission(wavelength_nm)
        return 1.0 - t

    # =========================================================================
    # 辅助信息
    # =========================================================================

    def sample_curve(
        self,
        num_points: int = 200,
        start_nm: float = CURVE_START_NM,
        end_nm: float = CURVE_END_NM,
    ) -> Tuple[NDArray[np.floating], NDArray[np.floating]]:
        """采样透过率曲线

        返回:
            (wavelengths, transmissions) 两个长度为 num_points 的数组
        """
        if num_points < 2:
            raise ValueError(f"采样点数必须 >= 2，实际为 {num_points}")
        wavelengths = np.linspace(start_nm, end_nm, num_points)
        return wavelengths, np.asarray(self.transmission(wavelengths))

    @property
    def label(self) -> str:
        """简短标签，例如 'LP 500'、'BP 525/50'、'MB (3 bands)'"""
        if self.preset is SpectralPreset.LONGPASS:
            return f"LP {self.cutoff_nm:g}"
        if self.preset is SpectralPreset.SHORTPASS:
            return f"SP {self.cutoff_nm:g}"
        if self.preset is SpectralPreset.BANDPASS:
            if not self.bands:
                return "BP"
            band = self.bands[0]
            return f"BP {band.center_nm:g}/{band.width_nm:g}"
        return f"MB ({len(self.bands)} bands)"

    def dominant_pass_wavelength(self) -> Optional[float]:
        """可见光范围内透过率最高的波长

        按 5 nm 步长在 380–780 nm 内搜索；若最大透过率不超过 0.1
        （例如通带完全位于可见光之外）则返回 None。
        """
        wavelengths = np.arange(VISIBLE_START_NM, VISIBLE_END_NM + 0.5 * VISIBLE_STEP_NM, VISIBLE_STEP_NM)
        values = np.asarray(self.transmission(wavelengths))
        best = int(np.argmax(values))
        if values[best] <= DOMINANT_MIN_TRANSMISSION:
            return None
        return float(wavelengths[best])
