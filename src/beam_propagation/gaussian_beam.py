"""
高斯光束复参数模块

本模块定义高斯光束参数与复参数 q 的基本运算。

理论基础：
    1/q = 1/R - i·λ/(π·w²)

其中：
- w：1/e² 光束半径
- R：波前曲率半径
- q0 = i·π·w0²/λ（束腰处）
- 经过 ABCD 矩阵变换后：q' = (A·q + B) / (C·q + D)

长度单位均为 mm，波长在接口处以 nm 给出，内部换算为 mm。

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple
import numpy as np
from numpy.typing import NDArray

from optical_bench.abcd import (
    free_space_matrix,
    mirror_matrix,
    refraction_matrix,
    thick_lens_matrix,
    thin_lens_matrix,
)

from .exceptions import PropagationError


# 1/q 实部小于该值时视为平面波前
PLANAR_TOLERANCE = 1e-10


def nm_to_mm(wavelength_nm: float) -> float:
    """波长单位换算 nm → mm"""
    return wavelength_nm * 1e-6


def initial_q(waist: float, wavelength_mm: float) -> complex:
    """束腰处的复参数 q0 = i·π·w0²/λ"""
    return complex(0.0, math.pi * waist * waist / wavelength_mm)


def apply_abcd(q: complex, abcd: NDArray) -> complex:
    """应用 ABCD 矩阵变换 q' = (A·q + B) / (C·q + D)"""
    A, B = abcd[0, 0], abcd[0, 1]
    C, D = abcd[1, 0], abcd[1, 1]
    return complex((A * q + B) / (C * q + D))


def beam_radius(q: complex, wavelength_mm: float) -> float:
    """由复参数计算 1/e² 光束半径 w = sqrt(-λ / (π·Im(1/q)))"""
    imag = (1.0 / q).imag
    if imag >= 0.0:
        return math.inf
    return math.sqrt(-wavelength_mm / (math.pi * imag))


def wavefront_radius(q: complex) -> float:
    """由复参数计算波前曲率半径 R = 1/Re(1/q)，平面波前返回 inf"""
    real = (1.0 / q).real
    if abs(real) < PLANAR_TOLERANCE:
        return math.inf
    return 1.0 / real


@dataclass
class GaussianBeam:
    """高斯光束定义

    参数:
        wavelength_nm: 波长 (nm)
        w0: 束腰半径 (mm)
        m2: M² 因子，默认 1.0（理想高斯光束）

    属性:
        zR: 瑞利距离 (mm)
        divergence: 远场发散角 (rad)

    示例:
        >>> beam = GaussianBeam(wavelength_nm=532.0, w0=1.0)
        >>> print(f"瑞利距离: {beam.zR:.1f} mm")
        瑞利距离: 5905.2 mm
    """

    wavelength_nm: float
    w0: float
    m2: float = 1.0

    def __post_init__(self) -> None:
        if not np.isfinite(self.wavelength_nm) or self.wavelength_nm <= 0:
            raise PropagationError(
                f"参数 'wavelength_nm'（波长）必须为正值，实际为 {self.wavelength_nm} nm"
            )
        if not np.isfinite(self.w0) or self.w0 <= 0:
            raise PropagationError(
                f"参数 'w0'（束腰半径）必须为正值，实际为 {self.w0} mm"
            )
        if not np.isfinite(self.m2) or self.m2 < 1.0:
            raise PropagationError(
                f"参数 'm2'（M² 因子）必须 >= 1.0，实际为 {self.m2}"
            )

    @property
    def wavelength_mm(self) -> float:
        """波长 (mm)"""
        return nm_to_mm(self.wavelength_nm)

    @property
    def effective_wavelength_mm(self) -> float:
        """计入 M² 的等效波长 (mm)"""
        return self.m2 * self.wavelength_mm

    @property
    def zR(self) -> float:
        """瑞利距离 zR = π·w0² / (M²·λ) (mm)"""
        return math.pi * self.w0 ** 2 / self.effective_wavelength_mm

    @property
    def divergence(self) -> float:
        """远场发散角 θ = M²·λ / (π·w0) (rad)"""
        return self.effective_wavelength_mm / (math.pi * self.w0)

    def q_at(self, z: float) -> complex:
        """距束腰 z 处的复参数 q = z + i·zR"""
        return complex(z, self.zR)

    def radius_at(self, z: float) -> float:
        """距束腰 z 处的光束半径 w(z) = w0·sqrt(1 + (z/zR)²)"""
        return self.w0 * math.sqrt(1.0 + (z / self.zR) ** 2)

    def parameters(self, q: complex) -> Tuple[float, float]:
        """复参数 q 对应的 (光束半径, 波前曲率半径)"""
        return beam_radius(q, self.effective_wavelength_mm), wavefront_radius(q)


__all__ = [
    'GaussianBeam',
    'PLANAR_TOLERANCE',
    'nm_to_mm',
    'initial_q',
    'apply_abcd',
    'beam_radius',
    'wavefront_radius',
    'free_space_matrix',
    'thin_lens_matrix',
    'mirror_matrix',
    'refraction_matrix',
    'thick_lens_matrix',
]
