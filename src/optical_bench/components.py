"""
光学元件数据模型

每种元件类型由一个不可变的参数数据类描述（标签变体），
OpticalComponent 持有：
- 稳定 id 与名称
- 位姿（TransformFrame，含修订号与惰性缓存的变换矩阵）
- 参数变体（MirrorParams、SphericalLensParams 等）
- 体吸收系数（mm⁻¹）

几何求交、相互作用与 ABCD 描述均按参数类型分派
（见 geometry.py、interaction.py、abcd.py），不使用继承层次。

局部坐标约定：
- 局部 +Z 为光轴，元件中心位于局部原点
- 透镜前表面顶点位于 z = -t/2，后表面顶点位于 z = +t/2
- 曲率半径符号：中心位于顶点 +Z 一侧为正；|R| >= 1e8 或 inf 视为平面

参数在构造时校验，无效值抛出 ComponentConfigurationError；
部分参数（边缘陡度、多边形面数）钳位而非报错。

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
import numbers
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type
import numpy as np
from numpy.typing import NDArray

from .exceptions import ComponentConfigurationError
from .frame import TransformFrame
from .spectral_profile import SpectralProfile


# 曲率半径绝对值不小于该值时视为平面
FLAT_RADIUS = 1e8

# 棱镜 Cauchy 色散系数 B（nm²）与参考波长（nm）
CAUCHY_B_NM2 = 12000.0
CAUCHY_REFERENCE_NM = 589.0

# 环境介质折射率
AMBIENT_INDEX = 1.0


def is_flat(radius: float) -> bool:
    """曲率半径是否视为平面"""
    return (not math.isfinite(radius)) or abs(radius) >= FLAT_RADIUS


def surface_sag(radius: float, r: float) -> float:
    """球面在横向距离 r 处相对顶点的矢高

    平面或 r 超出球面范围时返回 0。
    """
    if is_flat(radius):
        return 0.0
    val = radius * radius - r * r
    if val < 0.0:
        return 0.0
    return radius - math.copysign(math.sqrt(val), radius)


# =============================================================================
# 参数校验工具
# =============================================================================

def _require_finite(name: str, value: float, unit: str = "") -> None:
    if not isinstance(value, numbers.Real) or not math.isfinite(value):
        raise ComponentConfigurationError(
            f"参数 '{name}' 必须为有限数值，实际为 {value} {unit}".rstrip()
        )


def _require_positive(name: str, value: float, unit: str = "mm") -> None:
    _require_finite(name, value, unit)
    if value <= 0:
        raise ComponentConfigurationError(f"参数 '{name}' 必须为正值，实际为 {value} {unit}")


def _require_non_negative(name: str, value: float, unit: str = "mm") -> None:
    _require_finite(name, value, unit)
    if value < 0:
        raise ComponentConfigurationError(f"参数 '{name}' 不能为负，实际为 {value} {unit}")


def _require_index(name: str, value: float) -> None:
    _require_finite(name, value)
    if value < 1.0:
        raise ComponentConfigurationError(
            f"参数 '{name}'（折射率）必须 >= 1，实际为 {value}"
        )


def _require_radius(name: str, value: float) -> None:
    if isinstance(value, numbers.Real) and math.isinf(value):
        return
    _require_finite(name, value)
    if value == 0:
        raise ComponentConfigurationError(
            f"参数 '{name}'（曲率半径）不能为 0，平面请使用 inf"
        )


def _require_aperture_within_radius(aperture_name: str, aperture: float, radius_name: str, radius: float) -> None:
    if not is_flat(radius) and aperture > abs(radius):
        raise ComponentConfigurationError(
            f"参数 '{aperture_name}'（{aperture} mm）超过了曲率半径 "
            f"'{radius_name}' 允许的范围 |R| = {abs(radius)} mm"
        )


# =============================================================================
# 元件类型
# =============================================================================

class ComponentKind(Enum):
    """元件类型枚举"""
    MIRROR = "mirror"
    CURVED_MIRROR = "curved_mirror"
    SPHERICAL_LENS = "spherical_lens"
    COMPOUND_LENS = "compound_lens"
    CYLINDRICAL_LENS = "cylindrical_lens"
    PRISM = "prism"
    POLYGON_SCANNER = "polygon_scanner"
    APERTURE = "aperture"
    SLIT = "slit"
    BLOCKER = "blocker"
    CARD = "card"
    PMT = "pmt"
    CAMERA = "camera"
    IDEAL_LENS = "ideal_lens"
    OBJECTIVE = "objective"
    FILTER = "filter"
    DICHROIC = "dichroic"
    SAMPLE = "sample"
    WAVEPLATE = "waveplate"
    BEAM_SPLITTER = "beam_splitter"
    LASER = "laser"
    LAMP = "lamp"
    POINT_SOURCE = "point_source"


# =============================================================================
# 反射元件
# =============================================================================

@dataclass(frozen=True)
class MirrorParams:
    """平面反射镜（z = 0 的矩形薄镜面，双面反射）

    属性:
        width: X 方向宽度 (mm)
        height: Y 方向高度 (mm)
    """
    width: float = 25.0
    height: float = 25.0

    def __post_init__(self) -> None:
        _require_positive('width', self.width)
        _require_positive('height', self.height)


@dataclass(frozen=True)
class CurvedMirrorParams:
    """球面反射镜

    反射面为位于 z = -t/2、朝向 -Z 的球冠，光线沿 +Z 方向入射。
    R > 0 为凹面（曲率中心位于 -Z 一侧），焦距 f = R/2。
    背面与侧边吸收。

    属性:
        diameter: 口径 (mm)
        radius_of_curvature: 曲率半径 (mm)，|R| >= 1e8 视为平面
        thickness: 镜体厚度 (mm)
    """
    diameter: float = 25.4
    radius_of_curvature: float = 100.0
    thickness: float = 3.0

    def __post_init__(self) -> None:
        _require_positive('diameter', self.diameter)
        _require_radius('radius_of_curvature', self.radius_of_curvature)
        _require_positive('thickness', self.thickness)
        _require_aperture_within_radius(
            'diameter/2', self.diameter / 2, 'radius_of_curvature', self.radius_of_curvature
        )

    @property
    def focal_length(self) -> float:
        if is_flat(self.radius_of_curvature):
            return math.inf
        return self.radius_of_curvature / 2.0


@dataclass(frozen=True)
class PolygonScannerParams:
    """多边形扫描镜

    正 N 边形棱柱位于局部 XY 平面，绕局部 Z 轴旋转。
    面数钳位为 >= 3 的整数。

    属性:
        num_faces: 面数
        inscribed_radius: 内切圆半径 (mm)
        face_height: 面高度（Z 方向）(mm)
        scan_angle: 当前旋转角 (rad)
    """
    num_faces: int = 6
    inscribed_radius: float = 10.0
    face_height: float = 10.0
    scan_angle: float = 0.0

    def __post_init__(self) -> None:
        _require_finite('num_faces', self.num_faces)
        object.__setattr__(self, 'num_faces', max(3, int(round(self.num_faces))))
        _require_positive('inscribed_radius', self.inscribed_radius)
        _require_positive('face_height', self.face_height)
        _require_finite('scan_angle', self.scan_angle, 'rad')

    @property
    def circum_radius(self) -> float:
        """外接圆半径（中心到顶点）"""
        return self.inscribed_radius / math.cos(math.pi / self.num_faces)

    @property
    def face_half_width(self) -> float:
        return self.circum_radius * math.sin(math.pi / self.num_faces)


# =============================================================================
# 折射元件
# =============================================================================

@dataclass(frozen=True)
class SphericalLensParams:
    """球面厚透镜

    属性:
        r1: 前表面曲率半径 (mm)，inf 为平面
        r2: 后表面曲率半径 (mm)，inf 为平面
        thickness: 中心厚度 (mm)
        aperture_radius: 通光口径半径 (mm)
        ior: 折射率
    """
    r1: float = 50.0
    r2: float = -50.0
    thickness: float = 5.0
    aperture_radius: float = 12.7
    ior: float = 1.5168

    def __post_init__(self) -> None:
        _require_radius('r1', self.r1)
        _require_radius('r2', self.r2)
        _require_positive('thickness', self.thickness)
        _require_positive('aperture_radius', self.aperture_radius)
        _require_index('ior', self.ior)
        _require_aperture_within_radius('aperture_radius', self.aperture_radius, 'r1', self.r1)
        _require_aperture_within_radius('aperture_radius', self.aperture_radius, 'r2', self.r2)
        if self.edge_thickness < 0:
            raise ComponentConfigurationError(
                f"透镜边缘厚度为负（{self.edge_thickness:.4f} mm），"
                f"前后表面在口径 {self.aperture_radius} mm 内相交"
            )

    @property
    def edge_thickness(self) -> float:
        """口径边缘处的厚度 (mm)"""
        a = self.aperture_radius
        return self.thickness + surface_sag(self.r2, a) - surface_sag(self.r1, a)

    @property
    def focal_length(self) -> float:
        """厚透镜有效焦距（透镜制造者公式）"""
        n = self.ior
        c1 = 0.0 if is_flat(self.r1) else 1.0 / self.r1
        c2 = 0.0 if is_flat(self.r2) else 1.0 / self.r2
        power = (n - 1.0) * (c1 - c2 + (n - 1.0) * self.thickness * c1 * c2 / n)
        if abs(power) < 1e-15:
            return math.inf
        return 1.0 / power


@dataclass(frozen=True)
class LensElement:
    """复合透镜中的单个空气间隔元件

    属性:
        r1, r2, thickness, aperture_radius, ior: 同 SphericalLensParams
        z_offset: 元件中心在复合透镜局部坐标系中的 Z 位置 (mm)
    """
    r1: float
    r2: float
    thickness: float
    aperture_radius: float
    ior: float = 1.5168
    z_offset: float = 0.0

    def __post_init__(self) -> None:
        _require_finite('z_offset', self.z_offset)
        # 复用单透镜的参数校验
        self.as_lens()

    def as_lens(self) -> SphericalLensParams:
        return SphericalLensParams(
            r1=self.r1, r2=self.r2, thickness=self.thickness,
            aperture_radius=self.aperture_radius, ior=self.ior,
        )

    @property
    def z_range(self) -> Tuple[float, float]:
        """元件在局部 Z 方向占据的范围（含矢高）"""
        a = self.aperture_radius
        front = self.z_offset - self.thickness / 2
        back = self.z_offset + self.thickness / 2
        lo = min(front, front + surface_sag(self.r1, a))
        hi = max(back, back + surface_sag(self.r2, a))
        return lo, hi


def _default_compound_elements() -> Tuple[LensElement, ...]:
    # 10 倍消色差物镜前两组（弯月 + 双凸），镧冕玻璃
    return (
        LensElement(r1=6.76, r2=8.56, thickness=5.48, aperture_radius=6.0, ior=1.788, z_offset=0.74),
        LensElement(r1=55.04, r2=-40.14, thickness=3.28, aperture_radius=7.0, ior=1.788, z_offset=9.42),
    )


@dataclass(frozen=True)
class CompoundLensParams:
    """由若干空气间隔球面元件组成的复合透镜

    元件按 z_offset 升序排列，相邻元件在光轴方向不得重叠。
    """
    elements: Tuple[LensElement, ...] = field(default_factory=_default_compound_elements)

    def __post_init__(self) -> None:
        elements = tuple(sorted(self.elements, key=lambda e: e.z_offset))
        if not elements:
            raise ComponentConfigurationError("复合透镜至少需要一个元件")
        for prev, nxt in zip(elements, elements[1:]):
            if prev.z_range[1] >= nxt.z_range[0]:
                raise ComponentConfigurationError(
                    f"复合透镜元件重叠：z={prev.z_offset} mm 的元件与 "
                    f"z={nxt.z_offset} mm 的元件之间没有空气间隔"
                )
        object.__setattr__(self, 'elements', elements)

    @property
    def aperture_radius(self) -> float:
        return min(e.aperture_radius for e in self.elements)


@dataclass(frozen=True)
class CylindricalLensParams:
    """柱面透镜

    曲率位于局部 Y-Z 平面（子午面），沿 X 方向拉伸（弧矢面无光焦度）。

    属性:
        r1: 前表面曲率半径 (mm)
        r2: 后表面曲率半径 (mm)
        aperture_radius: Y 方向半口径 (mm)
        width: X 方向宽度 (mm)
        thickness: 中心厚度 (mm)
        ior: 折射率
    """
    r1: float = 50.0
    r2: float = math.inf
    aperture_radius: float = 10.0
    width: float = 20.0
    thickness: float = 5.0
    ior: float = 1.5168

    def __post_init__(self) -> None:
        _require_radius('r1', self.r1)
        _require_radius('r2', self.r2)
        _require_positive('aperture_radius', self.aperture_radius)
        _require_positive('width', self.width)
        _require_positive('thickness', self.thickness)
        _require_index('ior', self.ior)
        _require_aperture_within_radius('aperture_radius', self.aperture_radius, 'r1', self.r1)
        _require_aperture_within_radius('aperture_radius', self.aperture_radius, 'r2', self.r2)
        a = self.aperture_radius
        if self.thickness + surface_sag(self.r2, a) - surface_sag(self.r1, a) < 0:
            raise ComponentConfigurationError(
                f"柱面透镜前后表面在口径 {a} mm 内相交"
            )

    def front_z(self, y: float) -> float:
        return -self.thickness / 2 + surface_sag(self.r1, y)

    def back_z(self, y: float) -> float:
        return self.thickness / 2 + surface_sag(self.r2, y)


@dataclass(frozen=True)
class PrismParams:
    """三角棱镜

    截面为局部 Y-Z 平面内的三角形（顶角朝 +Y，质心位于原点），
    沿 X 方向拉伸。折射率随波长按 Cauchy 公式色散：
        n(λ) = A + B/λ²，B = 12000 nm²，A 使 n(589 nm) = ior

    属性:
        apex_angle: 顶角 (rad)
        height: 三角形高度（底边到顶点）(mm)
        width: X 方向长度 (mm)
        ior: 589 nm 处的折射率
    """
    apex_angle: float = math.pi / 3
    height: float = 20.0
    width: float = 20.0
    ior: float = 1.5168

    def __post_init__(self) -> None:
        _require_finite('apex_angle', self.apex_angle, 'rad')
        if not 0 < self.apex_angle < math.pi:
            raise ComponentConfigurationError(
                f"参数 'apex_angle' 必须位于 (0, π) 内，实际为 {self.apex_angle} rad"
            )
        _require_positive('height', self.height)
        _require_positive('width', self.width)
        _require_index('ior', self.ior)

    def index_at(self, wavelength_nm: float) -> float:
        """Cauchy 色散折射率（不低于 1）"""
        a = self.ior - CAUCHY_B_NM2 / (CAUCHY_REFERENCE_NM ** 2)
        return max(AMBIENT_INDEX, a + CAUCHY_B_NM2 / (wavelength_nm ** 2))

    def vertices(self) -> Dict[str, Tuple[float, float]]:
        """截面三角形顶点 (y, z)"""
        base_half_width = self.height * math.tan(self.apex_angle / 2)
        offset = self.height / 3
        return {
            'apex': (self.height - offset, 0.0),
            'base_left': (-offset, -base_half_width),
            'base_right': (-offset, base_half_width),
        }


# =============================================================================
# 光阑与遮挡
# =============================================================================

@dataclass(frozen=True)
class ApertureParams:
    """可变光阑（圆孔位于圆形外壳中心）

    opening_diameter 为 0 时光阑完全关闭。
    """
    opening_diameter: float = 10.0
    housing_diameter: float = 25.0

    def __post_init__(self) -> None:
        _require_non_negative('opening_diameter', self.opening_diameter)
        _require_positive('housing_diameter', self.housing_diameter)
        if self.opening_diameter > self.housing_diameter:
            raise ComponentConfigurationError(
                f"光阑开口直径 {self.opening_diameter} mm 超过外壳直径 {self.housing_diameter} mm"
            )


@dataclass(frozen=True)
class SlitParams:
    """狭缝光阑（矩形开口位于圆形外壳中心）

    属性:
        slit_width: X 方向开口宽度 (mm)
        slit_height: Y 方向开口高度 (mm)
        housing_diameter: 外壳直径 (mm)
    """
    slit_width: float = 5.0
    slit_height: float = 20.0
    housing_diameter: float = 25.0

    def __post_init__(self) -> None:
        _require_non_negative('slit_width', self.slit_width)
        _require_non_negative('slit_height', self.slit_height)
        _require_positive('housing_diameter', self.housing_diameter)


@dataclass(frozen=True)
class BlockerParams:
    """挡光块（轴对齐长方体）"""
    width: float = 20.0
    height: float = 40.0
    depth: float = 5.0

    def __post_init__(self) -> None:
        _require_positive('width', self.width)
        _require_positive('height', self.height)
        _require_positive('depth', self.depth)


# =============================================================================
# 探测器
# =============================================================================

@dataclass(frozen=True)
class CardParams:
    """观察卡（z = 0 的矩形面，记录入射光线）"""
    width: float = 50.0
    height: float = 50.0

    def __post_init__(self) -> None:
        _require_positive('width', self.width)
        _require_positive('height', self.height)


@dataclass(frozen=True)
class PMTParams:
    """光电倍增管（点探测器）

    反向追迹时视为单像素相机；二维图像通过扫描通道逐点累积。

    属性:
        width, height: 感光面尺寸 (mm)
        sensor_na: 接收锥数值孔径
        samples_per_pixel: 每个扫描位置的 Monte Carlo 采样数
        sample_rate_hz: 采样率，用于推导默认扫描分辨率
        scan_res_x, scan_res_y: 默认扫描分辨率
    """
    width: float = 10.0
    height: float = 10.0
    sensor_na: float = 0.01
    samples_per_pixel: int = 100
    sample_rate_hz: float = 4096.0
    scan_res_x: int = 64
    scan_res_y: int = 64

    def __post_init__(self) -> None:
        _require_positive('width', self.width)
        _require_positive('height', self.height)
        _require_positive('sensor_na', self.sensor_na, '')
        _require_positive('samples_per_pixel', self.samples_per_pixel, '')
        _require_positive('sample_rate_hz', self.sample_rate_hz, 'Hz')
        _require_positive('scan_res_x', self.scan_res_x, '')
        _require_positive('scan_res_y', self.scan_res_y, '')


@dataclass(frozen=True)
class CameraParams:
    """相机传感器

    属性:
        width, height: 传感器尺寸 (mm)
        res_x, res_y: 像素分辨率
        sensor_na: 像素接收锥数值孔径
        samples_per_pixel: 每像素 Monte Carlo 采样数
    """
    width: float = 20.0
    height: float = 15.0
    res_x: int = 64
    res_y: int = 48
    sensor_na: float = 0.05
    samples_per_pixel: int = 16

    def __post_init__(self) -> None:
        _require_positive('width', self.width)
        _require_positive('height', self.height)
        _require_positive('res_x', self.res_x, '')
        _require_positive('res_y', self.res_y, '')
        _require_positive('sensor_na', self.sensor_na, '')
        _require_positive('samples_per_pixel', self.samples_per_pixel, '')


# =============================================================================
# 理想相位面
# =============================================================================

@dataclass(frozen=True)
class IdealLensParams:
    """理想薄透镜（无厚度相位面）

    focal_length 为正表示会聚，为负表示发散。
    """
    focal_length: float = 50.0
    aperture_radius: float = 12.7

    def __post_init__(self) -> None:
        _require_finite('focal_length', self.focal_length)
        if self.focal_length == 0:
            raise ComponentConfigurationError("参数 'focal_length' 不能为 0")
        _require_positive('aperture_radius', self.aperture_radius)


@dataclass(frozen=True)
class ObjectiveParams:
    """显微物镜（理想相位面近似）"""
    focal_length: float = 20.0
    aperture_radius: float = 7.0

    def __post_init__(self) -> None:
        _require_finite('focal_length', self.focal_length)
        if self.focal_length == 0:
            raise ComponentConfigurationError("参数 'focal_length' 不能为 0")
        _require_positive('aperture_radius', self.aperture_radius)


# =============================================================================
# 光谱元件
# =============================================================================

@dataclass(frozen=True)
class FilterParams:
    """滤光片（透射率由光谱曲线决定）"""
    diameter: float = 25.0
    thickness: float = 3.0
    profile: SpectralProfile = field(default_factory=lambda: SpectralProfile.bandpass(525.0, 50.0))

    def __post_init__(self) -> None:
        _require_positive('diameter', self.diameter)
        _require_positive('thickness', self.thickness)


@dataclass(frozen=True)
class DichroicParams:
    """二向色镜：透射 T(λ)，反射 1 - T(λ)"""
    diameter: float = 25.0
    thickness: float = 2.0
    profile: SpectralProfile = field(default_factory=lambda: SpectralProfile.longpass(500.0))

    def __post_init__(self) -> None:
        _require_positive('diameter', self.diameter)
        _require_positive('thickness', self.thickness)


# =============================================================================
# 偏振与分束元件
# =============================================================================

WAVEPLATE_MODES = ('half', 'quarter', 'polarizer')


@dataclass(frozen=True)
class WaveplateParams:
    """波片 / 线偏振片（z = 0 的圆形薄片）

    Jones 矢量按元件局部 X/Y 分量解释，快轴（偏振片为透光轴）
    与局部 +X 的夹角为 fast_axis_angle。

    Jones 矩阵 J = R(-θ) · D · R(θ)，R(θ) = [[cosθ, sinθ], [-sinθ, cosθ]]：
    - half：D = diag(1, -1)
    - quarter：D = diag(1, -i)
    - polarizer：D = diag(1, 0)

    属性:
        mode: 'half'、'quarter' 或 'polarizer'
        fast_axis_angle: 快轴方位角 (rad)
        aperture_radius: 通光半径 (mm)
        thickness: 片厚 (mm)，仅用于包围盒
    """
    mode: str = 'half'
    fast_axis_angle: float = 0.0
    aperture_radius: float = 12.5
    thickness: float = 2.0

    def __post_init__(self) -> None:
        if self.mode not in WAVEPLATE_MODES:
            raise ComponentConfigurationError(
                f"参数 'mode' 必须为 {WAVEPLATE_MODES} 之一，实际为 '{self.mode}'"
            )
        _require_finite('fast_axis_angle', self.fast_axis_angle, 'rad')
        _require_positive('aperture_radius', self.aperture_radius)
        _require_positive('thickness', self.thickness)

    def jones_matrix(self) -> NDArray[np.complexfloating]:
        """局部 X/Y 基下的 2×2 Jones 矩阵"""
        c = math.cos(self.fast_axis_angle)
        s = math.sin(self.fast_axis_angle)
        rotate = np.array([[c, s], [-s, c]], dtype=np.complex128)
        if self.mode == 'half':
            retarder = np.diag([1.0, -1.0]).astype(np.complex128)
        elif self.mode == 'quarter':
            retarder = np.diag([1.0, -1j])
        else:
            retarder = np.diag([1.0, 0.0]).astype(np.complex128)
        return rotate.T @ retarder @ rotate

    def transmit(self, jones) -> Tuple[Tuple[complex, complex], float]:
        """Jones 矢量经过本元件

        参数:
            jones: 入射 Jones 矢量 (Ex, Ey)，局部 X/Y 基

        返回:
            (出射 Jones 矢量（归一化）, 功率透过率)；
            波片的透过率恒为 1，零矢量原样返回
        """
        j_in = np.asarray(jones, dtype=np.complex128)
        norm_in = float(np.vdot(j_in, j_in).real)
        if norm_in <= 0.0:
            return (complex(j_in[0]), complex(j_in[1])), 1.0
        j_out = self.jones_matrix() @ j_in
        norm_out = float(np.vdot(j_out, j_out).real)
        throughput = norm_out / norm_in if self.mode == 'polarizer' else 1.0
        if norm_out > 0.0:
            j_out = j_out / math.sqrt(norm_out)
        return (complex(j_out[0]), complex(j_out[1])), throughput


@dataclass(frozen=True)
class BeamSplitterParams:
    """非偏振分束片：反射 split_ratio，透射 1 - split_ratio

    分束面为 z = 0 的圆形薄平面，双面相同。

    属性:
        diameter: 口径 (mm)
        thickness: 片厚 (mm)，仅用于包围盒
        split_ratio: 反射功率占比
    """
    diameter: float = 25.0
    thickness: float = 2.0
    split_ratio: float = 0.5

    def __post_init__(self) -> None:
        _require_positive('diameter', self.diameter)
        _require_positive('thickness', self.thickness)
        _require_finite('split_ratio', self.split_ratio)
        if not 0.0 <= self.split_ratio <= 1.0:
            raise ComponentConfigurationError(
                f"参数 'split_ratio' 必须位于 [0, 1]，实际为 {self.split_ratio}"
            )


# =============================================================================
# 样品
# =============================================================================

@dataclass(frozen=True)
class SampleFeature:
    """样品中的球形结构"""
    center: Tuple[float, float, float]
    radius: float

    def __post_init__(self) -> None:
        center = tuple(float(c) for c in self.center)
        if len(center) != 3 or not all(math.isfinite(c) for c in center):
            raise ComponentConfigurationError(f"样品结构中心必须为 3 维有限向量，实际为 {self.center}")
        object.__setattr__(self, 'center', center)
        _require_positive('radius', self.radius)


def _default_sample_features() -> Tuple[SampleFeature, ...]:
    # 头部与两只耳朵
    return (
        SampleFeature((0.0, 0.0, 0.0), 0.5),
        SampleFeature((-0.5, 0.5, 0.0), 0.25),
        SampleFeature((0.5, 0.5, 0.0), 0.25),
    )


@dataclass(frozen=True)
class SampleParams:
    """荧光样品

    属性:
        features: 球形结构列表
        excitation_nm: 激发中心波长 (nm)
        emission_nm: 发射中心波长 (nm)
        excitation_bandwidth_nm: 激发带宽 FWHM (nm)
        emission_bandwidth_nm: 发射带宽 FWHM (nm)
        fluorescence_efficiency: 荧光量子效率
    """
    features: Tuple[SampleFeature, ...] = field(default_factory=_default_sample_features)
    excitation_nm: float = 488.0
    emission_nm: float = 520.0
    excitation_bandwidth_nm: float = 30.0
    emission_bandwidth_nm: float = 30.0
    fluorescence_efficiency: float = 1e-4

    def __post_init__(self) -> None:
        if not self.features:
            raise ComponentConfigurationError("样品至少需要一个球形结构")
        object.__setattr__(self, 'features', tuple(self.features))
        _require_positive('excitation_nm', self.excitation_nm, 'nm')
        _require_positive('emission_nm', self.emission_nm, 'nm')
        _require_positive('excitation_bandwidth_nm', self.excitation_bandwidth_nm, 'nm')
        _require_positive('emission_bandwidth_nm', self.emission_bandwidth_nm, 'nm')
        _require_non_negative('fluorescence_efficiency', self.fluorescence_efficiency, '')
        if self.fluorescence_efficiency > 1:
            raise ComponentConfigurationError(
                f"参数 'fluorescence_efficiency' 必须位于 [0, 1]，实际为 {self.fluorescence_efficiency}"
            )

    @property
    def excitation_spectrum(self) -> SpectralProfile:
        return SpectralProfile.bandpass(self.excitation_nm, self.excitation_bandwidth_nm, edge_steepness=5.0)

    @property
    def emission_spectrum(self) -> SpectralProfile:
        return SpectralProfile.bandpass(self.emission_nm, self.emission_bandwidth_nm, edge_steepness=5.0)


# =============================================================================
# 光源
# =============================================================================

@dataclass(frozen=True)
class LaserParams:
    """激光器：沿局部 +Z 从 z = 0 发出准直光束

    属性:
        wavelength_nm: 波长 (nm)
        beam_radius: 光束 1/e² 半径 (mm)
        power: 输出功率 (W)
    """
    wavelength_nm: float = 532.0
    beam_radius: float = 2.0
    power: float = 1.0

    def __post_init__(self) -> None:
        _require_positive('wavelength_nm', self.wavelength_nm, 'nm')
        _require_positive('beam_radius', self.beam_radius)
        _require_non_negative('power', self.power, 'W')


@dataclass(frozen=True)
class LampParams:
    """宽带灯源：按离散波长发出准直光束"""
    beam_radius: float = 3.0
    beam_waist: float = 3.0
    power: float = 1.0
    wavelengths_nm: Tuple[float, ...] = (
        340.0, 380.0, 420.0, 460.0, 500.0, 540.0, 580.0,
        620.0, 660.0, 700.0, 740.0, 780.0, 820.0,
    )

    def __post_init__(self) -> None:
        _require_positive('beam_radius', self.beam_radius)
        _require_positive('beam_waist', self.beam_waist)
        _require_non_negative('power', self.power, 'W')
        wavelengths = tuple(float(w) for w in self.wavelengths_nm)
        if not wavelengths:
            raise ComponentConfigurationError("灯源至少需要一个发射波长")
        for w in wavelengths:
            _require_positive('wavelengths_nm', w, 'nm')
        object.__setattr__(self, 'wavelengths_nm', wavelengths)


@dataclass(frozen=True)
class PointSourceParams:
    """点光源：自局部原点沿 +Z 发出扇形光线

    扇面位于局部 X-Z 平面，光线方向与 +Z 的夹角均布于
    [-cone_half_angle, +cone_half_angle]。点光源无几何体，不会被光线命中。

    属性:
        wavelength_nm: 波长 (nm)
        cone_half_angle: 扇形半角 (rad)
        ray_count: 扇形采样角数（与主光线重合的角度不重复发射）
        power: 总功率 (W)
    """
    wavelength_nm: float = 532.0
    cone_half_angle: float = math.radians(25.0)
    ray_count: int = 11
    power: float = 1.0

    def __post_init__(self) -> None:
        _require_positive('wavelength_nm', self.wavelength_nm, 'nm')
        _require_finite('cone_half_angle', self.cone_half_angle, 'rad')
        if not 0.0 <= self.cone_half_angle < math.pi / 2:
            raise ComponentConfigurationError(
                f"参数 'cone_half_angle' 必须位于 [0, π/2)，实际为 {self.cone_half_angle}"
            )
        if int(self.ray_count) < 1:
            raise ComponentConfigurationError(
                f"参数 'ray_count' 必须至少为 1，实际为 {self.ray_count}"
            )
        object.__setattr__(self, 'ray_count', int(self.ray_count))
        _require_non_negative('power', self.power, 'W')


# =============================================================================
# 类型注册表
# =============================================================================

PARAMS_BY_KIND: Dict[ComponentKind, Type] = {
    ComponentKind.MIRROR: MirrorParams,
    ComponentKind.CURVED_MIRROR: CurvedMirrorParams,
    ComponentKind.SPHERICAL_LENS: SphericalLensParams,
    ComponentKind.COMPOUND_LENS: CompoundLensParams,
    ComponentKind.CYLINDRICAL_LENS: CylindricalLensParams,
    ComponentKind.PRISM: PrismParams,
    ComponentKind.POLYGON_SCANNER: PolygonScannerParams,
    ComponentKind.APERTURE: ApertureParams,
    ComponentKind.SLIT: SlitParams,
    ComponentKind.BLOCKER: BlockerParams,
    ComponentKind.CARD: CardParams,
    ComponentKind.PMT: PMTParams,
    ComponentKind.CAMERA: CameraParams,
    ComponentKind.IDEAL_LENS: IdealLensParams,
    ComponentKind.OBJECTIVE: ObjectiveParams,
    ComponentKind.FILTER: FilterParams,
    ComponentKind.DICHROIC: DichroicParams,
    ComponentKind.SAMPLE: SampleParams,
    ComponentKind.WAVEPLATE: WaveplateParams,
    ComponentKind.BEAM_SPLITTER: BeamSplitterParams,
    ComponentKind.LASER: LaserParams,
    ComponentKind.LAMP: LampParams,
    ComponentKind.POINT_SOURCE: PointSourceParams,
}

KIND_BY_PARAMS: Dict[Type, ComponentKind] = {v: k for k, v in PARAMS_BY_KIND.items()}

DEFAULT_NAMES: Dict[ComponentKind, str] = {
    ComponentKind.MIRROR: "平面镜",
    ComponentKind.CURVED_MIRROR: "球面镜",
    ComponentKind.SPHERICAL_LENS: "球面透镜",
    ComponentKind.COMPOUND_LENS: "复合透镜",
    ComponentKind.CYLINDRICAL_LENS: "柱面透镜",
    ComponentKind.PRISM: "棱镜",
    ComponentKind.POLYGON_SCANNER: "多边形扫描镜",
    ComponentKind.APERTURE: "可变光阑",
    ComponentKind.SLIT: "狭缝",
    ComponentKind.BLOCKER: "挡光块",
    ComponentKind.CARD: "观察卡",
    ComponentKind.PMT: "光电倍增管",
    ComponentKind.CAMERA: "相机",
    ComponentKind.IDEAL_LENS: "理想透镜",
    ComponentKind.OBJECTIVE: "物镜",
    ComponentKind.FILTER: "滤光片",
    ComponentKind.DICHROIC: "二向色镜",
    ComponentKind.SAMPLE: "样品",
    ComponentKind.WAVEPLATE: "波片",
    ComponentKind.BEAM_SPLITTER: "分束镜",
    ComponentKind.LASER: "激光器",
    ComponentKind.LAMP: "灯源",
    ComponentKind.POINT_SOURCE: "点光源",
}

DETECTOR_KINDS = frozenset({ComponentKind.CARD, ComponentKind.PMT, ComponentKind.CAMERA})
EMITTER_KINDS = frozenset({ComponentKind.LASER, ComponentKind.LAMP, ComponentKind.POINT_SOURCE})

# 各类型的默认体吸收系数（mm⁻¹）
DEFAULT_ABSORPTION: Dict[ComponentKind, float] = {
    ComponentKind.SAMPLE: 3.0,
}


# =============================================================================
# 局部包围盒
# =============================================================================

def local_bounds(params) -> Tuple[NDArray[np.floating], NDArray[np.floating]]:
    """元件在局部坐标系中的轴对齐包围盒 (min, max)"""
    if isinstance(params, (MirrorParams, CardParams, PMTParams, CameraParams)):
        half = np.array([params.width / 2, params.height / 2, 0.01])
        return -half, half
    if isinstance(params, CurvedMirrorParams):
        r = params.diameter / 2
        sag = surface_sag(-params.radius_of_curvature, r)
        z0 = -params.thickness / 2
        return (np.array([-r, -r, min(z0, z0 + sag)]),
                np.array([r, r, max(params.thickness / 2, z0 + sag)]))
    if isinstance(params, (SphericalLensParams, LensElement)):
        a = params.aperture_radius
        front = -params.thickness / 2
        back = params.thickness / 2
        offset = params.z_offset if isinstance(params, LensElement) else 0.0
        lo = min(front, front + surface_sag(params.r1, a)) + offset
        hi = max(back, back + surface_sag(params.r2, a)) + offset
        return np.array([-a, -a, lo]), np.array([a, a, hi])
    if isinstance(params, CompoundLensParams):
        boxes = [local_bounds(e) for e in params.elements]
        return (np.min([b[0] for b in boxes], axis=0), np.max([b[1] for b in boxes], axis=0))
    if isinstance(params, CylindricalLensParams):
        a = params.aperture_radius
        lo = min(params.front_z(0.0), params.front_z(a))
        hi = max(params.back_z(0.0), params.back_z(a))
        return np.array([-params.width / 2, -a, lo]), np.array([params.width / 2, a, hi])
    if isinstance(params, PrismParams):
        v = params.vertices()
        ys = [p[0] for p in v.values()]
        zs = [p[1] for p in v.values()]
        return (np.array([-params.width / 2, min(ys), min(zs)]),
                np.array([params.width / 2, max(ys), max(zs)]))
    if isinstance(params, PolygonScannerParams):
        r = params.circum_radius
        h = params.face_height / 2
        return np.array([-r, -r, -h]), np.array([r, r, h])
    if isinstance(params, (ApertureParams, SlitParams)):
        r = params.housing_diameter / 2
        return np.array([-r, -r, -0.5]), np.array([r, r, 0.5])
    if isinstance(params, BlockerParams):
        half = np.array([params.width / 2, params.height / 2, params.depth / 2])
        return -half, half
    if isinstance(params, (IdealLensParams, ObjectiveParams)):
        a = params.aperture_radius
        return np.array([-a, -a, -0.01]), np.array([a, a, 0.01])
    if isinstance(params, (FilterParams, DichroicParams, BeamSplitterParams)):
        r = params.diameter / 2
        return np.array([-r, -r, -params.thickness / 2]), np.array([r, r, params.thickness / 2])
    if isinstance(params, WaveplateParams):
        a = params.aperture_radius
        return np.array([-a, -a, -params.thickness / 2]), np.array([a, a, params.thickness / 2])
    if isinstance(params, SampleParams):
        lo = np.min([np.array(f.center) - f.radius for f in params.features], axis=0)
        hi = np.max([np.array(f.center) + f.radius for f in params.features], axis=0)
        return lo, hi
    if isinstance(params, LaserParams):
        return LASER_HOUSING
    if isinstance(params, LampParams):
        return LAMP_HOUSING
    if isinstance(params, PointSourceParams):
        return POINT_SOURCE_MARKER
    raise TypeError(f"未知的元件参数类型: {type(params).__name__}")


# 光源外壳（位于发射面 z = 0 之后）
LASER_HOUSING = (np.array([-7.5, -12.5, -50.0]), np.array([7.5, 12.5, 0.0]))
LAMP_HOUSING = (np.array([-11.0, -15.0, -20.0]), np.array([11.0, 15.0, 0.0]))
POINT_SOURCE_MARKER = (np.array([-0.5, -0.5, -0.5]), np.array([0.5, 0.5, 0.5]))


# =============================================================================
# 元件
# =============================================================================

class OpticalComponent:
    """光学元件

    参数:
        params: 元件参数变体
        name: 名称；None 时使用类型的默认名称
        position: 位置 (mm)
        orientation: 旋转（Rotation、四元数或旋转矩阵）
        absorption_coeff: 体吸收系数 (mm⁻¹)；None 时使用类型默认值
        component_id: 稳定 id；None 时自动生成

    示例:
        >>> lens = OpticalComponent.create(ComponentKind.SPHERICAL_LENS, r1=50, r2=-50)
        >>> lens.set_position(0, 0, 100)
        >>> lens.set_params(thickness=6.0)
        >>> lens.revision
        2
    """

    def __init__(
        self,
        params,
        name: Optional[str] = None,
        position=(0.0, 0.0, 0.0),
        orientation=None,
        absorption_coeff: Optional[float] = None,
        component_id: Optional[str] = None,
    ) -> None:
        if type(params) not in KIND_BY_PARAMS:
            raise ComponentConfigurationError(
                f"未知的元件参数类型: {type(params).__name__}"
            )
        self.id = component_id or uuid.uuid4().hex
        self.kind = KIND_BY_PARAMS[type(params)]
        self.name = name or DEFAULT_NAMES[self.kind]
        self.frame = TransformFrame(position, orientation)
        self._params = params
        if absorption_coeff is None:
            absorption_coeff = DEFAULT_ABSORPTION.get(self.kind, 0.0)
        _require_non_negative('absorption_coeff', absorption_coeff, 'mm⁻¹')
        self._absorption_coeff = float(absorption_coeff)
        self._geometry_cache: Dict[str, Tuple[int, Any]] = {}

    @classmethod
    def create(
        cls,
        kind: ComponentKind,
        name: Optional[str] = None,
        position=(0.0, 0.0, 0.0),
        **params,
    ) -> "OpticalComponent":
        """按类型创建元件，未给出的参数使用默认值"""
        kind = ComponentKind(kind)
        params_cls = PARAMS_BY_KIND[kind]
        try:
            instance = params_cls(**params)
        except TypeError as exc:
            valid = [f.name for f in fields(params_cls)]
            raise ComponentConfigurationError(
                f"{kind.value} 元件参数无效: {exc}；可用参数为 {valid}"
            )
        return cls(instance, name=name, position=position)

    # =========================================================================
    # 属性
    # =========================================================================

    @property
    def params(self):
        return self._params

    @property
    def revision(self) -> int:
        return self.frame.revision

    @property
    def position(self) -> NDArray[np.floating]:
        return self.frame.position

    @property
    def absorption_coeff(self) -> float:
        return self._absorption_coeff

    @property
    def bounds(self) -> Tuple[NDArray[np.floating], NDArray[np.floating]]:
        """局部轴对齐包围盒"""
        return local_bounds(self._params)

    @property
    def is_detector(self) -> bool:
        return self.kind in DETECTOR_KINDS

    @property
    def is_emitter(self) -> bool:
        return self.kind in EMITTER_KINDS

    # =========================================================================
    # 修改（均递增修订号）
    # =========================================================================

    def set_params(self, **changes) -> None:
        """修改参数（整体替换不可变参数对象并重新校验）"""
        try:
            self._params = replace(self._params, **changes)
        except TypeError as exc:
            raise ComponentConfigurationError(f"{self.kind.value} 元件参数无效: {exc}")
        self.frame.touch()

    def set_absorption(self, coeff: float) -> None:
        _require_non_negative('absorption_coeff', coeff, 'mm⁻¹')
        self._absorption_coeff = float(coeff)
        self.frame.touch()

    def set_pose(self, position, orientation=None) -> None:
        self.frame.set_pose(position, orientation)

    def set_position(self, x: float, y: float, z: float) -> None:
        self.frame.set_position(x, y, z)

    def set_rotation(self, rx: float, ry: float, rz: float) -> None:
        self.frame.set_rotation(rx, ry, rz)

    def point_along(self, direction, up_hint=(0.0, 0.0, 1.0)) -> None:
        self.frame.point_along(direction, up_hint=up_hint)

    # =========================================================================
    # 几何缓存
    # =========================================================================

    def cached(self, key: str, builder):
        """按修订号缓存派生几何

        缓存项记录其构建时的修订号，修订号变化后重新调用 builder(params)。
        重复计算是幂等的，可在追迹过程中安全调用。
        """
        entry = self._geometry_cache.get(key)
        if entry is not None and entry[0] == self.revision:
            return entry[1]
        value = builder(self._params)
        self._geometry_cache[key] = (self.revision, value)
        return value

    def __repr__(self) -> str:
        return (
            f"OpticalComponent(kind={self.kind.value}, name='{self.name}', "
            f"position={self.frame.position.tolist()}, revision={self.revision})"
        )
