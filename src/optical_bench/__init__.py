"""
虚拟光学平台核心模块

提供光学平台上元件的建模与基础物理：
1. 坐标系（TransformFrame）：位置 + 旋转，带修订号的惰性变换矩阵缓存
2. 元件数据模型：23 种元件参数变体与 OpticalComponent
3. 表面几何：局部坐标系下的光线与元件求交
4. 相互作用协议：反射、折射、滤光、分光、探测、荧光
5. 光谱曲线：带通、长通、短通、陷波与多带
6. ABCD 描述：元件在弧矢面与子午面上的传输矩阵
7. 动画通道与光源种子光线
8. OpticalBench 场景注册表

使用示例：
=========

    >>> from optical_bench import OpticalBench, OpticalComponent, ComponentKind
    >>> bench = OpticalBench()
    >>> laser = OpticalComponent.create(ComponentKind.LASER)
    >>> mirror = OpticalComponent.create(ComponentKind.MIRROR)
    >>> bench.add(laser).place(mirror, position=(0, 0, 100), direction=(0, 0, -1))
    >>> result = bench.trace()

作者：混合光学仿真项目
"""

from .exceptions import (
    ComponentConfigurationError,
    ConfigurationError,
    OpticalBenchError,
    UnknownComponentError,
)
from .frame import TransformFrame
from .spectral_profile import SpectralBand, SpectralPreset, SpectralProfile
from .rays import HitRecord, InteractionResult, Ray
from .components import (
    ApertureParams,
    BeamSplitterParams,
    BlockerParams,
    CameraParams,
    CardParams,
    ComponentKind,
    CompoundLensParams,
    CurvedMirrorParams,
    CylindricalLensParams,
    DichroicParams,
    FilterParams,
    IdealLensParams,
    LampParams,
    LaserParams,
    LensElement,
    MirrorParams,
    ObjectiveParams,
    OpticalComponent,
    PMTParams,
    PointSourceParams,
    PolygonScannerParams,
    PrismParams,
    SampleFeature,
    SampleParams,
    SlitParams,
    SphericalLensParams,
    WaveplateParams,
)
from .geometry import find_intersection, intersect
from .interaction import interact
from .abcd import ABCDDescriptor, abcd_descriptor
from .animation import AnimationChannel, Easing
from .sources import seed_rays, seed_scene
from .config import ImagingConfig, TraceConfig
from .bench import OpticalBench

__all__ = [
    # 异常
    'ComponentConfigurationError',
    'ConfigurationError',
    'OpticalBenchError',
    'UnknownComponentError',
    # 坐标系与光谱
    'TransformFrame',
    'SpectralBand',
    'SpectralPreset',
    'SpectralProfile',
    # 光线
    'HitRecord',
    'InteractionResult',
    'Ray',
    # 元件
    'ApertureParams',
    'BeamSplitterParams',
    'BlockerParams',
    'CameraParams',
    'CardParams',
    'ComponentKind',
    'CompoundLensParams',
    'CurvedMirrorParams',
    'CylindricalLensParams',
    'DichroicParams',
    'FilterParams',
    'IdealLensParams',
    'LampParams',
    'LaserParams',
    'LensElement',
    'MirrorParams',
    'ObjectiveParams',
    'OpticalComponent',
    'PMTParams',
    'PointSourceParams',
    'PolygonScannerParams',
    'PrismParams',
    'SampleFeature',
    'SampleParams',
    'SlitParams',
    'SphericalLensParams',
    'WaveplateParams',
    # 物理
    'find_intersection',
    'intersect',
    'interact',
    'ABCDDescriptor',
    'abcd_descriptor',
    # 动画与光源
    'AnimationChannel',
    'Easing',
    'seed_rays',
    'seed_scene',
    # 配置与注册表
    'ImagingConfig',
    'TraceConfig',
    'OpticalBench',
]
