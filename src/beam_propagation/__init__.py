"""
ABCD 高斯光束传播模块

在弧矢面（x）与子午面（y）上分别传播高斯光束复参数 q，
支持柱面透镜、狭缝、棱镜等像散元件，并标记光阑截断。

主要功能：
1. 复参数 q 的基本运算（初始化、ABCD 变换、光束半径、波前曲率）
2. 沿元件顺序或正向追迹主光线路径传播光束
3. 由传播记录构建光束场，查询任意点的照明强度

作者：混合光学仿真项目
"""

from .exceptions import BeamPropagationError, PropagationError
from .gaussian_beam import (
    GaussianBeam,
    apply_abcd,
    beam_radius,
    free_space_matrix,
    initial_q,
    mirror_matrix,
    nm_to_mm,
    refraction_matrix,
    thick_lens_matrix,
    thin_lens_matrix,
    wavefront_radius,
)
from .propagator import (
    BeamPathStop,
    BeamSurfaceRecord,
    beam_path_from_trace,
    propagate_beam,
    propagate_main_paths,
)
from .beam_field import (
    BeamSegment,
    GaussianBeamField,
    beam_fields_from_trace,
)

__all__ = [
    'BeamPropagationError',
    'PropagationError',
    'GaussianBeam',
    'apply_abcd',
    'beam_radius',
    'free_space_matrix',
    'initial_q',
    'mirror_matrix',
    'nm_to_mm',
    'refraction_matrix',
    'thick_lens_matrix',
    'thin_lens_matrix',
    'wavefront_radius',
    'BeamPathStop',
    'BeamSurfaceRecord',
    'beam_path_from_trace',
    'propagate_beam',
    'propagate_main_paths',
    'BeamSegment',
    'GaussianBeamField',
    'beam_fields_from_trace',
]
