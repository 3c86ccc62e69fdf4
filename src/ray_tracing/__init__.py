"""
光线追迹模块

两个几何追迹求解器与扫描累积：
1. 正向追迹：从光源出发，记录光线路径与探测器入射
2. 反向成像：从相机或 PMT 像素出发，寻找与之共轭的样品点或光源
3. 扫描累积：点探测器配合动画通道逐步成像，支持代号取消与进度回报

作者：混合光学仿真项目
"""

from .exceptions import RayTracingError, ScanError
from .forward_tracer import (
    DetectorHit,
    RayPath,
    Termination,
    TraceResult,
    nearest_hit,
    trace_scene,
)
from .scan import (
    RenderResult,
    ScanConfig,
    ScanController,
    ScanJob,
    ScanState,
    default_scan_resolution,
)
from .imaging_tracer import (
    BackwardSample,
    imaging_wavelengths,
    render_camera,
    render_image,
    render_point,
    request_scan,
    trace_backward,
)

__all__ = [
    'RayTracingError',
    'ScanError',
    'DetectorHit',
    'RayPath',
    'Termination',
    'TraceResult',
    'nearest_hit',
    'trace_scene',
    'RenderResult',
    'ScanConfig',
    'ScanController',
    'ScanJob',
    'ScanState',
    'default_scan_resolution',
    'BackwardSample',
    'imaging_wavelengths',
    'render_camera',
    'render_image',
    'render_point',
    'request_scan',
    'trace_backward',
]
