"""
反向成像追迹器

从探测器像素出发，在接收锥（sensor_na）内发射反向光线，
穿过光学系统寻找与之共轭的样品点或光源：

- 样品：背景照明（弦远端处与光线同波长的光束强度）× exp(-α·弦长)
  加上荧光（弦中点处的激发强度 × 荧光效率 × 发射谱(λ) × 弦长）
- 激光器（波长差在容差内）或灯源：明场透射 throughput × 功率
- 探测器或吸收体：终止，无贡献
- 其它元件：调用相互作用函数，按子光线功率加权随机选择一条继续，
  通量乘以子光线总功率与入射功率之比

相机按像素逐个渲染；点探测器（PMT）在扫描配置下由 ScanJob 逐步渲染单个像素。

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import numpy as np
from numpy.typing import NDArray

from optical_bench.components import (
    CameraParams,
    LampParams,
    LaserParams,
    OpticalComponent,
    PMTParams,
    SampleParams,
)
from optical_bench.config import ImagingConfig
from optical_bench.exceptions import UnknownComponentError
from optical_bench.geometry import T_MIN
from optical_bench.interaction import interact
from optical_bench.rays import HitRecord, Ray

from .exceptions import ScanError
from .forward_tracer import nearest_hit
from .scan import RenderResult, ScanConfig, ScanController, ScanJob, ScanState


# 回退波长 (nm)
FALLBACK_WAVELENGTH_NM = 532.0

# 发射谱低于该值时不计荧光
EMISSION_MIN = 0.05

# 子光线总功率低于该值时视为全部吸收
MIN_CHILD_POWER = 1e-12


@dataclass
class BackwardSample:
    """一条反向光线的追迹结果

    属性:
        radiance: 辐亮度贡献
        rays: 反向光线各段
        hits: 各段终点命中记录
        absorbed: 是否被吸收（未到达样品或光源）
    """
    radiance: float = 0.0
    rays: List[Ray] = field(default_factory=list)
    hits: List[HitRecord] = field(default_factory=list)
    absorbed: bool = False


# =============================================================================
# 反向追迹
# =============================================================================

def _field_intensity(beam_fields, point, wavelength_nm: Optional[float], tolerance_nm: float) -> float:
    total = 0.0
    for beam in beam_fields:
        if wavelength_nm is not None and abs(beam.wavelength_nm - wavelength_nm) > tolerance_nm:
            continue
        total += beam.intensity_at(point)
    return total


def _excitation_intensity(beam_fields, point, params: SampleParams) -> float:
    total = 0.0
    spectrum = params.excitation_spectrum
    for beam in beam_fields:
        match = float(spectrum.transmission(beam.wavelength_nm))
        if match > 0.0:
            total += match * beam.intensity_at(point)
    return total


def _sample_radiance(
    component: OpticalComponent,
    ray: Ray,
    hit: HitRecord,
    beam_fields,
    config: ImagingConfig,
) -> float:
    params: SampleParams = component.params
    chord = float(hit.extra.get('chord', 0.0))
    t_far = float(hit.extra.get('t_far', hit.t))
    far_point = ray.at(t_far)
    mid_point = ray.at(0.5 * (hit.t + t_far))

    background = _field_intensity(beam_fields, far_point, ray.wavelength_nm, config.wavelength_tolerance_nm)
    transmission = math.exp(-component.absorption_coeff * chord)

    fluorescence = 0.0
    emits = float(params.emission_spectrum.transmission(ray.wavelength_nm))
    if params.fluorescence_efficiency > 0 and emits > EMISSION_MIN and chord > 0:
        excitation = _excitation_intensity(beam_fields, mid_point, params)
        fluorescence = excitation * params.fluorescence_efficiency * emits * chord

    return background * transmission + fluorescence


def _pick_child(rays: Sequence[Ray], total: float, rng: np.random.Generator) -> Ray:
    threshold = rng.random() * total
    for child in rays:
        threshold -= child.power
        if threshold <= 0.0:
            return child
    return rays[-1]


def trace_backward(
    components: Sequence[OpticalComponent],
    ray: Ray,
    beam_fields=(),
    config: Optional[ImagingConfig] = None,
    rng: Optional[np.random.Generator] = None,
    skip_id: Optional[str] = None,
) -> BackwardSample:
    """追迹一条反向光线

    参数:
        components: 元件快照
        ray: 从探测器出发的反向光线（power 为 1）
        beam_fields: GaussianBeamField 列表，提供样品处的照明强度
        config: 成像配置
        rng: 随机数生成器（子光线选择）
        skip_id: 第一段忽略的元件 id（通常为探测器自身）

    返回:
        BackwardSample
    """
    config = config or ImagingConfig()
    if rng is None:
        rng = np.random.default_rng(config.seed)

    sample = BackwardSample(rays=[ray])
    current = ray
    throughput = 1.0

    for depth in range(config.max_bounces):
        if not current.is_finite:
            break
        found = nearest_hit(components, current, T_MIN, skip_id if depth == 0 else None)
        if found is None:
            break
        component, hit = found
        sample.hits.append(hit)
        params = component.params

        if isinstance(params, LaserParams):
            if abs(params.wavelength_nm - current.wavelength_nm) > config.wavelength_tolerance_nm:
                sample.absorbed = True
                break
            sample.radiance = throughput * params.power
            return sample
        if isinstance(params, LampParams):
            sample.radiance = throughput * params.power
            return sample
        if isinstance(params, SampleParams):
            sample.radiance = throughput * _sample_radiance(component, current, hit, beam_fields, config)
            return sample
        if component.is_detector:
            sample.absorbed = True
            break

        response = interact(component, current, hit, rng)
        total = float(sum(child.power for child in response.rays))
        if not response.rays or total < MIN_CHILD_POWER:
            sample.absorbed = True
            break

        child = _pick_child(response.rays, total, rng)
        if current.power > MIN_CHILD_POWER:
            throughput *= total / current.power
        current = child
        sample.rays.append(current)
        if throughput < config.min_throughput:
            sample.absorbed = True
            break

    return sample


# =============================================================================
# 探测器采样
# =============================================================================

def imaging_wavelengths(components: Sequence[OpticalComponent], beam_fields=()) -> List[float]:
    """反向追迹使用的波长列表

    样品发射波长在前，其次为各光束场的波长（去重），都没有时回退到 532 nm。
    """
    wavelengths: List[float] = []
    for component in components:
        if isinstance(component.params, SampleParams):
            wavelengths.append(float(component.params.emission_nm))
            break
    for beam in beam_fields:
        if all(abs(beam.wavelength_nm - w) > 1e-9 for w in wavelengths):
            wavelengths.append(float(beam.wavelength_nm))
    if not wavelengths:
        wavelengths.append(FALLBACK_WAVELENGTH_NM)
    return wavelengths


def _cone_direction(forward, u_axis, v_axis, sin_max: float, rng: np.random.Generator) -> NDArray:
    """接收锥内均匀采样的方向（在 sinθ 圆盘上均匀）"""
    phi = rng.random() * 2.0 * math.pi
    sin_theta = sin_max * math.sqrt(rng.random())
    cos_theta = math.sqrt(1.0 - sin_theta * sin_theta)
    return (
        cos_theta * forward
        + sin_theta * math.cos(phi) * u_axis
        + sin_theta * math.sin(phi) * v_axis
    )


def _pixel_radiance(
    components: Sequence[OpticalComponent],
    detector: OpticalComponent,
    origin: NDArray,
    u_axis: NDArray,
    v_axis: NDArray,
    samples: int,
    wavelengths: Sequence[float],
    beam_fields,
    config: ImagingConfig,
    rng: np.random.Generator,
) -> float:
    forward = detector.frame.forward
    sin_max = min(float(detector.params.sensor_na), 1.0)
    total = 0.0
    for _ in range(samples):
        direction = _cone_direction(forward, u_axis, v_axis, sin_max, rng)
        for wavelength in wavelengths:
            angle = rng.random() * math.pi
            ray = Ray(
                origin=origin,
                direction=direction,
                wavelength_nm=wavelength,
                power=1.0,
                polarization=(complex(math.cos(angle)), complex(math.sin(angle))),
                source_id=detector.id,
            )
            total += trace_backward(components, ray, beam_fields, config, rng, skip_id=detector.id).radiance
    return total / (samples * len(wavelengths))


def _samples_per_pixel(detector: OpticalComponent, config: ImagingConfig) -> int:
    if config.samples_per_pixel is not None:
        return config.samples_per_pixel
    return int(detector.params.samples_per_pixel)


def render_camera(
    components: Sequence[OpticalComponent],
    camera: OpticalComponent,
    beam_fields=(),
    config: Optional[ImagingConfig] = None,
) -> NDArray[np.floating]:
    """逐像素渲染相机图像

    像素 (px, py) 的传感器位置为
    position + u·(-right) + v·(-up)，u = ((px + 0.5)/res_x - 0.5)·width，
    v = ((py + 0.5)/res_y - 0.5)·height（成像系统的倒像在此翻正）。

    返回:
        图像，形状 (res_y, res_x)
    """
    config = config or ImagingConfig()
    rng = np.random.default_rng(config.seed)
    params: CameraParams = camera.params
    frame = camera.frame
    frame.refresh()
    u_axis = -frame.right
    v_axis = -frame.up
    samples = _samples_per_pixel(camera, config)
    wavelengths = imaging_wavelengths(components, beam_fields)

    image = np.zeros((params.res_y, params.res_x), dtype=np.float64)
    for py in range(params.res_y):
        v = ((py + 0.5) / params.res_y - 0.5) * params.height
        for px in range(params.res_x):
            u = ((px + 0.5) / params.res_x - 0.5) * params.width
            origin = frame.position + u * u_axis + v * v_axis
            image[py, px] = _pixel_radiance(
                components, camera, origin, u_axis, v_axis,
                samples, wavelengths, beam_fields, config, rng,
            )
    return image


def render_point(
    components: Sequence[OpticalComponent],
    detector: OpticalComponent,
    beam_fields=(),
    config: Optional[ImagingConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> float:
    """渲染点探测器在当前场景状态下的单个像素值"""
    config = config or ImagingConfig()
    if rng is None:
        rng = np.random.default_rng(config.seed)
    frame = detector.frame
    frame.refresh()
    return _pixel_radiance(
        components, detector, frame.position, frame.right, frame.up,
        _samples_per_pixel(detector, config),
        imaging_wavelengths(components, beam_fields),
        beam_fields, config, rng,
    )


# =============================================================================
# 入口
# =============================================================================

def _find_detector(components: Sequence[OpticalComponent], detector_id: str) -> OpticalComponent:
    for component in components:
        if component.id == detector_id:
            if not isinstance(component.params, (CameraParams, PMTParams)):
                raise ScanError(
                    f"元件 '{component.name}' ({component.kind.value}) 不能成像，需要相机或 PMT"
                )
            return component
    raise UnknownComponentError(detector_id)


def request_scan(
    controller: ScanController,
    components: Sequence[OpticalComponent],
    detector_id: str,
    scan_config: ScanConfig,
    beam_fields=(),
    config: Optional[ImagingConfig] = None,
    progress_callback=None,
) -> ScanJob:
    """发起点探测器扫描任务（使控制器上之前的任务过期）

    每一步在任务的私有元件副本上写入通道值后，渲染探测器的单个像素。
    """
    _find_detector(components, detector_id)
    config = config or ImagingConfig()
    rng = np.random.default_rng(config.seed)
    beam_fields = list(beam_fields)

    def render_step(step_components: List[OpticalComponent]) -> float:
        detector = next(c for c in step_components if c.id == detector_id)
        return render_point(step_components, detector, beam_fields, config, rng)

    return controller.request(components, scan_config, render_step, progress_callback)


def render_image(
    components: Sequence[OpticalComponent],
    detector_id: str,
    scan_config: Optional[ScanConfig] = None,
    beam_fields=(),
    config: Optional[ImagingConfig] = None,
) -> RenderResult:
    """渲染探测器图像

    参数:
        components: 元件快照
        detector_id: 相机或 PMT 的 id
        scan_config: 扫描配置；给出时按扫描累积模式逐步渲染单个像素
        beam_fields: GaussianBeamField 列表（样品照明）
        config: 成像配置

    返回:
        RenderResult，image 形状为 (res_y, res_x)

    异常:
        UnknownComponentError: 目标不在元件列表中
        ScanError: 目标不是相机或 PMT

    示例:
        >>> result = render_image(snapshot, camera.id, beam_fields=fields)
        >>> result.image.shape
        (48, 64)
    """
    components = list(components)
    detector = _find_detector(components, detector_id)

    if scan_config is not None:
        job = request_scan(ScanController(), components, detector_id, scan_config, beam_fields, config)
        return job.run()

    if isinstance(detector.params, CameraParams):
        image = render_camera(components, detector, beam_fields, config)
    else:
        image = np.array([[render_point(components, detector, beam_fields, config)]])

    res_y, res_x = image.shape
    writes: List[Tuple[int, int]] = [(ix, iy) for iy in range(res_y) for ix in range(res_x)]
    steps = len(writes)
    return RenderResult(
        image=image,
        progress=1.0,
        state=ScanState.DONE,
        writes=writes,
        progress_log=[(k + 1) / steps for k in range(steps)],
    )
