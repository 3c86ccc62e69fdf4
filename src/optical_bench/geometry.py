"""
表面几何求交模块

给定已变换到元件局部坐标系的光线，计算最近的有效命中点与法向量。
按元件参数类型分派到各自的闭式求交函数（见 INTERSECTORS 表）。

通用约定：
- 只接受 t > t_min 的交点（t_min 默认 1e-3 mm，避免在上一次命中点自相交）
- 光线平行于表面、或最近交点落在有界区域之外时返回 None
- 法向量为几何外法向（指向元件外侧）；交互模块根据入射方向自行定向
- 透镜/棱镜侧壁、镜背等非光学面在 extra 中标记，由交互模块吸收
- 点光源没有几何体，永远不会被命中

find_intersection() 是全局坐标系下的入口：在每次求交前刷新元件的
变换矩阵，再把光线变换到局部、求交、将命中点变换回全局。

作者：混合光学仿真项目
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Tuple
import numpy as np
from numpy.typing import NDArray

from .components import (
    ApertureParams,
    BeamSplitterParams,
    BlockerParams,
    CameraParams,
    CardParams,
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
    SampleParams,
    SlitParams,
    SphericalLensParams,
    WaveplateParams,
    is_flat,
    local_bounds,
    surface_sag,
)
from .rays import HitRecord, Ray
from .vector_math import clean_vector, intersect_aabb, normalize, solve_quadratic


# 默认最小有效距离 (mm)
T_MIN = 1e-3

# 光线方向分量小于该值视为平行于平面
PARALLEL_EPS = 1e-9

# 边界判定容差 (mm)
EDGE_TOL = 1e-9


# 候选命中：(t, 局部点, 局部外法向, extra)
Candidate = Tuple[float, NDArray[np.floating], NDArray[np.floating], dict]


def _make_hit(candidate: Candidate, direction: NDArray[np.floating]) -> HitRecord:
    t, point, normal, extra = candidate
    return HitRecord(
        t=float(t),
        point=point.copy(),
        normal=normal.copy(),
        local_point=point,
        local_normal=normal,
        local_direction=np.asarray(direction, dtype=np.float64).copy(),
        extra=extra,
    )


def _nearest(candidates: List[Candidate], direction) -> Optional[HitRecord]:
    if not candidates:
        return None
    return _make_hit(min(candidates, key=lambda c: c[0]), direction)


# =============================================================================
# 基础求交
# =============================================================================

def _plane_t(origin, direction, z0: float, t_min: float) -> Optional[float]:
    """光线与平面 z = z0 的交点参数"""
    dz = direction[2]
    if abs(dz) < PARALLEL_EPS:
        return None
    t = (z0 - origin[2]) / dz
    if t <= t_min:
        return None
    return t


def _spherical_cap(
    origin,
    direction,
    apex_z: float,
    radius: float,
    facing: float,
    t_min: float,
    mask=(1.0, 1.0, 1.0),
) -> List[Tuple[float, NDArray[np.floating], NDArray[np.floating]]]:
    """光线与球冠（或柱面冠）求交

    曲率中心位于 (0, 0, apex_z + radius)。只保留与顶点同侧的半球上的交点。

    参数:
        apex_z: 顶点 Z 坐标
        radius: 带符号曲率半径
        facing: 顶点处外法向的 Z 分量符号（-1 或 +1）
        mask: 参与计算的坐标分量；(0, 1, 1) 表示沿 X 拉伸的柱面

    返回:
        [(t, 点, 外法向), ...]，未做口径检查
    """
    m = np.asarray(mask, dtype=np.float64)
    center = np.array([0.0, 0.0, apex_z + radius])
    oc = (origin - center) * m
    dm = direction * m
    roots = solve_quadratic(
        float(np.dot(dm, dm)),
        2.0 * float(np.dot(oc, dm)),
        float(np.dot(oc, oc)) - radius * radius,
    )
    sign = math.copysign(1.0, radius)
    results = []
    for t in roots:
        if t <= t_min:
            continue
        point = origin + t * direction
        rel = (point - center) * m
        # 只取顶点所在的半球
        if rel[2] * (-sign) <= 0.0:
            continue
        normal = rel / abs(radius) * (-sign) * facing
        results.append((t, point, normal))
    return results


def _surface_hits(
    origin,
    direction,
    apex_z: float,
    radius: float,
    facing: float,
    t_min: float,
    mask=(1.0, 1.0, 1.0),
) -> List[Tuple[float, NDArray[np.floating], NDArray[np.floating]]]:
    """球面或平面光学面的交点（平面时退化为 z = apex_z）"""
    if is_flat(radius):
        t = _plane_t(origin, direction, apex_z, t_min)
        if t is None:
            return []
        return [(t, origin + t * direction, np.array([0.0, 0.0, facing]))]
    return _spherical_cap(origin, direction, apex_z, radius, facing, t_min, mask)


def _rim_hits(
    origin,
    direction,
    radius: float,
    z_lo: float,
    z_hi: float,
    t_min: float,
) -> List[Candidate]:
    """光线与圆柱侧壁 x² + y² = radius²（z_lo <= z <= z_hi）求交"""
    if z_hi - z_lo <= EDGE_TOL:
        return []
    a = direction[0] ** 2 + direction[1] ** 2
    if a < 1e-14:
        return []
    b = 2.0 * (origin[0] * direction[0] + origin[1] * direction[1])
    c = origin[0] ** 2 + origin[1] ** 2 - radius * radius
    results = []
    for t in solve_quadratic(a, b, c):
        if t <= t_min:
            continue
        point = origin + t * direction
        if z_lo - EDGE_TOL <= point[2] <= z_hi + EDGE_TOL:
            normal = np.array([point[0], point[1], 0.0]) / radius
            results.append((t, point, normal, {'surface': 'rim', 'rim': True}))
    return results


def _box_hit(origin, direction, lo, hi, t_min: float, extra: dict) -> List[Candidate]:
    """光线与轴对齐长方体求交（从内部射出时返回出射点）"""
    span = intersect_aabb(origin, direction, lo, hi)
    if span is None:
        return []
    t_near, t_far = span
    if t_near > t_min:
        t = t_near
    elif t_far > t_min:
        t = t_far
    else:
        return []
    point = origin + t * direction
    # 法向取距离最近的盒面
    dist = np.concatenate([np.abs(point - lo), np.abs(point - hi)])
    face = int(np.argmin(dist))
    normal = np.zeros(3)
    normal[face % 3] = -1.0 if face < 3 else 1.0
    return [(t, point, normal, dict(extra))]


# =============================================================================
# 平面类元件
# =============================================================================

def _planar_rect(width: float, height: float):
    def intersect(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
        t = _plane_t(ray.origin, ray.direction, 0.0, t_min)
        if t is None:
            return None
        point = ray.at(t)
        if abs(point[0]) > width / 2 + EDGE_TOL or abs(point[1]) > height / 2 + EDGE_TOL:
            return None
        return _make_hit((t, point, np.array([0.0, 0.0, 1.0]), {}), ray.direction)
    return intersect


def _planar_disc(radius: float, extra: Optional[dict] = None):
    def intersect(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
        t = _plane_t(ray.origin, ray.direction, 0.0, t_min)
        if t is None:
            return None
        point = ray.at(t)
        if point[0] ** 2 + point[1] ** 2 > (radius + EDGE_TOL) ** 2:
            return None
        return _make_hit((t, point, np.array([0.0, 0.0, 1.0]), dict(extra or {})), ray.direction)
    return intersect


def _intersect_rect_planar(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p = component.params
    return _planar_rect(p.width, p.height)(component, ray, t_min)


def _intersect_disc_planar(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p = component.params
    if isinstance(p, (FilterParams, DichroicParams, BeamSplitterParams)):
        radius = p.diameter / 2
    else:
        radius = p.aperture_radius
    return _planar_disc(radius)(component, ray, t_min)


def _intersect_aperture(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: ApertureParams = component.params
    hit = _planar_disc(p.housing_diameter / 2)(component, ray, t_min)
    if hit is None:
        return None
    r = math.hypot(hit.local_point[0], hit.local_point[1])
    hit.extra['in_opening'] = r <= p.opening_diameter / 2 and p.opening_diameter > 0
    return hit


def _intersect_slit(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: SlitParams = component.params
    hit = _planar_disc(p.housing_diameter / 2)(component, ray, t_min)
    if hit is None:
        return None
    x, y = hit.local_point[0], hit.local_point[1]
    hit.extra['in_opening'] = abs(x) <= p.slit_width / 2 and abs(y) <= p.slit_height / 2
    return hit


def _intersect_box(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    lo, hi = local_bounds(component.params)
    return _nearest(_box_hit(ray.origin, ray.direction, lo, hi, t_min, {'surface': 'housing'}), ray.direction)


def _intersect_nothing(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    return None


# =============================================================================
# 反射镜
# =============================================================================

def _intersect_curved_mirror(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: CurvedMirrorParams = component.params
    o, d = ray.origin, ray.direction
    r_max = p.diameter / 2
    half_t = p.thickness / 2
    candidates: List[Candidate] = []

    # 反射面：曲率中心位于 -t/2 - R
    for t, point, normal in _surface_hits(o, d, -half_t, -p.radius_of_curvature, -1.0, t_min):
        if point[0] ** 2 + point[1] ** 2 <= (r_max + EDGE_TOL) ** 2:
            candidates.append((t, point, normal, {'surface': 'front'}))

    t = _plane_t(o, d, half_t, t_min)
    if t is not None:
        point = o + t * d
        if point[0] ** 2 + point[1] ** 2 <= r_max ** 2:
            candidates.append((t, point, np.array([0.0, 0.0, 1.0]), {'surface': 'back', 'back_side': True}))

    edge_z = -half_t + surface_sag(-p.radius_of_curvature, r_max)
    candidates.extend(_rim_hits(o, d, r_max, min(edge_z, half_t), max(edge_z, half_t), t_min))
    return _nearest(candidates, d)


def _polygon_geometry(params: PolygonScannerParams):
    n = params.num_faces
    step = 2.0 * math.pi / n
    r = params.circum_radius
    angles = params.scan_angle + step * np.arange(n + 1)
    vertices = np.column_stack([r * np.cos(angles), r * np.sin(angles)])
    mids = params.scan_angle + step * (np.arange(n) + 0.5)
    normals = np.column_stack([np.cos(mids), np.sin(mids)])
    return vertices, normals


def _intersect_polygon(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: PolygonScannerParams = component.params
    vertices, normals = component.cached('polygon', _polygon_geometry)
    o, d = ray.origin, ray.direction
    half_h = p.face_height / 2
    candidates: List[Candidate] = []

    for k in range(p.num_faces):
        nx, ny = normals[k]
        n_dot_d = nx * d[0] + ny * d[1]
        # 只考虑朝向光线的面
        if n_dot_d >= 0.0:
            continue
        v0 = vertices[k]
        v1 = vertices[k + 1]
        t = (nx * (v0[0] - o[0]) + ny * (v0[1] - o[1])) / n_dot_d
        if t <= t_min:
            continue
        point = o + t * d
        if abs(point[2]) > half_h:
            continue
        edge = v1 - v0
        edge_len = float(np.hypot(edge[0], edge[1]))
        proj = ((point[0] - v0[0]) * edge[0] + (point[1] - v0[1]) * edge[1]) / edge_len
        if proj < -EDGE_TOL or proj > edge_len + EDGE_TOL:
            continue
        candidates.append((t, point, np.array([nx, ny, 0.0]), {'facet': k}))
    return _nearest(candidates, d)


# =============================================================================
# 透镜
# =============================================================================

def _lens_candidates(lens, origin, direction, t_min: float) -> List[Candidate]:
    """单个球面透镜（SphericalLensParams 或 LensElement）的所有候选交点"""
    a = lens.aperture_radius
    half_t = lens.thickness / 2
    candidates: List[Candidate] = []

    for t, point, normal in _surface_hits(origin, direction, -half_t, lens.r1, -1.0, t_min):
        if point[0] ** 2 + point[1] ** 2 <= (a + EDGE_TOL) ** 2:
            candidates.append((t, point, normal, {'surface': 'front'}))
    for t, point, normal in _surface_hits(origin, direction, half_t, lens.r2, 1.0, t_min):
        if point[0] ** 2 + point[1] ** 2 <= (a + EDGE_TOL) ** 2:
            candidates.append((t, point, normal, {'surface': 'back'}))

    z_front = -half_t + surface_sag(lens.r1, a)
    z_back = half_t + surface_sag(lens.r2, a)
    candidates.extend(_rim_hits(origin, direction, a, z_front, z_back, t_min))
    return candidates


def _intersect_spherical_lens(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: SphericalLensParams = component.params
    candidates = _lens_candidates(p, ray.origin, ray.direction, t_min)
    for c in candidates:
        c[3]['ior'] = p.ior
    return _nearest(candidates, ray.direction)


def _intersect_compound_lens(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: CompoundLensParams = component.params
    candidates: List[Candidate] = []
    for index, element in enumerate(p.elements):
        shift = np.array([0.0, 0.0, element.z_offset])
        for t, point, normal, extra in _lens_candidates(element, ray.origin - shift, ray.direction, t_min):
            extra['element'] = index
            extra['ior'] = element.ior
            candidates.append((t, point + shift, normal, extra))
    return _nearest(candidates, ray.direction)


def _intersect_cylindrical_lens(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: CylindricalLensParams = component.params
    o, d = ray.origin, ray.direction
    a = p.aperture_radius
    half_w = p.width / 2
    half_t = p.thickness / 2
    mask = (0.0, 1.0, 1.0)
    candidates: List[Candidate] = []

    def inside_footprint(point) -> bool:
        return abs(point[0]) <= half_w + EDGE_TOL and abs(point[1]) <= a + EDGE_TOL

    for t, point, normal in _surface_hits(o, d, -half_t, p.r1, -1.0, t_min, mask):
        if inside_footprint(point):
            candidates.append((t, point, normal, {'surface': 'front', 'ior': p.ior}))
    for t, point, normal in _surface_hits(o, d, half_t, p.r2, 1.0, t_min, mask):
        if inside_footprint(point):
            candidates.append((t, point, normal, {'surface': 'back', 'ior': p.ior}))

    # 侧壁：y = ±a 与 x = ±w/2
    for axis, bound in ((1, a), (0, half_w)):
        if abs(d[axis]) < PARALLEL_EPS:
            continue
        for sign in (-1.0, 1.0):
            t = (sign * bound - o[axis]) / d[axis]
            if t <= t_min:
                continue
            point = o + t * d
            y = point[1]
            if abs(point[0]) > half_w + EDGE_TOL or abs(y) > a + EDGE_TOL:
                continue
            if not p.front_z(y) - EDGE_TOL <= point[2] <= p.back_z(y) + EDGE_TOL:
                continue
            normal = np.zeros(3)
            normal[axis] = sign
            candidates.append((t, point, normal, {'surface': 'rim', 'rim': True}))
    return _nearest(candidates, d)


# =============================================================================
# 棱镜（凸多面体 Cyrus-Beck 裁剪）
# =============================================================================

def prism_planes(params: PrismParams) -> List[Tuple[str, NDArray[np.floating], float]]:
    """棱镜各面的 (名称, 外法向, 偏移)，内部满足 n·p <= offset"""
    v = params.vertices()
    edges = (
        ('entrance', v['apex'], v['base_left']),
        ('exit', v['base_right'], v['apex']),
        ('base', v['base_left'], v['base_right']),
    )
    planes = []
    for name, start, end in edges:
        ey, ez = end[0] - start[0], end[1] - start[1]
        ny, nz = ez, -ey
        # 外法向背离质心（原点）
        if ny * start[0] + nz * start[1] < 0:
            ny, nz = -ny, -nz
        normal = normalize([0.0, ny, nz])
        planes.append((name, normal, float(normal[1] * start[0] + normal[2] * start[1])))
    half_w = params.width / 2
    planes.append(('end_min', np.array([-1.0, 0.0, 0.0]), half_w))
    planes.append(('end_max', np.array([1.0, 0.0, 0.0]), half_w))
    return planes


def _intersect_prism(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: PrismParams = component.params
    planes = component.cached('prism_planes', prism_planes)
    o, d = ray.origin, ray.direction

    t_enter, t_exit = -math.inf, math.inf
    enter_plane = exit_plane = None
    for name, normal, offset in planes:
        n_dot_d = float(np.dot(normal, d))
        dist = offset - float(np.dot(normal, o))
        if abs(n_dot_d) < PARALLEL_EPS:
            if dist < 0:
                return None
            continue
        t = dist / n_dot_d
        if n_dot_d < 0:
            if t > t_enter:
                t_enter, enter_plane = t, (name, normal)
        elif t < t_exit:
            t_exit, exit_plane = t, (name, normal)
    if t_enter > t_exit:
        return None

    if t_enter > t_min and enter_plane is not None:
        t, (name, normal) = t_enter, enter_plane
    elif t_exit > t_min and exit_plane is not None:
        t, (name, normal) = t_exit, exit_plane
    else:
        return None
    extra = {'surface': name, 'ior': p.ior}
    return _make_hit((t, o + t * d, normal.copy(), extra), d)


# =============================================================================
# 样品
# =============================================================================

def sample_intervals(params: SampleParams, origin, direction) -> List[Tuple[float, float]]:
    """光线穿过各球形结构的参数区间（已合并重叠部分，按 t 升序）"""
    intervals = []
    for feature in params.features:
        oc = np.asarray(origin) - np.asarray(feature.center)
        b = float(np.dot(oc, direction))
        c = float(np.dot(oc, oc)) - feature.radius ** 2
        h = b * b - c
        if h < 0:
            continue
        sqrt_h = math.sqrt(h)
        intervals.append((-b - sqrt_h, -b + sqrt_h))
    intervals.sort()
    merged: List[Tuple[float, float]] = []
    for lo, hi in intervals:
        if merged and lo <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], hi))
        else:
            merged.append((lo, hi))
    return merged


def sample_chord(params: SampleParams, origin, direction, t_min: float = 0.0) -> Optional[Tuple[float, float, float]]:
    """光线在样品体内的总弦长

    返回:
        (t_near, t_far, chord)；不穿过样品时返回 None
    """
    segments = [
        (max(lo, t_min), hi) for lo, hi in sample_intervals(params, origin, direction) if hi > t_min
    ]
    if not segments:
        return None
    chord = sum(hi - lo for lo, hi in segments)
    return segments[0][0], segments[-1][1], chord


def _intersect_sample(component: OpticalComponent, ray: Ray, t_min: float) -> Optional[HitRecord]:
    p: SampleParams = component.params
    o, d = ray.origin, ray.direction
    candidates: List[Candidate] = []
    for feature in p.features:
        center = np.asarray(feature.center)
        oc = o - center
        b = float(np.dot(oc, d))
        c = float(np.dot(oc, oc)) - feature.radius ** 2
        h = b * b - c
        if h < 0:
            continue
        sqrt_h = math.sqrt(h)
        for t in (-b - sqrt_h, -b + sqrt_h):
            if t > t_min:
                point = o + t * d
                candidates.append((t, point, (point - center) / feature.radius, {}))
                break
    hit = _nearest(candidates, d)
    if hit is None:
        return None
    chord = sample_chord(p, o, d, t_min=hit.t)
    if chord is not None:
        hit.extra['t_far'] = chord[1]
        hit.extra['chord'] = chord[2]
    else:
        hit.extra['t_far'] = hit.t
        hit.extra['chord'] = 0.0
    return hit


# =============================================================================
# 分派表
# =============================================================================

Intersector = Callable[[OpticalComponent, Ray, float], Optional[HitRecord]]

INTERSECTORS: Dict[type, Intersector] = {
    MirrorParams: _intersect_rect_planar,
    CardParams: _intersect_rect_planar,
    PMTParams: _intersect_rect_planar,
    CameraParams: _intersect_rect_planar,
    CurvedMirrorParams: _intersect_curved_mirror,
    PolygonScannerParams: _intersect_polygon,
    SphericalLensParams: _intersect_spherical_lens,
    CompoundLensParams: _intersect_compound_lens,
    CylindricalLensParams: _intersect_cylindrical_lens,
    PrismParams: _intersect_prism,
    ApertureParams: _intersect_aperture,
    SlitParams: _intersect_slit,
    BlockerParams: _intersect_box,
    IdealLensParams: _intersect_disc_planar,
    ObjectiveParams: _intersect_disc_planar,
    FilterParams: _intersect_disc_planar,
    DichroicParams: _intersect_disc_planar,
    SampleParams: _intersect_sample,
    WaveplateParams: _intersect_disc_planar,
    BeamSplitterParams: _intersect_disc_planar,
    LaserParams: _intersect_box,
    LampParams: _intersect_box,
    PointSourceParams: _intersect_nothing,
}


def intersect(component: OpticalComponent, local_ray: Ray, t_min: float = T_MIN) -> Optional[HitRecord]:
    """局部坐标系下的光线求交

    参数:
        component: 元件
        local_ray: 已变换到元件局部坐标系的光线
        t_min: 最小有效距离 (mm)

    返回:
        局部命中记录（point/normal 与 local_point/local_normal 相同）；未命中返回 None
    """
    try:
        intersector = INTERSECTORS[type(component.params)]
    except KeyError:
        raise TypeError(f"元件类型 {type(component.params).__name__} 没有注册求交函数")
    if not local_ray.is_finite:
        return None
    cleaned = local_ray.replace(direction=clean_vector(local_ray.direction))
    hit = intersector(component, cleaned, t_min)
    if hit is not None:
        hit.component_id = component.id
    return hit


def find_intersection(component: OpticalComponent, world_ray: Ray, t_min: float = T_MIN) -> Optional[HitRecord]:
    """全局坐标系下的光线求交

    先刷新元件变换矩阵，再执行 全局→局部 变换、局部求交、局部→全局 变换。
    刚体变换保持长度，因此 t 在两个坐标系中相同。
    """
    if not world_ray.is_finite:
        return None
    frame = component.frame
    frame.refresh()
    local_ray = world_ray.replace(
        origin=frame.to_local_point(world_ray.origin),
        direction=frame.to_local_direction(world_ray.direction),
    )
    hit = intersect(component, local_ray, t_min)
    if hit is None:
        return None
    hit.point = frame.to_world_point(hit.local_point)
    hit.normal = frame.to_world_direction(hit.local_normal)
    return hit
