"""
正向几何光线追迹器

从每个光源的种子光线出发，迭代地寻找最近命中（t 大于 hit_epsilon），
调用元件的相互作用函数，并继续追迹产生的子光线：

1. 种子光线：激光器为主光线加同心环光线，灯源按每个波长重复
2. 第一段忽略发出该光线的光源自身
3. 分支（二向色镜分光、样品荧光）使用显式栈，而非递归
4. 终止条件：
   - 逃逸（不再命中任何元件）→ ESCAPED
   - 被吸收（无子光线或功率低于 min_power）→ ABSORBED
   - 被探测器记录 → DETECTED，写入 detector_hits
5. 丢弃条件（计入 dropped_count）：
   - 相互作用次数达到 max_bounces
   - 种子光线从未命中任何元件
   - 光线含 NaN（同时发出 UserWarning）

作者：混合光学仿真项目
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import numpy as np
from numpy.typing import NDArray

from optical_bench.components import OpticalComponent
from optical_bench.config import TraceConfig
from optical_bench.geometry import find_intersection
from optical_bench.interaction import interact
from optical_bench.rays import HitRecord, Ray
from optical_bench.sources import seed_rays


# 逃逸光线在折线中绘制的长度 (mm)
ESCAPE_LENGTH = 2000.0


class Termination(Enum):
    """光线路径终止方式"""
    ESCAPED = "escaped"
    ABSORBED = "absorbed"
    DETECTED = "detected"


@dataclass
class RayPath:
    """一条从种子光线到终点的光线路径

    属性:
        rays: 各段光线，rays[i] 为第 i 段的光线
        hits: 各段终点的命中记录，hits[i] 为第 i 段终点；
            逃逸路径的最后一段没有命中记录
        termination: 终止方式
    """
    rays: List[Ray]
    hits: List[HitRecord]
    termination: Termination

    @property
    def source_id(self) -> Optional[str]:
        return self.rays[0].source_id if self.rays else None

    @property
    def is_main(self) -> bool:
        return bool(self.rays) and self.rays[0].is_main

    @property
    def escaped(self) -> bool:
        return self.termination is Termination.ESCAPED

    @property
    def component_ids(self) -> List[Optional[str]]:
        return [hit.component_id for hit in self.hits]

    @property
    def terminal_hit(self) -> Optional[HitRecord]:
        """终点命中记录，逃逸路径为 None"""
        if self.escaped or not self.hits:
            return None
        return self.hits[-1]

    @property
    def points(self) -> NDArray[np.floating]:
        """路径折线顶点，形状 (n, 3)"""
        points = [self.rays[0].origin]
        for i, hit in enumerate(self.hits):
            points.append(hit.point)
            # 样品等元件的子光线从命中点之后出发
            if i + 1 < len(self.rays) and not np.allclose(self.rays[i + 1].origin, hit.point):
                points.append(self.rays[i + 1].origin)
        if self.escaped:
            points.append(self.rays[-1].at(ESCAPE_LENGTH))
        return np.array(points)

    @property
    def final_power(self) -> float:
        return float(self.rays[-1].power)

    def __len__(self) -> int:
        return len(self.rays)


@dataclass
class DetectorHit:
    """探测器累积缓冲中的一条记录

    属性:
        ray: 入射光线
        hit: 命中记录
    """
    ray: Ray
    hit: HitRecord

    @property
    def local_point(self) -> NDArray[np.floating]:
        return self.hit.local_point

    @property
    def power(self) -> float:
        return float(self.ray.power)

    @property
    def wavelength_nm(self) -> float:
        return float(self.ray.wavelength_nm)


@dataclass
class TraceResult:
    """正向追迹结果

    属性:
        paths: 保留的光线路径
        detector_hits: 探测器 id → 入射记录列表
        dropped_count: 被丢弃的光线数（超过反射次数、从未命中、含 NaN）
    """
    paths: List[RayPath] = field(default_factory=list)
    detector_hits: Dict[str, List[DetectorHit]] = field(default_factory=dict)
    dropped_count: int = 0

    def main_paths(self) -> List[RayPath]:
        """主光线路径"""
        return [p for p in self.paths if p.is_main]

    def paths_from(self, source_id: str) -> List[RayPath]:
        return [p for p in self.paths if p.source_id == source_id]

    def detected_power(self, detector_id: str) -> float:
        """探测器接收的总功率"""
        return float(sum(h.power for h in self.detector_hits.get(detector_id, [])))

    def __len__(self) -> int:
        return len(self.paths)


# =============================================================================
# 追迹
# =============================================================================

def nearest_hit(
    components: Sequence[OpticalComponent],
    ray: Ray,
    t_min: float,
    skip_id: Optional[str] = None,
) -> Optional[Tuple[OpticalComponent, HitRecord]]:
    """在所有元件中寻找最近命中

    参数:
        components: 元件快照
        ray: 全局坐标系光线
        t_min: 最小参数距离
        skip_id: 忽略的元件 id

    返回:
        (元件, 命中记录)，未命中时为 None
    """
    best: Optional[Tuple[OpticalComponent, HitRecord]] = None
    for component in components:
        if component.id == skip_id:
            continue
        hit = find_intersection(component, ray, t_min)
        if hit is not None and (best is None or hit.t < best[1].t):
            best = (component, hit)
    return best


def _select_emitters(
    components: Sequence[OpticalComponent],
    emitters,
) -> List[OpticalComponent]:
    if emitters is None:
        return [c for c in components if c.is_emitter]
    by_id = {c.id: c for c in components}
    selected = []
    for emitter in emitters:
        emitter_id = emitter if isinstance(emitter, str) else emitter.id
        if emitter_id in by_id:
            selected.append(by_id[emitter_id])
        else:
            warnings.warn(f"光源 '{emitter_id}' 不在元件列表中，已忽略", UserWarning)
    return selected


def trace_scene(
    components: Sequence[OpticalComponent],
    emitters: Optional[Iterable] = None,
    max_bounces: Optional[int] = None,
    ray_count_per_emitter: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
    config: Optional[TraceConfig] = None,
) -> TraceResult:
    """正向追迹整个场景

    参数:
        components: 元件快照（追迹期间不会被修改，几何缓存除外）
        emitters: 光源（元件或 id）；None 表示场景中所有激光器与灯源
        max_bounces: 最大相互作用次数；None 时取 config 中的值
        ray_count_per_emitter: 每个光源的环光线数；None 时取 config 中的值
        rng: 随机数生成器（样品荧光）；None 时由 config.seed 创建
        config: 追迹配置；None 时使用默认配置

    返回:
        TraceResult

    示例:
        >>> result = trace_scene(bench.snapshot(), max_bounces=20)
        >>> for path in result.main_paths():
        ...     print(path.termination, path.component_ids)
    """
    config = config or TraceConfig()
    if max_bounces is not None or ray_count_per_emitter is not None:
        config = TraceConfig(
            max_bounces=config.max_bounces if max_bounces is None else max_bounces,
            ray_count_per_emitter=(
                config.ray_count_per_emitter if ray_count_per_emitter is None
                else ray_count_per_emitter
            ),
            hit_epsilon=config.hit_epsilon,
            min_power=config.min_power,
            seed=config.seed,
            seed_mode=config.seed_mode,
        )
    if rng is None:
        rng = np.random.default_rng(config.seed)

    components = list(components)
    result = TraceResult(detector_hits={c.id: [] for c in components if c.is_detector})

    for emitter in _select_emitters(components, emitters):
        for seed in seed_rays(emitter, config.ray_count_per_emitter, config.seed_mode):
            _trace_seed(components, seed, emitter.id, config, rng, result)

    return result


def _trace_seed(
    components: List[OpticalComponent],
    seed: Ray,
    emitter_id: str,
    config: TraceConfig,
    rng: np.random.Generator,
    result: TraceResult,
) -> None:
    stack: List[Tuple[Ray, List[Ray], List[HitRecord], Optional[str]]] = [
        (seed, [seed], [], emitter_id)
    ]
    while stack:
        ray, rays, hits, skip_id = stack.pop()

        if not ray.is_finite:
            warnings.warn(
                f"光线含 NaN 或无穷大（来源 {ray.source_id}，第 {ray.bounce_count} 次相互作用），已丢弃",
                UserWarning,
            )
            result.dropped_count += 1
            continue

        if ray.bounce_count >= config.max_bounces:
            result.dropped_count += 1
            continue

        found = nearest_hit(components, ray, config.hit_epsilon, skip_id)
        if found is None:
            if hits:
                result.paths.append(RayPath(rays, hits, Termination.ESCAPED))
            else:
                result.dropped_count += 1
            continue

        component, hit = found
        hits = hits + [hit]
        response = interact(component, ray, hit, rng)

        if response.detected:
            result.detector_hits.setdefault(component.id, []).append(DetectorHit(ray, hit))
            result.paths.append(RayPath(rays, hits, Termination.DETECTED))
            continue

        children = [c for c in response.rays if c.power > config.min_power]
        if not children:
            result.paths.append(RayPath(rays, hits, Termination.ABSORBED))
            continue

        for child in reversed(children):
            stack.append((child, rays + [child], hits, None))
