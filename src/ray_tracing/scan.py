"""
扫描累积模块

点探测器（PMT）配合动画通道（振镜、多边形扫描镜）逐步扫描成像：

- 总步数 steps = res_x × res_y
- 第 k 步写入像素 (ix, iy) = (k % res_x, k // res_x)，即 X 快轴、Y 慢轴
- 第 k 步的通道值取 value_at_fraction((ix + 0.5) / res_x)
  与 value_at_fraction((iy + 0.5) / res_y)
- 每步把通道值写入私有的元件副本，再执行一次单像素反向追迹
- 每步之后进度为 (k + 1) / steps

协作式执行：
ScanJob.run_chunks() 是生成器，每完成一个分块（chunk_size 步）让出一次进度。
每个分块只有在任务的代号仍等于控制器的最新代号时才会提交；
否则任务进入 CANCELLED 状态，该分块及之后的结果全部丢弃。

状态机：IDLE → RUNNING → DONE | CANCELLED

作者：混合光学仿真项目
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence, Tuple
import numpy as np
from numpy.typing import NDArray

from optical_bench.animation import AnimationChannel, apply_values
from optical_bench.components import OpticalComponent

from .exceptions import ScanError


# 由通道频率推导分辨率时的上限
MAX_SCAN_RESOLUTION = 1024


class ScanState(Enum):
    """扫描任务状态"""
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass
class ScanConfig:
    """扫描配置

    属性:
        x_channel: 快轴通道
        res_x: X 方向像素数
        res_y: Y 方向像素数
        y_channel: 慢轴通道；None 表示 Y 方向不驱动任何元件
        chunk_size: 每个分块包含的步数
    """
    x_channel: AnimationChannel
    res_x: int = 64
    res_y: int = 64
    y_channel: Optional[AnimationChannel] = None
    chunk_size: int = 8

    def __post_init__(self) -> None:
        if self.res_x < 1 or self.res_y < 1:
            raise ScanError(
                f"扫描分辨率必须为正，实际为 res_x={self.res_x}, res_y={self.res_y}"
            )
        if self.chunk_size < 1:
            raise ScanError(f"参数 'chunk_size' 必须 >= 1，实际为 {self.chunk_size}")

    @property
    def steps(self) -> int:
        return self.res_x * self.res_y

    def pixel_of(self, step: int) -> Tuple[int, int]:
        """第 step 步写入的像素 (ix, iy)"""
        return step % self.res_x, step // self.res_x

    def channel_values(self, step: int):
        """第 step 步各通道的取值"""
        ix, iy = self.pixel_of(step)
        values = {self.x_channel: self.x_channel.value_at_fraction((ix + 0.5) / self.res_x)}
        if self.y_channel is not None:
            values[self.y_channel] = self.y_channel.value_at_fraction((iy + 0.5) / self.res_y)
        return values


@dataclass
class RenderResult:
    """成像结果

    属性:
        image: 图像缓冲，形状 (res_y, res_x)，行优先
        progress: 完成进度 [0, 1]
        state: 任务状态
        writes: 按写入顺序排列的像素 (ix, iy)
        progress_log: 每步之后的进度
    """
    image: NDArray[np.floating]
    progress: float = 0.0
    state: ScanState = ScanState.IDLE
    writes: List[Tuple[int, int]] = field(default_factory=list)
    progress_log: List[float] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.state is ScanState.DONE


def default_scan_resolution(
    sample_rate_hz: float,
    x_channel: AnimationChannel,
    y_channel: Optional[AnimationChannel] = None,
) -> Tuple[int, int]:
    """由探测器采样率与通道频率推导默认扫描分辨率

    快轴一个周期内的采样数作为 res_x，慢轴一个周期内的快轴周期数作为 res_y。
    仅作为便捷默认值，扫描分辨率应由 ScanConfig 显式给出。

    示例:
        >>> x = AnimationChannel('galvo', 'rotation.y', -0.1, 0.1, period_s=1 / 64)
        >>> y = AnimationChannel('galvo2', 'rotation.x', -0.1, 0.1, period_s=1.0)
        >>> default_scan_resolution(4096, x, y)
        (64, 64)
    """
    if sample_rate_hz <= 0:
        raise ScanError(f"参数 'sample_rate_hz' 必须为正值，实际为 {sample_rate_hz} Hz")

    def clamp(value: float) -> int:
        return int(min(max(round(value), 1), MAX_SCAN_RESOLUTION))

    res_x = clamp(sample_rate_hz / x_channel.frequency_hz)
    res_y = 1 if y_channel is None else clamp(x_channel.frequency_hz / y_channel.frequency_hz)
    return res_x, res_y


# =============================================================================
# 协作式扫描
# =============================================================================

StepRenderer = Callable[[List[OpticalComponent]], float]


class ScanController:
    """扫描控制器

    持有单调递增的代号。每次 request() 递增代号并返回新任务，
    旧任务在下一个分块提交前发现自己已过期，转入 CANCELLED。

    示例:
        >>> controller = ScanController()
        >>> job = controller.request(snapshot, scan_config, render_step)
        >>> for progress in job.run_chunks():
        ...     print(f"{progress:.0%}")
    """

    def __init__(self) -> None:
        self._generation = 0
        self._active: Optional["ScanJob"] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def active_job(self) -> Optional["ScanJob"]:
        return self._active

    def request(
        self,
        components: Sequence[OpticalComponent],
        scan_config: ScanConfig,
        render_step: StepRenderer,
        progress_callback: Optional[Callable[[float], None]] = None,
    ) -> "ScanJob":
        """发起新扫描（使之前的任务过期）"""
        self._generation += 1
        job = ScanJob(
            controller=self,
            generation=self._generation,
            components=components,
            scan_config=scan_config,
            render_step=render_step,
            progress_callback=progress_callback,
        )
        self._active = job
        return job

    def cancel(self) -> None:
        """使当前任务过期"""
        self._generation += 1

    def is_current(self, generation: int) -> bool:
        return generation == self._generation


class ScanJob:
    """扫描任务

    参数:
        controller: 所属控制器
        generation: 任务代号
        components: 元件快照（任务内部再复制一份私有副本）
        scan_config: 扫描配置
        render_step: 单步渲染函数，接收已写入通道值的元件列表，返回像素值
        progress_callback: 每步之后调用，参数为进度
    """

    def __init__(
        self,
        controller: ScanController,
        generation: int,
        components: Sequence[OpticalComponent],
        scan_config: ScanConfig,
        render_step: StepRenderer,
        progress_callback: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.controller = controller
        self.generation = generation
        self.scan_config = scan_config
        self._components = copy.deepcopy(list(components))
        self._lookup = {c.id: c for c in self._components}
        self._render_step = render_step
        self._progress_callback = progress_callback
        self._next_step = 0
        self.state = ScanState.IDLE
        self.result = RenderResult(
            image=np.zeros((scan_config.res_y, scan_config.res_x), dtype=np.float64),
        )

    @property
    def progress(self) -> float:
        return self.result.progress

    @property
    def steps(self) -> int:
        return self.scan_config.steps

    def _render(self, step: int) -> float:
        apply_values(self._lookup, self.scan_config.channel_values(step))
        return float(self._render_step(self._components))

    def _commit(self, pending: List[Tuple[int, float]]) -> None:
        for step, value in pending:
            ix, iy = self.scan_config.pixel_of(step)
            self.result.image[iy, ix] = value
            self.result.writes.append((ix, iy))
            progress = (step + 1) / self.steps
            self.result.progress = progress
            self.result.progress_log.append(progress)
            if self._progress_callback is not None:
                self._progress_callback(progress)

    def run_chunks(self) -> Iterator[float]:
        """按分块执行扫描，每提交一个分块让出一次进度

        异常:
            ScanError: 任务已经开始或已经结束
        """
        if self.state is not ScanState.IDLE:
            raise ScanError(f"扫描任务已处于 {self.state.value} 状态，不能重复执行")
        self.state = ScanState.RUNNING
        self.result.state = self.state

        chunk = self.scan_config.chunk_size
        while self._next_step < self.steps:
            if not self.controller.is_current(self.generation):
                self._mark_cancelled()
                return
            end = min(self._next_step + chunk, self.steps)
            pending = [(k, self._render(k)) for k in range(self._next_step, end)]
            if not self.controller.is_current(self.generation):
                self._mark_cancelled()
                return
            self._commit(pending)
            self._next_step = end
            yield self.result.progress

        self.state = ScanState.DONE
        self.result.state = self.state

    def run(self) -> RenderResult:
        """同步执行全部分块"""
        for _ in self.run_chunks():
            pass
        return self.result

    def cancel(self) -> None:
        """取消任务（仅当其仍为最新任务时使控制器代号递增）"""
        if self.controller.is_current(self.generation):
            self.controller.cancel()
        if self.state is ScanState.IDLE:
            self._mark_cancelled()

    def _mark_cancelled(self) -> None:
        self.state = ScanState.CANCELLED
        self.result.state = self.state

    def __repr__(self) -> str:
        return (
            f"ScanJob(generation={self.generation}, state={self.state.value}, "
            f"progress={self.progress:.3f})"
        )
