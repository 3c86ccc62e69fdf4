"""
OpticalBench 场景注册表

持有光学平台上的全部元件（按 id 索引的字典加插入顺序列表）与动画通道，
并提供三个求解器的便捷入口：

    >>> bench = OpticalBench(verbose=True)
    >>> laser = OpticalComponent.create(ComponentKind.LASER, wavelength_nm=532.0)
    >>> card = OpticalComponent.create(ComponentKind.CARD)
    >>> bench.add(laser).place(card, position=(0, 0, 200), direction=(0, 0, -1))
    >>> result = bench.trace()
    >>> records = bench.propagate([laser.id, card.id])

求解器只接收 snapshot() 产生的深拷贝，追迹过程中对注册表的修改不影响正在进行的计算。

作者：混合光学仿真项目
"""

from __future__ import annotations

import copy
from typing import Dict, Iterator, List, Optional, Sequence, TYPE_CHECKING

from .animation import AnimationChannel, apply_channels
from .components import LaserParams, OpticalComponent
from .config import ImagingConfig, TraceConfig
from .exceptions import ConfigurationError, UnknownComponentError

if TYPE_CHECKING:
    from beam_propagation import BeamSurfaceRecord, GaussianBeamField
    from ray_tracing import RenderResult, ScanConfig, TraceResult


class OpticalBench:
    """光学平台

    参数:
        verbose: 是否输出详细信息

    属性:
        channels: 已注册的动画通道
        last_trace: 最近一次 trace() 的结果
    """

    def __init__(self, verbose: bool = False) -> None:
        self._components: Dict[str, OpticalComponent] = {}
        self._order: List[str] = []
        self.channels: List[AnimationChannel] = []
        self.last_trace: Optional["TraceResult"] = None
        self._verbose = verbose

    # =========================================================================
    # 注册表
    # =========================================================================

    def add(self, component: OpticalComponent) -> "OpticalBench":
        """添加元件

        返回:
            self（支持链式调用）

        异常:
            ConfigurationError: id 已存在
        """
        if component.id in self._components:
            raise ConfigurationError(f"元件 id '{component.id}' 已存在于平台上")
        self._components[component.id] = component
        self._order.append(component.id)
        if self._verbose:
            x, y, z = component.position
            print(f"已添加{component.name}: ({x:.1f}, {y:.1f}, {z:.1f}) mm")
        return self

    def place(
        self,
        component: OpticalComponent,
        position,
        direction=None,
        up_hint=(0.0, 0.0, 1.0),
    ) -> "OpticalBench":
        """设置位置与朝向后添加元件

        参数:
            component: 元件
            position: 位置 (mm)
            direction: 局部 +Z 的目标方向；None 时保持当前朝向
            up_hint: 参考向上方向
        """
        component.set_position(*position)
        if direction is not None:
            component.point_along(direction, up_hint=up_hint)
        return self.add(component)

    def remove(self, component_id: str) -> OpticalComponent:
        """移除元件，同时移除以其为目标的动画通道

        异常:
            UnknownComponentError: id 不存在
        """
        if component_id not in self._components:
            raise UnknownComponentError(component_id)
        component = self._components.pop(component_id)
        self._order.remove(component_id)
        self.channels = [c for c in self.channels if c.target_id != component_id]
        if self._verbose:
            print(f"已移除{component.name}")
        return component

    def get(self, component_id: str) -> OpticalComponent:
        """按 id 查找元件

        异常:
            UnknownComponentError: id 不存在
        """
        try:
            return self._components[component_id]
        except KeyError:
            raise UnknownComponentError(component_id)

    @property
    def components(self) -> List[OpticalComponent]:
        """按添加顺序排列的元件"""
        return [self._components[i] for i in self._order]

    @property
    def emitters(self) -> List[OpticalComponent]:
        return [c for c in self.components if c.is_emitter]

    @property
    def detectors(self) -> List[OpticalComponent]:
        return [c for c in self.components if c.is_detector]

    def snapshot(self) -> List[OpticalComponent]:
        """元件列表的深拷贝，供求解器使用"""
        return copy.deepcopy(self.components)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, component_id) -> bool:
        return component_id in self._components

    def __iter__(self) -> Iterator[OpticalComponent]:
        return iter(self.components)

    # =========================================================================
    # 动画
    # =========================================================================

    def add_channel(self, channel: AnimationChannel) -> "OpticalBench":
        """注册动画通道

        异常:
            UnknownComponentError: 通道目标不在平台上
        """
        if channel.target_id not in self._components:
            raise UnknownComponentError(channel.target_id)
        self.channels.append(channel)
        return self

    def animate(self, time_s: float) -> "OpticalBench":
        """把所有通道在 time_s 时刻的值写入元件"""
        apply_channels(self._components, self.channels, time_s)
        return self

    # =========================================================================
    # 求解器入口
    # =========================================================================

    def trace(self, config: Optional[TraceConfig] = None, **kwargs) -> "TraceResult":
        """正向追迹当前场景

        参数:
            config: 追迹配置
            **kwargs: 传给 trace_scene 的其它参数（emitters、max_bounces 等）
        """
        from ray_tracing import trace_scene

        result = trace_scene(self.snapshot(), config=config, **kwargs)
        self.last_trace = result
        if self._verbose:
            detected = sum(len(h) for h in result.detector_hits.values())
            print(
                f"追迹完成: {len(result.paths)} 条路径, "
                f"{detected} 次探测, {result.dropped_count} 条丢弃"
            )
        return result

    def propagate(
        self,
        path_order: Sequence,
        wavelength_nm: Optional[float] = None,
        initial_waist: Optional[float] = None,
        initial_power: Optional[float] = None,
    ) -> List["BeamSurfaceRecord"]:
        """沿给定光路传播高斯光束

        wavelength_nm、initial_waist、initial_power 未给出时，
        取自光路第一个元件（须为激光器）。

        异常:
            PropagationError: 光路为空、引用未知元件或无法确定光束参数
        """
        from beam_propagation import PropagationError, propagate_beam

        if len(path_order) == 0:
            raise PropagationError("光路为空，至少需要一个元件")
        if None in (wavelength_nm, initial_waist, initial_power):
            first = path_order[0]
            first_id = first if isinstance(first, str) else first.component_id
            source = self._components.get(first_id) if first_id is not None else None
            if source is None or not isinstance(source.params, LaserParams):
                if wavelength_nm is None or initial_waist is None:
                    raise PropagationError(
                        "光路不以激光器开始，必须显式给出 wavelength_nm 与 initial_waist"
                    )
            else:
                if wavelength_nm is None:
                    wavelength_nm = source.params.wavelength_nm
                if initial_waist is None:
                    initial_waist = source.params.beam_radius
                if initial_power is None:
                    initial_power = source.params.power

        records = propagate_beam(
            self.snapshot(),
            path_order,
            wavelength_nm=wavelength_nm,
            initial_waist=initial_waist,
            initial_power=1.0 if initial_power is None else initial_power,
        )
        if self._verbose:
            clipped = sum(1 for r in records if r.clipped)
            print(f"光束传播完成: {len(records)} 个站点, {clipped} 个被光阑截断")
        return records

    def beam_fields(self, trace_result: Optional["TraceResult"] = None) -> List["GaussianBeamField"]:
        """由追迹结果（默认重新追迹）构建各激光主光线的光束场"""
        from beam_propagation import beam_fields_from_trace

        if trace_result is None:
            trace_result = self.trace()
        return beam_fields_from_trace(self.snapshot(), trace_result)

    def render(
        self,
        detector_id: str,
        scan_config: Optional["ScanConfig"] = None,
        config: Optional[ImagingConfig] = None,
        beam_fields=None,
    ) -> "RenderResult":
        """渲染相机或 PMT 的图像

        参数:
            detector_id: 探测器 id
            scan_config: 扫描配置（点探测器扫描成像）
            config: 成像配置
            beam_fields: 样品照明光束场；None 时由正向追迹构建
        """
        from ray_tracing import render_image

        self.get(detector_id)
        if beam_fields is None:
            beam_fields = self.beam_fields()
        result = render_image(self.snapshot(), detector_id, scan_config, beam_fields, config)
        if self._verbose:
            res_y, res_x = result.image.shape
            print(f"成像完成: {res_x}×{res_y} 像素, 状态 {result.state.value}")
        return result

    # =========================================================================
    # 输出
    # =========================================================================

    def summary(self) -> None:
        """打印平台摘要"""
        print("=" * 60)
        print("光学平台摘要")
        print("=" * 60)
        print(f"元件数: {len(self)}")
        for component in self.components:
            x, y, z = component.position
            print(f"  [{component.kind.value}] {component.name}: ({x:.1f}, {y:.1f}, {z:.1f}) mm")
        print(f"动画通道数: {len(self.channels)}")
        for channel in self.channels:
            target = self._components[channel.target_id]
            print(
                f"  {target.name}.{channel.property_path}: "
                f"[{channel.range_min}, {channel.range_max}] @ {channel.frequency_hz:g} Hz"
            )
        print("=" * 60)

    def __repr__(self) -> str:
        return f"OpticalBench(components={len(self)}, channels={len(self.channels)})"
