"""
pytest 配置文件

本文件包含 pytest 的全局配置和 fixtures。
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# 将 src 目录添加到 Python 路径
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from optical_bench import OpticalComponent, Ray  # noqa: E402


@pytest.fixture
def rng():
    """固定种子的随机数生成器"""
    return np.random.default_rng(1234)


@pytest.fixture
def make_component():
    """按类型、位置与朝向创建元件"""
    def factory(kind, position=(0.0, 0.0, 0.0), direction=None, **params):
        component = OpticalComponent.create(kind, position=position, **params)
        if direction is not None:
            component.point_along(direction)
        return component
    return factory


@pytest.fixture
def axial_ray():
    """沿 +Z 传播的光线工厂"""
    def factory(x=0.0, y=0.0, z=-100.0, wavelength_nm=532.0, direction=(0.0, 0.0, 1.0)):
        return Ray(origin=(x, y, z), direction=direction, wavelength_nm=wavelength_nm)
    return factory


@pytest.fixture
def step():
    """单步求交并计算相互作用，返回 (命中, 子光线列表)"""
    from optical_bench import find_intersection, interact

    def run(component, ray, rng=None):
        hit = find_intersection(component, ray)
        if hit is None:
            return None, []
        return hit, list(interact(component, ray, hit, rng).rays)
    return run
