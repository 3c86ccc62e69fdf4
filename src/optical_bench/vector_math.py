"""
向量数学工具模块

提供光线追迹使用的基础向量运算：
- 反射定律：d' = d - 2(n·d)n
- 矢量形式的 Snell 折射定律（全内反射时返回 None）
- 近零分量清理，避免除以极小数带来的数值伪影
- 二次方程求根与轴对齐包围盒（AABB）的 slab 求交

作者：混合光学仿真项目
"""

from __future__ import annotations

from typing import Optional, Tuple
import numpy as np
from numpy.typing import NDArray


# 小于该阈值的向量分量视为零
SNAP_TOLERANCE = 1e-12


def clean_vector(vector) -> NDArray[np.floating]:
    """清理向量中的近零分量

    绝对值小于 SNAP_TOLERANCE 的分量置为 0，-0.0 统一为 0.0。
    NaN 分量保持不变，由调用方通过 is_finite_vector 检测后丢弃。

    参数:
        vector: 任意可转换为浮点数组的向量

    返回:
        清理后的新数组
    """
    arr = np.array(vector, dtype=np.float64)
    arr[np.abs(arr) < SNAP_TOLERANCE] = 0.0
    return arr + 0.0


def is_finite_vector(vector) -> bool:
    """判断向量的所有分量是否为有限值"""
    return bool(np.all(np.isfinite(vector)))


def normalize(vector) -> NDArray[np.floating]:
    """归一化向量

    异常:
        ValueError: 向量长度为零
    """
    arr = np.asarray(vector, dtype=np.float64)
    length = np.linalg.norm(arr)
    if length < 1e-15:
        raise ValueError(f"无法归一化零长度向量: {arr}")
    return arr / length


def reflect_vector(direction, normal) -> NDArray[np.floating]:
    """按镜面反射定律计算反射方向

    参数:
        direction: 入射方向（单位向量）
        normal: 表面法向量（单位向量，朝向任意一侧均可）

    返回:
        反射方向（单位向量）
    """
    d = np.asarray(direction, dtype=np.float64)
    n = np.asarray(normal, dtype=np.float64)
    return normalize(d - 2.0 * np.dot(n, d) * n)


def refract_vector(
    direction,
    normal,
    n1: float,
    n2: float,
) -> Optional[NDArray[np.floating]]:
    """按矢量 Snell 定律计算折射方向

    法向量必须朝向入射一侧（即 normal·direction < 0）。

    参数:
        direction: 入射方向（单位向量）
        normal: 朝向入射介质的表面法向量
        n1: 入射介质折射率
        n2: 出射介质折射率

    返回:
        折射方向（单位向量）；发生全内反射时返回 None
    """
    d = np.asarray(direction, dtype=np.float64)
    n = np.asarray(normal, dtype=np.float64)
    ratio = n1 / n2
    cos_i = -np.dot(n, d)
    discriminant = 1.0 - ratio * ratio * (1.0 - cos_i * cos_i)
    if discriminant < 0.0:
        return None
    return normalize(ratio * d + (ratio * cos_i - np.sqrt(discriminant)) * n)


def solve_quadratic(a: float, b: float, c: float) -> Tuple[float, ...]:
    """求解实系数二次方程 a t² + b t + c = 0

    a 近似为零时退化为一次方程。

    返回:
        升序排列的实根元组；无实根时为空元组
    """
    if abs(a) < 1e-14:
        if abs(b) < 1e-14:
            return ()
        return (-c / b,)
    discriminant = b * b - 4.0 * a * c
    if discriminant < 0.0:
        return ()
    sqrt_disc = np.sqrt(discriminant)
    # 数值稳定形式，避免相近数相减
    q = -0.5 * (b + np.copysign(sqrt_disc, b))
    if abs(q) < 1e-300:
        root = -b / (2.0 * a)
        return (root, root)
    t1 = q / a
    t2 = c / q
    return (min(t1, t2), max(t1, t2))


def intersect_aabb(
    origin,
    direction,
    box_min,
    box_max,
) -> Optional[Tuple[float, float]]:
    """光线与轴对齐包围盒的 slab 法求交

    参数:
        origin: 光线起点
        direction: 光线方向（已清理近零分量）
        box_min: 包围盒最小角点
        box_max: 包围盒最大角点

    返回:
        (t_near, t_far)；光线与包围盒不相交或包围盒完全位于光线后方时返回 None
    """
    o = np.asarray(origin, dtype=np.float64)
    d = np.asarray(direction, dtype=np.float64)
    lo = np.asarray(box_min, dtype=np.float64)
    hi = np.asarray(box_max, dtype=np.float64)

    t_near = -np.inf
    t_far = np.inf
    for axis in range(3):
        if d[axis] == 0.0:
            # 平行于该 slab：起点必须位于 slab 内
            if o[axis] < lo[axis] or o[axis] > hi[axis]:
                return None
            continue
        t0 = (lo[axis] - o[axis]) / d[axis]
        t1 = (hi[axis] - o[axis]) / d[axis]
        if t0 > t1:
            t0, t1 = t1, t0
        t_near = max(t_near, t0)
        t_far = min(t_far, t1)
        if t_near > t_far:
            return None

    if t_far < 0.0:
        return None
    return float(t_near), float(t_far)


def orthonormal_basis(axis) -> Tuple[NDArray[np.floating], NDArray[np.floating]]:
    """构造与给定轴正交的两个单位向量 (u, v)

    以 +Y 为参考方向，当轴接近 ±Y 时改用 +Z。
    """
    w = normalize(axis)
    hint = np.array([0.0, 1.0, 0.0])
    if abs(np.dot(w, hint)) > 0.9:
        hint = np.array([0.0, 0.0, 1.0])
    u = normalize(np.cross(w, hint))
    v = np.cross(w, u)
    return u, v
