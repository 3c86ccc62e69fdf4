"""
元件坐标系模块

每个光学元件拥有一个局部坐标系（"光空间"）：
- 局部 +Z（w）为光轴方向
- 局部 X/Y（u, v）张成横向平面

本模块维护元件位姿（位置 + 旋转），并惰性缓存互逆的
局部→全局与全局→局部 4×4 仿射变换矩阵。

缓存失效机制：
- 每次位姿或参数修改都会使修订号（revision）单调递增
- 缓存矩阵记录其计算时对应的修订号
- 读取矩阵时若修订号不一致则重新计算，否则直接返回缓存

旋转使用 scipy.spatial.transform.Rotation 表示，欧拉角采用
内旋 'XYZ' 顺序（弧度）。

作者：混合光学仿真项目
"""

from __future__ import annotations

from typing import Optional, Sequence, Union
import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation

from .vector_math import clean_vector, normalize


# 欧拉角顺序（内旋）
EULER_ORDER = 'XYZ'

# 前向方向与参考向上方向的平行判定阈值
PARALLEL_TOLERANCE = 1e-6


OrientationLike = Union[Rotation, Sequence[float], NDArray]


def _as_rotation(orientation: Optional[OrientationLike]) -> Rotation:
    """将多种旋转表示统一转换为 Rotation

    支持：
    - Rotation 对象
    - 四元数 (x, y, z, w)
    - 3×3 旋转矩阵
    - None（单位旋转）
    """
    if orientation is None:
        return Rotation.identity()
    if isinstance(orientation, Rotation):
        return orientation
    arr = np.asarray(orientation, dtype=np.float64)
    if arr.shape == (4,):
        return Rotation.from_quat(arr)
    if arr.shape == (3, 3):
        return Rotation.from_matrix(arr)
    raise ValueError(
        f"无法识别的旋转表示，形状为 {arr.shape}，"
        f"应为四元数 (4,) 或旋转矩阵 (3, 3)"
    )


def _as_position(position) -> NDArray[np.floating]:
    arr = np.asarray(position, dtype=np.float64).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"位置必须为 3 维向量，实际形状为 {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"位置必须为有限值，实际为 {arr}")
    return arr.copy()


class TransformFrame:
    """元件局部坐标系

    参数:
        position: 原点在全局坐标系中的位置 (mm)
        orientation: 局部坐标系相对全局坐标系的旋转

    示例:
        >>> frame = TransformFrame(position=(0, 0, 100))
        >>> frame.point_along((1, 0, 0))
        >>> frame.to_local_point((10, 0, 100))
        array([ 0.,  0., 10.])
    """

    def __init__(
        self,
        position=(0.0, 0.0, 0.0),
        orientation: Optional[OrientationLike] = None,
    ) -> None:
        self._position = _as_position(position)
        self._orientation = _as_rotation(orientation)
        self._revision = 0
        self._cached_revision = -1
        self._local_to_world = np.eye(4)
        self._world_to_local = np.eye(4)

    # =========================================================================
    # 位姿读取
    # =========================================================================

    @property
    def revision(self) -> int:
        """修订号（每次修改单调递增）"""
        return self._revision

    @property
    def cached_revision(self) -> int:
        """缓存矩阵对应的修订号"""
        return self._cached_revision

    @property
    def position(self) -> NDArray[np.floating]:
        return self._position.copy()

    @property
    def orientation(self) -> Rotation:
        return self._orientation

    @property
    def euler(self) -> NDArray[np.floating]:
        """内旋 XYZ 欧拉角（弧度）"""
        return self._orientation.as_euler(EULER_ORDER)

    @property
    def forward(self) -> NDArray[np.floating]:
        """局部 +Z（光轴）在全局坐标系中的方向"""
        return self._orientation.apply([0.0, 0.0, 1.0])

    @property
    def right(self) -> NDArray[np.floating]:
        """局部 +X 在全局坐标系中的方向"""
        return self._orientation.apply([1.0, 0.0, 0.0])

    @property
    def up(self) -> NDArray[np.floating]:
        """局部 +Y 在全局坐标系中的方向"""
        return self._orientation.apply([0.0, 1.0, 0.0])

    # =========================================================================
    # 位姿修改（均递增修订号）
    # =========================================================================

    def touch(self) -> None:
        """递增修订号

        元件参数（而非位姿）改变时调用，使依赖修订号的几何缓存失效。
        """
        self._revision += 1

    def set_pose(self, position, orientation: Optional[OrientationLike] = None) -> None:
        """同时设置位置与旋转

        参数:
            position: 新位置 (mm)
            orientation: 新旋转；None 表示保持当前旋转
        """
        self._position = _as_position(position)
        if orientation is not None:
            self._orientation = _as_rotation(orientation)
        self.touch()

    def set_position(self, x: float, y: float, z: float) -> None:
        self._position = _as_position((x, y, z))
        self.touch()

    def set_rotation(self, rx: float, ry: float, rz: float) -> None:
        """按内旋 XYZ 欧拉角（弧度）设置旋转"""
        angles = np.array([rx, ry, rz], dtype=np.float64)
        if not np.all(np.isfinite(angles)):
            raise ValueError(f"欧拉角必须为有限值，实际为 {angles}")
        self._orientation = Rotation.from_euler(EULER_ORDER, angles)
        self.touch()

    def point_along(
        self,
        direction,
        up_hint=(0.0, 0.0, 1.0),
        fallback_hint=(0.0, 1.0, 0.0),
    ) -> None:
        """旋转坐标系，使局部 +Z 对准给定的全局方向

        局部 +Y 尽量与 up_hint 对齐；当前向方向与 up_hint 平行时
        改用 fallback_hint，避免叉积退化。

        参数:
            direction: 目标光轴方向（无需归一化）
            up_hint: 首选参考向上方向
            fallback_hint: 备用参考向上方向
        """
        forward = normalize(direction)
        hint = normalize(up_hint)
        if np.linalg.norm(np.cross(hint, forward)) < PARALLEL_TOLERANCE:
            hint = normalize(fallback_hint)
            if np.linalg.norm(np.cross(hint, forward)) < PARALLEL_TOLERANCE:
                raise ValueError(
                    f"前向方向 {forward} 与两个参考向上方向均平行，无法确定旋转"
                )
        x_axis = normalize(np.cross(hint, forward))
        y_axis = np.cross(forward, x_axis)
        matrix = np.column_stack([x_axis, y_axis, forward])
        self._orientation = Rotation.from_matrix(matrix)
        self.touch()

    # =========================================================================
    # 变换矩阵（惰性缓存）
    # =========================================================================

    def refresh(self) -> bool:
        """若缓存过期则立即重新计算变换矩阵

        返回:
            是否发生了重新计算
        """
        if self._cached_revision == self._revision:
            return False
        rotation = self._orientation.as_matrix()
        local_to_world = np.eye(4)
        local_to_world[:3, :3] = rotation
        local_to_world[:3, 3] = self._position

        # 刚体变换的逆：[R^T, -R^T p]
        world_to_local = np.eye(4)
        world_to_local[:3, :3] = rotation.T
        world_to_local[:3, 3] = -rotation.T @ self._position

        self._local_to_world = local_to_world
        self._world_to_local = world_to_local
        self._cached_revision = self._revision
        return True

    def world_transform(self) -> NDArray[np.floating]:
        """局部→全局 4×4 变换矩阵"""
        self.refresh()
        return self._local_to_world.copy()

    def local_transform(self) -> NDArray[np.floating]:
        """全局→局部 4×4 变换矩阵"""
        self.refresh()
        return self._world_to_local.copy()

    # =========================================================================
    # 点与方向变换
    # =========================================================================

    def to_local_point(self, point) -> NDArray[np.floating]:
        self.refresh()
        p = np.asarray(point, dtype=np.float64)
        return self._world_to_local[:3, :3] @ p + self._world_to_local[:3, 3]

    def to_world_point(self, point) -> NDArray[np.floating]:
        self.refresh()
        p = np.asarray(point, dtype=np.float64)
        return self._local_to_world[:3, :3] @ p + self._local_to_world[:3, 3]

    def to_local_direction(self, direction) -> NDArray[np.floating]:
        """将全局方向变换到局部坐标系（清理近零分量并重新归一化）"""
        self.refresh()
        d = self._world_to_local[:3, :3] @ np.asarray(direction, dtype=np.float64)
        return normalize(clean_vector(d))

    def to_world_direction(self, direction) -> NDArray[np.floating]:
        """将局部方向变换到全局坐标系（清理近零分量并重新归一化）"""
        self.refresh()
        d = self._local_to_world[:3, :3] @ np.asarray(direction, dtype=np.float64)
        return normalize(clean_vector(d))

    def __repr__(self) -> str:
        return (
            f"TransformFrame(position={self._position.tolist()}, "
            f"euler={np.round(self.euler, 6).tolist()}, revision={self._revision})"
        )
