"""
光线追迹异常定义

定义正向追迹、反向成像与扫描累积过程中可能抛出的异常。

几何未命中、反射次数超限、含 NaN 的光线均属于正常的控制流
（光线被丢弃），不会抛出异常。
"""


class RayTracingError(Exception):
    """光线追迹异常基类

    属性:
        message: 错误描述
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ScanError(RayTracingError):
    """扫描错误

    示例：
        - 成像目标不是探测器
        - 扫描分辨率不为正
        - 对已结束的扫描任务重复执行
    """
    pass


__all__ = [
    'RayTracingError',
    'ScanError',
]
