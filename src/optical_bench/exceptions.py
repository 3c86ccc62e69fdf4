"""
光学平台异常定义

定义元件建模、场景注册与配置过程中可能抛出的异常。

几何未命中、全内反射、反射次数超限等情况属于正常的控制流，
不会抛出异常；只有结构上无效的调用才会快速失败。
"""


class OpticalBenchError(Exception):
    """光学平台异常基类

    属性:
        message: 错误描述
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ComponentConfigurationError(OpticalBenchError, ValueError):
    """元件参数错误

    当元件参数在设置边界处被判定为无效时抛出。

    示例：
        - 透镜厚度为负或为零
        - 折射率小于 1
        - 通光口径超过曲率半径允许的范围
    """
    pass


class UnknownComponentError(OpticalBenchError, KeyError):
    """未知元件错误

    当按 id 查找的元件不在场景注册表中时抛出。

    属性:
        component_id: 查找的元件 id
    """

    def __init__(self, component_id: str) -> None:
        self.component_id = component_id
        super().__init__(f"场景中不存在 id 为 '{component_id}' 的元件")


class ConfigurationError(OpticalBenchError, ValueError):
    """配置错误

    当追迹或成像配置参数超出有效范围时抛出。
    """
    pass


__all__ = [
    'OpticalBenchError',
    'ComponentConfigurationError',
    'UnknownComponentError',
    'ConfigurationError',
]
