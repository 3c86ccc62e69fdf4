"""
高斯光束传播异常定义

定义 ABCD 光束传播过程中可能抛出的异常。

光阑截断属于正常结果（记录在 clipped 标志中），不会抛出异常；
只有结构上无效的调用（空光路、未知元件、非正的波长或束腰）才会快速失败。
"""


class BeamPropagationError(Exception):
    """光束传播异常基类

    属性:
        message: 错误描述
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class PropagationError(BeamPropagationError, ValueError):
    """传播参数错误

    示例：
        - 光路为空
        - 光路中引用了场景中不存在的元件 id
        - 波长或初始束腰不为正值
    """
    pass


__all__ = [
    'BeamPropagationError',
    'PropagationError',
]
