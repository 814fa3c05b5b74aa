"""root-relay 异常类与错误分类。

异常层级:
    RootRelayError
    ├── SpawnError              进程无法启动
    ├── CommandFailedError      单次命令失败（对调用方的类型化失败）
    │   └── ProcessExitError    进程非零退出或输出了错误信息
    ├── CommandCancelledError   单次命令被宿主侧取消
    └── ServiceUnavailableError 未注册平台服务

错误分类:
    is_benign_shutdown_error() 区分"强制关闭时的预期 I/O 错误"与真实 I/O 错误。
"""

from __future__ import annotations

import errno
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

import anyio

__all__ = [
    "RootRelayError",
    "SpawnError",
    "CommandFailedError",
    "ProcessExitError",
    "CommandCancelledError",
    "ServiceUnavailableError",
    "BENIGN_ERRNOS",
    "is_benign_shutdown_error",
    "collapse_exception_groups",
]

# 管道被关闭/对端退出时的 errno
BENIGN_ERRNOS = frozenset({errno.EBADF, errno.EPIPE, errno.ECONNRESET})


class RootRelayError(Exception):
    """root-relay 基础异常。"""
    pass


class SpawnError(RootRelayError):
    """进程无法启动。

    Attributes:
        argv: 启动参数
    """

    def __init__(self, argv: Sequence[str], reason: str) -> None:
        self.argv = list(argv)
        super().__init__(f"Failed to start {self.argv[0] if self.argv else '<empty>'}: {reason}")


class CommandFailedError(RootRelayError):
    """单次命令执行失败。

    Attributes:
        command: 命令名称
        message: 错误消息
    """

    def __init__(self, command: str, message: str) -> None:
        self.command = command
        self.message = message
        super().__init__(f"{command}: {message}")


class ProcessExitError(CommandFailedError):
    """进程非零退出或输出了错误信息。

    Attributes:
        exit_code: 退出码
        output: 进程输出
    """

    def __init__(self, command: str, exit_code: int, output: str) -> None:
        self.exit_code = exit_code
        self.output = output
        super().__init__(command, f"Process exited with {exit_code}: {output}")


class CommandCancelledError(RootRelayError):
    """单次命令被宿主侧取消（如 SIGINT）。"""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"{command}: cancelled")


class ServiceUnavailableError(RootRelayError):
    """所需的平台服务未注册。"""
    pass


def is_benign_shutdown_error(exc: BaseException) -> bool:
    """判断是否为强制关闭导致的预期错误。

    包括：向已被消费者关闭的事件流写入、从已关闭的管道读取、
    对已被杀死的进程写 stdin 等。这类错误吞掉即可，不作为故障上报。

    取消异常不在此分类之内，调用方必须让其继续传播。
    """
    if isinstance(exc, (anyio.BrokenResourceError, anyio.ClosedResourceError)):
        return True
    if isinstance(exc, (BrokenPipeError, ConnectionResetError)):
        return True
    if isinstance(exc, OSError) and exc.errno in BENIGN_ERRNOS:
        return True
    return False


@contextmanager
def collapse_exception_groups() -> Iterator[None]:
    """把只含一个异常的（嵌套）异常组还原为该异常。

    anyio 任务组会把宿主代码中抛出的异常包装进 BaseExceptionGroup，
    这里还原出原始异常，使调用方可以直接捕获 SpawnError 等类型化错误。
    包含多个异常的组原样传播。
    """
    try:
        yield
    except BaseExceptionGroup as group:
        exc: BaseException = group
        while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
            exc = exc.exceptions[0]
        if isinstance(exc, BaseExceptionGroup):
            raise
        raise exc
