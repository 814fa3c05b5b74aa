"""命令提交接口。

CommandExecutor 在特权上下文中执行命令描述符：
- RootCommand: 执行一次并返回结果，失败统一转换为 CommandFailedError
- RootCommandChannel: 创建事件流，会话关闭时自动注销

所有请求都登记到 RequestRegistry，宿主侧（如 SIGINT）可统一取消。
执行器从不重试，重试策略由调用方决定。
"""

from __future__ import annotations

import logging
from typing import TypeVar

import anyio
from anyio.abc import TaskGroup

from .commands.base import RootCommand, RootCommandChannel
from .errors import CommandCancelledError, CommandFailedError, RootRelayError
from .orchestrator import RequestRegistry
from .runtime.session import EventStream

__all__ = ["CommandExecutor"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandExecutor:
    """在特权上下文中执行命令。

    Example:
        ```python
        executor = CommandExecutor()
        arp = await executor.execute(ReadArp())

        async with anyio.create_task_group() as tg:
            listener = ProcessListener(argv=("ip", "monitor"))
            async with await executor.open_channel(listener, tg) as events:
                async for event in events:
                    ...
        ```

    Attributes:
        registry: 请求注册表
    """

    def __init__(self, registry: RequestRegistry | None = None) -> None:
        self.registry = registry if registry is not None else RequestRegistry()

    async def execute(self, command: RootCommand[T]) -> T:
        """执行单次命令。

        Raises:
            CommandFailedError: 命令抛出了非 RootRelayError 的异常
            CommandCancelledError: 请求被宿主侧取消
            RootRelayError: 命令自身抛出的类型化错误原样传递
        """
        name = command.command_name
        request_id = self.registry.generate_request_id()

        with anyio.CancelScope() as scope:
            self.registry.register(request_id, name, scope)
            try:
                return await command.execute()
            except RootRelayError:
                raise
            except Exception as e:
                logger.warning(f"Command {name} failed: {e!r}")
                raise CommandFailedError(name, str(e) or type(e).__name__) from e
            finally:
                self.registry.unregister(request_id)

        logger.info(f"Command {name} cancelled")
        raise CommandCancelledError(name)

    async def open_channel(self, command: RootCommandChannel, task_group: TaskGroup) -> EventStream:
        """创建事件流命令。

        进程在返回前已启动；启动失败抛出 SpawnError。
        """
        name = command.command_name
        try:
            stream = await command.create(task_group)
        except RootRelayError:
            raise
        except Exception as e:
            logger.warning(f"Channel {name} failed to open: {e!r}")
            raise CommandFailedError(name, str(e) or type(e).__name__) from e

        request_id = self.registry.generate_request_id()
        self.registry.register(request_id, name, stream.session.cancel_scope)
        stream.session.add_close_callback(lambda: self.registry.unregister(request_id))
        logger.debug(f"Opened channel {name} pid={stream.session.pid}")
        return stream
