"""请求登记与取消模块。

提供请求级别的隔离和管理：
- RequestRegistry: 活动请求（单次命令或进程会话）的登记和管理
- 通过 anyio.CancelScope 实现请求级别的取消

宿主侧取消（如 SIGINT）通过本注册表传递到各个请求。
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import anyio

__all__ = ["RequestRegistry", "RequestInfo"]

logger = logging.getLogger(__name__)


@dataclass
class RequestInfo:
    """活动请求的信息。

    Attributes:
        request_id: 唯一请求标识符
        command: 命令名称（如 ProcessListener）
        cancel_scope: 请求所属的取消作用域
        created_at: 创建时间
    """

    request_id: str
    command: str
    cancel_scope: anyio.CancelScope
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def active(self) -> bool:
        return not self.cancel_scope.cancel_called

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        status = "running" if self.active else "cancelling"
        return (
            f"RequestInfo(id={self.request_id[:8]}..., "
            f"command={self.command}, "
            f"status={status}, "
            f"elapsed={elapsed:.1f}s)"
        )


class RequestRegistry:
    """活动请求的注册表。

    所有操作都是同步的，由调用方保证在同一个事件循环中调用。

    Example:
        ```python
        registry = RequestRegistry()

        with anyio.CancelScope() as scope:
            request_id = registry.generate_request_id()
            registry.register(request_id, "ReadArp", scope)
            try:
                ...
            finally:
                registry.unregister(request_id)

        # 其他任务中
        registry.cancel_all()
        ```
    """

    def __init__(self) -> None:
        self._requests: dict[str, RequestInfo] = {}
        self._on_empty_callbacks: list[Callable[[], None]] = []

    @staticmethod
    def generate_request_id() -> str:
        """生成 UUID4 格式的请求 ID。"""
        return str(uuid.uuid4())

    def register(self, request_id: str, command: str, cancel_scope: anyio.CancelScope) -> None:
        """登记新请求。

        Raises:
            ValueError: 如果 request_id 已存在
        """
        if request_id in self._requests:
            raise ValueError(f"Request {request_id} already registered")

        info = RequestInfo(request_id=request_id, command=command, cancel_scope=cancel_scope)
        self._requests[request_id] = info
        logger.debug(f"Registered request: {info}")

    def unregister(self, request_id: str) -> bool:
        """注销请求，请求存在则返回 True。"""
        info = self._requests.pop(request_id, None)
        if info is None:
            return False

        logger.debug(f"Unregistered request: {info}")
        if not self._requests:
            for callback in list(self._on_empty_callbacks):
                try:
                    callback()
                except Exception as e:
                    logger.warning(f"Error in on_empty callback: {e}")
        return True

    def get(self, request_id: str) -> RequestInfo | None:
        return self._requests.get(request_id)

    def cancel(self, request_id: str) -> bool:
        """取消指定请求。

        Returns:
            请求存在且尚未取消则返回 True
        """
        info = self._requests.get(request_id)
        if info and info.active:
            info.cancel_scope.cancel()
            logger.info(f"Cancelled request: {info}")
            return True
        return False

    def cancel_all(self) -> int:
        """取消所有活动请求，返回发起取消的数量。"""
        cancelled = 0
        for info in list(self._requests.values()):
            if info.active:
                info.cancel_scope.cancel()
                logger.info(f"Cancelled request: {info}")
                cancelled += 1

        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} active request(s)")

        return cancelled

    def has_active_requests(self) -> bool:
        return any(info.active for info in self._requests.values())

    @property
    def active_count(self) -> int:
        return sum(1 for info in self._requests.values() if info.active)

    @property
    def total_count(self) -> int:
        """注册表中的请求总数（包括正在取消的）。"""
        return len(self._requests)

    def list_active(self) -> list[RequestInfo]:
        """列出所有活动请求（按创建时间排序）。"""
        active = [info for info in self._requests.values() if info.active]
        return sorted(active, key=lambda x: x.created_at)

    def add_on_empty_callback(self, callback: Callable[[], None]) -> None:
        """添加注册表变空时的回调。"""
        self._on_empty_callbacks.append(callback)

    def remove_on_empty_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._on_empty_callbacks:
            self._on_empty_callbacks.remove(callback)

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._requests
