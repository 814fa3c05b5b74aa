"""信号管理模块。

将 OS 信号转换为请求级别的操作：
- SIGINT: 按模式取消活动请求（会话随之终止子进程）
- SIGTERM: 取消所有请求并请求退出

支持的配置：
- RR_SIGINT_MODE: cancel | exit | cancel_then_exit
- RR_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import SigintMode, get_config
from .orchestrator import RequestRegistry

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        registry = RequestRegistry()
        signal_manager = SignalManager(registry)

        await signal_manager.start()
        try:
            await run_commands(CommandExecutor(registry))
        finally:
            await signal_manager.stop()
        ```

    Attributes:
        registry: 请求注册表
        sigint_mode: SIGINT 处理模式
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        registry: RequestRegistry,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        self.registry = registry

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running: bool = False

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """安装 SIGINT/SIGTERM 处理器，必须在事件循环中调用。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
        else:
            signal.signal(signal.SIGINT, lambda sig, frame: self._handle_sigint())
        logger.debug(
            f"Signal handlers installed (mode={self.sigint_mode.value}, "
            f"double_tap_window={self.double_tap_window}s)"
        )

    async def stop(self) -> None:
        """恢复默认信号处理。"""
        if not self._running:
            return
        self._running = False

        if sys.platform != "win32" and self._loop:
            self._loop.remove_signal_handler(signal.SIGINT)
            self._loop.remove_signal_handler(signal.SIGTERM)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待 SIGTERM 或满足退出条件的 SIGINT。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        now = time.time()
        since_last = now - self._last_sigint_time
        self._last_sigint_time = now

        if since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_exit = True
            self._cancel_active("force shutdown")
            self._request_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT or not self.registry.has_active_requests():
            logger.info(f"SIGINT received (mode={self.sigint_mode.value}), requesting shutdown")
            self._cancel_active("shutdown")
            self._request_shutdown()
            return

        self._cancel_active(f"SIGINT (mode={self.sigint_mode.value})")
        if self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            # 下一次 SIGINT 在窗口内即强制退出
            self._shutdown_requested = True
            logger.info(f"Press Ctrl+C again within {self.double_tap_window}s to exit.")

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._cancel_active("SIGTERM")
        self._request_shutdown()

    def _cancel_active(self, reason: str) -> None:
        if self.registry.has_active_requests():
            count = self.registry.cancel_all()
            logger.info(f"{reason}: cancelled {count} request(s)")

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def request_graceful_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._cancel_active("shutdown")
        self._request_shutdown()
