"""SignalManager 模块测试。

测试信号管理器的基本功能：
- 信号处理策略
- 配置支持
- 双击退出
"""

from __future__ import annotations

import asyncio
import os
import sys
from unittest import mock

import anyio
import pytest

from root_relay.config import SigintMode, reload_config
from root_relay.orchestrator import RequestRegistry
from root_relay.signal_manager import SignalManager


def make_manager(registry: RequestRegistry, **kwargs) -> SignalManager:
    manager = SignalManager(registry, **kwargs)
    manager._shutdown_event = asyncio.Event()
    manager._loop = mock.MagicMock()
    return manager


def registry_with_request() -> tuple[RequestRegistry, anyio.CancelScope]:
    registry = RequestRegistry()
    scope = anyio.CancelScope()
    registry.register("req-1", "ProcessListener", scope)
    return registry, scope


class TestSigintMode:
    """SigintMode 枚举测试。"""

    def test_from_string_valid(self):
        assert SigintMode.from_string("cancel") == SigintMode.CANCEL
        assert SigintMode.from_string("exit") == SigintMode.EXIT
        assert SigintMode.from_string("cancel_then_exit") == SigintMode.CANCEL_THEN_EXIT

    def test_from_string_case_insensitive(self):
        assert SigintMode.from_string("Cancel_Then_Exit") == SigintMode.CANCEL_THEN_EXIT

    def test_from_string_invalid(self):
        """无效字符串返回默认值 CANCEL。"""
        assert SigintMode.from_string("invalid") == SigintMode.CANCEL
        assert SigintMode.from_string("") == SigintMode.CANCEL


class TestSignalManagerInit:
    """SignalManager 初始化测试。"""

    def test_init_with_defaults(self):
        manager = SignalManager(RequestRegistry())
        assert manager.sigint_mode == SigintMode.CANCEL
        assert manager.double_tap_window == 1.0

    def test_init_from_env(self):
        with mock.patch.dict(os.environ, {"RR_SIGINT_MODE": "exit", "RR_SIGINT_DOUBLE_TAP_WINDOW": "2.5"}):
            reload_config()
            manager = SignalManager(RequestRegistry())
        assert manager.sigint_mode == SigintMode.EXIT
        assert manager.double_tap_window == 2.5

    def test_init_with_custom_values(self):
        manager = SignalManager(RequestRegistry(), sigint_mode=SigintMode.EXIT, double_tap_window=2.0)
        assert manager.sigint_mode == SigintMode.EXIT
        assert manager.double_tap_window == 2.0


class TestSignalManagerSigintCancel:
    """SIGINT CANCEL 模式测试。"""

    def test_sigint_with_active_requests_cancels_all(self):
        registry, scope = registry_with_request()
        manager = make_manager(registry, sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        assert scope.cancel_called is True
        assert manager.is_shutdown_requested is False
        manager._loop.call_soon_threadsafe.assert_not_called()

    def test_sigint_without_active_requests_shuts_down(self):
        manager = make_manager(RequestRegistry(), sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_called_once_with(manager._shutdown_event.set)


class TestSignalManagerSigintExit:
    """SIGINT EXIT 模式测试。"""

    def test_sigint_always_shuts_down(self):
        registry, scope = registry_with_request()
        manager = make_manager(registry, sigint_mode=SigintMode.EXIT)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        # 退出前取消请求，使会话终止子进程
        assert scope.cancel_called is True


class TestSignalManagerSigintCancelThenExit:
    """SIGINT CANCEL_THEN_EXIT 模式测试。"""

    def test_sigint_first_cancels_second_exits(self):
        registry, scope = registry_with_request()
        manager = make_manager(registry, sigint_mode=SigintMode.CANCEL_THEN_EXIT, double_tap_window=1.0)

        manager._handle_sigint()
        assert scope.cancel_called is True
        assert manager._shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_not_called()

        manager._handle_sigint()
        assert manager.is_force_exit is True
        manager._loop.call_soon_threadsafe.assert_called()


class TestSignalManagerDoubleTap:
    """双击退出测试。"""

    def test_double_tap_forces_exit(self):
        manager = make_manager(RequestRegistry(), sigint_mode=SigintMode.CANCEL_THEN_EXIT, double_tap_window=1.0)
        manager._shutdown_requested = True

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True

    def test_slow_second_tap_is_not_forced(self):
        manager = make_manager(RequestRegistry(), sigint_mode=SigintMode.CANCEL, double_tap_window=1.0)

        with mock.patch("root_relay.signal_manager.time") as fake_time:
            fake_time.time.side_effect = [100.0, 105.0]
            manager._handle_sigint()
            manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        assert manager.is_force_exit is False


class TestSignalManagerSigterm:
    """SIGTERM 测试。"""

    def test_sigterm_cancels_all_and_shuts_down(self):
        registry, scope = registry_with_request()
        manager = make_manager(registry)

        manager._handle_sigterm()

        assert scope.cancel_called is True
        assert manager.is_shutdown_requested is True


class TestSignalManagerCallbacks:
    """回调测试。"""

    def test_on_shutdown_callback(self):
        callback = mock.MagicMock()
        manager = make_manager(RequestRegistry(), sigint_mode=SigintMode.EXIT, on_shutdown=callback)

        manager._handle_sigint()

        callback.assert_called_once()

    def test_callback_error_does_not_propagate(self):
        callback = mock.MagicMock(side_effect=RuntimeError("boom"))
        manager = make_manager(RequestRegistry(), on_shutdown=callback)

        manager._handle_sigterm()

        assert manager.is_shutdown_requested is True

    def test_request_graceful_shutdown(self):
        registry, scope = registry_with_request()
        manager = make_manager(registry)

        manager.request_graceful_shutdown()

        assert scope.cancel_called is True
        assert manager.is_shutdown_requested is True


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handling")
class TestSignalManagerStartStop:
    """启动/停止测试（仅 POSIX）。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        manager = SignalManager(RequestRegistry())

        await manager.start()
        assert manager._running is True
        assert manager._loop is not None

        await manager.stop()
        assert manager._running is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_wait_for_shutdown(self):
        manager = SignalManager(RequestRegistry())
        await manager.start()
        try:
            manager.request_graceful_shutdown()
            with anyio.fail_after(5):
                await manager.wait_for_shutdown()
        finally:
            await manager.stop()
        assert manager.is_shutdown_requested is True
