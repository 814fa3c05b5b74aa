"""RequestRegistry 模块测试。

测试请求注册表的基本功能：
- 请求登记和注销
- 批量取消
- 活动状态查询
"""

from __future__ import annotations

from unittest import mock

import anyio
import pytest

from root_relay.orchestrator import RequestInfo, RequestRegistry


class TestRequestRegistry:
    """RequestRegistry 基本功能测试。"""

    def test_generate_request_id(self):
        """生成唯一请求 ID。"""
        id1 = RequestRegistry.generate_request_id()
        id2 = RequestRegistry.generate_request_id()
        assert id1 != id2
        assert len(id1) == 36  # UUID4 格式

    def test_register_and_unregister(self):
        """登记和注销请求。"""
        registry = RequestRegistry()

        registry.register("req-1", "ReadArp", anyio.CancelScope())
        assert "req-1" in registry
        assert registry.total_count == 1
        assert isinstance(registry.get("req-1"), RequestInfo)

        assert registry.unregister("req-1") is True
        assert "req-1" not in registry
        assert registry.total_count == 0

    def test_register_duplicate_raises_error(self):
        """登记重复请求 ID 时抛出错误。"""
        registry = RequestRegistry()
        registry.register("req-1", "ReadArp", anyio.CancelScope())

        with pytest.raises(ValueError, match="already registered"):
            registry.register("req-1", "Dump", anyio.CancelScope())

    def test_unregister_nonexistent_returns_false(self):
        """注销不存在的请求返回 False。"""
        assert RequestRegistry().unregister("nonexistent") is False


class TestRequestCancellation:
    """取消测试。"""

    def test_cancel_single(self):
        registry = RequestRegistry()
        scope = anyio.CancelScope()
        registry.register("req-1", "Dump", scope)

        assert registry.cancel("req-1") is True
        assert scope.cancel_called is True
        # 已取消的请求不再计为活动
        assert registry.cancel("req-1") is False
        assert registry.has_active_requests() is False
        assert registry.total_count == 1

    def test_cancel_nonexistent(self):
        assert RequestRegistry().cancel("missing") is False

    def test_cancel_all(self):
        registry = RequestRegistry()
        scopes = [anyio.CancelScope() for _ in range(3)]
        for i, scope in enumerate(scopes):
            registry.register(f"req-{i}", "ProcessListener", scope)
        scopes[0].cancel()

        assert registry.cancel_all() == 2
        assert all(scope.cancel_called for scope in scopes)
        assert registry.active_count == 0

    @pytest.mark.asyncio
    async def test_cancel_running_scope(self):
        """取消会中断正在该作用域内等待的任务。"""
        registry = RequestRegistry()
        reached_end = False

        async def request() -> None:
            nonlocal reached_end
            with anyio.CancelScope() as scope:
                registry.register("req-1", "Sleep", scope)
                await anyio.sleep(30)
                reached_end = True
            registry.unregister("req-1")

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(request)
                await anyio.wait_all_tasks_blocked()
                registry.cancel_all()

        assert reached_end is False
        assert len(registry) == 0


class TestRequestQueries:
    """状态查询测试。"""

    def test_list_active_sorted(self):
        registry = RequestRegistry()
        registry.register("b", "Dump", anyio.CancelScope())
        registry.register("a", "ReadArp", anyio.CancelScope())

        active = registry.list_active()
        assert [info.request_id for info in active] == ["b", "a"]
        assert registry.active_count == 2

    def test_repr(self):
        info = RequestInfo(request_id="0123456789", command="Dump", cancel_scope=anyio.CancelScope())
        assert "command=Dump" in repr(info)
        assert "status=running" in repr(info)


class TestOnEmptyCallbacks:
    """注册表变空回调测试。"""

    def test_called_when_last_request_removed(self):
        registry = RequestRegistry()
        callback = mock.MagicMock()
        registry.add_on_empty_callback(callback)

        registry.register("req-1", "Dump", anyio.CancelScope())
        registry.register("req-2", "Dump", anyio.CancelScope())
        registry.unregister("req-1")
        callback.assert_not_called()

        registry.unregister("req-2")
        callback.assert_called_once()

    def test_remove_callback(self):
        registry = RequestRegistry()
        callback = mock.MagicMock()
        registry.add_on_empty_callback(callback)
        registry.remove_on_empty_callback(callback)

        registry.register("req-1", "Dump", anyio.CancelScope())
        registry.unregister("req-1")
        callback.assert_not_called()

    def test_callback_error_does_not_propagate(self):
        registry = RequestRegistry()
        registry.add_on_empty_callback(mock.MagicMock(side_effect=RuntimeError("boom")))

        registry.register("req-1", "Dump", anyio.CancelScope())
        assert registry.unregister("req-1") is True
