"""root-relay 环境变量配置管理。

环境变量:
    RR_CHANNEL_CAPACITY: 事件流缓冲容量（背压）
        - 默认 64，限制在 1-4096 范围
        - 缓冲区满时生产者挂起，不丢弃事件

    RR_TERM_TIMEOUT: 发送 SIGTERM 后等待进程退出的时间（秒）
        - 默认 2.0

    RR_KILL_TIMEOUT: 发送 SIGKILL 后等待进程退出的时间（秒）
        - 默认 1.0

    RR_EXTRA_PATH: 追加到子进程 PATH 末尾的目录
        - 以 os.pathsep 分割
        - 默认 /usr/sbin:/sbin（系统管理工具通常位于此处）

    RR_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    RR_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 取消活动请求（无活动请求则退出）(默认)
        - exit = 直接退出进程
        - cancel_then_exit = 先取消请求，第二次才退出

    RR_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "SigintMode", "load_config", "get_config", "reload_config", "fix_path"]

DEFAULT_CHANNEL_CAPACITY = 64
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_EXTRA_PATH = os.pathsep.join(["/usr/sbin", "/sbin"])


class SigintMode(Enum):
    """SIGINT 处理模式。

    - CANCEL: 只取消活动请求，不退出（如果没有活动请求则退出）
    - EXIT: 直接退出进程
    - CANCEL_THEN_EXIT: 先取消请求，第二次 SIGINT 才退出
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式，无效值返回 CANCEL。"""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """解析浮点数环境变量，并限制在 [low, high] 范围内。"""
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_capacity(value: str | None) -> int:
    """解析事件流容量。"""
    if not value:
        return DEFAULT_CHANNEL_CAPACITY
    try:
        return max(1, min(int(value), 4096))
    except ValueError:
        return DEFAULT_CHANNEL_CAPACITY


def _parse_path_list(value: str | None) -> list[str]:
    """解析目录列表，忽略空项。"""
    if value is None:
        value = DEFAULT_EXTRA_PATH
    return [item.strip() for item in value.split(os.pathsep) if item.strip()]


@dataclass
class Config:
    """root-relay 配置。

    Attributes:
        channel_capacity: 事件流缓冲容量
        term_timeout: SIGTERM 后等待时间（秒）
        kill_timeout: SIGKILL 后等待时间（秒）
        extra_path: 追加到子进程 PATH 的目录
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    channel_capacity: int = DEFAULT_CHANNEL_CAPACITY
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    extra_path: list[str] = field(default_factory=lambda: _parse_path_list(None))
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(channel_capacity={self.channel_capacity}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"extra_path={os.pathsep.join(self.extra_path) or 'none'}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """生成临时目录下带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "root-relay"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"rr_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("RR_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    sigint_mode = os.environ.get("RR_SIGINT_MODE")

    return Config(
        channel_capacity=_parse_capacity(os.environ.get("RR_CHANNEL_CAPACITY")),
        term_timeout=_parse_float(
            os.environ.get("RR_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.0, 60.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("RR_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.0, 60.0
        ),
        extra_path=_parse_path_list(os.environ.get("RR_EXTRA_PATH")),
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=SigintMode.from_string(sigint_mode) if sigint_mode else SigintMode.CANCEL,
        sigint_double_tap_window=_parse_float(
            os.environ.get("RR_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


def fix_path(env: Mapping[str, str] | None = None) -> dict[str, str]:
    """返回 PATH 末尾追加了 extra_path 的环境变量副本。

    Args:
        env: 基础环境变量（None = 当前进程环境）
    """
    result = dict(os.environ if env is None else env)
    extra = get_config().extra_path
    current = [p for p in result.get("PATH", "").split(os.pathsep) if p]
    result["PATH"] = os.pathsep.join(current + [p for p in extra if p not in current])
    return result


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
