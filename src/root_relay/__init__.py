"""root-relay - 以特权进程运行命令并流式转发其输出。

环境变量:
    RR_CHANNEL_CAPACITY: 事件通道容量 (默认 64)
    RR_TERM_TIMEOUT: SIGTERM 后等待退出的秒数 (默认 2.0)
    RR_KILL_TIMEOUT: SIGKILL 后等待退出的秒数 (默认 1.0)
    RR_LOG_DEBUG: 输出调试日志到临时文件 (默认 false)

用法:
    root-relay listen -- CMD [ARGS...]
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
