"""root-relay 命令行入口。

用法:
    root-relay listen [--terminate REGEX] -- CMD [ARGS...]
    root-relay dump PATH
    root-relay arp
    root-relay settings-put NAME VALUE [--namespace global]

listen 将事件逐行以 JSON 输出到 stdout，并以子进程的退出码退出。
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence

import anyio
from anyio.abc import TaskGroup

from . import __version__
from .commands import Dump, ProcessListener, ReadArp, SettingsPut
from .config import get_config
from .errors import RootRelayError, collapse_exception_groups
from .executor import CommandExecutor
from .orchestrator import RequestRegistry
from .runtime.events import Exit, TerminationPolicy
from .signal_manager import SignalManager

__all__ = ["build_parser", "run_cli", "main"]

logger = logging.getLogger(__name__)

# 128 + SIGINT(2)
EXIT_CANCELLED = 130

Handler = Callable[[argparse.Namespace, CommandExecutor, TaskGroup], Awaitable[int]]


async def _listen(args: argparse.Namespace, executor: CommandExecutor, tg: TaskGroup) -> int:
    argv = args.argv[1:] if args.argv[:1] == ["--"] else args.argv
    command = ProcessListener(argv=tuple(argv), policy=TerminationPolicy(pattern=args.terminate))
    exit_code = EXIT_CANCELLED
    async with await executor.open_channel(command, tg) as events:
        async for event in events:
            print(event.model_dump_json(), flush=True)
            if isinstance(event, Exit):
                exit_code = event.code if event.code >= 0 else 128 - event.code
    return exit_code


async def _dump(args: argparse.Namespace, executor: CommandExecutor, tg: TaskGroup) -> int:
    await executor.execute(Dump(path=args.path))
    return 0


async def _arp(args: argparse.Namespace, executor: CommandExecutor, tg: TaskGroup) -> int:
    sys.stdout.write(await executor.execute(ReadArp()))
    return 0


async def _settings_put(args: argparse.Namespace, executor: CommandExecutor, tg: TaskGroup) -> int:
    await executor.execute(SettingsPut(name=args.name, value=args.value, namespace=args.namespace))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="root-relay",
        description="Run privileged commands and stream their output",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    listen = subparsers.add_parser("listen", help="Run a process and stream its events as JSON lines")
    listen.add_argument("--terminate", default="", metavar="REGEX",
                        help="Stop the process once a stdout line matches")
    listen.add_argument("argv", nargs=argparse.REMAINDER, help="Command and arguments")
    listen.set_defaults(handler=_listen)

    dump = subparsers.add_parser("dump", help="Append diagnostic output to a file")
    dump.add_argument("path")
    dump.set_defaults(handler=_dump)

    arp = subparsers.add_parser("arp", help="Print the kernel neighbor table")
    arp.set_defaults(handler=_arp)

    settings_put = subparsers.add_parser("settings-put", help="Write a persisted system setting")
    settings_put.add_argument("name")
    settings_put.add_argument("value")
    settings_put.add_argument("--namespace", default="global")
    settings_put.set_defaults(handler=_settings_put)

    return parser


async def run_cli(args: argparse.Namespace) -> int:
    """执行一个子命令。

    SIGINT 取消活动请求（会话随之终止子进程），SIGTERM 取消并退出。
    """
    registry = RequestRegistry()
    executor = CommandExecutor(registry)
    signal_manager = SignalManager(registry)
    handler: Handler = args.handler
    exit_code = EXIT_CANCELLED

    async def _watch_shutdown(scope: anyio.CancelScope) -> None:
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling command")
        scope.cancel()

    await signal_manager.start()
    try:
        with collapse_exception_groups():
            async with anyio.create_task_group() as tg:
                tg.start_soon(_watch_shutdown, tg.cancel_scope, name="shutdown-watcher")
                exit_code = await handler(args, executor, tg)
                tg.cancel_scope.cancel()
    except RootRelayError as e:
        logger.error(str(e))
        exit_code = 1
    finally:
        await signal_manager.stop()

    if signal_manager.is_force_exit:
        logger.warning("Force exit requested")
        exit_code = EXIT_CANCELLED
    return exit_code


def main(argv: Sequence[str] | None = None) -> None:
    """主入口点。"""
    config = get_config()
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "listen" and not [a for a in args.argv if a != "--"]:
        parser.error("listen: missing command")

    if config.log_debug and config.log_file:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    # 第三方库保持 WARNING，只对 root_relay 命名空间启用详细日志
    logging.basicConfig(level=logging.WARNING, handlers=[handler])
    logging.getLogger("root_relay").setLevel(log_level)
    logger.debug(f"Starting root-relay: {config}")

    sys.exit(asyncio.run(run_cli(args)))


if __name__ == "__main__":
    main()
