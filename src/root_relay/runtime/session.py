"""Process session: one spawned process multiplexed into one event stream.

root-relay runtime module v0.1.0

This module provides:
- Process spawning in an isolated session/process group
- Three concurrent producers (stdout, stderr, exit) writing into one
  bounded memory object stream with backpressure
- Regex-triggered soft termination (TerminationPolicy)
- Cancel-safe, idempotent teardown (SIGTERM -> timeout -> SIGKILL)

Key design points:
- The three producers share one send stream, which is closed only after
  all of them finished and the process was reaped, so end-of-stream on
  the consumer side means the session is closed
- Writing into a stream the consumer already closed stops the producer
  silently; any other producer failure is logged and isolated
- Events of one producer keep their order; there is no ordering across
  producers, except that Exit is only sent once the process is gone
- Teardown runs shielded on every exit path and never returns while a
  producer is still running
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import anyio
from anyio.abc import ByteReceiveStream, Process, TaskGroup, TaskStatus
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from anyio.streams.text import TextReceiveStream

from ..config import get_config
from ..errors import CommandFailedError, SpawnError, collapse_exception_groups, is_benign_shutdown_error
from .events import Exit, ProcessEvent, StderrLine, StdoutLine, TerminationPolicy

__all__ = [
    "EventStream",
    "ProcessSession",
    "ProcessResult",
    "ProcessSpec",
    "iter_lines",
    "open_session",
    "run_process",
    "terminate_process",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Poll interval while waiting for a signalled process to exit
_EXIT_POLL_INTERVAL = 0.02

EventSendStream = MemoryObjectSendStream[ProcessEvent]
Producer = Callable[[EventSendStream], Awaitable[None]]


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
        stdin_bytes: Optional bytes written to stdin before reading starts
        encoding: Codec of the output lines; "latin-1" maps every byte to one
            character, so ``text.encode("latin-1")`` restores the raw bytes
        keep_line_endings: Keep "\\n" / "\\r\\n" at the end of each line
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None
    encoding: str = "utf-8"
    keep_line_endings: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "argv", tuple(self.argv))
        if not self.argv:
            raise ValueError("argv must not be empty")


async def iter_lines(
    stream: ByteReceiveStream,
    encoding: str = "utf-8",
    errors: str = "replace",
    keepends: bool = False,
) -> AsyncIterator[str]:
    """Yield decoded lines from a byte stream.

    Line terminators are stripped unless ``keepends`` is set. A trailing
    line without a newline is yielded at end of stream, as is.
    """
    pending = ""
    async for text in TextReceiveStream(stream, encoding=encoding, errors=errors):
        pending += text
        *lines, pending = pending.split("\n")
        for line in lines:
            yield (line + "\n") if keepends else line.removesuffix("\r")
    if pending:
        yield pending if keepends else pending.removesuffix("\r")


def _send_stop_signal(process: Process, *, force: bool) -> None:
    """Signal the whole process group (POSIX) or the process (Windows)."""
    if IS_WINDOWS:
        if force:
            process.kill()
        else:
            process.terminate()
        return

    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        # pgid == pid because of start_new_session
        pgid = os.getpgid(process.pid)
        os.killpg(pgid, sig)
        logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg failed, signalling pid={process.pid} directly: {e}")
        process.send_signal(sig)


async def _wait_exited(process: Process, timeout: float) -> bool:
    """Wait until the process has a return code; False on timeout.

    returncode is set by the child watcher even while the pipes are still
    open, unlike ``Process.wait()``.
    """
    with anyio.move_on_after(timeout):
        while process.returncode is None:
            await anyio.sleep(_EXIT_POLL_INTERVAL)
    return process.returncode is not None


async def terminate_process(
    process: Process,
    *,
    term_timeout: float,
    kill_timeout: float,
) -> None:
    """Terminate a process gracefully, then forcefully if needed.

    1. Send SIGTERM (terminate() on Windows)
    2. Wait up to term_timeout for exit
    3. Send SIGKILL (kill() on Windows)
    4. Wait up to kill_timeout for exit
    """
    pid = process.pid
    logger.debug(f"Terminating subprocess pid={pid}")

    try:
        _send_stop_signal(process, force=False)
        if await _wait_exited(process, term_timeout):
            logger.debug(f"Subprocess terminated gracefully pid={pid} returncode={process.returncode}")
            return

        logger.debug(f"Force killing subprocess pid={pid}")
        _send_stop_signal(process, force=True)
        if await _wait_exited(process, kill_timeout):
            logger.debug(f"Subprocess killed pid={pid} returncode={process.returncode}")
        else:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")

    except ProcessLookupError:
        logger.debug(f"Subprocess already exited pid={pid}")
    except OSError as e:
        logger.warning(f"Error terminating subprocess pid={pid}: {e}")


class ProcessSession:
    """Owner of one spawned process and its three output producers.

    The session is the only component that touches the process handle and
    the send side of the event stream. Consumers interact with the
    ``EventStream`` returned by ``open_session()``; the session itself only
    exposes read-only state (pid, returncode, producer count) and
    cancellation.

    Example:
        async with anyio.create_task_group() as tg:
            spec = ProcessSpec(argv=("logcat",))
            policy = TerminationPolicy(pattern="boot completed")
            async with await open_session(tg, spec, policy) as events:
                async for event in events:
                    handle(event)
    """

    def __init__(
        self,
        spec: ProcessSpec,
        policy: TerminationPolicy | None = None,
        *,
        term_timeout: float | None = None,
        kill_timeout: float | None = None,
    ) -> None:
        config = get_config()
        self.spec = spec
        self.policy = policy if policy is not None else TerminationPolicy.never()
        self.term_timeout = term_timeout if term_timeout is not None else config.term_timeout
        self.kill_timeout = kill_timeout if kill_timeout is not None else config.kill_timeout

        self._process: Process | None = None
        self._cancel_scope = anyio.CancelScope()
        self._closed = anyio.Event()
        self._close_callbacks: list[Callable[[], None]] = []
        self._live_producers = 0
        self._stop_requested = False
        self._torn_down = False

    def __repr__(self) -> str:
        return (
            f"ProcessSession(argv={self.spec.argv[0]}, pid={self.pid}, "
            f"returncode={self.returncode}, closed={self.closed})"
        )

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def live_producers(self) -> int:
        """Number of producer tasks that have not finished yet."""
        return self._live_producers

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def cancel_scope(self) -> anyio.CancelScope:
        return self._cancel_scope

    def cancel(self) -> None:
        """Request teardown; returns immediately, see ``wait_closed()``."""
        self._cancel_scope.cancel()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` once the session is closed (now, if it already is)."""
        if self.closed:
            callback()
        else:
            self._close_callbacks.append(callback)

    async def run(
        self,
        send_stream: EventSendStream,
        *,
        task_status: TaskStatus[ProcessSession] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        """Spawn the process and pump its output into ``send_stream``.

        Meant to be started with ``TaskGroup.start()``: spawn failures are
        raised from ``start()`` and no producer is started.
        """
        try:
            self._process = await self._spawn()
        except BaseException:
            send_stream.close()
            self._mark_closed()
            raise

        task_status.started(self)

        try:
            with self._cancel_scope:
                await self._feed_stdin()
                async with anyio.create_task_group() as tg:
                    for name, producer in (
                        ("stdout", self._pump_stdout),
                        ("stderr", self._pump_stderr),
                        ("exit", self._pump_exit),
                    ):
                        tg.start_soon(
                            self._produce, name, producer, send_stream,
                            name=f"{name}-producer-{self.pid}",
                        )
        finally:
            with anyio.CancelScope(shield=True):
                await self._teardown()
            # End of stream implies a closed session
            send_stream.close()

    async def _spawn(self) -> Process:
        kwargs: dict[str, Any] = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        try:
            process = await anyio.open_process(
                list(self.spec.argv),
                stdin=subprocess.PIPE if self.spec.stdin_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.spec.cwd,
                env=dict(self.spec.env) if self.spec.env is not None else None,
                **kwargs,
            )
        except OSError as e:
            logger.warning(f"Failed to start subprocess argv={self.spec.argv[0]}: {e}")
            raise SpawnError(self.spec.argv, str(e)) from e

        logger.debug(f"Started subprocess pid={process.pid} argv={self.spec.argv[0]}")
        return process

    async def _feed_stdin(self) -> None:
        assert self._process is not None
        stdin = self._process.stdin
        if self.spec.stdin_bytes is None or stdin is None:
            return
        try:
            await stdin.send(self.spec.stdin_bytes)
        except Exception as e:
            if not is_benign_shutdown_error(e):
                logger.warning(f"Failed to write stdin pid={self.pid}: {e!r}")
        finally:
            await stdin.aclose()

    async def _produce(self, name: str, producer: Producer, send_stream: EventSendStream) -> None:
        """Run one producer with per-producer error isolation."""
        self._live_producers += 1
        try:
            await producer(send_stream)
        except Exception as e:
            if is_benign_shutdown_error(e):
                logger.debug(f"{name} producer stopped on closed stream pid={self.pid}: {e!r}")
            else:
                logger.warning(f"{name} producer failed pid={self.pid}: {e!r}", exc_info=e)
        finally:
            self._live_producers -= 1

    def _iter_lines(self, stream: ByteReceiveStream) -> AsyncIterator[str]:
        return iter_lines(
            stream,
            encoding=self.spec.encoding,
            keepends=self.spec.keep_line_endings,
        )

    async def _pump_stdout(self, send_stream: EventSendStream) -> None:
        assert self._process is not None and self._process.stdout is not None
        async with aclosing(self._iter_lines(self._process.stdout)) as lines:
            async for line in lines:
                await send_stream.send(StdoutLine(text=line))
                if self.policy.matches(line):
                    self._request_stop(line)

    async def _pump_stderr(self, send_stream: EventSendStream) -> None:
        assert self._process is not None and self._process.stderr is not None
        async with aclosing(self._iter_lines(self._process.stderr)) as lines:
            async for line in lines:
                await send_stream.send(StderrLine(text=line))

    async def _pump_exit(self, send_stream: EventSendStream) -> None:
        assert self._process is not None
        code = await self._process.wait()
        logger.debug(f"Subprocess completed pid={self.pid} returncode={code}")
        await send_stream.send(Exit(code=code))

    def _request_stop(self, line: str) -> None:
        """Ask the process to stop; the stream still ends on the real exit."""
        if self._stop_requested or not self.is_alive:
            return
        self._stop_requested = True
        logger.debug(f"Termination pattern matched pid={self.pid}: {line!r}")
        assert self._process is not None
        try:
            _send_stop_signal(self._process, force=False)
        except ProcessLookupError:
            pass

    async def _teardown(self) -> None:
        """Terminate a live process and release its pipes. Idempotent."""
        if self._torn_down:
            return
        self._torn_down = True
        process = self._process
        try:
            if process is not None:
                if process.returncode is None:
                    await terminate_process(
                        process,
                        term_timeout=self.term_timeout,
                        kill_timeout=self.kill_timeout,
                    )
                for pipe in (process.stdin, process.stdout, process.stderr):
                    if pipe is None:
                        continue
                    try:
                        await pipe.aclose()
                    except Exception as e:
                        if not is_benign_shutdown_error(e):
                            logger.warning(f"Error closing pipe pid={process.pid}: {e!r}")
        finally:
            self._mark_closed()

    def _mark_closed(self) -> None:
        self._closed.set()
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Error in session close callback: {e}")


class EventStream:
    """Consumer side of a process session.

    Iterates ``ProcessEvent`` items until every producer of the session has
    finished. Closing the stream (``aclose()`` or leaving ``async with``)
    tears the session down.
    """

    def __init__(self, receive_stream: MemoryObjectReceiveStream[ProcessEvent], session: ProcessSession) -> None:
        self._receive_stream = receive_stream
        self.session = session

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> ProcessEvent:
        try:
            return await self._receive_stream.receive()
        except anyio.EndOfStream:
            raise StopAsyncIteration from None

    async def receive(self) -> ProcessEvent:
        """Receive the next event; raises ``anyio.EndOfStream`` at the end."""
        return await self._receive_stream.receive()

    async def aclose(self) -> None:
        self.session.cancel()
        await self._receive_stream.aclose()

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


async def open_session(
    task_group: TaskGroup,
    spec: ProcessSpec,
    policy: TerminationPolicy | None = None,
    *,
    capacity: int | None = None,
    term_timeout: float | None = None,
    kill_timeout: float | None = None,
) -> EventStream:
    """Spawn ``spec`` in ``task_group`` and return its event stream.

    The process is running when this returns. Cancelling ``task_group``
    (or closing the returned stream) tears the session down.

    Raises:
        SpawnError: If the process could not be started
    """
    if capacity is None:
        capacity = get_config().channel_capacity
    send_stream, receive_stream = anyio.create_memory_object_stream(max(1, capacity))
    session = ProcessSession(
        spec,
        policy,
        term_timeout=term_timeout,
        kill_timeout=kill_timeout,
    )
    try:
        await task_group.start(session.run, send_stream, name=f"session-{spec.argv[0]}")
    except BaseException:
        receive_stream.close()
        raise
    return EventStream(receive_stream, session)


@dataclass(frozen=True)
class ProcessResult:
    """Collected output of a finished process."""

    stdout: str
    stderr: str
    returncode: int


async def run_process(spec: ProcessSpec) -> ProcessResult:
    """Run a process to completion and collect its output.

    Convenience wrapper over ``open_session()`` for one-shot commands that
    do not need streaming.
    """
    stdout: list[str] = []
    stderr: list[str] = []
    returncode: int | None = None

    with collapse_exception_groups():
        async with anyio.create_task_group() as tg:
            async with await open_session(tg, spec) as events:
                async for event in events:
                    if isinstance(event, StdoutLine):
                        stdout.append(event.text)
                    elif isinstance(event, StderrLine):
                        stderr.append(event.text)
                    else:
                        returncode = event.code

    if returncode is None:
        raise CommandFailedError(spec.argv[0], "exit status of the process was not observed")
    return ProcessResult(
        stdout="\n".join(stdout),
        stderr="\n".join(stderr),
        returncode=returncode,
    )
