"""Runtime module for privileged process supervision.

This module provides the process session engine: spawning, output
multiplexing into typed events, and cancellation-safe teardown.
"""

from __future__ import annotations

from .events import (
    PROCESS_EVENT_ADAPTER,
    Exit,
    ProcessEvent,
    StderrLine,
    StdoutLine,
    TerminationPolicy,
)
from .session import EventStream, ProcessResult, ProcessSession, ProcessSpec, open_session, run_process

__all__ = [
    "EventStream",
    "Exit",
    "PROCESS_EVENT_ADAPTER",
    "ProcessEvent",
    "ProcessResult",
    "ProcessSession",
    "ProcessSpec",
    "StderrLine",
    "StdoutLine",
    "TerminationPolicy",
    "open_session",
    "run_process",
]
