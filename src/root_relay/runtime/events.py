"""Process event model and termination policy.

Every unit of observable process activity is one of three immutable events:

- StdoutLine: one decoded line from standard output
- StderrLine: one decoded line from standard error
- Exit: the final exit code (negative signal number if killed by a signal)

Events carry a ``kind`` discriminator so they can be dumped to JSON and
validated back with ``PROCESS_EVENT_ADAPTER``.
"""

from __future__ import annotations

import re
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

__all__ = [
    "ProcessEventBase",
    "StdoutLine",
    "StderrLine",
    "Exit",
    "ProcessEvent",
    "PROCESS_EVENT_ADAPTER",
    "TerminationPolicy",
]


class ProcessEventBase(BaseModel):
    """Base class of all process events."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class StdoutLine(ProcessEventBase):
    kind: Literal["stdout"] = "stdout"
    text: str


class StderrLine(ProcessEventBase):
    kind: Literal["stderr"] = "stderr"
    text: str


class Exit(ProcessEventBase):
    kind: Literal["exit"] = "exit"
    code: int


ProcessEvent = Annotated[
    Union[StdoutLine, StderrLine, Exit],
    Field(discriminator="kind"),
]

PROCESS_EVENT_ADAPTER: TypeAdapter[ProcessEvent] = TypeAdapter(ProcessEvent)


class TerminationPolicy(BaseModel):
    """Regex test that asks a running process to stop.

    The pattern is searched (not full-matched) in each stdout line. An empty
    pattern never matches, so ``TerminationPolicy()`` disables early
    termination.

    Attributes:
        pattern: Regular expression searched in every stdout line
    """

    model_config = ConfigDict(frozen=True)

    pattern: str = ""

    @field_validator("pattern")
    @classmethod
    def _validate_pattern(cls, value: str) -> str:
        if value:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid termination pattern {value!r}: {e}") from e
        return value

    @classmethod
    def never(cls) -> "TerminationPolicy":
        return cls()

    @property
    def enabled(self) -> bool:
        return bool(self.pattern)

    def matches(self, line: str) -> bool:
        """Return True if ``line`` should trigger a termination request."""
        if not self.pattern:
            return False
        return re.search(self.pattern, line) is not None
