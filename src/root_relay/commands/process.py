"""Streaming process listener command."""

from __future__ import annotations

from anyio.abc import TaskGroup
from pydantic import Field, field_validator

from ..runtime.events import TerminationPolicy
from ..runtime.session import EventStream, ProcessSpec, open_session
from .base import RootCommandChannel

__all__ = ["ProcessListener"]


class ProcessListener(RootCommandChannel):
    """Run ``argv`` and stream its stdout, stderr and exit code.

    Attributes:
        argv: Command line arguments
        policy: Stops the process once a stdout line matches
        capacity: Event buffer size (None = RR_CHANNEL_CAPACITY)
    """

    argv: tuple[str, ...]
    policy: TerminationPolicy = Field(default_factory=TerminationPolicy)
    capacity: int | None = Field(default=None, ge=1)

    @field_validator("argv")
    @classmethod
    def _validate_argv(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("argv must not be empty")
        return value

    async def create(self, task_group: TaskGroup) -> EventStream:
        return await open_session(
            task_group,
            ProcessSpec(argv=self.argv),
            self.policy,
            capacity=self.capacity,
        )
