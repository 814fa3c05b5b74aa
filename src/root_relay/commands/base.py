"""Command protocol.

root-relay commands v0.1.0

A privileged operation is an immutable, serializable descriptor with one
of two shapes:

- RootCommand[T]: ``execute()`` once in the privileged context and return
  a single value (or raise)
- RootCommandChannel: ``create(task_group)`` a live ``EventStream`` backed
  by a process session

Concrete commands differ only in parameters and in post-processing of the
raw output, never in the execution contract.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Generic, TypeVar

from anyio.abc import TaskGroup
from pydantic import BaseModel, ConfigDict

from ..runtime.session import EventStream

__all__ = [
    "CommandBase",
    "RootCommand",
    "RootCommandNoResult",
    "RootCommandChannel",
]

ResultT = TypeVar("ResultT")


class CommandBase(BaseModel):
    """Common base of all command descriptors."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def command_name(self) -> str:
        return type(self).__name__


class RootCommand(CommandBase, Generic[ResultT]):
    """Request/response command.

    ``execute()`` must be deterministic given the descriptor's fields and
    must not keep state between invocations.
    """

    @abstractmethod
    async def execute(self) -> ResultT:
        ...


class RootCommandNoResult(RootCommand[None]):
    """Request/response command without a result value."""


class RootCommandChannel(CommandBase):
    """Streaming command.

    ``create()`` spawns the backing process before returning; the stream is
    cancelled by cancelling ``task_group`` or by closing the stream.
    """

    @abstractmethod
    async def create(self, task_group: TaskGroup) -> EventStream:
        ...
