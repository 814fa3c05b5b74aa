"""Persisted system setting writer.

``SettingsPut`` runs the ``settings`` tool in the privileged context.
``put_setting_int()`` first tries an unprivileged writer and only falls
back to the privileged command when that writer is denied.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from ..config import fix_path
from ..errors import CommandFailedError, ProcessExitError
from ..runtime.session import ProcessSpec, run_process
from .base import RootCommandNoResult

if TYPE_CHECKING:
    from ..executor import CommandExecutor

__all__ = ["SettingsPut", "put_setting_int"]

logger = logging.getLogger(__name__)


class SettingsPut(RootCommandNoResult):
    """Run ``<program> put <namespace> <name> <value>``.

    Any output or a non-zero exit is a failure.

    Attributes:
        name: Setting name
        value: Setting value
        namespace: Settings table (global/secure/system)
        program: Tool invocation preceding the ``put`` arguments
    """

    name: str
    value: str
    namespace: str = "global"
    program: tuple[str, ...] = ("settings",)

    async def execute(self) -> None:
        spec = ProcessSpec(
            argv=(*self.program, "put", self.namespace, self.name, self.value),
            env=fix_path(),
        )
        result = await run_process(spec)
        output = "\n".join(text for text in (result.stdout, result.stderr) if text)
        if result.returncode != 0 or output:
            raise ProcessExitError(self.command_name, result.returncode, output)


async def put_setting_int(
    name: str,
    value: int,
    *,
    writer: Callable[[str, int], bool],
    executor: CommandExecutor,
    namespace: str = "global",
) -> None:
    """Write an integer setting, escalating only on a permission failure.

    Args:
        name: Setting name
        value: Setting value
        writer: Unprivileged writer; returns False if the write was rejected
            and raises PermissionError if the caller lacks the permission
        executor: Executor used for the privileged fallback
        namespace: Settings table

    Raises:
        CommandFailedError: If the unprivileged writer rejected the value
        RootRelayError: If the privileged fallback failed; chained to the
            original PermissionError
    """
    try:
        if not writer(name, value):
            raise CommandFailedError("SettingsPut", f"{namespace} setting {name} was not written")
    except PermissionError as e:
        logger.debug(f"Unprivileged write of {name} denied, escalating: {e}")
        try:
            await executor.execute(SettingsPut(name=name, value=str(value), namespace=namespace))
        except Exception as root_error:
            raise root_error from e
