"""Read-only diagnostic commands.

- Dump: append the output of a fixed set of inspection commands to a file
- ReadArp: return the kernel neighbor table
"""

from __future__ import annotations

import logging

import anyio

from ..config import fix_path
from ..errors import collapse_exception_groups
from ..runtime.events import Exit
from ..runtime.session import ProcessSpec, open_session
from .base import RootCommand, RootCommandNoResult

__all__ = ["DEFAULT_DUMP_SECTIONS", "Dump", "ReadArp", "build_dump_script"]

logger = logging.getLogger(__name__)

DEFAULT_DUMP_SECTIONS: tuple[str, ...] = (
    "ip rule",
    "ip neigh",
    "iptables-save -t filter",
    "iptables-save -t nat",
    "ip6tables-save",
    "iptables -nvx -L FORWARD",
    "sysctl net.ipv4.ip_forward net.ipv6.conf.all.forwarding",
    "dmesg",
)


def build_dump_script(sections: tuple[str, ...]) -> str:
    """Build the shell script run by ``Dump``.

    Every section is preceded by an ``echo`` of itself and sections are
    separated by an empty line. The last section is not followed by a
    separator, so its exit code becomes the shell's. stderr is merged into
    stdout so the file keeps the order the shell produced.
    """
    lines = ["exec 2>&1"]
    for i, command in enumerate(sections):
        if i:
            lines.append("echo")
        lines += [f"echo {command}", command]
    return "\n".join(lines) + "\n"


class Dump(RootCommandNoResult):
    """Append diagnostic output to ``path``.

    The file is opened for append and never truncated. The shell output is
    copied byte for byte. A non-zero exit of the shell is recorded as a
    trailing ``Process exited with <code>`` marker instead of failing the
    command.

    Attributes:
        path: Output file
        sections: Shell commands to run, in order
        shell: Shell executable reading the script from stdin
    """

    path: str
    sections: tuple[str, ...] = DEFAULT_DUMP_SECTIONS
    shell: str = "sh"

    async def execute(self) -> None:
        spec = ProcessSpec(
            argv=(self.shell,),
            env=fix_path(),
            stdin_bytes=build_dump_script(self.sections).encode(),
            encoding="latin-1",
            keep_line_endings=True,
        )
        exit_code: int | None = None

        async with await anyio.open_file(self.path, "ab") as out:
            with collapse_exception_groups():
                async with anyio.create_task_group() as tg:
                    async with await open_session(tg, spec) as events:
                        async for event in events:
                            if isinstance(event, Exit):
                                exit_code = event.code
                            else:
                                await out.write(event.text.encode("latin-1"))

            if exit_code:
                logger.info(f"Dump shell exited with {exit_code}")
                await out.write(f"Process exited with {exit_code}".encode())


class ReadArp(RootCommand[str]):
    """Return the contents of the kernel ARP table."""

    path: str = "/proc/net/arp"

    async def execute(self) -> str:
        return await anyio.Path(self.path).read_text()
