"""Privileged command descriptors."""

from __future__ import annotations

from .base import CommandBase, RootCommand, RootCommandChannel, RootCommandNoResult
from .diagnostics import DEFAULT_DUMP_SECTIONS, Dump, ReadArp
from .process import ProcessListener
from .settings import SettingsPut, put_setting_int
from .tethering import (
    StartTethering,
    StopTethering,
    TetheringCallback,
    TetheringService,
    get_tethering_service,
    set_tethering_service,
)

__all__ = [
    "CommandBase",
    "DEFAULT_DUMP_SECTIONS",
    "Dump",
    "ProcessListener",
    "ReadArp",
    "RootCommand",
    "RootCommandChannel",
    "RootCommandNoResult",
    "SettingsPut",
    "StartTethering",
    "StopTethering",
    "TetheringCallback",
    "TetheringService",
    "get_tethering_service",
    "put_setting_int",
    "set_tethering_service",
]
