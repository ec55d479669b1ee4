"""External tool collaborators and the process runner behind them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from .apktool_backend import Apktool
from .config import ToolConfiguration, load_configuration
from .dex2jar_backend import Dex2Jar
from .procyon_backend import Procyon
from .runner import Arg, RunOutcome


class Tool(Protocol):
    name: str

    def invoke(self, arguments: Sequence[Arg]) -> RunOutcome: ...


@dataclass(frozen=True)
class Toolset:
    apktool: Tool
    dex2jar: Tool
    procyon: Tool

    @classmethod
    def from_config(cls, config: ToolConfiguration) -> "Toolset":
        return cls(apktool=Apktool(config), dex2jar=Dex2Jar(config), procyon=Procyon(config))


__all__ = [
    "Apktool",
    "Dex2Jar",
    "Procyon",
    "RunOutcome",
    "Tool",
    "ToolConfiguration",
    "Toolset",
    "load_configuration",
]
