from __future__ import annotations

from typing import Callable, Sequence

from . import runner
from .config import ToolConfiguration
from .runner import Arg, RunOutcome


class Procyon:
    name = "procyon"

    def __init__(self, config: ToolConfiguration, run: Callable[..., RunOutcome] = runner.run) -> None:
        self._config = config
        self._run = run

    def invoke(self, arguments: Sequence[Arg]) -> RunOutcome:
        return self._run(self._config.java_path, ["-jar", self._config.procyon_jar, *arguments])
