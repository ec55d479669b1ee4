from __future__ import annotations

from typing import Callable, Sequence

from . import runner
from .config import ToolConfiguration
from .runner import Arg, RunOutcome


class Dex2Jar:
    """d2j-dex2jar launcher; the .sh script runs through bash, the .bat directly."""

    name = "dex2jar"

    def __init__(self, config: ToolConfiguration, run: Callable[..., RunOutcome] = runner.run) -> None:
        self._config = config
        self._run = run

    def invoke(self, arguments: Sequence[Arg]) -> RunOutcome:
        script = self._config.dex2jar_script
        if self._config.platform.is_windows:
            return self._run(script, list(arguments))
        return self._run("bash", [script, *arguments])
