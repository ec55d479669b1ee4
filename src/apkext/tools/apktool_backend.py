from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Sequence

from . import runner
from .config import ToolConfiguration
from .runner import Arg, RunOutcome


def build_apktool_args(apktool_jar: Path, framework_dir: Path, arguments: Sequence[Arg]) -> List[Arg]:
    """Place --frame-path right after the apktool sub-command (d, b, ...)."""

    args: List[Arg] = ["-jar", apktool_jar]
    if arguments:
        args.append(arguments[0])
        args += ["--frame-path", framework_dir]
        args += list(arguments[1:])
    else:
        args += ["--frame-path", framework_dir]
    return args


class Apktool:
    name = "apktool"

    def __init__(self, config: ToolConfiguration, run: Callable[..., RunOutcome] = runner.run) -> None:
        self._config = config
        self._run = run

    def invoke(self, arguments: Sequence[Arg]) -> RunOutcome:
        self._config.framework_dir.mkdir(parents=True, exist_ok=True)
        args = build_apktool_args(self._config.apktool_jar, self._config.framework_dir, arguments)
        return self._run(self._config.java_path, args)
