from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, TextIO, Union

from ..errors import ToolInvocationError, ToolSpawnError

logger = logging.getLogger(__name__)

Arg = Union[str, Path]


@dataclass(frozen=True)
class RunOutcome:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self, tool: str) -> "RunOutcome":
        """Raise ToolInvocationError unless the process exited with status 0."""

        if not self.ok:
            raise ToolInvocationError(tool, self.returncode, self.stderr)
        return self


def build_command(executable: Arg, arguments: Sequence[Arg]) -> List[str]:
    return [str(executable), *(str(arg) for arg in arguments)]


def run(executable: Arg, arguments: Sequence[Arg], *, echo: TextIO | None = None) -> RunOutcome:
    """Run one external program to completion and capture its output.

    On success the captured stdout is echoed to ``echo`` (``sys.stdout`` by
    default) so the user sees the tool's own progress lines.
    """

    cmd = build_command(executable, arguments)
    logger.info("RUN: %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            check=False,
        )
    except FileNotFoundError as exc:
        raise ToolSpawnError(cmd[0], "executable not found") from exc
    except PermissionError as exc:
        raise ToolSpawnError(cmd[0], "permission denied") from exc
    except OSError as exc:
        raise ToolSpawnError(cmd[0], str(exc)) from exc

    outcome = RunOutcome(proc.returncode, proc.stdout or "", proc.stderr or "")
    if outcome.ok:
        if outcome.stdout:
            stream = echo if echo is not None else sys.stdout
            stream.write(outcome.stdout)
            stream.flush()
    else:
        logger.info("exit code %d from %s", outcome.returncode, cmd[0])
    return outcome
