from __future__ import annotations

from pathlib import Path
from typing import Optional


class ApkextError(RuntimeError):
    """Base class for every error reported to the command line."""


class ValidationError(ApkextError):
    """Bad input detected before any external tool was started."""


class ProjectMarkerNotFoundError(ValidationError):
    def __init__(self, *candidates: Path) -> None:
        self.candidates = tuple(candidates)
        joined = " or ".join(str(path) for path in self.candidates)
        super().__init__(f"apktool.yml not found in {joined}")


class ToolSpawnError(ApkextError):
    """The executable could not be started at all."""

    def __init__(self, executable: str, reason: str) -> None:
        self.executable = executable
        super().__init__(f"failed to run {executable}: {reason}")


class ToolInvocationError(ApkextError):
    """The tool ran and exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int, stderr: str = "") -> None:
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip()
        if detail:
            super().__init__(f"{tool} failed: {detail}")
        else:
            super().__init__(f"{tool} failed with exit code {returncode}")


class DexNotFoundError(ApkextError):
    def __init__(self, apk_path: Path, reason: Optional[str] = None) -> None:
        self.apk_path = apk_path
        message = f"DEX file not found in {apk_path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class AssetProvisioningError(ApkextError):
    """The tool cache could not be populated."""


class JavaRuntimeError(ApkextError):
    """No working Java runtime was found."""
