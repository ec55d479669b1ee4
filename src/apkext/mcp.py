"""Model Context Protocol front end.

Only the tool handlers exist so far; ``Server.run`` announces readiness and
returns without speaking the protocol. A transport can dispatch
``unpack_apk`` / ``pack_apk`` calls to ``handle_unpack`` / ``handle_pack``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from . import __version__
from .apk import pack, unpack
from .errors import ApkextError, ValidationError
from .tools import ToolConfiguration, Toolset

logger = logging.getLogger(__name__)

SERVER_NAME = "apkext"


@dataclass(frozen=True)
class ToolCallResult:
    text: str
    is_error: bool = False


def _absolute(value: str, cwd: Optional[Path] = None) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return (cwd or Path(os.getcwd())) / path


def _required(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"missing required argument: {key}")
    return value


def handle_unpack(
    args: Mapping[str, Any],
    config: ToolConfiguration,
    *,
    tools: Optional[Toolset] = None,
    cwd: Optional[Path] = None,
) -> ToolCallResult:
    try:
        apk_path = _absolute(_required(args, "apk_path"), cwd)
        result = unpack(apk_path, config, tools=tools)
    except (ApkextError, OSError) as exc:
        return ToolCallResult(str(exc), is_error=True)
    if not result.ok:
        return ToolCallResult(f"Failed to unpack APK: {result.error}", is_error=True)

    root = result.target.extract_dir
    lines = [
        f"Successfully unpacked {apk_path}",
        "",
        "Extracted to:",
        f"- Resources and smali: {root / 'unpacked'}/",
        f"- Decompiled Java source: {root / 'src'}/",
        f"- Converted JAR: {root / 'classes.jar'}",
    ]
    if result.warnings:
        lines += ["", "Warnings:"] + [f"- {item}" for item in result.warnings]
    return ToolCallResult("\n".join(lines))


def handle_pack(
    args: Mapping[str, Any],
    config: ToolConfiguration,
    *,
    tools: Optional[Toolset] = None,
    cwd: Optional[Path] = None,
) -> ToolCallResult:
    try:
        unpacked_dir = _absolute(_required(args, "unpacked_dir"), cwd)
        output_apk = _absolute(_required(args, "output_apk"), cwd)
        pack(unpacked_dir, output_apk, config, tools=tools)
    except (ApkextError, OSError) as exc:
        return ToolCallResult(f"Failed to pack APK: {exc}", is_error=True)
    return ToolCallResult(f"Successfully packed APK: {output_apk}")


class Server:
    def __init__(self, config: ToolConfiguration) -> None:
        self.config = config
        self.handlers: Dict[str, Callable[..., ToolCallResult]] = {
            "unpack_apk": handle_unpack,
            "pack_apk": handle_pack,
        }

    def call(self, name: str, args: Mapping[str, Any]) -> ToolCallResult:
        handler = self.handlers.get(name)
        if handler is None:
            return ToolCallResult(f"unknown tool: {name}", is_error=True)
        return handler(args, self.config)

    def run(self) -> int:
        print(f"MCP server {SERVER_NAME} {__version__} starting with Java: {self.config.java_path}")
        print("Tools: " + ", ".join(sorted(self.handlers)))
        print("MCP protocol transport is not implemented yet")
        return 0
