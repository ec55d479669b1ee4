from __future__ import annotations

import io
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from ..errors import JavaRuntimeError, ToolSpawnError
from . import runner
from .platform import PlatformInfo, current_platform, resolve_aapt_path, resolve_dex2jar_script

logger = logging.getLogger(__name__)

APKTOOL_JAR = "apktool.jar"
PROCYON_JAR = "procyon-decompiler-v0.6.1.jar"
JARS_DIR = "jars"
FRAMEWORK_DIR = "framework"


@dataclass(frozen=True)
class JavaRuntime:
    java_path: str
    java_home: Optional[str] = None


@dataclass(frozen=True)
class ToolConfiguration:
    """Resolved locations of every external tool used by the pipelines."""

    java_path: str
    java_home: Optional[str]
    apktool_jar: Path
    procyon_jar: Path
    aapt_path: Path
    dex2jar_script: Path
    framework_dir: Path
    platform: PlatformInfo


def _java_responds(java_path: str) -> bool:
    try:
        outcome = runner.run(java_path, ["-version"], echo=io.StringIO())
    except ToolSpawnError as exc:
        logger.info("java version check failed: %s", exc)
        return False
    return outcome.ok


def detect_java(environ: Optional[Mapping[str, str]] = None, platform_info: Optional[PlatformInfo] = None) -> JavaRuntime:
    """Locate a working java: $JAVA_HOME/bin first, then the command search path."""

    environ = os.environ if environ is None else environ
    platform_info = platform_info or current_platform()
    java_home = environ.get("JAVA_HOME") or None
    exe_name = "java.exe" if platform_info.is_windows else "java"

    candidates = []
    if java_home:
        home_java = Path(java_home) / "bin" / exe_name
        if home_java.is_file():
            candidates.append(str(home_java))
        else:
            logger.info("JAVA_HOME is set but %s does not exist", home_java)

    on_path = shutil.which("java", path=environ.get("PATH"))
    if on_path:
        candidates.append(on_path)

    for candidate in candidates:
        if _java_responds(candidate):
            return JavaRuntime(java_path=candidate, java_home=java_home)

    raise JavaRuntimeError(
        "Java runtime not found: install Java or set JAVA_HOME"
        + (f" (tried: {', '.join(candidates)})" if candidates else "")
    )


def build_configuration(cache_root: Path, java: JavaRuntime, platform_info: Optional[PlatformInfo] = None) -> ToolConfiguration:
    platform_info = platform_info or current_platform()
    cache_root = Path(cache_root)
    return ToolConfiguration(
        java_path=java.java_path,
        java_home=java.java_home,
        apktool_jar=cache_root / JARS_DIR / APKTOOL_JAR,
        procyon_jar=cache_root / JARS_DIR / PROCYON_JAR,
        aapt_path=cache_root / resolve_aapt_path(platform_info.os_name, platform_info.arch),
        dex2jar_script=cache_root / resolve_dex2jar_script(platform_info.os_name),
        framework_dir=cache_root / FRAMEWORK_DIR,
        platform=platform_info,
    )


def load_configuration(
    cache_root: Path,
    *,
    environ: Optional[Mapping[str, str]] = None,
    platform_info: Optional[PlatformInfo] = None,
) -> ToolConfiguration:
    """Build the configuration snapshot for one run."""

    platform_info = platform_info or current_platform()
    java = detect_java(environ, platform_info)
    config = build_configuration(cache_root, java, platform_info)
    logger.info("java=%s aapt=%s", config.java_path, config.aapt_path)
    return config
