from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..errors import ProjectMarkerNotFoundError, ValidationError
from ..tools import Toolset, ToolConfiguration
from .unpack import APK_SUFFIX, UNPACKED_DIR

logger = logging.getLogger(__name__)

PROJECT_MARKER = "apktool.yml"


@dataclass(frozen=True)
class PackResult:
    project_dir: Path
    output_apk: Path


def find_project_dir(source_dir: Path) -> Path:
    """Return the directory holding apktool.yml: ``<source>/unpacked`` first, then ``<source>``."""

    nested = source_dir / UNPACKED_DIR
    if (nested / PROJECT_MARKER).is_file():
        return nested
    if (source_dir / PROJECT_MARKER).is_file():
        return source_dir
    raise ProjectMarkerNotFoundError(source_dir, nested)


def pack(
    source_dir: Union[str, Path],
    output_apk: Union[str, Path],
    config: ToolConfiguration,
    *,
    tools: Optional[Toolset] = None,
) -> PackResult:
    """Rebuild an APK from an unpacked directory with apktool b."""

    source_dir = Path(source_dir)
    output_apk = Path(output_apk)

    if not source_dir.is_dir():
        raise ValidationError(f"unpacked directory does not exist: {source_dir}")
    if output_apk.suffix != APK_SUFFIX:
        raise ValidationError(f"output file must have {APK_SUFFIX} extension")
    project_dir = find_project_dir(source_dir)

    tools = tools or Toolset.from_config(config)
    print(f"[+] Building APK from '{source_dir}' to '{output_apk}'")
    logger.info("project=%s aapt=%s", project_dir, config.aapt_path)

    tools.apktool.invoke(
        ["b", "-aapt", config.aapt_path, project_dir, "-o", output_apk]
    ).check(tools.apktool.name)
    return PackResult(project_dir=project_dir, output_apk=output_apk)
