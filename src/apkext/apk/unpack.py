"""APK -> resources, classes.jar and decompiled sources.

Stages run strictly in order:

1. resources   apktool d into ``<root>/unpacked`` (required)
2. dex         classes.dex (or legacy class.dex) copied out of the zip
3. dex2jar     classes.dex -> classes.jar, the .dex is removed afterwards
4. decompile   Procyon over classes.jar into ``<root>/src``

Only a failure of stage 1 fails the unpack; later stages log a warning and
skip whatever depends on them.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..errors import ApkextError, DexNotFoundError, ToolSpawnError, ValidationError
from ..tools import Toolset, ToolConfiguration

logger = logging.getLogger(__name__)

APK_SUFFIX = ".apk"
UNPACKED_DIR = "unpacked"
SRC_DIR = "src"
DEX_NAME = "classes.dex"
LEGACY_DEX_NAME = "class.dex"
JAR_NAME = "classes.jar"

STAGE_RESOURCES = "resources"
STAGE_DEX = "dex"
STAGE_DEX2JAR = "dex2jar"
STAGE_DECOMPILE = "decompile"
STAGES = (STAGE_RESOURCES, STAGE_DEX, STAGE_DEX2JAR, STAGE_DECOMPILE)


@dataclass(frozen=True)
class UnpackTarget:
    apk_path: Path
    extract_dir: Path

    @classmethod
    def for_apk(cls, apk_path: Union[str, Path]) -> "UnpackTarget":
        apk_path = Path(apk_path)
        return cls(apk_path=apk_path, extract_dir=apk_path.with_suffix(""))

    @property
    def unpacked_dir(self) -> Path:
        return self.extract_dir / UNPACKED_DIR

    @property
    def dex_path(self) -> Path:
        return self.extract_dir / DEX_NAME

    @property
    def jar_path(self) -> Path:
        return self.extract_dir / JAR_NAME

    @property
    def src_dir(self) -> Path:
        return self.extract_dir / SRC_DIR


@dataclass
class StageResult:
    stage: str
    ok: bool
    skipped: bool = False
    detail: Optional[str] = None


@dataclass
class UnpackResult:
    target: UnpackTarget
    stages: List[StageResult] = field(default_factory=list)

    def stage(self, name: str) -> Optional[StageResult]:
        for item in self.stages:
            if item.stage == name:
                return item
        return None

    @property
    def ok(self) -> bool:
        resources = self.stage(STAGE_RESOURCES)
        return resources is not None and resources.ok

    @property
    def soft_failed(self) -> bool:
        return self.ok and any(not item.ok for item in self.stages)

    @property
    def hard_failed(self) -> bool:
        return not self.ok

    @property
    def error(self) -> Optional[str]:
        resources = self.stage(STAGE_RESOURCES)
        if resources is None or resources.ok:
            return None
        return resources.detail

    @property
    def warnings(self) -> List[str]:
        return [f"{item.stage}: {item.detail}" for item in self.stages if not item.ok and not item.skipped and item.detail]


def validate_apk(apk_path: Path) -> None:
    if apk_path.suffix != APK_SUFFIX:
        raise ValidationError(f"file must have {APK_SUFFIX} extension: {apk_path}")
    if not apk_path.is_file():
        raise ValidationError(f"APK file does not exist: {apk_path}")


def extract_resources(target: UnpackTarget, tools: Toolset) -> None:
    print("[+] Extracting resources")
    tools.apktool.invoke(["d", "-f", target.apk_path, "-o", target.unpacked_dir]).check(tools.apktool.name)


def _unzip_entry(apk_path: Path, entry: str, dest_dir: Path) -> bool:
    with zipfile.ZipFile(apk_path, "r") as apk_zip:
        try:
            info = apk_zip.getinfo(entry)
        except KeyError:
            return False
        dest_dir.mkdir(parents=True, exist_ok=True)
        with apk_zip.open(info) as src, (dest_dir / entry).open("wb") as dst:
            shutil.copyfileobj(src, dst)
    return True


def extract_dex(target: UnpackTarget) -> Path:
    """Copy classes.dex out of the archive, falling back to a legacy class.dex."""

    print(f"[+] Extracting {DEX_NAME}")
    try:
        if _unzip_entry(target.apk_path, DEX_NAME, target.extract_dir):
            return target.dex_path
        if _unzip_entry(target.apk_path, LEGACY_DEX_NAME, target.extract_dir):
            legacy = target.extract_dir / LEGACY_DEX_NAME
            legacy.replace(target.dex_path)
            return target.dex_path
    except (OSError, zipfile.BadZipFile) as exc:
        raise DexNotFoundError(target.apk_path, str(exc)) from exc
    raise DexNotFoundError(target.apk_path)


def convert_dex_to_jar(target: UnpackTarget, tools: Toolset) -> Path:
    print(f"[+] Converting {DEX_NAME} to jar")
    tools.dex2jar.invoke([target.dex_path, "-o", target.jar_path]).check(tools.dex2jar.name)
    # dex2jar reports some conversion errors with exit status 0
    if not target.jar_path.is_file():
        raise ApkextError(f"{tools.dex2jar.name} did not produce {target.jar_path}")
    target.dex_path.unlink()
    return target.jar_path


def decompile_jar(target: UnpackTarget, tools: Toolset) -> Path:
    print("[+] Decompiling jar files")
    if target.src_dir.exists():
        shutil.rmtree(target.src_dir)
    target.src_dir.mkdir(parents=True)
    tools.procyon.invoke(["-jar", target.jar_path, "-o", target.src_dir]).check(tools.procyon.name)
    return target.src_dir


def _prepare_extract_dir(target: UnpackTarget) -> None:
    if target.extract_dir.exists():
        print(f"[+] Removing existing directory '{target.extract_dir}'")
        shutil.rmtree(target.extract_dir)
    print(f"[+] Extracting under '{target.extract_dir}'")


def _best_effort(result: UnpackResult, stage: str, action) -> bool:
    try:
        action()
    except (ApkextError, OSError) as exc:
        logger.warning("%s stage failed: %s", stage, exc)
        result.stages.append(StageResult(stage=stage, ok=False, detail=str(exc)))
        return False
    result.stages.append(StageResult(stage=stage, ok=True))
    return True


def _skip(result: UnpackResult, stages, reason: str) -> None:
    for stage in stages:
        result.stages.append(StageResult(stage=stage, ok=False, skipped=True, detail=reason))


def unpack(
    apk_path: Union[str, Path],
    config: ToolConfiguration,
    *,
    tools: Optional[Toolset] = None,
) -> UnpackResult:
    """Unpack one APK next to itself and return the per-stage outcome.

    Raises ValidationError before touching the filesystem when the input is
    not an existing ``.apk`` file, and ToolSpawnError when apktool cannot be
    started at all.
    """

    target = UnpackTarget.for_apk(apk_path)
    validate_apk(target.apk_path)
    tools = tools or Toolset.from_config(config)
    result = UnpackResult(target=target)

    _prepare_extract_dir(target)

    try:
        extract_resources(target, tools)
    except ToolSpawnError:
        raise
    except ApkextError as exc:
        logger.error("resource extraction failed: %s", exc)
        result.stages.append(StageResult(stage=STAGE_RESOURCES, ok=False, detail=str(exc)))
        _skip(result, STAGES[1:], "resource extraction failed")
        return result
    result.stages.append(StageResult(stage=STAGE_RESOURCES, ok=True))

    if not _best_effort(result, STAGE_DEX, lambda: extract_dex(target)):
        _skip(result, (STAGE_DEX2JAR, STAGE_DECOMPILE), "no DEX payload")
    elif not _best_effort(result, STAGE_DEX2JAR, lambda: convert_dex_to_jar(target, tools)):
        _skip(result, (STAGE_DECOMPILE,), f"{JAR_NAME} was not produced")
    elif target.jar_path.is_file():
        _best_effort(result, STAGE_DECOMPILE, lambda: decompile_jar(target, tools))

    print("")
    print(f"[+] Resources and smali are in '{target.unpacked_dir}'")
    if target.src_dir.is_dir():
        print(f"[+] Decompiled classes in '{target.src_dir}'")
    return result
