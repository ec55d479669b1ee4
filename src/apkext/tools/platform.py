from __future__ import annotations

import platform
from dataclasses import dataclass
from typing import Dict, Tuple

DEFAULT_AAPT_PATH = "prebuilt/linux/aapt_64"

# (os, arch) -> aapt binary relative to the cache root; "*" matches any arch.
_AAPT_TABLE: Dict[Tuple[str, str], str] = {
    ("linux", "x86_64"): "prebuilt/linux/aapt_64",
    ("linux", "*"): "prebuilt/linux/aapt",
    ("macos", "*"): "prebuilt/macosx/aapt_64",
    ("windows", "x86_64"): "prebuilt/windows/aapt_64.exe",
    ("windows", "*"): "prebuilt/windows/aapt.exe",
}

DEX2JAR_DIR = "dex-tools-v2.4"


@dataclass(frozen=True)
class PlatformInfo:
    os_name: str
    arch: str

    @property
    def is_windows(self) -> bool:
        return self.os_name == "windows"


def normalize_os(system: str) -> str:
    value = system.lower()
    if value == "darwin":
        return "macos"
    if value.startswith(("win", "cygwin", "msys")):
        return "windows"
    return value


def normalize_arch(machine: str) -> str:
    value = machine.lower()
    if value in {"x86_64", "amd64", "x64"}:
        return "x86_64"
    if value in {"arm64", "aarch64"}:
        return "arm64"
    return value


def current_platform() -> PlatformInfo:
    return PlatformInfo(normalize_os(platform.system()), normalize_arch(platform.machine()))


def resolve_aapt_path(os_name: str, arch: str) -> str:
    """Return the prebuilt aapt path for a platform; unknown platforms get the linux 64-bit binary."""

    os_name = normalize_os(os_name)
    arch = normalize_arch(arch)
    exact = _AAPT_TABLE.get((os_name, arch))
    if exact is not None:
        return exact
    return _AAPT_TABLE.get((os_name, "*"), DEFAULT_AAPT_PATH)


def resolve_dex2jar_script(os_name: str) -> str:
    script = "d2j-dex2jar.bat" if normalize_os(os_name) == "windows" else "d2j-dex2jar.sh"
    return f"{DEX2JAR_DIR}/{script}"
