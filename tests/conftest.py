from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from apkext.tools import Toolset
from apkext.tools.config import JavaRuntime, ToolConfiguration, build_configuration
from apkext.tools.platform import PlatformInfo
from apkext.tools.runner import RunOutcome

VALID_DEX = b"dex\n035\x00" + b"\x00" * 64
MANIFEST = (
    '<?xml version="1.0" encoding="utf-8"?>\n'
    '<manifest xmlns:android="http://schemas.android.com/apk/res/android" '
    'package="io.example.sample" android:versionCode="1" android:versionName="1.0">\n'
    '    <application android:label="sample"/>\n'
    "</manifest>\n"
)


def write_apk(path: Path, entries: Dict[str, bytes]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return path


@pytest.fixture
def make_apk(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str = "sample.apk", *, dex_name: Optional[str] = "classes.dex", dex: bytes = VALID_DEX) -> Path:
        entries = {"AndroidManifest.xml": MANIFEST.encode("utf-8"), "resources.arsc": b"\x02\x00\x0c\x00"}
        if dex_name:
            entries[dex_name] = dex
        return write_apk(tmp_path / name, entries)

    return _make


@pytest.fixture
def config(tmp_path: Path) -> ToolConfiguration:
    return build_configuration(
        tmp_path / "cache",
        JavaRuntime(java_path="java"),
        PlatformInfo("linux", "x86_64"),
    )


class FakeTool:
    def __init__(self, name: str, behavior: Callable[[List[str]], RunOutcome]) -> None:
        self.name = name
        self.behavior = behavior
        self.calls: List[List[str]] = []

    def invoke(self, arguments: Sequence) -> RunOutcome:
        args = [str(arg) for arg in arguments]
        self.calls.append(args)
        return self.behavior(args)


def _option(args: List[str], flag: str) -> Path:
    return Path(args[args.index(flag) + 1])


def fake_apktool(args: List[str]) -> RunOutcome:
    if args[0] == "d":
        apk, out = Path(args[-3]), _option(args, "-o")
        with zipfile.ZipFile(apk) as archive:
            manifest = archive.read("AndroidManifest.xml")
        out.mkdir(parents=True, exist_ok=True)
        (out / "AndroidManifest.xml").write_bytes(manifest)
        (out / "apktool.yml").write_text("version: 2.12.1\napkFileName: sample.apk\n", encoding="utf-8")
        return RunOutcome(0, "I: Using Apktool 2.12.1\n", "")
    if args[0] == "b":
        out = _option(args, "-o")
        project = Path(args[args.index("-o") - 1])
        with zipfile.ZipFile(out, "w") as archive:
            archive.write(project / "AndroidManifest.xml", "AndroidManifest.xml")
            archive.writestr("classes.dex", VALID_DEX)
        return RunOutcome(0, "I: Built apk\n", "")
    return RunOutcome(1, "", f"unknown command {args[0]}")


def fake_dex2jar(args: List[str]) -> RunOutcome:
    dex, jar = Path(args[0]), _option(args, "-o")
    if not dex.read_bytes().startswith(b"dex\n"):
        return RunOutcome(1, "", "com.googlecode.d2j.DexException: not support version.")
    with zipfile.ZipFile(jar, "w") as archive:
        archive.writestr("io/example/sample/MainActivity.class", b"\xca\xfe\xba\xbe")
    return RunOutcome(0, "dex2jar classes.dex -> classes.jar\n", "")


def fake_procyon(args: List[str]) -> RunOutcome:
    out = _option(args, "-o")
    target = out / "io" / "example" / "sample" / "MainActivity.java"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text("package io.example.sample;\n\npublic class MainActivity {}\n", encoding="utf-8")
    return RunOutcome(0, "Decompiling io/example/sample/MainActivity...\n", "")


def failing(stderr: str, returncode: int = 1) -> Callable[[List[str]], RunOutcome]:
    return lambda args: RunOutcome(returncode, "", stderr)


@pytest.fixture
def fake_tools() -> Toolset:
    return Toolset(
        apktool=FakeTool("apktool", fake_apktool),
        dex2jar=FakeTool("dex2jar", fake_dex2jar),
        procyon=FakeTool("procyon", fake_procyon),
    )
