import os
import subprocess
import sys
import time
import zipfile
from typing import Iterator, Mapping

import pytest

from apkext import __version__
from apkext.assets import AssetBundle, AssetProvisioner, default_cache_root, extract_from_jar
from apkext.assets.provisioner import LOCK_FILENAME, VERSION_MARKER, cache_lock, needs_exec_bit
from apkext.errors import AssetProvisioningError
from apkext.tools.platform import PlatformInfo

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
LINUX = PlatformInfo("linux", "x86_64")

JARS = {"apktool.jar": b"apktool-jar", "procyon-decompiler-v0.6.1.jar": b"procyon-jar"}
TOOLS = {
    "dex-tools-v2.4/d2j-dex2jar.sh": b"#!/bin/sh\nexec java -cp lib/* com.googlecode.dex2jar.tools.Dex2jarCmd \"$@\"\n",
    "dex-tools-v2.4/d2j-dex2jar.bat": b"@echo off\r\n",
    "dex-tools-v2.4/lib/dex-tools-2.4.jar": b"lib",
    "prebuilt/linux/aapt_64": b"\x7fELF",
    "prebuilt/windows/aapt.exe": b"MZ",
}


def make_bundle(jars=None, tools=None) -> AssetBundle:
    return AssetBundle(dict(JARS if jars is None else jars), dict(TOOLS if tools is None else tools))


def test_materialize_populates_cache(tmp_path):
    root = tmp_path / "cache"
    provisioner = AssetProvisioner(root, bundle=make_bundle(), version="1.2.3", progress=False)
    assert provisioner.needs_extraction()

    assert provisioner.materialize() == root
    assert (root / "jars" / "apktool.jar").read_bytes() == b"apktool-jar"
    assert (root / "jars" / "procyon-decompiler-v0.6.1.jar").read_bytes() == b"procyon-jar"
    assert (root / "dex-tools-v2.4" / "lib" / "dex-tools-2.4.jar").read_bytes() == b"lib"
    assert (root / "prebuilt" / "linux" / "aapt_64").exists()
    assert (root / "framework").is_dir()
    assert (root / VERSION_MARKER).read_text() == "1.2.3"
    assert not (root / LOCK_FILENAME).exists()
    assert not provisioner.needs_extraction()


@posix_only
def test_scripts_and_aapt_are_executable(tmp_path):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), progress=False).materialize()
    assert os.access(root / "dex-tools-v2.4" / "d2j-dex2jar.sh", os.X_OK)
    assert os.access(root / "prebuilt" / "linux" / "aapt_64", os.X_OK)
    assert not os.access(root / "dex-tools-v2.4" / "lib" / "dex-tools-2.4.jar", os.X_OK)


def test_current_cache_is_left_alone(tmp_path):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), version="1.2.3", progress=False).materialize()
    (root / "jars" / "apktool.jar").write_bytes(b"locally patched")

    AssetProvisioner(root, bundle=make_bundle(), version="1.2.3", progress=False).materialize()
    assert (root / "jars" / "apktool.jar").read_bytes() == b"locally patched"


def test_stale_version_triggers_full_reextraction(tmp_path):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), version="1.2.3", progress=False).materialize()
    (root / "jars" / "apktool.jar").write_bytes(b"old")
    (root / "prebuilt" / "linux" / "aapt_64").unlink()
    (root / VERSION_MARKER).write_text("0.0.1-old")

    provisioner = AssetProvisioner(root, bundle=make_bundle(), version="1.2.3", progress=False)
    assert provisioner.needs_extraction()
    provisioner.materialize()
    assert (root / "jars" / "apktool.jar").read_bytes() == b"apktool-jar"
    assert (root / "prebuilt" / "linux" / "aapt_64").exists()
    assert (root / VERSION_MARKER).read_text() == "1.2.3"


@pytest.mark.parametrize("damage", ["marker", "jar", "empty-marker"])
def test_incomplete_cache_needs_extraction(tmp_path, damage):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), progress=False).materialize()
    if damage == "marker":
        (root / VERSION_MARKER).unlink()
    elif damage == "jar":
        (root / "jars" / "procyon-decompiler-v0.6.1.jar").unlink()
    else:
        (root / VERSION_MARKER).write_text("  \n")
    assert AssetProvisioner(root, bundle=make_bundle(), progress=False).needs_extraction()


def test_marker_tolerates_trailing_newline(tmp_path):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), version="2.0.0", progress=False).materialize()
    (root / VERSION_MARKER).write_text("2.0.0\n")
    assert not AssetProvisioner(root, bundle=make_bundle(), version="2.0.0", progress=False).needs_extraction()


def test_default_version_is_package_version(tmp_path):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), progress=False).materialize()
    assert (root / VERSION_MARKER).read_text() == __version__


def test_bundle_without_jars_is_fatal(tmp_path):
    root = tmp_path / "cache"
    provisioner = AssetProvisioner(root, bundle=make_bundle(jars={}), progress=False)
    with pytest.raises(AssetProvisioningError, match="apkext-fetch-assets"):
        provisioner.materialize()
    assert not (root / VERSION_MARKER).exists()


class _ExplodingTree(Mapping):
    def __init__(self, payloads, broken):
        self._payloads = payloads
        self._broken = broken

    def __getitem__(self, key):
        if key == self._broken:
            raise OSError(28, "No space left on device")
        return self._payloads[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._payloads)

    def __len__(self):
        return len(self._payloads)


def test_interrupted_extraction_leaves_no_marker(tmp_path):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), version="1.0.0", progress=False).materialize()

    broken = AssetBundle(dict(JARS), _ExplodingTree(TOOLS, "prebuilt/linux/aapt_64"))
    with pytest.raises(AssetProvisioningError, match="No space left"):
        AssetProvisioner(root, bundle=broken, version="2.0.0", progress=False).materialize()

    assert not (root / VERSION_MARKER).exists()
    assert not (root / LOCK_FILENAME).exists()
    assert AssetProvisioner(root, bundle=make_bundle(), version="1.0.0", progress=False).needs_extraction()


def test_uncreatable_cache_dir_is_fatal(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(AssetProvisioningError, match="failed to create cache directory"):
        AssetProvisioner(blocker / "cache", bundle=make_bundle(), progress=False).materialize()


def test_ephemeral_cache_is_removed(tmp_path):
    with AssetProvisioner(bundle=make_bundle(), ephemeral=True, progress=False) as provisioner:
        root = provisioner.root
        assert (root / "jars" / "apktool.jar").exists()
    assert not root.exists()


@pytest.mark.parametrize("rel", ["dex-tools-v2.4/d2j-dex2jar.sh", "prebuilt/linux/aapt_64"])
def test_missing_platform_tool_is_restored(tmp_path, rel):
    root = tmp_path / "cache"
    provisioner = AssetProvisioner(root, bundle=make_bundle(), version="1.2.3", progress=False, platform_info=LINUX)
    provisioner.materialize()
    (root / rel).unlink()
    assert provisioner.needs_extraction()

    provisioner.materialize()
    assert (root / rel).read_bytes() == TOOLS[rel]
    assert not provisioner.needs_extraction()


def test_other_platform_tools_are_not_required(tmp_path):
    root = tmp_path / "cache"
    provisioner = AssetProvisioner(root, bundle=make_bundle(), version="1.2.3", progress=False, platform_info=LINUX)
    provisioner.materialize()
    (root / "prebuilt" / "windows" / "aapt.exe").unlink()
    (root / "dex-tools-v2.4" / "d2j-dex2jar.bat").unlink()
    assert not provisioner.needs_extraction()
    assert root / "prebuilt" / "linux" / "aapt_64" in provisioner.required_files()


def test_persistent_cleanup_keeps_cache(tmp_path):
    root = tmp_path / "cache"
    provisioner = AssetProvisioner(root, bundle=make_bundle(), progress=False)
    provisioner.materialize()
    provisioner.cleanup()
    assert (root / VERSION_MARKER).exists()


def test_paths(tmp_path):
    provisioner = AssetProvisioner(tmp_path, bundle=make_bundle(), progress=False)
    assert provisioner.jar_path("apktool.jar") == tmp_path / "jars" / "apktool.jar"
    assert provisioner.tool_path("prebuilt/linux/aapt") == tmp_path / "prebuilt" / "linux" / "aapt"
    assert provisioner.framework_dir == tmp_path / "framework"


def test_default_cache_root_honours_env(tmp_path):
    assert default_cache_root({"APKEXT_HOME": str(tmp_path / "home")}) == tmp_path / "home"
    assert default_cache_root({}).name == "apkext"


def test_stale_lock_is_broken(tmp_path):
    lock = tmp_path / LOCK_FILENAME
    lock.write_text("pid=1\n")
    old = time.time() - 3600
    os.utime(lock, (old, old))
    with cache_lock(tmp_path, stale_after_seconds=60):
        assert lock.exists()
    assert not lock.exists()


def _dead_pid() -> int:
    child = subprocess.Popen([sys.executable, "-c", "pass"])
    child.wait()
    return child.pid


@posix_only
def test_lock_of_dead_process_is_broken(tmp_path):
    root = tmp_path / "cache"
    AssetProvisioner(root, bundle=make_bundle(), version="1.0.0", progress=False).materialize()
    (root / LOCK_FILENAME).write_text(f"pid={_dead_pid()}\n")

    provisioner = AssetProvisioner(root, bundle=make_bundle(), version="2.0.0", progress=False)
    started = time.monotonic()
    provisioner.materialize()
    assert time.monotonic() - started < 60
    assert (root / VERSION_MARKER).read_text() == "2.0.0"
    assert not (root / LOCK_FILENAME).exists()


def test_held_lock_times_out(tmp_path):
    (tmp_path / LOCK_FILENAME).write_text("pid=1\n")
    with pytest.raises(AssetProvisioningError, match="timed out"):
        with cache_lock(tmp_path, timeout_seconds=0.0):
            pass


def test_extract_from_jar_matches_pattern(tmp_path):
    jar = tmp_path / "apktool.jar"
    with zipfile.ZipFile(jar, "w") as archive:
        archive.writestr("prebuilt/linux/aapt_64", b"\x7fELF")
        archive.writestr("prebuilt/macosx/aapt_64", b"\xcf\xfa\xed\xfe")
        archive.writestr("prebuilt/dex-tools/d2j-dex2jar.sh", b"#!/bin/sh\n")
        archive.writestr("prebuilt/dex-tools/lib/dex-tools.jar", b"lib")
        archive.writestr("brut/androlib/Main.class", b"\xca\xfe")
    extracted = extract_from_jar(jar, "prebuilt/*", tmp_path / "tools")
    assert sorted(p.relative_to(tmp_path / "tools").as_posix() for p in extracted) == [
        "prebuilt/dex-tools/d2j-dex2jar.sh",
        "prebuilt/dex-tools/lib/dex-tools.jar",
        "prebuilt/linux/aapt_64",
        "prebuilt/macosx/aapt_64",
    ]
    assert not (tmp_path / "tools" / "brut").exists()


@posix_only
def test_extract_from_jar_sets_exec_bits(tmp_path):
    jar = tmp_path / "apktool.jar"
    with zipfile.ZipFile(jar, "w") as archive:
        archive.writestr("prebuilt/linux/aapt_64", b"\x7fELF")
        archive.writestr("prebuilt/dex-tools/d2j-dex2jar.sh", b"#!/bin/sh\n")
        archive.writestr("prebuilt/dex-tools/lib/dex-tools.jar", b"lib")
    extract_from_jar(jar, "prebuilt/*", tmp_path / "tools")
    tools = tmp_path / "tools" / "prebuilt"
    assert os.access(tools / "linux" / "aapt_64", os.X_OK)
    assert os.access(tools / "dex-tools" / "d2j-dex2jar.sh", os.X_OK)
    assert not os.access(tools / "dex-tools" / "lib" / "dex-tools.jar", os.X_OK)


def test_extract_from_bad_jar(tmp_path):
    jar = tmp_path / "apktool.jar"
    jar.write_bytes(b"not a zip")
    with pytest.raises(AssetProvisioningError):
        extract_from_jar(jar, "prebuilt/*", tmp_path / "tools")


def test_bundle_from_directory(tmp_path):
    (tmp_path / "jars").mkdir()
    (tmp_path / "jars" / "apktool.jar").write_bytes(b"a")
    (tmp_path / "jars" / ".gitkeep").write_text("")
    (tmp_path / "tools" / "dex-tools-v2.4").mkdir(parents=True)
    (tmp_path / "tools" / "dex-tools-v2.4" / "d2j-dex2jar.sh").write_bytes(b"#!/bin/sh")
    bundle = AssetBundle.from_directory(tmp_path)
    assert list(bundle.jars) == ["apktool.jar"]
    assert bundle.tools["dex-tools-v2.4/d2j-dex2jar.sh"] == b"#!/bin/sh"
    assert len(bundle) == 2


def test_package_bundle_loads():
    bundle = AssetBundle.from_package()
    assert all(not name.endswith(".gitkeep") for name in bundle.tools)


@pytest.mark.parametrize(
    "rel, expected",
    [
        ("dex-tools-v2.4/d2j-dex2jar.sh", True),
        ("prebuilt/linux/aapt_64", True),
        ("prebuilt/windows/aapt.exe", True),
        ("dex-tools-v2.4/lib/asm.jar", False),
        ("dex-tools-v2.4/d2j-dex2jar.bat", False),
    ],
)
def test_needs_exec_bit(rel, expected):
    assert needs_exec_bit(rel) is expected
