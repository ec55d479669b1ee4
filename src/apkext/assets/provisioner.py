"""Versioned on-disk cache of the bundled tool payloads.

The cache holds ``jars/``, the tool tree (``prebuilt/``, ``dex-tools-v2.4/``),
a ``framework/`` directory used by apktool and a ``.version`` marker. The
marker is written after every payload, so an interrupted extraction is
detected as stale on the next run.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
import sys
import tempfile
import time
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Mapping, Optional, Union

from platformdirs import PlatformDirs
from tqdm import tqdm

from .. import __version__
from ..errors import AssetProvisioningError
from ..tools.config import APKTOOL_JAR, FRAMEWORK_DIR, JARS_DIR, PROCYON_JAR
from ..tools.platform import PlatformInfo, current_platform, resolve_aapt_path, resolve_dex2jar_script
from .bundle import AssetBundle

logger = logging.getLogger(__name__)

APP_NAME = "apkext"
HOME_ENV_VAR = "APKEXT_HOME"
VERSION_MARKER = ".version"
LOCK_FILENAME = ".apkext.lock"
REQUIRED_JARS = (APKTOOL_JAR, PROCYON_JAR)
EXECUTABLE_MODE = 0o755


def default_cache_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if environ is None else environ
    explicit = environ.get(HOME_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser()
    dirs = PlatformDirs(appname=APP_NAME, appauthor=False, roaming=True)
    return Path(dirs.user_config_path)


def needs_exec_bit(relative_path: str) -> bool:
    if relative_path.endswith(".sh"):
        return True
    parts = relative_path.split("/")
    return parts[0] == "prebuilt" and parts[-1].startswith("aapt")


def _make_executable(path: Path) -> None:
    if os.name != "posix":
        return
    os.chmod(path, EXECUTABLE_MODE)


def _lock_owner(lock_path: Path) -> Optional[int]:
    try:
        text = lock_path.read_text(encoding="utf-8")
    except OSError:
        return None
    for token in text.split():
        key, _, value = token.partition("=")
        if key == "pid" and value.isdigit():
            return int(value)
    return None


def _process_alive(pid: int) -> bool:
    # signal 0 is an existence check on POSIX only; on Windows os.kill terminates
    if os.name != "posix":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def read_version_marker(root: Path) -> Optional[str]:
    marker = root / VERSION_MARKER
    try:
        value = marker.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return value or None


@contextmanager
def cache_lock(
    root: Path,
    *,
    timeout_seconds: float = 120.0,
    stale_after_seconds: float = 60.0 * 30,
) -> Iterator[None]:
    """Advisory lock for cache population, taken with an atomic O_EXCL create.

    A lock file older than ``stale_after_seconds``, or one whose recorded pid
    is no longer running, is treated as abandoned.
    """

    lock_path = root / LOCK_FILENAME
    started = time.monotonic()
    while True:
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            break
        except FileExistsError:
            try:
                age = time.time() - lock_path.stat().st_mtime
            except FileNotFoundError:
                continue
            owner = _lock_owner(lock_path)
            if owner is not None and owner != os.getpid() and not _process_alive(owner):
                logger.warning("removing cache lock %s left by dead process %d", lock_path, owner)
                lock_path.unlink(missing_ok=True)
                continue
            if age >= stale_after_seconds:
                logger.warning("removing stale cache lock %s", lock_path)
                lock_path.unlink(missing_ok=True)
                continue
            if time.monotonic() - started >= timeout_seconds:
                raise AssetProvisioningError(f"timed out waiting for cache lock: {lock_path}") from None
            time.sleep(0.2)
        except OSError as exc:
            raise AssetProvisioningError(f"failed to create cache lock {lock_path}: {exc}") from exc

    try:
        os.write(fd, f"pid={os.getpid()}\n".encode("utf-8"))
        yield
    finally:
        os.close(fd)
        lock_path.unlink(missing_ok=True)


def extract_from_jar(jar_path: Path, pattern: str, dest_dir: Path) -> List[Path]:
    """Extract jar entries whose name matches a glob pattern, keeping their paths."""

    extracted: List[Path] = []
    try:
        with zipfile.ZipFile(jar_path, "r") as jar:
            for info in jar.infolist():
                if info.is_dir() or not fnmatch.fnmatch(info.filename, pattern):
                    continue
                target = dest_dir / info.filename
                target.parent.mkdir(parents=True, exist_ok=True)
                with jar.open(info) as src, target.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
                if needs_exec_bit(info.filename):
                    _make_executable(target)
                extracted.append(target)
    except (OSError, zipfile.BadZipFile) as exc:
        raise AssetProvisioningError(f"failed to extract {pattern} from {jar_path}: {exc}") from exc
    return extracted


class AssetProvisioner:
    """Materializes an AssetBundle into a cache directory.

    With ``ephemeral=True`` the cache lives in a fresh temporary directory
    that ``cleanup()`` (or leaving the ``with`` block) removes.
    """

    def __init__(
        self,
        root: Union[str, Path, None] = None,
        *,
        bundle: Optional[AssetBundle] = None,
        version: str = __version__,
        ephemeral: bool = False,
        progress: Optional[bool] = None,
        platform_info: Optional[PlatformInfo] = None,
    ) -> None:
        self.ephemeral = ephemeral
        if ephemeral:
            try:
                self.root = Path(tempfile.mkdtemp(prefix="apkext-"))
            except OSError as exc:
                raise AssetProvisioningError(f"failed to create temp directory: {exc}") from exc
        else:
            self.root = Path(root) if root is not None else default_cache_root()
        self.bundle = bundle if bundle is not None else AssetBundle.from_package()
        self.version = version
        self.progress = sys.stderr.isatty() if progress is None else progress
        self.platform = platform_info or current_platform()

    def __enter__(self) -> "AssetProvisioner":
        self.materialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    def jar_path(self, jar_name: str) -> Path:
        return self.root / JARS_DIR / jar_name

    def tool_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    @property
    def framework_dir(self) -> Path:
        return self.root / FRAMEWORK_DIR

    def required_files(self) -> List[Path]:
        """Jars plus the dex2jar script and aapt binary this platform runs."""

        files = [self.jar_path(name) for name in REQUIRED_JARS]
        for rel in (
            resolve_dex2jar_script(self.platform.os_name),
            resolve_aapt_path(self.platform.os_name, self.platform.arch),
        ):
            if rel in self.bundle.tools:
                files.append(self.tool_path(rel))
        return files

    def needs_extraction(self) -> bool:
        if not all(path.is_file() for path in self.required_files()):
            return True
        stored = read_version_marker(self.root)
        if stored is None:
            return True
        return stored != self.version

    def materialize(self) -> Path:
        """Ensure the cache is populated for this version and return its root."""

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise AssetProvisioningError(f"failed to create cache directory {self.root}: {exc}") from exc

        if not self.needs_extraction():
            logger.info("asset cache is current: %s", self.root)
            return self.root

        with cache_lock(self.root):
            if self.needs_extraction():
                self.extract_all()
        return self.root

    def extract_all(self) -> None:
        missing = [name for name in REQUIRED_JARS if name not in self.bundle.jars]
        if missing:
            raise AssetProvisioningError(
                "asset bundle is missing " + ", ".join(missing) + "; run apkext-fetch-assets before building"
            )

        print(f"Extracting assets to {self.root}...")
        marker = self.root / VERSION_MARKER
        try:
            marker.unlink(missing_ok=True)
            self._write_tree(self.bundle.jars, self.root / JARS_DIR)
            self._write_tree(self.bundle.tools, self.root)
            self.framework_dir.mkdir(parents=True, exist_ok=True)
            marker.write_text(self.version, encoding="utf-8")
        except OSError as exc:
            raise AssetProvisioningError(f"failed to extract assets into {self.root}: {exc}") from exc
        print("Assets extracted successfully.")

    def _write_tree(self, payloads: Mapping[str, bytes], dest_root: Path) -> None:
        names = list(payloads)
        iterator = tqdm(names, desc="assets", unit="file", disable=not self.progress)
        for rel in iterator:
            target = dest_root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payloads[rel])
            if needs_exec_bit(rel):
                _make_executable(target)

    def cleanup(self) -> None:
        if self.ephemeral and self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)
