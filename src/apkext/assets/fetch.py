"""Download the third-party tool payloads into the package bundle.

Run once before building a distribution::

    apkext-fetch-assets            # populate src/apkext/assets/bundle
    apkext-fetch-assets --dest DIR

Artifacts that are already present are skipped.
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import stat
import sys
import zipfile
from pathlib import Path
from typing import Optional, Sequence

import requests
from tqdm import tqdm

from ..errors import ApkextError
from ..tools.config import APKTOOL_JAR, PROCYON_JAR
from ..tools.platform import DEX2JAR_DIR
from .bundle import JARS_SUBDIR, TOOLS_SUBDIR, package_bundle_dir
from .provisioner import extract_from_jar, needs_exec_bit

logger = logging.getLogger(__name__)

APKTOOL_URL = "https://github.com/iBotPeaches/Apktool/releases/download/v2.12.1/apktool_2.12.1.jar"
PROCYON_URL = "https://github.com/dmikushin/procyon/releases/download/v0.6.1/procyon-decompiler-v0.6.1.jar"
DEX2JAR_URL = "https://github.com/pxb1988/dex2jar/releases/download/v2.4/dex-tools-v2.4.zip"

CHUNK_SIZE = 64 * 1024
HTTP_TIMEOUT_SECONDS = 60


def download_file(url: str, dest: Path, *, session: Optional[requests.Session] = None) -> Path:
    """Stream ``url`` to ``dest`` through a ``.part`` file renamed on completion."""

    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest.with_name(dest.name + ".part")
    getter = session or requests
    try:
        with getter.get(url, stream=True, timeout=HTTP_TIMEOUT_SECONDS) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length") or 0) or None
            with tmp_path.open("wb") as handle, tqdm(
                total=total,
                desc=dest.name,
                unit="B",
                unit_scale=True,
                disable=not sys.stderr.isatty(),
            ) as progress:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    handle.write(chunk)
                    progress.update(len(chunk))
        os.replace(tmp_path, dest)
    except (requests.RequestException, OSError):
        tmp_path.unlink(missing_ok=True)
        raise
    return dest


def unzip_tree(zip_path: Path, dest_dir: Path) -> int:
    """Extract an archive, rejecting entries that escape ``dest_dir``."""

    count = 0
    dest_root = dest_dir.resolve()
    with zipfile.ZipFile(zip_path, "r") as archive:
        for info in archive.infolist():
            target = (dest_dir / info.filename).resolve()
            if dest_root not in target.parents and target != dest_root:
                logger.warning("skipping unsafe entry %s", info.filename)
                continue
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)
            if needs_exec_bit(info.filename) and os.name == "posix":
                target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            count += 1
    return count


def fetch_assets(dest: Path, *, session: Optional[requests.Session] = None) -> None:
    jars_dir = dest / JARS_SUBDIR
    tools_dir = dest / TOOLS_SUBDIR
    jars_dir.mkdir(parents=True, exist_ok=True)
    tools_dir.mkdir(parents=True, exist_ok=True)

    for name, url in ((APKTOOL_JAR, APKTOOL_URL), (PROCYON_JAR, PROCYON_URL)):
        target = jars_dir / name
        if target.exists():
            print(f"{name} already exists, skipping")
            continue
        print(f"Downloading {name}...")
        download_file(url, target, session=session)

    if (tools_dir / DEX2JAR_DIR).exists():
        print("dex2jar already exists, skipping")
    else:
        zip_path = tools_dir / "dex-tools.zip"
        print("Downloading dex2jar...")
        download_file(DEX2JAR_URL, zip_path, session=session)
        print("Extracting dex2jar...")
        unzip_tree(zip_path, tools_dir)
        zip_path.unlink(missing_ok=True)

    if (tools_dir / "prebuilt").exists():
        print("aapt already extracted, skipping")
    else:
        print("Extracting aapt from apktool...")
        extract_from_jar(jars_dir / APKTOOL_JAR, "prebuilt/*", tools_dir)

    print("All dependencies downloaded successfully")


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="apkext-fetch-assets", description=__doc__.splitlines()[0])
    parser.add_argument("--dest", type=Path, default=package_bundle_dir())
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    try:
        fetch_assets(args.dest)
    except requests.RequestException as exc:
        print(f"Error: download failed: {exc}", file=sys.stderr)
        return 1
    except ApkextError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
