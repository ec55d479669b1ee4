from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Dict, Iterator, Mapping, Union

BUNDLE_PACKAGE = "apkext.assets"
BUNDLE_DIR = "bundle"
JARS_SUBDIR = "jars"
TOOLS_SUBDIR = "tools"

_IGNORED_NAMES = {".gitkeep", "__init__.py", "__pycache__"}


class _ResourceTree(Mapping[str, bytes]):
    """Read-only view of a resource directory keyed by posix relative path.

    File contents are read on access so large jars are not held in memory.
    """

    def __init__(self, root) -> None:
        self._root = root
        self._index: Dict[str, object] = {}
        if root.is_dir():
            self._walk(root, "")

    def _walk(self, node, prefix: str) -> None:
        for child in sorted(node.iterdir(), key=lambda item: item.name):
            if child.name in _IGNORED_NAMES:
                continue
            rel = f"{prefix}{child.name}"
            if child.is_dir():
                self._walk(child, rel + "/")
            elif child.is_file():
                self._index[rel] = child

    def __getitem__(self, key: str) -> bytes:
        return self._index[key].read_bytes()

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._index)


class AssetBundle:
    """Tool payloads shipped with the package: jars plus the tool tree."""

    def __init__(self, jars: Mapping[str, bytes], tools: Mapping[str, bytes]) -> None:
        self.jars = jars
        self.tools = tools

    @classmethod
    def from_directory(cls, root: Union[str, Path]) -> "AssetBundle":
        root = Path(root)
        return cls(_ResourceTree(root / JARS_SUBDIR), _ResourceTree(root / TOOLS_SUBDIR))

    @classmethod
    def from_package(cls) -> "AssetBundle":
        root = resources.files(BUNDLE_PACKAGE) / BUNDLE_DIR
        return cls(_ResourceTree(root / JARS_SUBDIR), _ResourceTree(root / TOOLS_SUBDIR))

    def __len__(self) -> int:
        return len(self.jars) + len(self.tools)


def package_bundle_dir() -> Path:
    """Filesystem location of the bundled payloads inside the source tree."""

    return Path(__file__).resolve().parent / BUNDLE_DIR
