"""Bundled tool payloads and their on-disk cache."""

from .bundle import AssetBundle
from .provisioner import AssetProvisioner, default_cache_root, extract_from_jar

__all__ = [
    "AssetBundle",
    "AssetProvisioner",
    "default_cache_root",
    "extract_from_jar",
]
