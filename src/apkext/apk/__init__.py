"""Unpack and pack pipelines."""

from .pack import PackResult, pack
from .unpack import StageResult, UnpackResult, UnpackTarget, unpack

__all__ = [
    "PackResult",
    "StageResult",
    "UnpackResult",
    "UnpackTarget",
    "pack",
    "unpack",
]
