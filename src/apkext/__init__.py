"""Unpack Android packages into editable sources and pack them back."""

__version__ = "0.3.0"

__all__ = ["__version__"]
