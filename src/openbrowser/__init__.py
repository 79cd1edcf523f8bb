"""OpenBrowser: supervised headless-browser automation engine."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("openbrowser")
except Exception:
    __version__ = "0.0.0"
