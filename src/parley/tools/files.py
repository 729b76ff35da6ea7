"""
File tools offered to the coordinating agent.

Paths are resolved against the current working directory and may not escape it.
"""

import os
from pathlib import Path
from typing import (
    Any,
    List,
    Mapping,
)

from parley.tools import register_tool


def _resolve(path: str) -> Path:
    root = Path(os.getcwd()).resolve()
    target = (root / path).resolve()
    if target != root and root not in target.parents:
        raise PermissionError(f"access denied outside workspace root: {path}")
    return target


def _note_listing(args: Mapping[str, Any]) -> tuple[str, str]:
    return "Listing files", str(args.get("path", "."))


def _note_reading(args: Mapping[str, Any]) -> tuple[str, str]:
    return "Reading file", str(args.get("path", ""))


@register_tool("list_files", describe_request=_note_listing)
def list_files(path: str = ".") -> List[str]:
    """List the files below *path* (relative to the project root), sorted."""
    base = _resolve(path)
    root = Path(os.getcwd()).resolve()
    return sorted(
        str(p.relative_to(root))
        for p in base.rglob("*")
        if p.is_file() and not any(part.startswith(".") for part in p.relative_to(root).parts)
    )


@register_tool("file_contents", describe_request=_note_reading)
def file_contents(path: str, max_chars: int = 20_000) -> str:
    """Return up to *max_chars* characters of the text file at *path*."""
    target = _resolve(path)
    if not target.is_file():
        raise FileNotFoundError(f"file '{path}' does not exist")
    with target.open("r", encoding="utf-8", errors="replace") as f:
        return f.read(max_chars)
