"""Content fingerprint of a change directory.

The digest covers every file's relative path and bytes, walked in sorted
order, so the same tree always yields the same fingerprint regardless of
filesystem iteration order or modification times.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

SKIPPED_DIRS = frozenset({".git", ".terraform", "__pycache__"})

_CHUNK = 64 * 1024


def fingerprint_directory(root: Path) -> str:
    """Return the sha256 hex digest of the tree under *root*."""
    if not root.is_dir():
        msg = f"not a directory: {root}"
        raise NotADirectoryError(msg)

    digest = hashlib.sha256()
    for path in _iter_files(root):
        rel = path.relative_to(root).as_posix()
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        with path.open("rb") as fh:
            while chunk := fh.read(_CHUNK):
                digest.update(chunk)
        digest.update(b"\0")
    return digest.hexdigest()


def _iter_files(root: Path) -> list[Path]:
    files: list[Path] = []
    for path in root.rglob("*"):
        rel_parts = path.relative_to(root).parts
        if any(part in SKIPPED_DIRS for part in rel_parts):
            continue
        if path.is_file():
            files.append(path)
    return sorted(files, key=lambda p: p.relative_to(root).as_posix())
