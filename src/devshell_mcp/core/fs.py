from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Optional, Sequence

DEFAULT_IGNORES = {
    ".git", ".venv", "venv", "__pycache__", ".pytest_cache", ".mypy_cache",
    "node_modules", "dist", "build", "result", "target", ".direnv"
}


def iter_descriptor_files(root: Path, names: Sequence[str]) -> Iterator[Path]:
    """
    Yield files under root whose name is one of `names`, depth-first in
    sorted order. Ignored directories are never entered.
    """
    root = root.resolve()
    wanted = set(names)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in DEFAULT_IGNORES)
        for name in sorted(filenames):
            if name in wanted:
                yield Path(dirpath) / name


def resolve_in_root(root: Path, rel: str) -> Optional[Path]:
    """Resolve rel against root; None when the result escapes root."""
    root = root.resolve()
    candidate = (root / rel).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        return None
    return candidate
