from __future__ import annotations

from pathlib import Path

from ..core.config import get_settings
from ..core.descriptor import load_descriptor
from ..core.errors import DevshellError
from ..core.fs import iter_descriptor_files
from ..server import mcp


@mcp.tool()
def find_env_descriptors(root: str = ".", max_results: int = 20) -> dict:
    """
    Find environment descriptors in the local repository (no evaluation).
    """
    root_path = Path(root).resolve()
    try:
        names = get_settings().descriptor_names
    except DevshellError as e:
        return {"root": str(root_path), **e.to_dict()}

    results = []
    for p in iter_descriptor_files(root_path, names):
        if len(results) >= max_results:
            break
        rel = p.relative_to(root_path).as_posix()
        try:
            spec = load_descriptor(p)
        except DevshellError as e:
            results.append({"path": rel, **e.to_dict()})
            continue

        results.append(
            {
                "path": rel,
                "ok": True,
                "tool_count": len(spec.tool_names),
                "tools": [r.name for r in spec.requirements],
            }
        )

    return {"root": str(root_path), "descriptors": results}
