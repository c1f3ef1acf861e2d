from __future__ import annotations

from pathlib import Path

from ..core.descriptor import EnvironmentSpec, load_descriptor
from ..core.errors import DescriptorNotFound, DevshellError
from ..core.fs import resolve_in_root
from ..server import mcp


def load_in_root(root_path: Path, path: str) -> EnvironmentSpec:
    """Load a descriptor, refusing paths that escape root_path."""
    abs_path = resolve_in_root(root_path, path)
    if abs_path is None:
        raise DescriptorNotFound(f"Path outside root: {path}", {"path": path})
    return load_descriptor(abs_path)


@mcp.tool()
def read_env_descriptor(path: str = "shell.nix", root: str = ".") -> dict:
    """
    Parse an environment descriptor (e.g. shell.nix) and list the tools it declares.
    """
    root_path = Path(root).resolve()
    try:
        spec = load_in_root(root_path, path)
    except DevshellError as e:
        return {"root": str(root_path), "path": path, **e.to_dict()}

    return {"ok": True, "root": str(root_path), "path": path, "spec": spec.to_dict()}
