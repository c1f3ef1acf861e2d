from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from ..core.descriptor import EnvironmentSpec, edit_descriptor, parse_descriptor, render_descriptor
from ..core.errors import DescriptorNotFound, DescriptorWriteError, DevshellError
from ..core.fs import resolve_in_root
from ..server import mcp


def _invalid(e: ValueError) -> dict:
    return {"ok": False, "error": str(e), "error_kind": "InvalidArgument"}


@mcp.tool()
def edit_env_descriptor(
    path: str = "shell.nix",
    root: str = ".",
    add: Optional[List[str]] = None,
    remove: Optional[List[str]] = None,
    attribute: str = "buildInputs",
    write: bool = False,
) -> dict:
    """
    Add or remove tools in a descriptor, keeping the rest of the file as is.
    The file is only overwritten when write=True.
    """
    root_path = Path(root).resolve()
    base = {"root": str(root_path), "path": path}

    abs_path = resolve_in_root(root_path, path)
    try:
        if abs_path is None:
            raise DescriptorNotFound(f"Path outside root: {path}", {"path": path})
        try:
            text = abs_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DescriptorNotFound(f"Cannot read descriptor '{path}': {e}", {"path": path}) from e

        before = parse_descriptor(text)
        content = edit_descriptor(text, add=add or (), remove=remove or (), attribute=attribute)
        after = parse_descriptor(content, source=str(abs_path))
    except DevshellError as e:
        return {**base, **e.to_dict()}
    except ValueError as e:
        return {**base, **_invalid(e)}

    if write and content != text:
        try:
            abs_path.write_text(content, encoding="utf-8")
        except OSError as e:
            err = DescriptorWriteError(f"Cannot write descriptor '{path}': {e}", {"path": path})
            return {**base, **err.to_dict()}

    return {
        **base,
        "ok": True,
        "written": bool(write and content != text),
        "added": sorted(after.tool_names - before.tool_names),
        "removed": sorted(before.tool_names - after.tool_names),
        "content": content,
        "spec": after.to_dict(),
    }


@mcp.tool()
def render_env_descriptor(
    tools: List[str],
    catalog: str = "nixpkgs",
    attribute: str = "buildInputs",
) -> dict:
    """
    Produce a new shell.nix-style descriptor declaring the given tools.
    """
    try:
        spec = EnvironmentSpec(catalog=catalog, builder="mkShell").with_tools(*tools, attribute=attribute)
        content = render_descriptor(spec)
    except ValueError as e:
        return _invalid(e)

    return {"ok": True, "content": content, "spec": parse_descriptor(content).to_dict()}
