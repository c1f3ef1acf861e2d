from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from ..core.catalog import NixCatalog, PackageCatalog, StaticCatalog, resolve_environment_async
from ..core.config import Settings, get_settings
from ..core.descriptor import EnvironmentSpec
from ..core.errors import CatalogError, DevshellError
from ..server import mcp
from .read_descriptor import load_in_root

CatalogMode = Literal["auto", "nix", "file"]


def _select_catalog(
    mode: CatalogMode,
    catalog_file: Optional[str],
    root_path: Path,
    spec: EnvironmentSpec,
    settings: Settings,
) -> PackageCatalog:
    """
    auto: the JSON catalog file when one is configured, else the Nix channel
    the descriptor imports.
    """
    file_ = catalog_file or settings.catalog_file
    if mode == "file" or (mode == "auto" and file_):
        if not file_:
            raise CatalogError("catalog='file' needs catalog_file or DEVSHELL_MCP_CATALOG")
        p = Path(file_)
        if not p.is_absolute():
            p = root_path / p
        return StaticCatalog.load(p)

    return NixCatalog(
        channel=spec.catalog or "nixpkgs",
        nix_bin=settings.nix_bin,
        timeout_s=settings.nix_timeout_s,
    )


@mcp.tool()
async def resolve_env_descriptor(
    path: str = "shell.nix",
    root: str = ".",
    catalog: CatalogMode = "auto",
    catalog_file: Optional[str] = None,
) -> dict:
    """
    Check that every tool a descriptor declares exists in the package catalog.

    The parsed descriptor is returned even when resolution fails, together
    with the names that could not be resolved.
    """
    root_path = Path(root).resolve()
    try:
        spec = load_in_root(root_path, path)
    except DevshellError as e:
        return {"root": str(root_path), "path": path, **e.to_dict()}

    out: dict = {"root": str(root_path), "path": path, "spec": spec.to_dict()}
    try:
        pkg_catalog = _select_catalog(catalog, catalog_file, root_path, spec, get_settings())
        resolved = await resolve_environment_async(spec, pkg_catalog)
    except DevshellError as e:
        out.update(e.to_dict())
        return out

    out.update({"ok": True, "resolved": resolved.to_dict()})
    return out
