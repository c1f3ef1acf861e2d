from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Protocol, Tuple, Union

import anyio
import anyio.to_thread

from .descriptor import EnvironmentSpec
from .errors import CatalogError, CatalogUnavailable, DevshellError, UnresolvedToolName
from .nix import run_nix

logger = logging.getLogger("devshell_mcp.catalog")

_ATTR_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_'-]*(?:\.[A-Za-z_][A-Za-z0-9_'-]*)*\Z")
_CHANNEL_RE = re.compile(r"[A-Za-z0-9._+-]+(?:/[A-Za-z0-9._+-]+)*\Z")


@dataclass(frozen=True)
class PackageInfo:
    attr: str
    name: Optional[str] = None
    version: Optional[str] = None

    def to_dict(self) -> dict:
        return {"attr": self.attr, "name": self.name, "version": self.version}


class PackageCatalog(Protocol):
    name: str

    def lookup(self, attr: str) -> Optional[PackageInfo]: ...


@dataclass(frozen=True)
class StaticCatalog:
    """
    In-memory catalog, e.g. loaded from a JSON file of attribute names.
    """

    name: str
    entries: Mapping[str, PackageInfo]

    def lookup(self, attr: str) -> Optional[PackageInfo]:
        return self.entries.get(attr)

    @classmethod
    def from_names(cls, names: Iterable[str], name: str = "static") -> "StaticCatalog":
        entries = {n: PackageInfo(attr=n, name=n.rsplit(".", 1)[-1]) for n in names}
        return cls(name=name, entries=entries)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "StaticCatalog":
        """
        Load a JSON catalog: either a list of attribute names, or an object
        mapping attribute name -> version string (or null).
        """
        p = Path(path)
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except OSError as e:
            raise CatalogError(f"Cannot read catalog '{p}': {e}", {"path": str(p)}) from e
        except json.JSONDecodeError as e:
            raise CatalogError(f"Catalog '{p}' is not valid JSON: {e}", {"path": str(p)}) from e

        if isinstance(raw, list):
            if not all(isinstance(x, str) for x in raw):
                raise CatalogError(f"Catalog '{p}' must list attribute names as strings", {"path": str(p)})
            return cls.from_names(raw, name=p.stem)

        if isinstance(raw, dict):
            entries: Dict[str, PackageInfo] = {}
            for attr, version in raw.items():
                if version is not None and not isinstance(version, str):
                    raise CatalogError(
                        f"Catalog '{p}': version of '{attr}' must be a string or null",
                        {"path": str(p)},
                    )
                entries[attr] = PackageInfo(attr=attr, name=attr.rsplit(".", 1)[-1], version=version)
            return cls(name=p.stem, entries=entries)

        raise CatalogError(f"Catalog '{p}' must be a JSON list or object", {"path": str(p)})


def _nix_lookup_expr(channel: str, attr: str) -> str:
    path = " ".join(json.dumps(part) for part in attr.split("."))
    return (
        f"let pkgs = import <{channel}> {{ }}; "
        f"p = pkgs.lib.attrByPath [ {path} ] null pkgs; "
        "in if p == null then null else { "
        "name = if p ? pname then p.pname else p.name or null; "
        "version = p.version or null; }"
    )


@dataclass
class NixCatalog:
    """
    Catalog backed by the local Nix installation's channel (`<nixpkgs>` by default).
    """

    channel: str = "nixpkgs"
    nix_bin: str = "nix-instantiate"
    timeout_s: float = 10.0
    _cache: Dict[str, Optional[PackageInfo]] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not _CHANNEL_RE.match(self.channel):
            raise CatalogError(f"Invalid channel name {self.channel!r}")

    @property
    def name(self) -> str:
        return self.channel

    def lookup(self, attr: str) -> Optional[PackageInfo]:
        if attr in self._cache:
            return self._cache[attr]
        if not _ATTR_RE.match(attr):
            return None

        result = run_nix(
            ["--eval", "--strict", "--json", "-E", _nix_lookup_expr(self.channel, attr)],
            nix_bin=self.nix_bin,
            timeout_s=self.timeout_s,
        )
        if not result.ok:
            detail = (result.stderr.strip().splitlines() or ["no output"])[-1]
            raise CatalogUnavailable(
                f"Nix evaluation failed for '{attr}': {detail}",
                {"attr": attr, "returncode": result.returncode},
            )

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise CatalogUnavailable(f"Unexpected Nix output for '{attr}': {result.stdout[:200]!r}") from e

        info = None
        if isinstance(data, dict):
            info = PackageInfo(attr=attr, name=data.get("name"), version=data.get("version"))
        self._cache[attr] = info
        return info


@dataclass(frozen=True)
class ResolvedEnvironment:
    spec: EnvironmentSpec
    catalog: str
    packages: Tuple[PackageInfo, ...]

    def to_dict(self) -> dict:
        return {
            "catalog": self.catalog,
            "packages": [p.to_dict() for p in self.packages],
        }


def _collect(
    spec: EnvironmentSpec, catalog: PackageCatalog, found: Mapping[str, Optional[PackageInfo]]
) -> ResolvedEnvironment:
    names = [r.name for r in spec.requirements]
    missing = [n for n in names if found.get(n) is None]
    if missing:
        logger.warning("unresolved in %s: %s", catalog.name, ", ".join(missing))
        raise UnresolvedToolName(missing, catalog.name)
    logger.info("resolved %d tool(s) in %s", len(names), catalog.name)
    return ResolvedEnvironment(
        spec=spec,
        catalog=catalog.name,
        packages=tuple(found[n] for n in names),  # type: ignore[misc]
    )


def resolve_environment(spec: EnvironmentSpec, catalog: PackageCatalog) -> ResolvedEnvironment:
    """
    Look every declared tool up in `catalog`.

    Raises UnresolvedToolName naming all unknown tools; nothing is returned
    for a partially resolvable spec.
    """
    found = {r.name: catalog.lookup(r.name) for r in spec.requirements}
    return _collect(spec, catalog, found)


async def resolve_environment_async(
    spec: EnvironmentSpec, catalog: PackageCatalog, max_concurrency: int = 4
) -> ResolvedEnvironment:
    """
    Same as resolve_environment, with lookups run in worker threads.
    """
    found: Dict[str, Optional[PackageInfo]] = {}
    errors: list[DevshellError] = []
    limiter = anyio.CapacityLimiter(max_concurrency)

    async def _lookup(name: str) -> None:
        try:
            found[name] = await anyio.to_thread.run_sync(catalog.lookup, name, limiter=limiter)
        except DevshellError as e:
            errors.append(e)

    async with anyio.create_task_group() as tg:
        for req in spec.requirements:
            tg.start_soon(_lookup, req.name)

    if errors:
        raise errors[0]

    return _collect(spec, catalog, found)
