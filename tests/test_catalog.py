import json

import pytest

from devshell_mcp.core.catalog import (
    NixCatalog,
    PackageInfo,
    StaticCatalog,
    resolve_environment,
    resolve_environment_async,
)
from devshell_mcp.core.descriptor import parse_descriptor
from devshell_mcp.core.errors import CatalogError, CatalogUnavailable, ConfigError, UnresolvedToolName
from devshell_mcp.core.nix import NixResult

KNOWN = ["cargo", "rustc", "rust-analyzer", "rustfmt", "clippy"]


def test_resolve_reference_descriptor(reference_text):
    spec = parse_descriptor(reference_text)
    resolved = resolve_environment(spec, StaticCatalog.from_names(KNOWN))

    assert resolved.catalog == "static"
    assert [p.attr for p in resolved.packages] == ["cargo", "rustc", "rust-analyzer", "rustfmt"]
    assert resolved.to_dict()["packages"][0] == {"attr": "cargo", "name": "cargo", "version": None}


def test_unknown_tool_parses_but_fails_resolution(reference_text):
    spec = parse_descriptor(reference_text.replace("rustfmt", "rustfmt-nightly-xyz"))
    assert "rustfmt-nightly-xyz" in spec.tool_names

    with pytest.raises(UnresolvedToolName) as exc:
        resolve_environment(spec, StaticCatalog.from_names(KNOWN))

    assert exc.value.missing == ["rustfmt-nightly-xyz"]
    assert exc.value.to_dict()["catalog"] == "static"


def test_unresolved_lists_every_missing_name():
    spec = parse_descriptor("mkShell { buildInputs = [ cargo foo bar ]; }")

    with pytest.raises(UnresolvedToolName) as exc:
        resolve_environment(spec, StaticCatalog.from_names(KNOWN))

    assert exc.value.missing == ["foo", "bar"]


def test_resolving_after_removal_has_one_fewer_package(reference_text):
    catalog = StaticCatalog.from_names(KNOWN)
    spec = parse_descriptor(reference_text)

    full = resolve_environment(spec, catalog)
    fewer = resolve_environment(spec.without("rustc"), catalog)

    assert len(fewer.packages) == len(full.packages) - 1
    assert {p.attr for p in fewer.packages} == {p.attr for p in full.packages} - {"rustc"}


def test_empty_spec_resolves_to_nothing():
    spec = parse_descriptor("mkShell { buildInputs = [ ]; }")
    assert resolve_environment(spec, StaticCatalog.from_names([])).packages == ()


def test_load_catalog_from_name_list(tmp_path):
    f = tmp_path / "rust.json"
    f.write_text(json.dumps(KNOWN))

    catalog = StaticCatalog.load(f)

    assert catalog.name == "rust"
    assert catalog.lookup("cargo") == PackageInfo(attr="cargo", name="cargo")
    assert catalog.lookup("gcc") is None


def test_load_catalog_with_versions(tmp_path):
    f = tmp_path / "pinned.json"
    f.write_text(json.dumps({"cargo": "1.80.0", "python3Packages.black": None}))

    catalog = StaticCatalog.load(f)

    assert catalog.lookup("cargo").version == "1.80.0"
    assert catalog.lookup("python3Packages.black").name == "black"


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '"cargo"', '{"cargo": 1}'])
def test_load_invalid_catalog(tmp_path, content):
    f = tmp_path / "bad.json"
    f.write_text(content)

    with pytest.raises(CatalogError):
        StaticCatalog.load(f)


def test_load_missing_catalog(tmp_path):
    with pytest.raises(CatalogError):
        StaticCatalog.load(tmp_path / "missing.json")


def test_nix_catalog_lookup_is_cached(monkeypatch):
    calls = []

    def fake_run_nix(args, nix_bin="nix-instantiate", timeout_s=10.0):
        calls.append(args)
        if '"cargo"' in args[-1]:
            return NixResult(0, '{"name":"cargo","version":"1.80.0"}\n', "")
        return NixResult(0, "null\n", "")

    monkeypatch.setattr("devshell_mcp.core.catalog.run_nix", fake_run_nix)

    catalog = NixCatalog()
    info = catalog.lookup("cargo")

    assert info == PackageInfo(attr="cargo", name="cargo", version="1.80.0")
    assert catalog.lookup("cargo") is info
    assert catalog.lookup("not-a-package") is None
    assert len(calls) == 2
    assert calls[0][:4] == ["--eval", "--strict", "--json", "-E"]
    assert "import <nixpkgs>" in calls[0][-1]


def test_nix_catalog_attr_path(monkeypatch):
    seen = []

    def fake_run_nix(args, nix_bin="nix-instantiate", timeout_s=10.0):
        seen.append(args[-1])
        return NixResult(0, '{"name":"black","version":"24.1.0"}', "")

    monkeypatch.setattr("devshell_mcp.core.catalog.run_nix", fake_run_nix)

    info = NixCatalog(channel="nixos-unstable").lookup("python3Packages.black")

    assert info.version == "24.1.0"
    assert '[ "python3Packages" "black" ]' in seen[0]
    assert "<nixos-unstable>" in seen[0]


def test_nix_catalog_evaluation_failure(monkeypatch):
    monkeypatch.setattr(
        "devshell_mcp.core.catalog.run_nix",
        lambda *a, **kw: NixResult(1, "", "error: file 'nixpkgs' was not found in the Nix search path"),
    )

    with pytest.raises(CatalogUnavailable) as exc:
        NixCatalog().lookup("cargo")

    assert "was not found" in str(exc.value)


def test_nix_catalog_rejects_bad_channel():
    with pytest.raises(CatalogError):
        NixCatalog(channel="nixpkgs> { }; evil <x")


@pytest.mark.asyncio
async def test_async_resolution_matches_sync(reference_text):
    spec = parse_descriptor(reference_text)
    catalog = StaticCatalog.from_names(KNOWN)

    resolved = await resolve_environment_async(spec, catalog)

    assert resolved == resolve_environment(spec, catalog)


@pytest.mark.asyncio
async def test_async_resolution_reports_unresolved():
    spec = parse_descriptor("mkShell { buildInputs = [ cargo nope ]; }")

    with pytest.raises(UnresolvedToolName) as exc:
        await resolve_environment_async(spec, StaticCatalog.from_names(KNOWN))

    assert exc.value.missing == ["nope"]


@pytest.mark.asyncio
async def test_async_resolution_propagates_catalog_errors(monkeypatch):
    monkeypatch.setattr(
        "devshell_mcp.core.catalog.run_nix",
        lambda *a, **kw: NixResult(1, "", "error: boom"),
    )
    spec = parse_descriptor("mkShell { buildInputs = [ cargo ]; }")

    with pytest.raises(CatalogUnavailable):
        await resolve_environment_async(spec, NixCatalog())


@pytest.mark.asyncio
async def test_async_resolution_raises_plain_error_not_group():
    class BrokenCatalog:
        name = "broken"

        def lookup(self, attr):
            raise ConfigError("DEVSHELL_MCP_LOG_LEVEL is not a logging level")

    spec = parse_descriptor("mkShell { buildInputs = [ cargo rustc ]; }")

    with pytest.raises(ConfigError):
        await resolve_environment_async(spec, BrokenCatalog())
