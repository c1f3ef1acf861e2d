import pytest

REFERENCE_SHELL_NIX = """let
  pkgs = import <nixpkgs> { };
in
with pkgs;
mkShell {
  buildInputs = [
    cargo
    rustc
    rust-analyzer
    rustfmt
  ];
}
"""


@pytest.fixture
def reference_text():
    return REFERENCE_SHELL_NIX


@pytest.fixture
def shell_nix(tmp_path):
    f = tmp_path / "shell.nix"
    f.write_text(REFERENCE_SHELL_NIX, encoding="utf-8")
    return f
