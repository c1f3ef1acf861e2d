import pytest

from devshell_mcp.core.descriptor import edit_descriptor, parse_descriptor
from devshell_mcp.core.errors import MalformedDescriptor, ToolNotDeclared


def test_remove_cuts_the_line(reference_text):
    out = edit_descriptor(reference_text, remove=["rustfmt"])
    assert out == reference_text.replace("    rustfmt\n", "")


def test_add_uses_list_indentation(reference_text):
    out = edit_descriptor(reference_text, add=["clippy"])
    assert out == reference_text.replace("    rustfmt\n", "    rustfmt\n    clippy\n")


def test_add_and_remove_together(reference_text):
    out = edit_descriptor(reference_text, add=["clippy"], remove=["rustfmt"])

    assert out == reference_text.replace("    rustfmt\n", "    clippy\n")
    assert parse_descriptor(out).tool_names == {"cargo", "rustc", "rust-analyzer", "clippy"}


def test_inline_list_edits():
    text = "with import <nixpkgs> {}; mkShell { buildInputs = [ cargo ]; }"

    assert edit_descriptor(text, add=["rustc"]) == text.replace("[ cargo ]", "[ cargo rustc ]")
    assert edit_descriptor(text, remove=["cargo"]) == text.replace("[ cargo ]", "[ ]")


def test_add_to_compact_empty_list():
    text = "mkShell { buildInputs = []; }"
    assert edit_descriptor(text, add=["cargo"]) == "mkShell { buildInputs = [ cargo ]; }"


def test_add_existing_tool_is_noop(reference_text):
    assert edit_descriptor(reference_text, add=["cargo"]) == reference_text


def test_edit_keeps_the_rest_of_the_file():
    text = """{ pkgs ? import <nixpkgs> { } }:
pkgs.mkShell {
  packages = [
    pkgs.cargo
    pkgs.rustfmt
  ];
  shellHook = ''
    export RUST_BACKTRACE=1
  '';
}
"""
    out = edit_descriptor(text, remove=["rustfmt"], attribute="packages")

    assert "pkgs.rustfmt" not in out
    assert "export RUST_BACKTRACE=1" in out
    assert parse_descriptor(out).tool_names == {"cargo"}


def test_remove_undeclared_raises(reference_text):
    with pytest.raises(ToolNotDeclared):
        edit_descriptor(reference_text, remove=["clippy"])


def test_add_to_missing_attribute_raises(reference_text):
    with pytest.raises(MalformedDescriptor):
        edit_descriptor(reference_text, add=["clippy"], attribute="packages")


def test_add_and_remove_same_name_rejected(reference_text):
    with pytest.raises(ValueError):
        edit_descriptor(reference_text, add=["cargo"], remove=["cargo"])
