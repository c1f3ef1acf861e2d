from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from .errors import DescriptorNotFound, MalformedDescriptor, ToolNotDeclared

logger = logging.getLogger("devshell_mcp.descriptor")

# mkShell list attributes, in the order they are rendered.
INPUT_ATTRS = ("buildInputs", "nativeBuildInputs", "packages")

_FIELD_BY_ATTR = {
    "buildInputs": "build_inputs",
    "nativeBuildInputs": "native_build_inputs",
    "packages": "packages",
}

DEFAULT_ALIASES = frozenset({"pkgs"})

_KEYWORDS = frozenset(
    {"let", "in", "with", "rec", "inherit", "if", "then", "else", "assert", "import", "or"}
)

_TOOL_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_'-]*(?:\.[A-Za-z_][A-Za-z0-9_'-]*)*\Z")
_CATALOG_RE = re.compile(r"[A-Za-z0-9._+-]+(?:/[A-Za-z0-9._+-]+)*\Z")

_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<comment>\#[^\n]*)
    | (?P<block>/\*.*?\*/)
    | (?P<open_block>/\*)
    | (?P<string>"(?:[^"\\]|\\.)*")
    | (?P<open_string>")
    | (?P<indstring>''(?:[^']|'(?!')|''(?:'|\$|\\.))*'')
    | (?P<open_indstring>'')
    | (?P<catalog><[A-Za-z0-9._+-]+(?:/[A-Za-z0-9._+-]+)*>)
    | (?P<path>\.{0,2}/[A-Za-z0-9._+-]+(?:/[A-Za-z0-9._+-]+)*)
    | (?P<name>[A-Za-z_][A-Za-z0-9_'-]*(?:\.[A-Za-z_][A-Za-z0-9_'-]*)*)
    | (?P<number>\d+(?:\.\d+)?)
    | (?P<op>\.\.\.|==|!=|\+\+|//|->|&&|\|\||<=|>=|\$\{|[{}\[\]();:=,?@.+\-*/!<>])
    """,
    re.VERBOSE | re.DOTALL,
)

_SKIPPED = {"ws", "comment", "block"}
_UNTERMINATED = {
    "open_block": "Unterminated comment",
    "open_string": "Unterminated string",
    "open_indstring": "Unterminated indented string",
}
_OPENERS = {"{", "[", "(", "${"}
_CLOSERS = {"}": "{", "]": "[", ")": "("}


@dataclass(frozen=True)
class ToolRequirement:
    """A single named dependency, e.g. a compiler or a formatter."""

    name: str
    line: int = field(default=0, compare=False)


Requirements = Tuple[ToolRequirement, ...]


@dataclass(frozen=True)
class EnvironmentSpec:
    """
    The tool lists declared by one environment descriptor.

    Immutable: edits return a new spec. `source` and `sha256` record where
    the text came from and are ignored by equality.
    """

    build_inputs: Requirements = ()
    native_build_inputs: Requirements = ()
    packages: Requirements = ()
    catalog: Optional[str] = None
    builder: Optional[str] = None
    source: Optional[str] = field(default=None, compare=False)
    sha256: Optional[str] = field(default=None, compare=False)

    def inputs(self, attribute: str) -> Requirements:
        return getattr(self, _field_for(attribute))

    @property
    def requirements(self) -> Requirements:
        """Every declared requirement once, in declaration order."""
        seen: set[str] = set()
        out: List[ToolRequirement] = []
        for attr in INPUT_ATTRS:
            for req in self.inputs(attr):
                if req.name not in seen:
                    seen.add(req.name)
                    out.append(req)
        return tuple(out)

    @property
    def tool_names(self) -> FrozenSet[str]:
        return frozenset(r.name for r in self.requirements)

    def without(self, name: str) -> "EnvironmentSpec":
        if name not in self.tool_names:
            raise ToolNotDeclared(name)
        changes = {
            f: tuple(r for r in getattr(self, f) if r.name != name)
            for f in _FIELD_BY_ATTR.values()
        }
        return replace(self, source=None, sha256=None, **changes)

    def with_tools(self, *names: str, attribute: str = "buildInputs") -> "EnvironmentSpec":
        field_name = _field_for(attribute)
        present = self.tool_names
        added = []
        for name in dict.fromkeys(names):
            _check_tool_name(name)
            if name not in present:
                added.append(ToolRequirement(name))
        current = getattr(self, field_name)
        return replace(self, source=None, sha256=None, **{field_name: current + tuple(added)})

    def to_dict(self) -> dict:
        return {
            "catalog": self.catalog,
            "builder": self.builder,
            "build_inputs": [r.name for r in self.build_inputs],
            "native_build_inputs": [r.name for r in self.native_build_inputs],
            "packages": [r.name for r in self.packages],
            "tool_count": len(self.tool_names),
            "source": self.source,
            "sha256": self.sha256,
        }


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    start: int
    end: int
    line: int


@dataclass
class _ListSpan:
    """Where one input attribute's list(s) sit in the source text."""

    attribute: str
    line: int
    builder: Optional[str] = None
    opens: List[int] = field(default_factory=list)
    closes: List[int] = field(default_factory=list)
    items: List[Tuple[str, _Token]] = field(default_factory=list)


def _field_for(attribute: str) -> str:
    try:
        return _FIELD_BY_ATTR[attribute]
    except KeyError:
        raise ValueError(
            f"Unknown input attribute '{attribute}', expected one of {', '.join(INPUT_ATTRS)}"
        ) from None


def _check_tool_name(name: str) -> None:
    if not _TOOL_NAME_RE.match(name) or name in _KEYWORDS:
        raise ValueError(f"Invalid tool name {name!r}")


def _tokenize(text: str) -> List[_Token]:
    tokens: List[_Token] = []
    pos = 0
    line = 1
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise MalformedDescriptor(f"Unexpected character {text[pos]!r}", line)
        kind = m.lastgroup or ""
        if kind in _UNTERMINATED:
            raise MalformedDescriptor(_UNTERMINATED[kind], line)
        value = m.group()
        if kind not in _SKIPPED:
            tokens.append(_Token(kind, value, pos, m.end(), line))
        line += value.count("\n")
        pos = m.end()
    return tokens


def _is_op(tok: _Token, value: str) -> bool:
    return tok.kind == "op" and tok.value == value


def _check_balance(tokens: List[_Token]) -> None:
    stack: List[_Token] = []
    for tok in tokens:
        if tok.kind != "op":
            continue
        if tok.value in _OPENERS:
            stack.append(tok)
        elif tok.value in _CLOSERS:
            if not stack:
                raise MalformedDescriptor(f"Unmatched '{tok.value}'", tok.line)
            opener = stack.pop()
            expected = "{" if opener.value == "${" else opener.value
            if _CLOSERS[tok.value] != expected:
                raise MalformedDescriptor(
                    f"'{tok.value}' closes '{opener.value}' opened on line {opener.line}",
                    tok.line,
                )
    if stack:
        raise MalformedDescriptor(f"Unclosed '{stack[-1].value}'", stack[-1].line)


def _find_catalog(tokens: List[_Token]) -> Tuple[Optional[str], FrozenSet[str]]:
    """
    Detect `import <catalog>` and the names it is bound to, either
    `pkgs = import <nixpkgs> {}` in a let block or `pkgs ? import <nixpkgs> {}`
    in a function header.
    """
    catalog: Optional[str] = None
    aliases = set(DEFAULT_ALIASES)
    for i, tok in enumerate(tokens[:-1]):
        if tok.kind != "name" or tok.value != "import" or tokens[i + 1].kind != "catalog":
            continue
        if catalog is None:
            catalog = tokens[i + 1].value[1:-1]
        if i >= 2 and tokens[i - 2].kind == "name" and tokens[i - 1].kind == "op" \
                and tokens[i - 1].value in ("=", "?"):
            aliases.add(tokens[i - 2].value)
    return catalog, frozenset(aliases)


def _normalize(name: str, aliases: FrozenSet[str]) -> str:
    head, sep, rest = name.partition(".")
    if sep and head in aliases:
        return rest
    return name


def _builder_for(tokens: List[_Token], brace: int, aliases: FrozenSet[str]) -> Optional[str]:
    k = brace - 1
    if k >= 0 and tokens[k].kind == "name" and tokens[k].value == "rec":
        k -= 1
    if k >= 0 and tokens[k].kind == "name" and tokens[k].value not in _KEYWORDS:
        return _normalize(tokens[k].value, aliases)
    return None


def _read_list_value(
    tokens: List[_Token], j: int, attr: _Token, aliases: FrozenSet[str]
) -> Tuple[_ListSpan, int]:
    span = _ListSpan(attribute=attr.value, line=attr.line)

    def at(k: int) -> _Token:
        if k >= len(tokens):
            raise MalformedDescriptor(f"Unexpected end of descriptor in '{attr.value}'", tokens[-1].line)
        return tokens[k]

    while at(j).kind == "name" and at(j).value == "with":
        if at(j + 1).kind != "name" or not _is_op(at(j + 2), ";"):
            raise MalformedDescriptor(f"Unsupported 'with' expression in '{attr.value}'", at(j).line)
        j += 3

    while True:
        tok = at(j)
        if not _is_op(tok, "["):
            raise MalformedDescriptor(f"'{attr.value}' must be a literal list", tok.line)
        span.opens.append(tok.start)
        j += 1
        while not _is_op(at(j), "]"):
            item = at(j)
            if item.kind != "name" or item.value in _KEYWORDS:
                raise MalformedDescriptor(
                    f"Unsupported element {item.value!r} in '{attr.value}'", item.line
                )
            span.items.append((_normalize(item.value, aliases), item))
            j += 1
        span.closes.append(at(j).start)
        j += 1
        if _is_op(at(j), "++"):
            j += 1
            continue
        break

    if not _is_op(at(j), ";"):
        raise MalformedDescriptor(f"Expected ';' after '{attr.value}'", at(j).line)
    return span, j + 1


def _scan_inputs(tokens: List[_Token], aliases: FrozenSet[str]) -> Dict[str, _ListSpan]:
    found: Dict[str, _ListSpan] = {}
    stack: List[int] = []
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.kind == "op" and tok.value in _OPENERS:
            stack.append(i)
        elif tok.kind == "op" and tok.value in _CLOSERS:
            stack.pop()
        elif (
            tok.kind == "name"
            and tok.value in INPUT_ATTRS
            and stack
            and tokens[stack[-1]].value == "{"
            and i + 1 < len(tokens)
            and _is_op(tokens[i + 1], "=")
            and (tokens[i - 1].kind == "op" and tokens[i - 1].value in ("{", ";"))
        ):
            if tok.value in found:
                raise MalformedDescriptor(f"Attribute '{tok.value}' is assigned twice", tok.line)
            span, i = _read_list_value(tokens, i + 2, tok, aliases)
            span.builder = _builder_for(tokens, stack[-1], aliases)
            found[tok.value] = span
            continue
        i += 1
    return found


def _parse(text: str) -> Tuple[Optional[str], Dict[str, _ListSpan]]:
    tokens = _tokenize(text)
    if not tokens:
        raise MalformedDescriptor("Descriptor is empty")
    _check_balance(tokens)
    catalog, aliases = _find_catalog(tokens)
    spans = _scan_inputs(tokens, aliases)
    if not spans:
        raise MalformedDescriptor(
            f"No {', '.join(INPUT_ATTRS)} attribute found in a literal attribute set"
        )
    return catalog, spans


def _requirements(span: _ListSpan) -> Requirements:
    seen: set[str] = set()
    out: List[ToolRequirement] = []
    for name, tok in span.items:
        if name in seen:
            logger.warning(
                "duplicate '%s' in %s (line %d) ignored", name, span.attribute, tok.line
            )
            continue
        seen.add(name)
        out.append(ToolRequirement(name, line=tok.line))
    return tuple(out)


def parse_descriptor(text: str, source: Optional[str] = None) -> EnvironmentSpec:
    """
    Read the tool lists out of descriptor text without evaluating it.

    Raises MalformedDescriptor when the text cannot be read as a declaration.
    """
    catalog, spans = _parse(text)
    fields = {_FIELD_BY_ATTR[attr]: _requirements(span) for attr, span in spans.items()}
    builder = next(iter(spans.values())).builder
    return EnvironmentSpec(
        catalog=catalog,
        builder=builder,
        source=source,
        sha256=hashlib.sha256(text.encode("utf-8")).hexdigest(),
        **fields,
    )


def load_descriptor(path: Union[str, Path]) -> EnvironmentSpec:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DescriptorNotFound(f"Cannot read descriptor '{p}': {e}", {"path": str(p)}) from e
    return parse_descriptor(text, source=str(p))


def render_descriptor(spec: EnvironmentSpec) -> str:
    """Canonical descriptor text for a spec."""
    catalog = spec.catalog or "nixpkgs"
    if not _CATALOG_RE.match(catalog):
        raise ValueError(f"Invalid catalog name {catalog!r}")
    builder = spec.builder or "mkShell"
    _check_tool_name(builder)

    lines = ["let", f"  pkgs = import <{catalog}> {{ }};", "in", "with pkgs;", f"{builder} {{"]
    for attr in INPUT_ATTRS:
        reqs = spec.inputs(attr)
        if reqs:
            lines.append(f"  {attr} = [")
            lines.extend(f"    {r.name}" for r in reqs)
            lines.append("  ];")
        elif attr == "buildInputs":
            lines.append(f"  {attr} = [ ];")
    lines.append("}")
    return "\n".join(lines) + "\n"


def _line_bounds(text: str, start: int, end: int) -> Tuple[int, int]:
    line_start = text.rfind("\n", 0, start) + 1
    line_end = text.find("\n", end)
    if line_end == -1:
        line_end = len(text)
    return line_start, line_end


def _cut_for(text: str, tok: _Token) -> Tuple[int, int]:
    line_start, line_end = _line_bounds(text, tok.start, tok.end)
    if not text[line_start:tok.start].strip() and not text[tok.end:line_end].strip():
        return line_start, min(line_end + 1, len(text))
    e = tok.end
    while e < len(text) and text[e] in " \t":
        e += 1
    return tok.start, e


def _insertion_for(text: str, span: _ListSpan, names: List[str]) -> Tuple[int, str]:
    close = span.closes[-1]
    close_line_start, _ = _line_bounds(text, close, close)
    if text[close_line_start:close].strip():
        prefix = "" if text[close - 1].isspace() else " "
        return close, prefix + " ".join(names) + " "

    bracket_indent = text[close_line_start:close]
    indent = bracket_indent + "  "
    last_list = [tok for _, tok in span.items if tok.start > span.opens[-1]]
    if last_list:
        tok = last_list[-1]
        item_line_start, _ = _line_bounds(text, tok.start, tok.end)
        if not text[item_line_start:tok.start].strip():
            indent = text[item_line_start:tok.start]
    return close_line_start, "".join(f"{indent}{n}\n" for n in names)


def edit_descriptor(
    text: str,
    add: Iterable[str] = (),
    remove: Iterable[str] = (),
    attribute: str = "buildInputs",
) -> str:
    """
    Add and remove tool names in descriptor text, leaving the rest of the
    file untouched. Removed names are cut from every input list.
    """
    _field_for(attribute)
    add = list(dict.fromkeys(add))
    remove = set(remove)
    for name in add:
        _check_tool_name(name)
    overlap = remove.intersection(add)
    if overlap:
        raise ValueError(f"Cannot both add and remove: {', '.join(sorted(overlap))}")

    _, spans = _parse(text)
    declared = {name for span in spans.values() for name, _ in span.items}
    for name in sorted(remove):
        if name not in declared:
            raise ToolNotDeclared(name)

    edits: List[Tuple[int, int, str]] = []
    for span in spans.values():
        for name, tok in span.items:
            if name in remove:
                start, end = _cut_for(text, tok)
                edits.append((start, end, ""))

    to_add = [n for n in add if n not in declared]
    if to_add:
        span = spans.get(attribute)
        if span is None:
            raise MalformedDescriptor(f"No '{attribute}' list to add to")
        pos, snippet = _insertion_for(text, span, to_add)
        edits.append((pos, pos, snippet))

    out = text
    for start, end, snippet in sorted(edits, key=lambda e: (e[0], e[1]), reverse=True):
        out = out[:start] + snippet + out[end:]

    parse_descriptor(out)
    logger.info("edited descriptor: added=%s removed=%s", to_add, sorted(remove))
    return out
