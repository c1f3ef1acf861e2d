from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class DevshellError(RuntimeError):
    """Expected, structured failure raised by the core layer.

    `data` carries machine-readable context (line numbers, missing names)
    that the tool layer copies into its response.
    """

    kind = "DevshellError"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.data: Dict[str, Any] = dict(data or {})

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.message, "error_kind": self.kind, **self.data}


class MalformedDescriptor(DevshellError):
    kind = "MalformedDescriptor"

    def __init__(self, message: str, line: Optional[int] = None) -> None:
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message, {"line": line})

    @property
    def line(self) -> Optional[int]:
        return self.data.get("line")


class DescriptorNotFound(DevshellError):
    kind = "DescriptorNotFound"


class ToolNotDeclared(DevshellError):
    kind = "ToolNotDeclared"

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is not declared", {"name": name})


class UnresolvedToolName(DevshellError):
    kind = "UnresolvedToolName"

    def __init__(self, missing: Iterable[str], catalog: str) -> None:
        missing = list(missing)
        super().__init__(
            f"{len(missing)} tool(s) not found in catalog '{catalog}': {', '.join(missing)}",
            {"missing": missing, "catalog": catalog},
        )

    @property
    def missing(self) -> list:
        return self.data["missing"]


class CatalogError(DevshellError):
    kind = "CatalogError"


class CatalogUnavailable(CatalogError):
    kind = "CatalogUnavailable"


class ConfigError(DevshellError):
    kind = "ConfigError"


class DescriptorWriteError(DevshellError):
    kind = "DescriptorWriteError"
