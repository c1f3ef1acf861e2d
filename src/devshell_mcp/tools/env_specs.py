from __future__ import annotations

from ..core.config import get_settings
from ..core.descriptor import INPUT_ATTRS
from ..core.errors import ConfigError
from ..server import mcp


@mcp.tool()
def env_specs() -> dict:
    """
    Describe what this server reads, how it resolves tools, and its active configuration.
    """
    try:
        config = get_settings().to_dict()
    except ConfigError as e:
        config = e.to_dict()

    return {
        "server": "devshell-descriptors",
        "scope": "local repo only",
        "network": "disabled/not required",
        "descriptor_attributes": list(INPUT_ATTRS),
        "config": config,
        "notes": [
            "Descriptors are read, never evaluated",
            "Shell activation is left to nix-shell",
            "Catalog lookups use the local Nix channel or a JSON catalog file",
        ],
    }
