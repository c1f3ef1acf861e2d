from mcp.server.fastmcp import FastMCP

from .core.log import ensure_logging_configured

mcp = FastMCP("devshell-descriptors")

from .tools import env_specs, find_descriptors, read_descriptor, resolve_descriptor, edit_descriptor  # noqa: E402,F401


def main() -> None:
    ensure_logging_configured()
    mcp.run()


if __name__ == "__main__":
    main()
