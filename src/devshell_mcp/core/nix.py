from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import List

from .errors import CatalogUnavailable
from .log import ensure_logging_configured

logger = logging.getLogger("devshell_mcp.nix")


@dataclass(frozen=True)
class NixResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _kill_process_tree_windows(pid: int) -> None:
    """
    Kill a process tree on Windows (the evaluator may spawn helper processes).
    """
    subprocess.run(
        ["taskkill", "/PID", str(pid), "/T", "/F"],
        capture_output=True,
        text=True,
    )


def run_nix(args: List[str], nix_bin: str = "nix-instantiate", timeout_s: float = 10.0) -> NixResult:
    """
    Run a Nix command non-interactively and capture its output.

    Raises CatalogUnavailable when the binary cannot be started or the command times out.
    """
    ensure_logging_configured()

    cmd = [nix_bin, *args]

    start = time.perf_counter()
    logger.debug("nix: start cmd=%s timeout=%.1fs", cmd, timeout_s)

    try:
        p = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as e:
        logger.error("nix: binary not found: %s", nix_bin)
        raise CatalogUnavailable(f"Nix binary not found: {nix_bin}", {"nix_bin": nix_bin}) from e
    except OSError as e:
        logger.error("nix: cannot start %s: %s", nix_bin, e)
        raise CatalogUnavailable(f"Cannot run Nix binary {nix_bin}: {e}", {"nix_bin": nix_bin}) from e

    try:
        out, err = p.communicate(timeout=timeout_s)
    except subprocess.TimeoutExpired as e:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.error("nix: TIMEOUT elapsed=%.1fms pid=%s cmd=%s", elapsed_ms, p.pid, cmd)
        if os.name == "nt":
            _kill_process_tree_windows(p.pid)
        else:
            p.kill()
        p.communicate()
        raise CatalogUnavailable(
            f"Nix command timed out after {timeout_s}s", {"timeout_s": timeout_s}
        ) from e

    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if p.returncode != 0:
        logger.warning("nix: nonzero rc=%s elapsed=%.1fms", p.returncode, elapsed_ms)
    else:
        logger.debug("nix: ok elapsed=%.1fms out_len=%d", elapsed_ms, len(out or ""))

    return NixResult(returncode=p.returncode, stdout=out or "", stderr=err or "")
