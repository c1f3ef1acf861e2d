from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional, Tuple

from .errors import ConfigError

ENV_PREFIX = "DEVSHELL_MCP_"

DEFAULT_DESCRIPTORS = ("shell.nix", "default.nix")


@dataclass(frozen=True)
class Settings:
    """
    Process-wide settings, read from DEVSHELL_MCP_* environment variables.
    """

    nix_bin: str = "nix-instantiate"
    nix_timeout_s: float = 10.0
    catalog_file: Optional[str] = None
    log_level: str = "INFO"
    descriptor_names: Tuple[str, ...] = DEFAULT_DESCRIPTORS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def get(key: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + key, "").strip()
            return value or None

        timeout_raw = get("NIX_TIMEOUT")
        timeout = cls.nix_timeout_s
        if timeout_raw is not None:
            try:
                timeout = float(timeout_raw)
            except ValueError:
                raise ConfigError(f"{ENV_PREFIX}NIX_TIMEOUT must be a number, got {timeout_raw!r}")
            if timeout <= 0:
                raise ConfigError(f"{ENV_PREFIX}NIX_TIMEOUT must be positive, got {timeout_raw!r}")

        level = (get("LOG_LEVEL") or cls.log_level).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigError(f"{ENV_PREFIX}LOG_LEVEL is not a logging level: {level!r}")

        names = DEFAULT_DESCRIPTORS
        names_raw = get("DESCRIPTORS")
        if names_raw is not None:
            names = tuple(n.strip() for n in names_raw.split(",") if n.strip())
            if not names:
                raise ConfigError(f"{ENV_PREFIX}DESCRIPTORS lists no file names")

        return cls(
            nix_bin=get("NIX_BIN") or cls.nix_bin,
            nix_timeout_s=timeout,
            catalog_file=get("CATALOG"),
            log_level=level,
            descriptor_names=names,
        )

    def to_dict(self) -> dict:
        return {
            "nix_bin": self.nix_bin,
            "nix_timeout_s": self.nix_timeout_s,
            "catalog_file": self.catalog_file,
            "log_level": self.log_level,
            "descriptor_names": list(self.descriptor_names),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
