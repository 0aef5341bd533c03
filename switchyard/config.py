"""
Switchyard Configuration

Kernel-wide defaults for timeouts, load retry and navigation.
Supports a YAML config file, environment variables, and runtime overrides.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from switchyard.errors import TimeoutConfigError
from switchyard.models.timeouts import LIFECYCLE_PHASES, TimeoutPolicy

ENV_PREFIX = "SWITCHYARD_"

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class KernelConfig:
    """Top-level switchyard configuration."""
    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)

    # LOAD_ERROR units are retried no sooner than this after the failure
    load_error_retry_ms: float = 200.0

    # Navigation
    initial_url: str = "http://localhost/"
    url_reroute_only: bool = False

    # Runtime
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional[KernelConfig] = None,
    ) -> KernelConfig:
        """Load configuration from SWITCHYARD_* environment variables."""
        env = os.environ if environ is None else environ
        config = base or cls()

        if retry := env.get(f"{ENV_PREFIX}LOAD_ERROR_RETRY_MS"):
            config.load_error_retry_ms = float(retry)

        if url := env.get(f"{ENV_PREFIX}INITIAL_URL"):
            config.initial_url = url

        if reroute_only := env.get(f"{ENV_PREFIX}URL_REROUTE_ONLY"):
            config.url_reroute_only = reroute_only.lower() in _TRUTHY

        if die := env.get(f"{ENV_PREFIX}DIE_ON_TIMEOUT"):
            flag = die.lower() in _TRUTHY
            config.timeouts = config.timeouts.with_overrides(
                {phase: {"die_on_timeout": flag} for phase in LIFECYCLE_PHASES}
            )

        for phase in LIFECYCLE_PHASES:
            if millis := env.get(f"{ENV_PREFIX}{phase.upper()}_TIMEOUT_MS"):
                try:
                    value = int(millis)
                except ValueError as exc:
                    raise TimeoutConfigError(f"{phase} timeout must be an integer: {millis!r}") from exc
                config.timeouts = config.timeouts.with_overrides({phase: {"millis": value}})

        if debug := env.get(f"{ENV_PREFIX}DEBUG"):
            config.debug = debug.lower() in _TRUTHY
        if level := env.get(f"{ENV_PREFIX}LOG_LEVEL"):
            config.log_level = level.upper()

        return config

    @classmethod
    def from_file(cls, path: Path, base: Optional[KernelConfig] = None) -> KernelConfig:
        """Load configuration from a YAML file. Missing file means defaults."""
        config = base or cls()
        path = Path(path)

        if not path.exists():
            return config

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"{path}: top level must be a mapping")

        return config.apply(data)

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> KernelConfig:
        """Defaults, then file, then environment."""
        config = cls()
        if path is not None:
            config = cls.from_file(path, base=config)
        return cls.from_env(environ, base=config)

    def apply(self, data: Mapping[str, Any]) -> KernelConfig:
        """Apply a mapping of overrides in place."""
        if "timeouts" in data:
            self.timeouts = self.timeouts.with_overrides(data["timeouts"])
        if "load_error_retry_ms" in data:
            self.load_error_retry_ms = float(data["load_error_retry_ms"])
        if "initial_url" in data:
            self.initial_url = str(data["initial_url"])
        if "url_reroute_only" in data:
            self.url_reroute_only = bool(data["url_reroute_only"])
        self.debug = bool(data.get("debug", self.debug))
        self.log_level = str(data.get("log_level", self.log_level)).upper()
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timeouts": self.timeouts.to_dict(),
            "load_error_retry_ms": self.load_error_retry_ms,
            "initial_url": self.initial_url,
            "url_reroute_only": self.url_reroute_only,
            "debug": self.debug,
            "log_level": self.log_level,
        }

    def save(self, path: Path) -> None:
        """Write configuration as YAML."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)


def configure_logging(config: KernelConfig) -> None:
    """Root logging setup for host processes. The library never calls this."""
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
