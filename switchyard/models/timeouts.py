"""
Timeout Models
==============

Per-phase deadline configuration for lifecycle hooks.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from switchyard.errors import TimeoutConfigError

LIFECYCLE_PHASES = ("bootstrap", "mount", "unmount", "unload", "update")

# Hook bundles may spell keys in camelCase.
_KEY_ALIASES = {
    "dieOnTimeout": "die_on_timeout",
    "warningMillis": "warning_millis",
}


class PhaseTimeout(BaseModel):
    """Deadline for one lifecycle phase."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    millis: int = Field(3000, ge=0, strict=True)
    die_on_timeout: bool = Field(False, strict=True)
    warning_millis: int = Field(1000, ge=0, strict=True)


class TimeoutPolicy(BaseModel):
    """Deadlines for every lifecycle phase of a unit."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    bootstrap: PhaseTimeout = Field(default_factory=lambda: PhaseTimeout(millis=4000))
    mount: PhaseTimeout = Field(default_factory=PhaseTimeout)
    unmount: PhaseTimeout = Field(default_factory=PhaseTimeout)
    unload: PhaseTimeout = Field(default_factory=PhaseTimeout)
    update: PhaseTimeout = Field(default_factory=PhaseTimeout)

    def for_phase(self, phase: str) -> PhaseTimeout:
        if phase not in LIFECYCLE_PHASES:
            raise KeyError(phase)
        return getattr(self, phase)

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> TimeoutPolicy:
        """
        Return a copy with per-phase overrides applied.

        Each phase may override any subset of its three parameters.
        Raises TimeoutConfigError on unknown phases, unknown keys,
        wrong types or negative values.
        """
        if not overrides:
            return self
        if not isinstance(overrides, Mapping):
            raise TimeoutConfigError(
                f"timeouts must be a mapping of phase to settings, got {type(overrides).__name__}"
            )

        merged: Dict[str, Dict[str, Any]] = self.model_dump()
        for phase, values in overrides.items():
            if phase not in LIFECYCLE_PHASES:
                raise TimeoutConfigError(f"Unknown lifecycle phase in timeouts: {phase!r}")
            if not isinstance(values, Mapping):
                raise TimeoutConfigError(f"timeouts.{phase} must be a mapping")
            for key, value in values.items():
                merged[phase][_KEY_ALIASES.get(key, key)] = value

        try:
            return TimeoutPolicy.model_validate(merged)
        except ValidationError as exc:
            raise TimeoutConfigError(f"Invalid timeouts: {exc}") from exc

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return self.model_dump()
