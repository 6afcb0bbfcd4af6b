"""
Audit Configuration
===================

Frozen configuration objects passed to the orchestrator and its
collaborators. Nothing here is read from module globals at run time.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Mapping, Optional, Tuple
import os

from .contracts.base import (
    DESKTOP_VIEWPORT, EvidenceCompleteness, MOBILE_VIEWPORT, Viewport
)
from .contracts.versions import DEFAULT_VERSIONS, VersionRegistry


EVIDENCE_KINDS = frozenset({
    "mobile_screenshot",
    "desktop_screenshot",
    "mobile_html",
    "desktop_html",
    "facts",
})


@dataclass(frozen=True)
class CompletenessPolicy:
    """
    Evidence completeness thresholds.

    A snapshot is SUFFICIENT when it carries every kind in
    `sufficient_requires`, PARTIAL when it carries every kind in
    `partial_requires`, INSUFFICIENT otherwise. A run whose completeness
    ranks below `degrade_below` is reported as degraded.
    """
    sufficient_requires: FrozenSet[str] = frozenset(
        {"mobile_screenshot", "desktop_screenshot", "facts"}
    )
    partial_requires: FrozenSet[str] = frozenset({"mobile_screenshot"})
    degrade_below: EvidenceCompleteness = EvidenceCompleteness.SUFFICIENT

    def __post_init__(self):
        unknown = (set(self.sufficient_requires) | set(self.partial_requires)) - EVIDENCE_KINDS
        if unknown:
            raise ValueError(f"Unknown evidence kinds: {sorted(unknown)}")

    def degrades(self, completeness: EvidenceCompleteness) -> bool:
        return completeness.rank < self.degrade_below.rank


@dataclass(frozen=True)
class AuditConfig:
    """
    Configuration for one AuditOrchestrator.

    The first viewport is the primary one: losing its capture fails
    the run, losing any other only degrades it.
    """
    versions: VersionRegistry = DEFAULT_VERSIONS
    viewports: Tuple[Viewport, ...] = (MOBILE_VIEWPORT, DESKTOP_VIEWPORT)
    capture_timeout_seconds: float = 15.0
    synthesis_timeout_seconds: float = 30.0
    render_timeout_seconds: float = 60.0
    default_locale: str = "fr"
    supported_locales: Tuple[str, ...] = ("fr", "en")
    max_tickets: int = 5
    max_large_effort_tickets: int = 1
    completeness: CompletenessPolicy = field(default_factory=CompletenessPolicy)
    cache_degraded_results: bool = False
    output_dir: str = "output"

    def __post_init__(self):
        if not self.viewports:
            raise ValueError("At least one viewport is required")
        names = [v.name for v in self.viewports]
        if len(set(names)) != len(names):
            raise ValueError("Viewport names must be unique")
        if self.default_locale not in self.supported_locales:
            raise ValueError(
                f"Default locale '{self.default_locale}' is not supported"
            )
        for name in ("capture_timeout_seconds", "synthesis_timeout_seconds",
                     "render_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_tickets < 1:
            raise ValueError("max_tickets must be at least 1")

    @property
    def primary_viewport(self) -> Viewport:
        return self.viewports[0]

    def with_versions(self, **changes: str) -> AuditConfig:
        return replace(self, versions=self.versions.bump(**changes))

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides
    ) -> AuditConfig:
        """
        Build a config from AUDIT_* environment variables.

        Unset variables keep their defaults; explicit keyword overrides win.
        """
        env = os.environ if environ is None else environ
        values = {}

        for var, name in (
            ("AUDIT_CAPTURE_TIMEOUT", "capture_timeout_seconds"),
            ("AUDIT_SYNTHESIS_TIMEOUT", "synthesis_timeout_seconds"),
            ("AUDIT_RENDER_TIMEOUT", "render_timeout_seconds"),
        ):
            if env.get(var):
                values[name] = float(env[var])

        if env.get("AUDIT_DEFAULT_LOCALE"):
            values["default_locale"] = env["AUDIT_DEFAULT_LOCALE"].strip().lower()
        if env.get("AUDIT_MAX_TICKETS"):
            values["max_tickets"] = int(env["AUDIT_MAX_TICKETS"])
        if env.get("AUDIT_CACHE_DEGRADED"):
            values["cache_degraded_results"] = (
                env["AUDIT_CACHE_DEGRADED"].strip().lower() in ("1", "true", "yes", "on")
            )
        if env.get("AUDIT_OUTPUT_DIR"):
            values["output_dir"] = env["AUDIT_OUTPUT_DIR"]

        values.update(overrides)
        return cls(**values)
