"""
Version Registry
================

Single source of truth for every logic-version constant.

INVARIANT: Any change to normalization, capture, detection, scoring,
rendering or an export schema MUST bump the matching version here.
Cache keys embed these values, so a bump invalidates exactly the
affected stage and everything downstream of it.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Dict


@dataclass(frozen=True)
class VersionRegistry:
    """
    Immutable set of logic versions consulted by one pipeline.

    Injected into the orchestrator through its config; never read from
    module globals at key-derivation time.
    """
    normalize: str = "1.0"
    engine: str = "1.0"              # capture / orchestration logic
    detectors: str = "1.0"
    scoring: str = "2.2"
    render: str = "1.0"
    report_outline: str = "3.1"
    ticket_schema: str = "2"
    evidence_schema: str = "2"
    export_format: str = "1"         # CSV export

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"Version '{f.name}' must be a non-empty string")

    def bump(self, **changes: str) -> VersionRegistry:
        """Return a new registry with the given versions replaced."""
        return replace(self, **changes)

    def as_dict(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_dict(self) -> Dict[str, str]:
        return self.as_dict()


DEFAULT_VERSIONS = VersionRegistry()
