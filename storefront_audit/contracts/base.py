"""
Base Contracts and Shared Types

These are the foundational types used across the audit pipeline.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- No imports from the engine, the cache or the collaborators
- All records are frozen dataclasses
"""

from __future__ import annotations
from dataclasses import dataclass, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for the audit pipeline.
    Every failure a run can record is enumerated here.
    """
    CAPTURE_TIMEOUT = "CAPTURE_TIMEOUT"
    CAPTURE_BLOCKED = "CAPTURE_BLOCKED"        # anti-bot, unreachable, empty page
    FACTS_INCOMPLETE = "FACTS_INCOMPLETE"
    SCORING_INVALID_INPUT = "SCORING_INVALID_INPUT"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    SYNTHESIS_PARTIAL = "SYNTHESIS_PARTIAL"
    RENDER_FAILED = "RENDER_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"        # rejected before any stage runs


class PipelineStage(Enum):
    """Stages that can record an error, in execution order."""
    REQUEST = "request"
    CAPTURE = "capture"
    FACTS = "facts"
    SCORING = "scoring"
    SYNTHESIS = "synthesis"
    RENDER = "render"


class Criticality(Enum):
    RECOVERABLE = "recoverable"
    CRITICAL = "critical"


@dataclass(frozen=True)
class StageError:
    """
    Immutable error entry recorded by a stage.
    Errors are data, not exceptions - they are stored with stage values
    and replayed to every reader of that value.
    """
    stage: PipelineStage
    code: ErrorCode
    message: str
    criticality: Criticality
    viewport: Optional[str] = None

    @property
    def is_critical(self) -> bool:
        return self.criticality is Criticality.CRITICAL

    def to_dict(self) -> dict:
        return {
            'stage': self.stage.value,
            'code': self.code.value,
            'message': self.message,
            'criticality': self.criticality.value,
            'viewport': self.viewport,
        }


# =============================================================================
# RUN STATUS
# =============================================================================

class RunStatus(Enum):
    """Externally visible run status. Ordered from best to worst."""
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @staticmethod
    def worst(statuses: Iterable[RunStatus]) -> RunStatus:
        result = RunStatus.OK
        for status in statuses:
            if status.rank > result.rank:
                result = status
        return result


_STATUS_RANK = {RunStatus.OK: 0, RunStatus.DEGRADED: 1, RunStatus.FAILED: 2}


class EvidenceCompleteness(Enum):
    """How much of the expected evidence a snapshot carries."""
    SUFFICIENT = "sufficient"
    PARTIAL = "partial"
    INSUFFICIENT = "insufficient"

    @property
    def rank(self) -> int:
        return _COMPLETENESS_RANK[self]


_COMPLETENESS_RANK = {
    EvidenceCompleteness.INSUFFICIENT: 0,
    EvidenceCompleteness.PARTIAL: 1,
    EvidenceCompleteness.SUFFICIENT: 2,
}


class AuditMode(Enum):
    """Report mode. Only single-page audits are produced."""
    SOLO = "solo"


# =============================================================================
# CAPTURE GEOMETRY
# =============================================================================

@dataclass(frozen=True)
class Viewport:
    """Named capture viewport."""
    name: str
    width: int
    height: int

    def __post_init__(self):
        if not self.name:
            raise ValueError("Viewport name must be non-empty")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Viewport dimensions must be positive")


MOBILE_VIEWPORT = Viewport(name="mobile", width=390, height=844)
DESKTOP_VIEWPORT = Viewport(name="desktop", width=1440, height=900)


# =============================================================================
# SERIALIZATION
# =============================================================================

def to_plain(value: Any) -> Any:
    """
    Convert contracts into JSON-ready primitives.

    Dataclasses become dicts (field order kept), enums their value,
    tuples lists and datetimes ISO strings.
    """
    if hasattr(value, 'to_dict') and not isinstance(value, type):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_plain(v) for v in value)
    return value
