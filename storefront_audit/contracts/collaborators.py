"""
Collaborator Contracts

Typed request/response shapes and interfaces for the external
collaborators the orchestrator drives: capture, synthesis and render.

BOUNDARY ENFORCEMENT:
=====================
- The orchestrator only knows these interfaces, never implementations
- Implementations live in the `collaborators` package
- Failures are raised as CollaboratorError with an explicit ErrorCode

WHY ABSTRACT:
The pipeline should not know about browser, model or renderer internals.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .base import AuditMode, EvidenceCompleteness, RunStatus, Viewport
from .exports import Evidence, ScoreResult, Ticket
from .facts import PageFacts


# =============================================================================
# CAPTURE
# =============================================================================

@dataclass(frozen=True)
class CaptureRequest:
    normalized_url: str
    locale: str
    viewport: Viewport
    timeout_seconds: float


@dataclass(frozen=True)
class ViewportCapture:
    """Raw output of one viewport capture."""
    viewport: Viewport
    screenshot_ref: Optional[str] = None
    html_ref: Optional[str] = None
    facts: Optional[PageFacts] = None

    @property
    def is_empty(self) -> bool:
        has_facts = isinstance(self.facts, PageFacts) and not self.facts.is_empty
        return not (self.screenshot_ref or self.html_ref or has_facts)


class CaptureCollaborator:
    """Produces screenshots and structural facts for a normalized URL."""

    async def capture(self, request: CaptureRequest) -> ViewportCapture:
        raise NotImplementedError


# =============================================================================
# SYNTHESIS
# =============================================================================

@dataclass(frozen=True)
class SynthesisRequest:
    run_key: str
    locale: str
    facts: PageFacts
    evidences: Tuple[Evidence, ...]
    score: ScoreResult
    rule_tickets: Tuple[Ticket, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SynthesisOutcome:
    """
    Tickets and narrative returned by the synthesis collaborator.

    `partial` is set by collaborators that know part of their output
    is missing; the orchestrator also flags tickets failing validation.
    """
    tickets: Tuple[Ticket, ...] = field(default_factory=tuple)
    executive_summary: str = ""
    reasoning: str = ""
    partial: bool = False
    partial_reason: Optional[str] = None


class SynthesisCollaborator:
    """Turns facts, evidence and score into prioritized tickets."""

    async def synthesize(self, request: SynthesisRequest) -> SynthesisOutcome:
        raise NotImplementedError


# =============================================================================
# RENDER
# =============================================================================

@dataclass(frozen=True)
class AuditReport:
    """Aggregated, read-only view of one scored run handed to the renderer."""
    audit_key: str
    run_key: str
    snapshot_key: str
    product_key: str
    mode: AuditMode
    normalized_url: str
    locale: str
    captured_at: str
    status: RunStatus
    evidence_completeness: EvidenceCompleteness
    score: Optional[ScoreResult]
    evidences: Tuple[Evidence, ...]
    tickets: Tuple[Ticket, ...]
    executive_summary: str
    versions: Tuple[Tuple[str, str], ...]
    copy_ready: bool = False
    white_label: Optional[Tuple[Tuple[str, str], ...]] = None

    def to_dict(self) -> Dict:
        return {
            'audit_key': self.audit_key,
            'run_key': self.run_key,
            'snapshot_key': self.snapshot_key,
            'product_key': self.product_key,
            'mode': self.mode.value,
            'normalized_url': self.normalized_url,
            'locale': self.locale,
            'captured_at': self.captured_at,
            'status': self.status.value,
            'evidence_completeness': self.evidence_completeness.value,
            'score': self.score.to_dict() if self.score else None,
            'evidences': [e.to_dict() for e in self.evidences],
            'tickets': [t.to_dict() for t in self.tickets],
            'executive_summary': self.executive_summary,
            'versions': dict(self.versions),
            'copy_ready': self.copy_ready,
            'white_label': dict(self.white_label) if self.white_label else None,
        }


@dataclass(frozen=True)
class RenderOutcome:
    """References to rendered outputs. report_ref is always set on success."""
    report_ref: str
    html_ref: Optional[str] = None
    pdf_ref: Optional[str] = None
    csv_ref: Optional[str] = None


class RenderCollaborator:
    """Turns an aggregated report into HTML/PDF/CSV artifacts."""

    async def render(self, report: AuditReport) -> RenderOutcome:
        raise NotImplementedError
