"""
Export Contracts
================

Stable export shapes: Evidence (schema v2), Ticket (schema v2) and the
score result produced by the scoring engine.

Any breaking change here requires bumping `evidence_schema` or
`ticket_schema` in the version registry.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .base import AuditMode


# =============================================================================
# EVIDENCE
# =============================================================================

class EvidenceLevel(Enum):
    """A = strong, B = relevant but incomplete, C = inference (appendix only)."""
    A = "A"
    B = "B"
    C = "C"


class EvidenceType(Enum):
    """Closed set of evidence kinds."""
    SCREENSHOT = "screenshot"
    MEASUREMENT = "measurement"
    DETECTION = "detection"


@dataclass(frozen=True)
class Evidence:
    """
    Immutable evidence record.

    evidence_id format: E_<source>_<viewport>_<type>_<label>_<seq:02d>
    ref is always the HTML anchor "#evidence-<evidence_id>".
    """
    evidence_id: str
    level: EvidenceLevel
    type: EvidenceType
    label: str
    source: str
    viewport: str
    timestamp: str
    ref: str
    details: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    def detail(self, key: str) -> Any:
        for k, v in self.details:
            if k == key:
                return v
        return None

    def to_dict(self) -> dict:
        return {
            'evidence_id': self.evidence_id,
            'level': self.level.value,
            'type': self.type.value,
            'label': self.label,
            'source': self.source,
            'viewport': self.viewport,
            'timestamp': self.timestamp,
            'ref': self.ref,
            'details': _details_to_dict(self.details),
        }


def _details_to_dict(details: Tuple[Tuple[str, Any], ...]) -> Dict[str, Any]:
    result = {}
    for key, value in details:
        if isinstance(value, tuple) and value and all(
            isinstance(item, tuple) and len(item) == 2 for item in value
        ):
            result[key] = _details_to_dict(value)
        else:
            result[key] = value
    return result


# =============================================================================
# TICKETS
# =============================================================================

class TicketImpact(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TicketEffort(Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class TicketRisk(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TicketConfidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TicketCategory(Enum):
    OFFER_CLARITY = "offer_clarity"
    TRUST = "trust"
    MEDIA = "media"
    UX = "ux"
    PERFORMANCE = "performance"
    SEO_BASICS = "seo_basics"
    ACCESSIBILITY = "accessibility"


class OwnerHint(Enum):
    DESIGN = "design"
    DEV = "dev"
    CONTENT = "content"
    OPS = "ops"


@dataclass(frozen=True)
class Ticket:
    """
    Actionable finding.

    ticket_id format: T_<mode>_<category>_<signal>_<scope>_<idx>
    evidence_refs must name at least one evidence of the same run.
    """
    ticket_id: str
    mode: AuditMode
    title: str
    impact: TicketImpact
    effort: TicketEffort
    risk: TicketRisk
    confidence: TicketConfidence
    category: TicketCategory
    why: str
    evidence_refs: Tuple[str, ...]
    how_to: Tuple[str, ...]
    validation: Tuple[str, ...]
    quick_win: bool
    owner_hint: OwnerHint
    notes: str = ""
    rule_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'ticket_id': self.ticket_id,
            'mode': self.mode.value,
            'title': self.title,
            'impact': self.impact.value,
            'effort': self.effort.value,
            'risk': self.risk.value,
            'confidence': self.confidence.value,
            'category': self.category.value,
            'why': self.why,
            'evidence_refs': list(self.evidence_refs),
            'how_to': list(self.how_to),
            'validation': list(self.validation),
            'quick_win': self.quick_win,
            'owner_hint': self.owner_hint.value,
            'notes': self.notes,
            'rule_id': self.rule_id,
        }


# =============================================================================
# SCORE
# =============================================================================

class Pillar(Enum):
    CLARITY = "clarity"
    FRICTION = "friction"
    TRUST = "trust"
    SOCIAL = "social"
    MOBILE = "mobile"
    PERFORMANCE = "performance"
    SEO = "seo"


@dataclass(frozen=True)
class BreakdownItem:
    """One applied rule contribution."""
    pillar: Pillar
    delta: int
    reason: str
    rule_id: Optional[str] = None
    fact_ids: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            'pillar': self.pillar.value,
            'delta': self.delta,
            'reason': self.reason,
            'rule_id': self.rule_id,
            'fact_ids': list(self.fact_ids),
        }


@dataclass(frozen=True)
class ScoreResult:
    """Deterministic output of the scoring engine."""
    score: int
    pillar_scores: Tuple[Tuple[Pillar, int], ...]
    breakdown: Tuple[BreakdownItem, ...]
    reasoning: str
    scoring_version: str

    def pillar(self, pillar: Pillar) -> int:
        for p, value in self.pillar_scores:
            if p is pillar:
                return value
        raise KeyError(pillar)

    def deductions(self, pillar: Optional[Pillar] = None) -> Tuple[BreakdownItem, ...]:
        return tuple(
            b for b in self.breakdown
            if b.delta < 0 and (pillar is None or b.pillar is pillar)
        )

    def to_dict(self) -> dict:
        return {
            'score': self.score,
            'pillar_scores': {p.value: v for p, v in self.pillar_scores},
            'breakdown': [b.to_dict() for b in self.breakdown],
            'reasoning': self.reasoning,
            'scoring_version': self.scoring_version,
        }
