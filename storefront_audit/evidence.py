"""
Evidence Builder
================

Builds the evidence pack of a run from its capture artifacts.

GUARANTEES:
- build_evidence(artifacts) is a PURE FUNCTION: same artifacts ->
  byte-identical evidence list (ids, order, timestamps)
- Timestamps come from the snapshot's captured_at, never the clock
- Absent inputs omit their record; nothing is invented

Record order is fixed:
    1. screenshot/above_fold per viewport with a screenshot (mobile first)
    2. detection/facts when facts exist
    3. measurement/lcp when an LCP measurement exists
"""

from __future__ import annotations
from typing import List, Optional, Tuple

from .config import CompletenessPolicy
from .contracts.base import EvidenceCompleteness
from .contracts.exports import Evidence, EvidenceLevel, EvidenceType
from .contracts.facts import CaptureArtifacts, PageFacts, ViewportArtifact


NO_VIEWPORT = "na"

# Viewports with a known display order; any other viewport follows, by name.
_VIEWPORT_ORDER = ("mobile", "desktop")


def evidence_id(source: str, viewport: str, type_: EvidenceType, label: str, seq: int = 1) -> str:
    return f"E_{source}_{viewport}_{type_.value}_{label}_{seq:02d}"


def _make(
    source: str,
    viewport: str,
    type_: EvidenceType,
    label: str,
    level: EvidenceLevel,
    timestamp: str,
    details: Tuple
) -> Evidence:
    eid = evidence_id(source, viewport, type_, label)
    return Evidence(
        evidence_id=eid,
        level=level,
        type=type_,
        label=label,
        source=source,
        viewport=viewport,
        timestamp=timestamp,
        ref=f"#evidence-{eid}",
        details=details,
    )


def _ordered_viewports(artifacts: CaptureArtifacts) -> List[ViewportArtifact]:
    def rank(artifact: ViewportArtifact):
        name = artifact.viewport.name
        if name in _VIEWPORT_ORDER:
            return (_VIEWPORT_ORDER.index(name), name)
        return (len(_VIEWPORT_ORDER), name)
    return sorted(artifacts.viewports, key=rank)


def _facts_summary(artifacts: CaptureArtifacts) -> Tuple:
    facts = artifacts.facts
    pdp, structure, technical = facts.pdp, facts.structure, facts.technical
    return (
        ("has_atc_button", pdp.has_atc_button if pdp else None),
        ("has_variant_selector", pdp.has_variant_selector if pdp else None),
        ("has_description", pdp.has_description if pdp else None),
        ("has_reviews_section", structure.has_reviews_section if structure else None),
        ("is_shopify", technical.is_shopify if technical else None),
    )


def build_evidence(artifacts: CaptureArtifacts) -> Tuple[Evidence, ...]:
    """Build the ordered evidence records for one snapshot."""
    source = artifacts.source
    timestamp = artifacts.captured_at
    evidences: List[Evidence] = []

    for artifact in _ordered_viewports(artifacts):
        if not artifact.screenshot_ref:
            continue
        viewport = artifact.viewport
        evidences.append(_make(
            source, viewport.name, EvidenceType.SCREENSHOT, "above_fold",
            EvidenceLevel.A, timestamp,
            (
                ("screenshot_ref", artifact.screenshot_ref),
                ("viewport_config", (("width", viewport.width), ("height", viewport.height))),
            ),
        ))

    facts = artifacts.facts
    if isinstance(facts, PageFacts) and not facts.is_empty:
        complete = not facts.missing_categories
        evidences.append(_make(
            source, NO_VIEWPORT, EvidenceType.DETECTION, "facts",
            EvidenceLevel.A if complete else EvidenceLevel.B, timestamp,
            (
                ("detector_id", "facts_collector"),
                ("method", "dom_strict"),
                ("facts_version", artifacts.facts_version),
                ("categories", tuple(c.value for c in facts.present_categories)),
                ("facts_summary", _facts_summary(artifacts)),
            ),
        ))

    lcp_ms = artifacts.lcp_ms
    if isinstance(lcp_ms, int) and not isinstance(lcp_ms, bool):
        evidences.append(_make(
            source, NO_VIEWPORT, EvidenceType.MEASUREMENT, "lcp",
            EvidenceLevel.A, timestamp,
            (
                ("metric", "largest_contentful_paint"),
                ("value_ms", lcp_ms),
            ),
        ))

    return tuple(evidences)


def first_screenshot_ref(evidences: Tuple[Evidence, ...]) -> Optional[str]:
    """Evidence id tickets should point at: first screenshot, else first record."""
    for evidence in evidences:
        if evidence.type is EvidenceType.SCREENSHOT:
            return evidence.evidence_id
    return evidences[0].evidence_id if evidences else None


def assess_completeness(
    artifacts: CaptureArtifacts,
    policy: Optional[CompletenessPolicy] = None
) -> EvidenceCompleteness:
    """Grade the evidence a snapshot carries against an explicit policy."""
    policy = policy or CompletenessPolicy()
    kinds = artifacts.evidence_kinds()
    if policy.sufficient_requires <= kinds:
        return EvidenceCompleteness.SUFFICIENT
    if policy.partial_requires <= kinds:
        return EvidenceCompleteness.PARTIAL
    return EvidenceCompleteness.INSUFFICIENT
