"""
Mock Collaborators
==================

Deterministic capture, synthesis and render doubles for testing.

GUARANTEES:
- Same request -> identical output (refs derived from request hashes)
- Explicit failure modes can be triggered per viewport
- Every call is counted; no external dependencies
"""

from __future__ import annotations
from typing import Dict, Iterable, Optional, Tuple
import asyncio
import hashlib

from storefront_audit.contracts.base import AuditMode, ErrorCode
from storefront_audit.contracts.collaborators import (
    AuditReport, CaptureCollaborator, CaptureRequest, RenderCollaborator,
    RenderOutcome, SynthesisCollaborator, SynthesisOutcome, SynthesisRequest,
    ViewportCapture
)
from storefront_audit.contracts.exports import (
    OwnerHint, Ticket, TicketCategory, TicketConfidence, TicketEffort,
    TicketImpact, TicketRisk
)
from storefront_audit.contracts.facts import (
    PageFacts, PdpFacts, StructureFacts, TechnicalFacts
)
from storefront_audit.errors import CollaboratorError


def _digest(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:12]


def sample_facts() -> PageFacts:
    """A realistic, fully observed product page."""
    return PageFacts(
        pdp=PdpFacts(
            title="Crest Straight Leg Joggers",
            price="49.00",
            currency="EUR",
            has_sale_price=False,
            has_atc_button=True,
            atc_text="Ajouter au panier",
            atc_button_count=1,
            sticky_atc_mobile=False,
            has_variant_selector=True,
            variant_types=("size", "color"),
            in_stock=True,
            has_description=True,
            description_length=420,
        ),
        structure=StructureFacts(
            h1_count=1,
            main_h1_text="Crest Straight Leg Joggers",
            h2_count=3,
            h3_count=2,
            image_count=8,
            images_without_alt=2,
            images_with_lazy_load=6,
            has_reviews_section=False,
            has_shipping_info=True,
            has_return_policy=False,
            has_social_proof=False,
            trust_badges_near_atc=False,
            form_count=2,
            has_newsletter_form=True,
        ),
        technical=TechnicalFacts(
            is_shopify=True,
            theme_name="Dawn",
            detected_apps=("Klaviyo",),
            has_google_analytics=True,
            has_facebook_pixel=False,
            has_klaviyo=True,
            script_count=24,
            external_script_count=9,
            blocking_script_count=2,
            has_skip_link=True,
            has_aria_labels=True,
            lang_attribute="fr",
            lcp_ms=3100,
        ),
    )


# =============================================================================
# CAPTURE
# =============================================================================

class MockCaptureCollaborator(CaptureCollaborator):
    """
    Deterministic capture double.

    Args:
        facts: Facts returned with every successful viewport capture
        latency_seconds: Simulated latency per call
        failures: viewport name -> ErrorCode to raise for that viewport
        hang: viewport names whose capture never completes (timeout tests)
        with_screenshots: Whether screenshot refs are produced
    """

    def __init__(
        self,
        facts: Optional[PageFacts] = None,
        latency_seconds: float = 0.0,
        failures: Optional[Dict[str, ErrorCode]] = None,
        hang: Iterable[str] = (),
        with_screenshots: bool = True
    ):
        self._facts = facts if facts is not None else sample_facts()
        self._latency = latency_seconds
        self._failures = dict(failures or {})
        self._hang = frozenset(hang)
        self._with_screenshots = with_screenshots
        self.calls = 0
        self.requests: list = []

    async def capture(self, request: CaptureRequest) -> ViewportCapture:
        self.calls += 1
        self.requests.append(request)
        name = request.viewport.name

        if name in self._hang:
            await asyncio.Event().wait()
        if self._latency:
            await asyncio.sleep(self._latency)

        code = self._failures.get(name)
        if code is not None:
            raise CollaboratorError(
                code, f"Mock capture configured to fail: {code.value}", viewport=name
            )

        ref = _digest(request.normalized_url, name, str(request.viewport.width))
        return ViewportCapture(
            viewport=request.viewport,
            screenshot_ref=f"mock://screenshots/{ref}.png" if self._with_screenshots else None,
            html_ref=f"mock://html/{ref}.html",
            facts=self._facts,
        )


# =============================================================================
# SYNTHESIS
# =============================================================================

class MockSynthesisCollaborator(SynthesisCollaborator):
    """
    Deterministic synthesis double.

    Returns one extra ticket pointing at the first evidence, plus any
    `extra_tickets` given (used to exercise validation of synthesized
    tickets).
    """

    def __init__(
        self,
        latency_seconds: float = 0.0,
        failure: Optional[str] = None,
        hang: bool = False,
        extra_tickets: Tuple[Ticket, ...] = (),
        summary: str = "Synthèse simulée."
    ):
        self._latency = latency_seconds
        self._failure = failure
        self._hang = hang
        self._extra = tuple(extra_tickets)
        self._summary = summary
        self.calls = 0

    async def synthesize(self, request: SynthesisRequest) -> SynthesisOutcome:
        self.calls += 1
        if self._hang:
            await asyncio.Event().wait()
        if self._latency:
            await asyncio.sleep(self._latency)
        if self._failure is not None:
            raise CollaboratorError(ErrorCode.SYNTHESIS_FAILED, self._failure)

        tickets = list(self._extra)
        if request.evidences:
            tickets.append(Ticket(
                ticket_id="T_solo_ai_media_gallery_pdp_01",
                mode=AuditMode.SOLO,
                title="Enrichir la galerie produit" if request.locale == "fr"
                else "Enrich the product gallery",
                impact=TicketImpact.MEDIUM,
                effort=TicketEffort.SMALL,
                risk=TicketRisk.LOW,
                confidence=TicketConfidence.MEDIUM,
                category=TicketCategory.MEDIA,
                why=f"Score {request.score.score}/100.",
                evidence_refs=(request.evidences[0].evidence_id,),
                how_to=("Add lifestyle shots", "Add a size guide image", "Add a zoom view"),
                validation=("Gallery shows at least 6 images",),
                quick_win=False,
                owner_hint=OwnerHint.DESIGN,
                notes="mock synthesis",
            ))
        return SynthesisOutcome(
            tickets=tuple(tickets),
            executive_summary=self._summary,
            reasoning="mock",
        )


# =============================================================================
# RENDER
# =============================================================================

class MockRenderCollaborator(RenderCollaborator):
    """Deterministic render double; keeps every report it received."""

    def __init__(
        self,
        latency_seconds: float = 0.0,
        failure: Optional[str] = None,
        hang: bool = False
    ):
        self._latency = latency_seconds
        self._failure = failure
        self._hang = hang
        self.calls = 0
        self.reports: list = []

    async def render(self, report: AuditReport) -> RenderOutcome:
        self.calls += 1
        self.reports.append(report)
        if self._hang:
            await asyncio.Event().wait()
        if self._latency:
            await asyncio.sleep(self._latency)
        if self._failure is not None:
            raise CollaboratorError(ErrorCode.RENDER_FAILED, self._failure)
        return RenderOutcome(
            report_ref=f"mock://reports/{report.audit_key}.json",
            html_ref=f"mock://reports/{report.audit_key}.html",
            csv_ref=f"mock://reports/{report.audit_key}.csv",
        )
