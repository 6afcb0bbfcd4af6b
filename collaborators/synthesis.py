"""
Offline Synthesis

Deterministic synthesis collaborator used when no AI provider is
configured: it writes the executive summary from the score and adds no
tickets of its own.
"""

from __future__ import annotations

from storefront_audit.contracts.collaborators import (
    SynthesisCollaborator, SynthesisOutcome, SynthesisRequest
)
from storefront_audit.tickets import fallback_summary


class OfflineSynthesizer(SynthesisCollaborator):

    async def synthesize(self, request: SynthesisRequest) -> SynthesisOutcome:
        summary = fallback_summary(request.score, request.rule_tickets, request.locale)
        weakest = sorted(request.score.pillar_scores, key=lambda item: item[1])[:1]
        reasoning = (
            f"Offline synthesis over {len(request.evidences)} evidence(s); "
            f"weakest pillar: {weakest[0][0].value}" if weakest else "Offline synthesis"
        )
        return SynthesisOutcome(
            tickets=(),
            executive_summary=summary,
            reasoning=reasoning,
        )
