"""
Offline Synthesis Tests
"""

import asyncio

from collaborators.providers.mock import sample_facts
from collaborators.synthesis import OfflineSynthesizer
from storefront_audit.contracts.collaborators import SynthesisRequest
from storefront_audit.scoring import score
from storefront_audit.tickets import fallback_summary


def make_request(locale="en"):
    facts = sample_facts()
    return SynthesisRequest(
        run_key="run_0123456789abcdef",
        locale=locale,
        facts=facts,
        evidences=(),
        score=score(facts),
    )


class TestOfflineSynthesizer:

    def test_summary_matches_fallback(self):
        request = make_request()
        outcome = asyncio.run(OfflineSynthesizer().synthesize(request))
        assert outcome.executive_summary == fallback_summary(request.score, (), "en")
        assert outcome.tickets == ()
        assert outcome.partial is False

    def test_reasoning_names_weakest_pillar(self):
        outcome = asyncio.run(OfflineSynthesizer().synthesize(make_request("fr")))
        assert "performance" in outcome.reasoning

    def test_deterministic(self):
        first = asyncio.run(OfflineSynthesizer().synthesize(make_request()))
        second = asyncio.run(OfflineSynthesizer().synthesize(make_request()))
        assert first == second
