"""
Audit Orchestrator Integration Tests

Full runs through capture, scoring, synthesis and render.

INVARIANTS TESTED:
1. Same URL + locale + versions -> identical exports and evidence ids
2. A repeated audit is served from the cache without recapturing
3. A version bump recomputes its stage and everything downstream only
4. Concurrent identical audits share one capture
5. Losing the primary viewport fails the run; losing any other degrades it
6. Degraded stage values are never cached
7. Synthesis and render failures are reported, never raised
8. The audit job reflects the latest render, even for callers that stopped waiting
"""

import asyncio
import httpx
import pytest

from collaborators.capture import HttpCaptureCollaborator
from collaborators.render import FileRenderCollaborator
from storefront_audit.cache import InMemoryCacheStore
from storefront_audit.config import AuditConfig
from storefront_audit.contracts.base import (
    AuditMode, Criticality, ErrorCode, EvidenceCompleteness, RunStatus
)
from storefront_audit.contracts.exports import (
    EvidenceType, OwnerHint, Ticket, TicketCategory, TicketConfidence, TicketEffort,
    TicketImpact, TicketRisk
)
from storefront_audit.contracts.facts import PageFacts, PdpFacts
from storefront_audit.engine import AuditOptions
from storefront_audit.errors import InvalidRequestError
from storefront_audit.state_machine import JobStatus, PipelineState

from .fixtures import (
    EmptyRenderCollaborator, FlakyRenderCollaborator, MockCaptureCollaborator,
    MockRenderCollaborator, MockSynthesisCollaborator, OTHER_PRODUCT_URL,
    PRODUCT_URL, PRODUCT_URL_VARIANT, RaisingCaptureCollaborator,
    RaisingRenderCollaborator, RaisingSynthesisCollaborator,
    RecoveringCaptureCollaborator, T1, build_orchestrator, exports_of, run
)


RULE_TICKETS = [
    "T_solo_rules_reviews_pdp_01",
    "T_solo_rules_images_alt_pdp_01",
    "T_solo_rules_performance_pdp_01",
]


def error_codes(result):
    return [e.code for e in result.errors]


# =============================================================================
# HAPPY PATH
# =============================================================================

class TestHappyPath:

    def test_complete_run(self):
        orchestrator = build_orchestrator()
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.OK
        assert result.state is PipelineState.COMPLETED
        assert result.state_history == (
            PipelineState.PENDING,
            PipelineState.CAPTURING,
            PipelineState.SCORING,
            PipelineState.SYNTHESIZING,
            PipelineState.RENDERING,
            PipelineState.COMPLETED,
        )
        assert result.errors == ()
        assert result.primary_error is None
        assert result.score.score == 47
        assert [t.ticket_id for t in result.tickets] == RULE_TICKETS
        assert result.report_meta.evidence_completeness is EvidenceCompleteness.SUFFICIENT
        assert result.report_meta.locale == "fr"
        assert result.report_meta.captured_at == T1.isoformat()
        assert result.artifacts.report_ref == f"mock://reports/{result.keys.audit_key}.json"

    def test_every_key_is_allocated(self):
        result = run(build_orchestrator().run_audit(PRODUCT_URL))
        keys = result.keys
        assert keys.product_key.startswith("prod_")
        assert keys.snapshot_key.startswith("snap_")
        assert keys.run_key.startswith("run_")
        assert keys.audit_key.startswith("audit_")

    def test_tickets_reference_run_evidence(self):
        result = run(build_orchestrator().run_audit(PRODUCT_URL))
        known = {e.evidence_id for e in result.evidences}
        for ticket in result.tickets:
            assert set(ticket.evidence_refs) <= known

    def test_render_receives_aggregated_report(self):
        render = MockRenderCollaborator()
        orchestrator = build_orchestrator(render=render)
        result = run(orchestrator.run_audit(
            PRODUCT_URL, "en", AuditOptions.create(copy_ready=True, white_label={"brand": "Acme"})
        ))
        report = render.reports[0]
        assert report.audit_key == result.keys.audit_key
        assert report.run_key == result.keys.run_key
        assert report.locale == "en"
        assert report.copy_ready is True
        assert report.white_label == (("brand", "Acme"),)
        assert report.mode is AuditMode.SOLO
        assert report.status is RunStatus.OK

    def test_status_view(self):
        orchestrator = build_orchestrator()
        result = run(orchestrator.run_audit(PRODUCT_URL, "en"))
        view = orchestrator.get_status(result.keys.audit_key)
        assert view.job_status is JobStatus.COMPLETED
        assert view.status is RunStatus.OK
        assert view.message == "Report ready"
        assert view.report_ref == result.artifacts.report_ref

    def test_unknown_audit_key(self):
        assert build_orchestrator().get_status("audit_ffffffffffffffff") is None

    def test_metrics_are_recorded(self):
        orchestrator = build_orchestrator()
        run(orchestrator.run_audit(PRODUCT_URL))
        metrics = orchestrator.metrics
        assert metrics.total("collaborator_calls_total",
                             {"collaborator": "capture", "outcome": "ok"}) == 2
        assert metrics.total("audit_runs_total", {"status": "ok"}) == 1


# =============================================================================
# DETERMINISM AND CACHING
# =============================================================================

class TestDeterminism:

    def test_independent_orchestrators_agree(self):
        first = run(build_orchestrator().run_audit(PRODUCT_URL))
        second = run(build_orchestrator().run_audit(PRODUCT_URL))
        assert exports_of(first) == exports_of(second)

    def test_evidence_ids_are_idempotent(self):
        first = run(build_orchestrator().run_audit(PRODUCT_URL))
        second = run(build_orchestrator().run_audit(PRODUCT_URL))
        assert [e.evidence_id for e in first.evidences] == \
            [e.evidence_id for e in second.evidences]

    def test_url_variants_share_keys(self):
        orchestrator = build_orchestrator()
        first = run(orchestrator.run_audit(PRODUCT_URL))
        second = run(orchestrator.run_audit(PRODUCT_URL_VARIANT))
        assert first.keys == second.keys
        assert second.report_meta.url == PRODUCT_URL_VARIANT

    def test_shared_report_holds_no_caller_url(self):
        render = MockRenderCollaborator()
        orchestrator = build_orchestrator(render=render)
        first = run(orchestrator.run_audit(PRODUCT_URL_VARIANT))
        second = run(orchestrator.run_audit(PRODUCT_URL))

        assert second.from_cache("render")
        report = render.reports[0].to_dict()
        assert 'url' not in report
        assert report['normalized_url'] == first.report_meta.normalized_url
        assert PRODUCT_URL_VARIANT not in str(report)
        assert first.report_meta.url == PRODUCT_URL_VARIANT
        assert second.report_meta.url == PRODUCT_URL

    def test_locale_and_url_change_product_key(self):
        orchestrator = build_orchestrator()
        fr = run(orchestrator.run_audit(PRODUCT_URL, "fr"))
        en = run(orchestrator.run_audit(PRODUCT_URL, "en"))
        other = run(orchestrator.run_audit(OTHER_PRODUCT_URL, "fr"))
        assert len({fr.keys.product_key, en.keys.product_key, other.keys.product_key}) == 3


class TestCaching:

    def test_second_run_is_served_from_cache(self):
        capture, render = MockCaptureCollaborator(), MockRenderCollaborator()
        orchestrator = build_orchestrator(capture=capture, render=render)

        first = run(orchestrator.run_audit(PRODUCT_URL))
        second = run(orchestrator.run_audit(PRODUCT_URL))

        assert first.cache == (("snapshot", False), ("run", False), ("render", False))
        assert second.cache == (("snapshot", True), ("run", True), ("render", True))
        assert capture.calls == 2
        assert render.calls == 1
        assert exports_of(first) == exports_of(second)

    def test_report_options_only_rerender(self):
        capture, render = MockCaptureCollaborator(), MockRenderCollaborator()
        orchestrator = build_orchestrator(capture=capture, render=render)

        plain = run(orchestrator.run_audit(PRODUCT_URL))
        copy_ready = run(orchestrator.run_audit(
            PRODUCT_URL, options=AuditOptions.create(copy_ready=True)
        ))
        assert plain.keys.run_key == copy_ready.keys.run_key
        assert plain.keys.audit_key != copy_ready.keys.audit_key
        assert copy_ready.from_cache("run")
        assert not copy_ready.from_cache("render")
        assert capture.calls == 2
        assert render.calls == 2


class TestVersionIsolation:

    def setup_method(self):
        self.store = InMemoryCacheStore()
        self.capture = MockCaptureCollaborator()
        self.render = MockRenderCollaborator()
        self.baseline = run(self._orchestrator(AuditConfig()).run_audit(PRODUCT_URL))

    def _orchestrator(self, config):
        return build_orchestrator(
            capture=self.capture, render=self.render, config=config, store=self.store
        )

    def test_scoring_bump_keeps_snapshot(self):
        config = AuditConfig().with_versions(scoring="2.3")
        result = run(self._orchestrator(config).run_audit(PRODUCT_URL))

        assert result.keys.snapshot_key == self.baseline.keys.snapshot_key
        assert result.keys.run_key != self.baseline.keys.run_key
        assert result.keys.audit_key != self.baseline.keys.audit_key
        assert result.cache == (("snapshot", True), ("run", False), ("render", False))
        assert self.capture.calls == 2
        assert result.score.scoring_version == "2.3"

    def test_render_bump_keeps_run(self):
        config = AuditConfig().with_versions(render="1.1")
        result = run(self._orchestrator(config).run_audit(PRODUCT_URL))

        assert result.keys.run_key == self.baseline.keys.run_key
        assert result.keys.audit_key != self.baseline.keys.audit_key
        assert result.cache == (("snapshot", True), ("run", True), ("render", False))
        assert self.render.calls == 2

    def test_engine_bump_recaptures(self):
        config = AuditConfig().with_versions(engine="1.1")
        result = run(self._orchestrator(config).run_audit(PRODUCT_URL))

        assert result.keys.product_key == self.baseline.keys.product_key
        assert result.keys.snapshot_key != self.baseline.keys.snapshot_key
        assert not result.from_cache("snapshot")
        assert self.capture.calls == 4

    def test_normalize_bump_changes_every_key(self):
        config = AuditConfig().with_versions(normalize="1.1")
        result = run(self._orchestrator(config).run_audit(PRODUCT_URL))
        for name in ("product_key", "snapshot_key", "run_key", "audit_key"):
            assert getattr(result.keys, name) != getattr(self.baseline.keys, name)


class TestConcurrency:

    def test_identical_requests_share_one_capture(self):
        capture = MockCaptureCollaborator(latency_seconds=0.02)
        render = MockRenderCollaborator()
        orchestrator = build_orchestrator(capture=capture, render=render)

        async def both():
            return await asyncio.gather(
                orchestrator.run_audit(PRODUCT_URL),
                orchestrator.run_audit(PRODUCT_URL_VARIANT),
            )

        first, second = run(both())
        assert capture.calls == 2
        assert render.calls == 1
        assert first.keys == second.keys
        assert first.status is second.status is RunStatus.OK
        assert orchestrator.cache.in_flight_count == 0

    def test_each_caller_keeps_its_own_state(self):
        orchestrator = build_orchestrator(capture=MockCaptureCollaborator(latency_seconds=0.02))

        async def both():
            return await asyncio.gather(
                orchestrator.run_audit(PRODUCT_URL),
                orchestrator.run_audit(PRODUCT_URL),
            )

        first, second = run(both())
        assert first.state is second.state is PipelineState.COMPLETED
        assert first.state_history == second.state_history
        assert len(first.cache) == len(second.cache) == 3

    def test_different_products_capture_separately(self):
        capture = MockCaptureCollaborator(latency_seconds=0.01)
        orchestrator = build_orchestrator(capture=capture)

        async def both():
            return await asyncio.gather(
                orchestrator.run_audit(PRODUCT_URL),
                orchestrator.run_audit(OTHER_PRODUCT_URL),
            )

        run(both())
        assert capture.calls == 4


# =============================================================================
# CAPTURE FAILURES
# =============================================================================

class TestCaptureFailures:

    def test_secondary_viewport_failure_degrades(self):
        capture = MockCaptureCollaborator(failures={"desktop": ErrorCode.CAPTURE_BLOCKED})
        result = run(build_orchestrator(capture=capture).run_audit(PRODUCT_URL))

        assert result.status is RunStatus.DEGRADED
        assert result.state is PipelineState.DEGRADED
        assert error_codes(result) == [ErrorCode.CAPTURE_BLOCKED]
        assert result.errors[0].criticality is Criticality.RECOVERABLE
        assert result.errors[0].viewport == "desktop"
        assert result.report_meta.evidence_completeness is EvidenceCompleteness.PARTIAL
        assert result.artifacts.report_ref is not None

    def test_degraded_snapshot_is_not_cached(self):
        capture = MockCaptureCollaborator(failures={"desktop": ErrorCode.CAPTURE_BLOCKED})
        render = MockRenderCollaborator()
        orchestrator = build_orchestrator(capture=capture, render=render)

        run(orchestrator.run_audit(PRODUCT_URL))
        second = run(orchestrator.run_audit(PRODUCT_URL))

        assert second.cache == (("snapshot", False), ("run", False), ("render", False))
        assert capture.calls == 4
        assert render.calls == 2

    def test_degraded_values_cached_when_configured(self):
        capture = MockCaptureCollaborator(failures={"desktop": ErrorCode.CAPTURE_BLOCKED})
        orchestrator = build_orchestrator(capture=capture, cache_degraded_results=True)

        run(orchestrator.run_audit(PRODUCT_URL))
        second = run(orchestrator.run_audit(PRODUCT_URL))

        assert second.from_cache("snapshot")
        assert second.status is RunStatus.DEGRADED
        assert error_codes(second) == [ErrorCode.CAPTURE_BLOCKED]
        assert capture.calls == 2

    def test_primary_viewport_failure_fails_run(self):
        capture = MockCaptureCollaborator(failures={"mobile": ErrorCode.CAPTURE_BLOCKED})
        render = MockRenderCollaborator()
        result = run(build_orchestrator(capture=capture, render=render).run_audit(PRODUCT_URL))

        assert result.status is RunStatus.FAILED
        assert result.state is PipelineState.FAILED
        assert result.primary_error.code is ErrorCode.CAPTURE_BLOCKED
        assert result.primary_error.viewport == "mobile"
        assert result.keys.product_key is not None
        assert result.keys.snapshot_key is not None
        assert result.keys.run_key is None
        assert result.keys.audit_key is None
        assert result.tickets == ()
        assert result.score is None
        assert result.artifacts.report_ref is None
        assert render.calls == 0

    def test_unexpected_primary_capture_error_fails_run(self):
        capture = RaisingCaptureCollaborator(viewport="mobile")
        render = MockRenderCollaborator()
        orchestrator = build_orchestrator(capture=capture, render=render)
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.FAILED
        assert result.state is PipelineState.FAILED
        assert result.primary_error.code is ErrorCode.CAPTURE_BLOCKED
        assert result.primary_error.viewport == "mobile"
        assert "browser crashed" in result.primary_error.message
        assert render.calls == 0
        assert orchestrator.metrics.total(
            "collaborator_calls_total", {"collaborator": "capture", "outcome": "error"}
        ) == 1

    def test_failed_capture_is_retried(self):
        capture = MockCaptureCollaborator(failures={"mobile": ErrorCode.CAPTURE_BLOCKED})
        orchestrator = build_orchestrator(capture=capture)
        run(orchestrator.run_audit(PRODUCT_URL))
        run(orchestrator.run_audit(PRODUCT_URL))
        assert capture.calls == 4

    def test_secondary_viewport_timeout(self):
        capture = MockCaptureCollaborator(hang={"desktop"})
        orchestrator = build_orchestrator(capture=capture, capture_timeout_seconds=0.05)
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.DEGRADED
        assert error_codes(result) == [ErrorCode.CAPTURE_TIMEOUT]
        assert any(e.type is EvidenceType.SCREENSHOT for e in result.evidences)
        assert orchestrator.metrics.total(
            "collaborator_calls_total", {"collaborator": "capture", "outcome": "timeout"}
        ) == 1

    def test_primary_viewport_timeout(self):
        capture = MockCaptureCollaborator(hang={"mobile"})
        orchestrator = build_orchestrator(capture=capture, capture_timeout_seconds=0.05)
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.FAILED
        assert result.primary_error.code is ErrorCode.CAPTURE_TIMEOUT

    def test_empty_capture_is_blocked(self):
        capture = MockCaptureCollaborator(facts=PageFacts(), with_screenshots=False)
        result = run(build_orchestrator(capture=capture).run_audit(PRODUCT_URL))

        assert result.status is RunStatus.FAILED
        assert result.primary_error.code is ErrorCode.CAPTURE_BLOCKED
        assert result.primary_error.viewport is None

    def test_partial_facts_degrade(self):
        capture = MockCaptureCollaborator(facts=PageFacts(pdp=PdpFacts(has_atc_button=True)))
        result = run(build_orchestrator(capture=capture).run_audit(PRODUCT_URL))

        assert result.status is RunStatus.DEGRADED
        assert error_codes(result) == [ErrorCode.FACTS_INCOMPLETE]
        assert "structure" in result.errors[0].message
        assert result.score is not None


# =============================================================================
# SYNTHESIS
# =============================================================================

def unknown_ref_ticket():
    return Ticket(
        ticket_id="T_solo_ai_ghost_pdp_01",
        mode=AuditMode.SOLO,
        title="Ghost",
        impact=TicketImpact.HIGH,
        effort=TicketEffort.SMALL,
        risk=TicketRisk.LOW,
        confidence=TicketConfidence.HIGH,
        category=TicketCategory.UX,
        why="Points at nothing",
        evidence_refs=("E_page_a_desktop_screenshot_hero_09",),
        how_to=("a", "b", "c"),
        validation=("v",),
        quick_win=False,
        owner_hint=OwnerHint.DESIGN,
    )


class TestSynthesis:

    def test_synthesized_tickets_are_merged(self):
        synthesis = MockSynthesisCollaborator()
        result = run(build_orchestrator(synthesis=synthesis).run_audit(PRODUCT_URL))

        assert result.status is RunStatus.OK
        assert [t.ticket_id for t in result.tickets] == RULE_TICKETS + [
            "T_solo_ai_media_gallery_pdp_01"
        ]
        assert result.executive_summary == "Synthèse simulée."
        assert synthesis.calls == 1

    def test_without_synthesis_the_summary_falls_back(self):
        result = run(build_orchestrator().run_audit(PRODUCT_URL, "en"))
        assert result.executive_summary.startswith("Overall score 47/100.")

    def test_synthesis_failure_degrades(self):
        capture = MockCaptureCollaborator()
        synthesis = MockSynthesisCollaborator(failure="model unavailable")
        orchestrator = build_orchestrator(capture=capture, synthesis=synthesis)
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.DEGRADED
        assert error_codes(result) == [ErrorCode.SYNTHESIS_FAILED]
        assert result.errors[0].message == "model unavailable"
        assert [t.ticket_id for t in result.tickets] == RULE_TICKETS
        assert result.executive_summary.startswith("Score global 47/100.")

        second = run(orchestrator.run_audit(PRODUCT_URL))
        assert second.from_cache("snapshot")
        assert not second.from_cache("run")
        assert capture.calls == 2
        assert synthesis.calls == 2

    def test_unexpected_synthesis_error_degrades(self):
        synthesis = RaisingSynthesisCollaborator()
        result = run(build_orchestrator(synthesis=synthesis).run_audit(PRODUCT_URL))

        assert result.status is RunStatus.DEGRADED
        assert result.state is PipelineState.DEGRADED
        assert error_codes(result) == [ErrorCode.SYNTHESIS_FAILED]
        assert "malformed JSON" in result.errors[0].message
        assert [t.ticket_id for t in result.tickets] == RULE_TICKETS
        assert result.executive_summary.startswith("Score global 47/100.")
        assert result.artifacts.report_ref is not None

    def test_synthesis_timeout(self):
        synthesis = MockSynthesisCollaborator(hang=True)
        orchestrator = build_orchestrator(synthesis=synthesis, synthesis_timeout_seconds=0.05)
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.DEGRADED
        assert error_codes(result) == [ErrorCode.SYNTHESIS_FAILED]
        assert "timed out" in result.errors[0].message

    def test_invalid_synthesized_ticket_is_rejected(self):
        synthesis = MockSynthesisCollaborator(extra_tickets=(unknown_ref_ticket(),))
        result = run(build_orchestrator(synthesis=synthesis).run_audit(PRODUCT_URL))

        ids = [t.ticket_id for t in result.tickets]
        assert "T_solo_ai_ghost_pdp_01" not in ids
        assert "T_solo_ai_media_gallery_pdp_01" in ids
        assert result.status is RunStatus.DEGRADED
        assert error_codes(result) == [ErrorCode.SYNTHESIS_PARTIAL]
        assert "T_solo_ai_ghost_pdp_01" in result.errors[0].message


# =============================================================================
# RENDER FAILURES
# =============================================================================

class TestRenderFailures:

    def test_render_failure_fails_run(self):
        orchestrator = build_orchestrator(render=MockRenderCollaborator(failure="disk full"))
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.FAILED
        assert result.primary_error.code is ErrorCode.RENDER_FAILED
        assert result.keys.audit_key is not None
        assert result.score is not None
        assert result.artifacts.report_ref is None

        view = orchestrator.get_status(result.keys.audit_key)
        assert view.job_status is JobStatus.FAILED
        assert view.status is RunStatus.FAILED
        assert view.primary_error.code is ErrorCode.RENDER_FAILED

    def test_unexpected_render_error_fails_job(self):
        render = RaisingRenderCollaborator()
        orchestrator = build_orchestrator(render=render)
        result = run(orchestrator.run_audit(PRODUCT_URL))

        assert result.status is RunStatus.FAILED
        assert result.state is PipelineState.FAILED
        assert result.primary_error.code is ErrorCode.RENDER_FAILED
        assert "disk full" in result.primary_error.message

        view = orchestrator.get_status(result.keys.audit_key)
        assert view.job_status is JobStatus.FAILED
        assert view.primary_error.code is ErrorCode.RENDER_FAILED
        assert view.message == "Échec de l'audit"

    def test_retry_only_rerenders(self):
        capture, render = MockCaptureCollaborator(), FlakyRenderCollaborator(failures=1)
        orchestrator = build_orchestrator(capture=capture, render=render)

        failed = run(orchestrator.run_audit(PRODUCT_URL))
        retried = run(orchestrator.run_audit(PRODUCT_URL))

        assert failed.status is RunStatus.FAILED
        assert retried.status is RunStatus.OK
        assert retried.cache == (("snapshot", True), ("run", True), ("render", False))
        assert capture.calls == 2
        assert render.calls == 2
        assert orchestrator.get_status(retried.keys.audit_key).job_status is JobStatus.COMPLETED

    def test_missing_report_ref_fails_run(self):
        orchestrator = build_orchestrator(render=EmptyRenderCollaborator())
        result = run(orchestrator.run_audit(PRODUCT_URL))
        assert result.status is RunStatus.FAILED
        assert result.primary_error.code is ErrorCode.RENDER_FAILED

    def test_render_timeout(self):
        orchestrator = build_orchestrator(
            render=MockRenderCollaborator(hang=True), render_timeout_seconds=0.05
        )
        result = run(orchestrator.run_audit(PRODUCT_URL))
        assert result.status is RunStatus.FAILED
        assert "timed out" in result.primary_error.message


# =============================================================================
# AUDIT JOB STATUS
# =============================================================================

class TestAuditJobStatus:

    def test_status_follows_the_latest_run(self):
        capture = RecoveringCaptureCollaborator(failed_runs=1)
        orchestrator = build_orchestrator(capture=capture)

        first = run(orchestrator.run_audit(PRODUCT_URL, "en"))
        assert first.status is RunStatus.DEGRADED
        assert orchestrator.get_status(first.keys.audit_key).status is RunStatus.DEGRADED

        second = run(orchestrator.run_audit(PRODUCT_URL, "en"))
        assert second.status is RunStatus.OK
        assert second.keys.audit_key == first.keys.audit_key

        view = orchestrator.get_status(second.keys.audit_key)
        assert view.job_status is JobStatus.COMPLETED
        assert view.status is RunStatus.OK
        assert view.primary_error is None
        assert view.report_ref == second.artifacts.report_ref

    def test_cached_render_keeps_its_job(self):
        orchestrator = build_orchestrator()
        first = run(orchestrator.run_audit(PRODUCT_URL))
        job = orchestrator.get_status(first.keys.audit_key)

        second = run(orchestrator.run_audit(PRODUCT_URL))
        assert second.from_cache("render")
        assert orchestrator.get_status(second.keys.audit_key) == job

    def test_job_settles_after_caller_stops_waiting(self):
        render = MockRenderCollaborator(latency_seconds=0.5)
        orchestrator = build_orchestrator(render=render)

        async def scenario():
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(orchestrator.run_audit(PRODUCT_URL, "en"), timeout=0.1)
            audit_key = render.reports[0].audit_key
            in_progress = orchestrator.get_status(audit_key)
            await asyncio.sleep(1.0)
            return in_progress, orchestrator.get_status(audit_key)

        in_progress, settled = run(scenario())

        assert in_progress.job_status is JobStatus.GENERATING_REPORT
        assert settled.job_status is JobStatus.COMPLETED
        assert settled.status is RunStatus.OK
        assert settled.message == "Report ready"
        assert settled.report_ref == f"mock://reports/{settled.audit_key}.json"
        assert render.calls == 1


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

class TestRequestValidation:

    @pytest.mark.parametrize("url", ["", "ftp://shop.example.com/p", "not a url", None])
    def test_bad_url_is_rejected(self, url):
        capture = MockCaptureCollaborator()
        with pytest.raises(InvalidRequestError):
            run(build_orchestrator(capture=capture).run_audit(url))
        assert capture.calls == 0

    def test_unsupported_locale_is_rejected(self):
        with pytest.raises(InvalidRequestError) as info:
            run(build_orchestrator().run_audit(PRODUCT_URL, "de"))
        assert info.value.field == "locale"

    def test_bad_white_label_is_rejected(self):
        with pytest.raises(InvalidRequestError):
            AuditOptions.create(white_label={"brand": 3})


# =============================================================================
# REAL COLLABORATORS OVER A MOCK TRANSPORT
# =============================================================================

PAGE = (
    "<html lang='fr'><head><title>Joggers</title></head><body>"
    "<h1>Crest Joggers</h1><span class='price-item'>39,00 €</span>"
    "<form action='/cart/add'><button type='submit' name='add'>Ajouter</button></form>"
    "<img src='a.jpg' alt='Jogger'></body></html>"
)


class TestHttpPipeline:

    def test_html_only_capture_is_degraded_but_cached(self, tmp_path):
        hits = []

        def handler(request):
            hits.append(request.headers["user-agent"])
            return httpx.Response(200, text=PAGE)

        orchestrator = build_orchestrator(
            capture=HttpCaptureCollaborator(transport=httpx.MockTransport(handler)),
            render=FileRenderCollaborator(str(tmp_path)),
        )
        first = run(orchestrator.run_audit(PRODUCT_URL))
        second = run(orchestrator.run_audit(PRODUCT_URL))

        assert first.status is RunStatus.DEGRADED
        assert first.errors == ()
        assert first.report_meta.evidence_completeness is EvidenceCompleteness.INSUFFICIENT
        assert second.from_cache("snapshot")
        assert len(hits) == 2
        assert (tmp_path / first.keys.audit_key / "report.json").exists()
        assert (tmp_path / first.keys.audit_key / "tickets.csv").exists()

    def test_blocked_storefront_fails(self, tmp_path):
        orchestrator = build_orchestrator(
            capture=HttpCaptureCollaborator(
                transport=httpx.MockTransport(lambda request: httpx.Response(403))
            ),
            render=FileRenderCollaborator(str(tmp_path)),
        )
        result = run(orchestrator.run_audit(PRODUCT_URL))
        assert result.status is RunStatus.FAILED
        assert result.primary_error.code is ErrorCode.CAPTURE_BLOCKED
        assert "403" in result.primary_error.message
