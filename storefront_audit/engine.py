"""
Audit Orchestration Module

Coordinates capture, scoring, synthesis and render through the Stage
Cache, and reports the outcome of each run.

DESIGN PRINCIPLES:
==================
1. Stages communicate ONLY through immutable stage values
2. Every stage value is memoized under a content-addressed key
3. Per-run state (state machine, error ledger) is never shared between
   callers, even when they wait on the same computation
4. Errors are data: a stage value carries the errors recorded while it
   was produced, so cache readers and concurrent waiters see them too

LAYER FLOW:
===========
    URL -> product key -> snapshot (capture)
        -> run (score + evidence + tickets + synthesis)
        -> audit (render)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Tuple
import asyncio
import logging
import time

from .cache import InMemoryCacheStore, CacheStore, StageCache
from .config import AuditConfig
from .contracts.base import (
    AuditMode, ErrorCode, EvidenceCompleteness, PipelineStage, RunStatus,
    StageError, Viewport
)
from .contracts.collaborators import (
    AuditReport, CaptureCollaborator, CaptureRequest, RenderCollaborator,
    RenderOutcome, SynthesisCollaborator, SynthesisRequest, ViewportCapture
)
from .contracts.exports import Evidence, ScoreResult, Ticket
from .contracts.facts import CaptureArtifacts, PageFacts, ViewportArtifact
from .contracts.versions import VersionRegistry
from .errors import (
    CollaboratorError, ErrorLedger, InvalidRequestError, ScoringInputError,
    StageFailedError, StagePolicy
)
from .evidence import assess_completeness, build_evidence
from .keys import Key, KeyDeriver, normalize_url
from .observability import MetricsCollector
from .scoring import score as score_facts
from .state_machine import (
    AuditJob, AuditJobRegistry, JobStatus, PipelineState, PipelineStateMachine
)
from .tickets import (
    extract_quick_wins, fallback_summary, generate_rule_tickets, merge_tickets
)


logger = logging.getLogger(__name__)

_CAPTURE_CODES = (ErrorCode.CAPTURE_TIMEOUT, ErrorCode.CAPTURE_BLOCKED)


# =============================================================================
# REQUEST OPTIONS
# =============================================================================

@dataclass(frozen=True)
class AuditOptions:
    """Report options that take part in the audit key."""
    copy_ready: bool = False
    white_label: Optional[Tuple[Tuple[str, str], ...]] = None

    @classmethod
    def create(
        cls,
        copy_ready: bool = False,
        white_label: Optional[Mapping[str, str]] = None
    ) -> AuditOptions:
        if white_label is not None:
            if not isinstance(white_label, Mapping) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in white_label.items()
            ):
                raise InvalidRequestError(
                    "white_label must map strings to strings", field="white_label"
                )
        pairs = tuple(sorted(white_label.items())) if white_label else None
        return cls(copy_ready=bool(copy_ready), white_label=pairs)

    @property
    def white_label_dict(self) -> Optional[Dict[str, str]]:
        return dict(self.white_label) if self.white_label else None


# =============================================================================
# STAGE VALUES (cached, immutable)
# =============================================================================

@dataclass(frozen=True)
class Snapshot:
    """Capture stage value, stored under the snapshot key."""
    snapshot_key: str
    product_key: str
    normalized_url: str
    locale: str
    artifacts: CaptureArtifacts
    errors: Tuple[StageError, ...] = field(default_factory=tuple)

    @property
    def is_degraded(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class ScoreRun:
    """Run stage value, stored under the run key."""
    run_key: str
    snapshot_key: str
    score: ScoreResult
    evidences: Tuple[Evidence, ...]
    tickets: Tuple[Ticket, ...]
    quick_wins: Tuple[Ticket, ...]
    executive_summary: str
    evidence_completeness: EvidenceCompleteness
    errors: Tuple[StageError, ...] = field(default_factory=tuple)
    built_on_degraded_snapshot: bool = False

    @property
    def is_degraded(self) -> bool:
        return bool(self.errors) or self.built_on_degraded_snapshot


@dataclass(frozen=True)
class RenderOutput:
    """Render stage value, stored under the audit key."""
    audit_key: str
    run_key: str
    outcome: RenderOutcome
    is_degraded: bool = False


# =============================================================================
# RESULT SHAPES
# =============================================================================

@dataclass(frozen=True)
class AuditKeys:
    product_key: Optional[str] = None
    snapshot_key: Optional[str] = None
    run_key: Optional[str] = None
    audit_key: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'productKey': self.product_key,
            'snapshotKey': self.snapshot_key,
            'runKey': self.run_key,
            'auditKey': self.audit_key,
        }


@dataclass(frozen=True)
class ReportMeta:
    mode: AuditMode
    evidence_completeness: EvidenceCompleteness
    url: str
    normalized_url: str
    locale: str
    captured_at: Optional[str] = None
    alignment_level: Optional[str] = None     # only set for comparison modes

    def to_dict(self) -> dict:
        return {
            'mode': self.mode.value,
            'evidenceCompleteness': self.evidence_completeness.value,
            'alignmentLevel': self.alignment_level,
            'url': self.url,
            'normalizedUrl': self.normalized_url,
            'locale': self.locale,
            'capturedAt': self.captured_at,
        }


@dataclass(frozen=True)
class ReportArtifacts:
    report_ref: Optional[str] = None
    html_ref: Optional[str] = None
    pdf_ref: Optional[str] = None
    csv_ref: Optional[str] = None
    captures: Tuple[ViewportArtifact, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            'reportRef': self.report_ref,
            'htmlRef': self.html_ref,
            'pdfRef': self.pdf_ref,
            'csvRef': self.csv_ref,
            'captures': {
                a.viewport.name: {'screenshotRef': a.screenshot_ref, 'htmlRef': a.html_ref}
                for a in self.captures
            },
        }


@dataclass(frozen=True)
class AuditResult:
    """Everything a caller learns from one run_audit call."""
    status: RunStatus
    keys: AuditKeys
    versions: VersionRegistry
    report_meta: ReportMeta
    artifacts: ReportArtifacts
    tickets: Tuple[Ticket, ...]
    evidences: Tuple[Evidence, ...]
    errors: Tuple[StageError, ...]
    score: Optional[ScoreResult]
    cache: Tuple[Tuple[str, bool], ...]
    state: PipelineState
    state_history: Tuple[PipelineState, ...]
    duration_ms: int
    primary_error: Optional[StageError] = None
    executive_summary: str = ""
    quick_wins: Tuple[Ticket, ...] = field(default_factory=tuple)

    def from_cache(self, stage: str) -> bool:
        return dict(self.cache).get(stage, False)

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'keys': self.keys.to_dict(),
            'versions': self.versions.as_dict(),
            'reportMeta': self.report_meta.to_dict(),
            'artifacts': self.artifacts.to_dict(),
            'exports': {
                'tickets': [t.to_dict() for t in self.tickets],
                'evidences': [e.to_dict() for e in self.evidences],
                'quickWins': [t.ticket_id for t in self.quick_wins],
            },
            'errors': [e.to_dict() for e in self.errors],
            'score': self.score.to_dict() if self.score else None,
            'executiveSummary': self.executive_summary,
            'cache': dict(self.cache),
            'state': self.state.value,
            'stateHistory': [s.value for s in self.state_history],
            'durationMs': self.duration_ms,
            'primaryError': self.primary_error.to_dict() if self.primary_error else None,
        }


@dataclass(frozen=True)
class StatusView:
    """Pull-based status of one audit key."""
    audit_key: str
    status: Optional[RunStatus]
    job_status: JobStatus
    message: str
    report_ref: Optional[str] = None
    html_ref: Optional[str] = None
    pdf_ref: Optional[str] = None
    csv_ref: Optional[str] = None
    primary_error: Optional[StageError] = None

    @classmethod
    def from_job(cls, job: AuditJob) -> StatusView:
        return cls(
            audit_key=job.audit_key,
            status=job.run_status,
            job_status=job.status,
            message=job.message,
            report_ref=job.report_ref,
            html_ref=job.html_ref,
            pdf_ref=job.pdf_ref,
            csv_ref=job.csv_ref,
            primary_error=job.primary_error,
        )

    def to_dict(self) -> dict:
        return {
            'auditKey': self.audit_key,
            'status': self.status.value if self.status else None,
            'jobStatus': self.job_status.value,
            'message': self.message,
            'reportRef': self.report_ref,
            'htmlRef': self.html_ref,
            'pdfRef': self.pdf_ref,
            'csvRef': self.csv_ref,
            'primaryError': self.primary_error.to_dict() if self.primary_error else None,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class AuditOrchestrator:
    """
    Runs audits through the cached stage pipeline.

    GUARANTEES:
    ===========
    1. Identical inputs under identical versions never recompute a stage
    2. A version bump invalidates its stage and everything downstream
    3. Two concurrent identical requests share one capture
    4. A failed run returns the keys allocated so far and its first
       critical error; it never raises for a collaborator failure
    """

    def __init__(
        self,
        capture: CaptureCollaborator,
        render: RenderCollaborator,
        synthesis: Optional[SynthesisCollaborator] = None,
        config: Optional[AuditConfig] = None,
        store: Optional[CacheStore] = None,
        metrics: Optional[MetricsCollector] = None,
        jobs: Optional[AuditJobRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._config = config or AuditConfig()
        self._capture_collaborator = capture
        self._render_collaborator = render
        self._synthesis_collaborator = synthesis
        self._metrics = metrics or MetricsCollector()
        self._cache = StageCache(store if store is not None else InMemoryCacheStore(), self._metrics)
        self._jobs = jobs or AuditJobRegistry()
        self._clock = clock or _utc_now
        self._keys = KeyDeriver(self._config.versions)
        self._policy = StagePolicy(primary_viewport=self._config.primary_viewport.name)
        self._mode = AuditMode.SOLO

    @property
    def config(self) -> AuditConfig:
        return self._config

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def cache(self) -> StageCache:
        return self._cache

    @property
    def keys(self) -> KeyDeriver:
        return self._keys

    # =========================================================================
    # PUBLIC INTERFACE
    # =========================================================================

    async def run_audit(
        self,
        url: str,
        locale: Optional[str] = None,
        options: Optional[AuditOptions] = None
    ) -> AuditResult:
        """
        Audit one product page.

        Raises InvalidRequestError before any key or state exists when the
        URL or locale is unacceptable. Every other failure is reported in
        the returned AuditResult.
        """
        started = time.perf_counter()
        locale = self._resolve_locale(locale)
        normalized = normalize_url(url)
        options = options or AuditOptions()

        run = _RunContext(url=url, normalized_url=normalized, locale=locale, started=started)
        logger.info("audit started for %s (%s)", normalized, locale)

        # Stage 1: capture
        product_key = self._keys.product_key(self._mode, normalized, locale)
        snapshot_key = self._keys.snapshot_key(product_key, self._config.viewports)
        run.product_key, run.snapshot_key = product_key, snapshot_key
        run.machine.transition(PipelineState.CAPTURING)
        try:
            outcome = await self._cache.get_or_compute(
                snapshot_key,
                lambda: self._capture(product_key, snapshot_key, normalized, locale),
                cacheable=self._cacheable,
            )
        except StageFailedError as exc:
            return self._fail(run, exc)
        snapshot: Snapshot = outcome.value
        run.snapshot = snapshot
        run.cache.append(("snapshot", outcome.from_cache))
        run.ledger.extend(snapshot.errors)

        # Stage 2: score, evidence, tickets, synthesis
        run_key = self._keys.run_key(snapshot_key, self._mode)
        run.run_key = run_key
        run.machine.transition(PipelineState.SCORING)
        try:
            outcome = await self._cache.get_or_compute(
                run_key,
                lambda: self._score_run(run_key, snapshot, locale),
                cacheable=self._cacheable,
            )
        except StageFailedError as exc:
            return self._fail(run, exc)
        score_run: ScoreRun = outcome.value
        run.score_run = score_run
        run.cache.append(("run", outcome.from_cache))
        run.ledger.extend(score_run.errors)
        run.machine.transition(PipelineState.SYNTHESIZING)

        # Stage 3: render
        audit_key = self._keys.audit_key(run_key, options.copy_ready, options.white_label_dict)
        run.audit_key = audit_key
        run.machine.transition(PipelineState.RENDERING)
        status = self._status(run.ledger, score_run.evidence_completeness)
        prior_errors = run.ledger.errors
        try:
            outcome = await self._cache.get_or_compute(
                audit_key,
                lambda: self._render(audit_key, snapshot, score_run, options, status, prior_errors),
                cacheable=self._cacheable,
            )
        except StageFailedError as exc:
            return self._fail(run, exc)
        render: RenderOutput = outcome.value
        run.render = render
        run.cache.append(("render", outcome.from_cache))

        run.machine.finish(status)
        return self._result(run, status)

    def get_status(self, audit_key) -> Optional[StatusView]:
        """Status of a previously allocated audit key, or None if unknown."""
        value = audit_key.value if isinstance(audit_key, Key) else str(audit_key)
        job = self._jobs.get(value)
        if job is None:
            return None
        return StatusView.from_job(job)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def _resolve_locale(self, locale: Optional[str]) -> str:
        if locale is None:
            return self._config.default_locale
        if not isinstance(locale, str):
            raise InvalidRequestError("Locale must be a string", field="locale")
        resolved = locale.strip().lower()
        if resolved not in self._config.supported_locales:
            raise InvalidRequestError(
                f"Unsupported locale '{locale}'", field="locale"
            )
        return resolved

    # =========================================================================
    # STAGE COMPUTATIONS (shared by every waiter: no per-caller state)
    # =========================================================================

    async def _capture(
        self,
        product_key: Key,
        snapshot_key: Key,
        normalized_url: str,
        locale: str
    ) -> Snapshot:
        results = await asyncio.gather(*(
            self._capture_viewport(viewport, normalized_url, locale)
            for viewport in self._config.viewports
        ))

        errors: List[StageError] = []
        captures: List[ViewportCapture] = []
        for capture, error in results:
            if error is not None:
                errors.append(error)
            if capture is not None:
                captures.append(capture)

        if any(e.is_critical for e in errors):
            raise StageFailedError(errors)

        facts = _merge_facts(captures)
        artifacts = CaptureArtifacts(
            captured_at=self._clock().isoformat(),
            viewports=tuple(
                ViewportArtifact(c.viewport, c.screenshot_ref, c.html_ref)
                for c in captures
            ),
            facts=facts,
        )

        has_facts = isinstance(facts, PageFacts) and not facts.is_empty
        if artifacts.screenshot_count == 0 and not has_facts:
            errors.append(self._policy.error(
                PipelineStage.CAPTURE, ErrorCode.CAPTURE_BLOCKED,
                "Capture produced no facts and no screenshots",
            ))
            raise StageFailedError(errors)

        if isinstance(facts, PageFacts) and facts.missing_categories:
            missing = ", ".join(c.value for c in facts.missing_categories)
            errors.append(self._policy.error(
                PipelineStage.FACTS, ErrorCode.FACTS_INCOMPLETE,
                f"Facts missing for: {missing}",
            ))
        elif facts is None:
            errors.append(self._policy.error(
                PipelineStage.FACTS, ErrorCode.FACTS_INCOMPLETE,
                "No facts were collected",
            ))

        return Snapshot(
            snapshot_key=snapshot_key.value,
            product_key=product_key.value,
            normalized_url=normalized_url,
            locale=locale,
            artifacts=artifacts,
            errors=tuple(errors),
        )

    async def _capture_viewport(
        self,
        viewport: Viewport,
        normalized_url: str,
        locale: str
    ) -> Tuple[Optional[ViewportCapture], Optional[StageError]]:
        request = CaptureRequest(
            normalized_url=normalized_url,
            locale=locale,
            viewport=viewport,
            timeout_seconds=self._config.capture_timeout_seconds,
        )
        try:
            capture = await asyncio.wait_for(
                self._capture_collaborator.capture(request),
                timeout=self._config.capture_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._record_call("capture", "timeout")
            return None, self._policy.error(
                PipelineStage.CAPTURE, ErrorCode.CAPTURE_TIMEOUT,
                f"Capture timed out after {self._config.capture_timeout_seconds}s",
                viewport=viewport.name,
            )
        except CollaboratorError as exc:
            self._record_call("capture", "error")
            code = exc.code if exc.code in _CAPTURE_CODES else ErrorCode.CAPTURE_BLOCKED
            return None, self._policy.error(
                PipelineStage.CAPTURE, code, exc.message, viewport=viewport.name,
            )
        except Exception as exc:
            logger.exception("capture raised for %s (%s)", normalized_url, viewport.name)
            self._record_call("capture", "error")
            return None, self._policy.error(
                PipelineStage.CAPTURE, ErrorCode.CAPTURE_BLOCKED,
                f"Unexpected capture error: {exc!r}", viewport=viewport.name,
            )

        self._record_call("capture", "ok")
        if capture is None or capture.is_empty:
            return None, self._policy.error(
                PipelineStage.CAPTURE, ErrorCode.CAPTURE_BLOCKED,
                "Capture returned no content", viewport=viewport.name,
            )
        return capture, None

    async def _score_run(self, run_key: Key, snapshot: Snapshot, locale: str) -> ScoreRun:
        artifacts = snapshot.artifacts
        facts = artifacts.facts if artifacts.facts is not None else PageFacts()
        try:
            result = score_facts(facts, self._config.versions.scoring)
        except ScoringInputError as exc:
            raise StageFailedError([self._policy.error(
                PipelineStage.SCORING, ErrorCode.SCORING_INVALID_INPUT, str(exc),
            )]) from exc

        evidences = build_evidence(artifacts)
        completeness = assess_completeness(artifacts, self._config.completeness)
        rule_tickets = generate_rule_tickets(
            facts, result, evidences, locale,
            max_tickets=self._config.max_tickets,
            max_large_effort=self._config.max_large_effort_tickets,
        )

        errors: List[StageError] = []
        tickets = rule_tickets
        summary = fallback_summary(result, rule_tickets, locale)

        if self._synthesis_collaborator is not None:
            request = SynthesisRequest(
                run_key=run_key.value,
                locale=locale,
                facts=facts,
                evidences=evidences,
                score=result,
                rule_tickets=rule_tickets,
            )
            try:
                outcome = await asyncio.wait_for(
                    self._synthesis_collaborator.synthesize(request),
                    timeout=self._config.synthesis_timeout_seconds,
                )
                merged = merge_tickets(
                    rule_tickets, outcome.tickets, evidences,
                    max_tickets=self._config.max_tickets,
                    max_large_effort=self._config.max_large_effort_tickets,
                )
                synthesized_summary = (outcome.executive_summary or "").strip()
            except asyncio.TimeoutError:
                self._record_call("synthesis", "timeout")
                errors.append(self._policy.error(
                    PipelineStage.SYNTHESIS, ErrorCode.SYNTHESIS_FAILED,
                    f"Synthesis timed out after {self._config.synthesis_timeout_seconds}s",
                ))
            except CollaboratorError as exc:
                self._record_call("synthesis", "error")
                errors.append(self._policy.error(
                    PipelineStage.SYNTHESIS, ErrorCode.SYNTHESIS_FAILED, exc.message,
                ))
            except Exception as exc:
                logger.exception("synthesis raised for %s", run_key)
                self._record_call("synthesis", "error")
                errors.append(self._policy.error(
                    PipelineStage.SYNTHESIS, ErrorCode.SYNTHESIS_FAILED,
                    f"Unexpected synthesis error: {exc!r}",
                ))
            else:
                self._record_call("synthesis", "ok")
                tickets = merged.tickets
                if synthesized_summary:
                    summary = outcome.executive_summary
                reasons = [f"{tid}: {why}" for tid, why in merged.rejected]
                if outcome.partial:
                    reasons.insert(0, outcome.partial_reason or "synthesis output incomplete")
                if reasons:
                    errors.append(self._policy.error(
                        PipelineStage.SYNTHESIS, ErrorCode.SYNTHESIS_PARTIAL,
                        "; ".join(reasons),
                    ))

        return ScoreRun(
            run_key=run_key.value,
            snapshot_key=snapshot.snapshot_key,
            score=result,
            evidences=evidences,
            tickets=tuple(tickets),
            quick_wins=tuple(extract_quick_wins(tickets)),
            executive_summary=summary,
            evidence_completeness=completeness,
            errors=tuple(errors),
            built_on_degraded_snapshot=snapshot.is_degraded,
        )

    async def _render(
        self,
        audit_key: Key,
        snapshot: Snapshot,
        score_run: ScoreRun,
        options: AuditOptions,
        status: RunStatus,
        prior_errors: Tuple[StageError, ...]
    ) -> RenderOutput:
        """
        Render the report and settle its AuditJob.

        Runs inside the shared stage computation, so the job reaches
        COMPLETED or FAILED even when every caller has stopped waiting.
        """
        job = self._jobs.start(audit_key.value, score_run.run_key, snapshot.locale)
        job.transition(JobStatus.GENERATING_REPORT)
        report = AuditReport(
            audit_key=audit_key.value,
            run_key=score_run.run_key,
            snapshot_key=snapshot.snapshot_key,
            product_key=snapshot.product_key,
            mode=self._mode,
            normalized_url=snapshot.normalized_url,
            locale=snapshot.locale,
            captured_at=snapshot.artifacts.captured_at,
            status=status,
            evidence_completeness=score_run.evidence_completeness,
            score=score_run.score,
            evidences=score_run.evidences,
            tickets=score_run.tickets,
            executive_summary=score_run.executive_summary,
            versions=tuple(self._config.versions.as_dict().items()),
            copy_ready=options.copy_ready,
            white_label=options.white_label,
        )
        try:
            outcome = await self._call_renderer(report)
        except StageFailedError as exc:
            ledger = ErrorLedger()
            ledger.extend(prior_errors)
            ledger.extend(exc.errors)
            job.run_status = RunStatus.FAILED
            job.primary_error = ledger.primary_error
            job.errors = ledger.errors
            job.transition(JobStatus.FAILED)
            raise

        job.run_status = status
        job.report_ref = outcome.report_ref
        job.html_ref = outcome.html_ref
        job.pdf_ref = outcome.pdf_ref
        job.csv_ref = outcome.csv_ref
        job.errors = tuple(prior_errors)
        job.transition(JobStatus.COMPLETED)
        return RenderOutput(
            audit_key=audit_key.value,
            run_key=score_run.run_key,
            outcome=outcome,
            is_degraded=score_run.is_degraded,
        )

    async def _call_renderer(self, report: AuditReport) -> RenderOutcome:
        try:
            outcome = await asyncio.wait_for(
                self._render_collaborator.render(report),
                timeout=self._config.render_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            self._record_call("render", "timeout")
            raise StageFailedError([self._policy.error(
                PipelineStage.RENDER, ErrorCode.RENDER_FAILED,
                f"Render timed out after {self._config.render_timeout_seconds}s",
            )]) from exc
        except CollaboratorError as exc:
            self._record_call("render", "error")
            raise StageFailedError([self._policy.error(
                PipelineStage.RENDER, ErrorCode.RENDER_FAILED, exc.message,
            )]) from exc
        except Exception as exc:
            logger.exception("renderer raised for %s", report.audit_key)
            self._record_call("render", "error")
            raise StageFailedError([self._policy.error(
                PipelineStage.RENDER, ErrorCode.RENDER_FAILED,
                f"Unexpected render error: {exc!r}",
            )]) from exc

        if outcome is None or not outcome.report_ref:
            self._record_call("render", "error")
            raise StageFailedError([self._policy.error(
                PipelineStage.RENDER, ErrorCode.RENDER_FAILED,
                "Renderer returned no report reference",
            )])
        self._record_call("render", "ok")
        return outcome


    # =========================================================================
    # HELPERS
    # =========================================================================

    def _cacheable(self, value) -> bool:
        return self._config.cache_degraded_results or not value.is_degraded

    def _status(self, ledger: ErrorLedger, completeness: EvidenceCompleteness) -> RunStatus:
        statuses = [ledger.status()]
        if self._config.completeness.degrades(completeness):
            statuses.append(RunStatus.DEGRADED)
        return RunStatus.worst(statuses)

    def _record_call(self, collaborator: str, outcome: str):
        self._metrics.record(
            "collaborator_calls_total", 1,
            {"collaborator": collaborator, "outcome": outcome},
        )

    def _fail(self, run: _RunContext, exc: StageFailedError) -> AuditResult:
        run.ledger.extend(exc.errors)
        run.machine.fail()
        for error in exc.errors:
            logger.warning(
                "%s failed for %s: %s %s", error.stage.value,
                run.normalized_url, error.code.value, error.message,
            )
        return self._result(run, RunStatus.FAILED)

    def _result(self, run: _RunContext, status: RunStatus) -> AuditResult:
        snapshot, score_run, render = run.snapshot, run.score_run, run.render
        if score_run is not None:
            completeness = score_run.evidence_completeness
        elif snapshot is not None:
            completeness = assess_completeness(snapshot.artifacts, self._config.completeness)
        else:
            completeness = EvidenceCompleteness.INSUFFICIENT

        outcome = render.outcome if render is not None and status is not RunStatus.FAILED else None
        duration_ms = int(round((time.perf_counter() - run.started) * 1000))

        self._metrics.record("audit_runs_total", 1, {"status": status.value})
        self._metrics.record("audit_duration_ms", duration_ms)
        logger.info(
            "audit finished for %s: %s in %dms", run.normalized_url, status.value, duration_ms
        )

        return AuditResult(
            status=status,
            keys=AuditKeys(
                product_key=_value(run.product_key),
                snapshot_key=_value(run.snapshot_key),
                run_key=_value(run.run_key),
                audit_key=_value(run.audit_key),
            ),
            versions=self._config.versions,
            report_meta=ReportMeta(
                mode=self._mode,
                evidence_completeness=completeness,
                url=run.url,
                normalized_url=run.normalized_url,
                locale=run.locale,
                captured_at=snapshot.artifacts.captured_at if snapshot else None,
            ),
            artifacts=ReportArtifacts(
                report_ref=outcome.report_ref if outcome else None,
                html_ref=outcome.html_ref if outcome else None,
                pdf_ref=outcome.pdf_ref if outcome else None,
                csv_ref=outcome.csv_ref if outcome else None,
                captures=snapshot.artifacts.viewports if snapshot else (),
            ),
            tickets=score_run.tickets if score_run else (),
            evidences=score_run.evidences if score_run else (),
            errors=run.ledger.errors,
            score=score_run.score if score_run else None,
            cache=tuple(run.cache),
            state=run.machine.state,
            state_history=run.machine.history,
            duration_ms=duration_ms,
            primary_error=run.ledger.primary_error,
            executive_summary=score_run.executive_summary if score_run else "",
            quick_wins=score_run.quick_wins if score_run else (),
        )


class _RunContext:
    """Per-call bookkeeping. Never shared between run_audit calls."""

    def __init__(self, url: str, normalized_url: str, locale: str, started: float):
        self.url = url
        self.normalized_url = normalized_url
        self.locale = locale
        self.started = started
        self.machine = PipelineStateMachine()
        self.ledger = ErrorLedger()
        self.cache: List[Tuple[str, bool]] = []
        self.product_key: Optional[Key] = None
        self.snapshot_key: Optional[Key] = None
        self.run_key: Optional[Key] = None
        self.audit_key: Optional[Key] = None
        self.snapshot: Optional[Snapshot] = None
        self.score_run: Optional[ScoreRun] = None
        self.render: Optional[RenderOutput] = None


def _value(key: Optional[Key]) -> Optional[str]:
    return key.value if key is not None else None


def _merge_facts(captures: List[ViewportCapture]) -> Optional[PageFacts]:
    """Facts of the first capture (primary viewport first) that has any."""
    for capture in captures:
        if capture.facts is not None:
            return capture.facts
    return None
