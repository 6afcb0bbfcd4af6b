"""
Pipeline State Machine
======================

Explicit run states and the job status layered on top of them.

    PENDING -> CAPTURING -> SCORING -> SYNTHESIZING -> RENDERING -> COMPLETED
                                                      RENDERING -> DEGRADED
    any non-terminal state -> FAILED

INVARIANT: every transition goes through transition(); an illegal one
raises InvalidTransitionError. COMPLETED, DEGRADED and FAILED absorb.

AuditJob status (report progress, keyed by audit key):

    PENDING -> GENERATING_REPORT -> COMPLETED | FAILED
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from .contracts.base import RunStatus, StageError
from .errors import InvalidTransitionError


# =============================================================================
# PIPELINE STATES
# =============================================================================

class PipelineState(Enum):
    PENDING = "pending"
    CAPTURING = "capturing"
    SCORING = "scoring"
    SYNTHESIZING = "synthesizing"
    RENDERING = "rendering"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"


TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.PENDING: frozenset({PipelineState.CAPTURING, PipelineState.FAILED}),
    PipelineState.CAPTURING: frozenset({PipelineState.SCORING, PipelineState.FAILED}),
    PipelineState.SCORING: frozenset({PipelineState.SYNTHESIZING, PipelineState.FAILED}),
    PipelineState.SYNTHESIZING: frozenset({PipelineState.RENDERING, PipelineState.FAILED}),
    PipelineState.RENDERING: frozenset({
        PipelineState.COMPLETED, PipelineState.DEGRADED, PipelineState.FAILED
    }),
    PipelineState.COMPLETED: frozenset(),
    PipelineState.DEGRADED: frozenset(),
    PipelineState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


class PipelineStateMachine:
    """
    State of one audit run.

    One instance per run_audit call; it is never shared between callers,
    even when they wait on the same cached stage.
    """

    def __init__(self):
        self._state = PipelineState.PENDING
        self._history: List[PipelineState] = [PipelineState.PENDING]

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def history(self) -> Tuple[PipelineState, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def can_transition(self, target: PipelineState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: PipelineState) -> PipelineState:
        if not self.can_transition(target):
            raise InvalidTransitionError(self._state, target)
        self._state = target
        self._history.append(target)
        return target

    def fail(self) -> PipelineState:
        return self.transition(PipelineState.FAILED)

    def finish(self, status: RunStatus) -> PipelineState:
        """Move RENDERING to the terminal state matching the run status."""
        if status is RunStatus.FAILED:
            return self.fail()
        if status is RunStatus.DEGRADED:
            return self.transition(PipelineState.DEGRADED)
        return self.transition(PipelineState.COMPLETED)


# =============================================================================
# AUDIT JOB
# =============================================================================

class JobStatus(Enum):
    PENDING = "PENDING"
    GENERATING_REPORT = "GENERATING_REPORT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


JOB_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.GENERATING_REPORT, JobStatus.FAILED}),
    JobStatus.GENERATING_REPORT: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

STATUS_MESSAGES: Dict[str, Dict[JobStatus, str]] = {
    "fr": {
        JobStatus.PENDING: "Capture des écrans en cours...",
        JobStatus.GENERATING_REPORT: "Génération du rapport...",
        JobStatus.COMPLETED: "Rapport prêt",
        JobStatus.FAILED: "Échec de l'audit",
    },
    "en": {
        JobStatus.PENDING: "Capturing screenshots...",
        JobStatus.GENERATING_REPORT: "Generating report...",
        JobStatus.COMPLETED: "Report ready",
        JobStatus.FAILED: "Audit failed",
    },
}


def status_message(status: JobStatus, locale: str = "fr") -> str:
    return STATUS_MESSAGES.get(locale, STATUS_MESSAGES["en"])[status]


@dataclass
class AuditJob:
    """
    Mutable progress record of the report for one audit key.
    Only `status` and the report fields change, and only forward.
    """
    audit_key: str
    run_key: str
    locale: str
    status: JobStatus = JobStatus.PENDING
    run_status: Optional[RunStatus] = None
    report_ref: Optional[str] = None
    html_ref: Optional[str] = None
    pdf_ref: Optional[str] = None
    csv_ref: Optional[str] = None
    primary_error: Optional[StageError] = None
    errors: Tuple[StageError, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return not JOB_TRANSITIONS[self.status]

    def transition(self, target: JobStatus):
        if target not in JOB_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status, target)
        self.status = target

    @property
    def message(self) -> str:
        return status_message(self.status, self.locale)


class AuditJobRegistry:
    """
    In-process registry of audit jobs, keyed by audit key.
    Backs the pull-based status lookup.
    """

    def __init__(self):
        self._jobs: Dict[str, AuditJob] = {}

    def start(self, audit_key: str, run_key: str, locale: str) -> AuditJob:
        """
        Start a new job for audit_key, replacing any earlier one.
        Each render computation owns the job it starts, so a lookup
        always reflects the most recent render of that key.
        """
        job = AuditJob(audit_key=audit_key, run_key=run_key, locale=locale)
        self._jobs[audit_key] = job
        return job

    def get(self, audit_key: str) -> Optional[AuditJob]:
        return self._jobs.get(audit_key)

    def __len__(self) -> int:
        return len(self._jobs)
