"""
Error Taxonomy and Stage Policy
===============================

Exceptions raised across the audit pipeline, and the single table that
decides whether a recorded error is recoverable or critical.

RULES:
- INVALID_REQUEST is raised synchronously, before any key or state exists
- Every other failure becomes a StageError entry, never a process crash
- Criticality is decided HERE and nowhere else
"""

from __future__ import annotations
from typing import Iterable, List, Optional, Tuple

from .contracts.base import (
    Criticality, ErrorCode, PipelineStage, RunStatus, StageError
)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class AuditError(Exception):
    """Base class for every error raised by the audit pipeline."""
    pass


class InvalidRequestError(AuditError):
    """Request rejected before any stage runs."""
    code = ErrorCode.INVALID_REQUEST

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_error(self) -> StageError:
        return StageError(
            stage=PipelineStage.REQUEST,
            code=self.code,
            message=self.message,
            criticality=Criticality.CRITICAL,
        )


class KeyDerivationError(AuditError, ValueError):
    """A key component has no canonical serialization."""
    pass


class ScoringInputError(AuditError, TypeError):
    """The scoring engine received something that is not PageFacts."""
    pass


class InvalidTransitionError(AuditError):
    """Illegal pipeline or job state transition."""

    def __init__(self, from_state, to_state):
        super().__init__(
            f"Illegal transition {getattr(from_state, 'value', from_state)} -> "
            f"{getattr(to_state, 'value', to_state)}"
        )
        self.from_state = from_state
        self.to_state = to_state


class CollaboratorError(AuditError):
    """
    Failure reported by an external collaborator.

    Collaborators raise this with the ErrorCode that best describes the
    failure; the orchestrator classifies it through StagePolicy.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        viewport: Optional[str] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.viewport = viewport


class StageFailedError(AuditError):
    """
    A stage could not produce a value.

    Raised out of Stage Cache computations so that nothing is persisted;
    every waiter on the same key receives the same recorded errors.
    """

    def __init__(self, errors: Iterable[StageError]):
        self.errors: Tuple[StageError, ...] = tuple(errors)
        first = self.errors[0].message if self.errors else "stage failed"
        super().__init__(first)

    @property
    def primary_error(self) -> Optional[StageError]:
        for error in self.errors:
            if error.is_critical:
                return error
        return self.errors[0] if self.errors else None


# =============================================================================
# CRITICALITY POLICY
# =============================================================================

_CAPTURE_CODES = frozenset({ErrorCode.CAPTURE_TIMEOUT, ErrorCode.CAPTURE_BLOCKED})

_FIXED_CRITICALITY = {
    ErrorCode.FACTS_INCOMPLETE: Criticality.RECOVERABLE,
    ErrorCode.SCORING_INVALID_INPUT: Criticality.CRITICAL,
    ErrorCode.SYNTHESIS_FAILED: Criticality.RECOVERABLE,
    ErrorCode.SYNTHESIS_PARTIAL: Criticality.RECOVERABLE,
    ErrorCode.RENDER_FAILED: Criticality.CRITICAL,
    ErrorCode.INVALID_REQUEST: Criticality.CRITICAL,
}


class StagePolicy:
    """
    Per-stage criticality table.

    Capture errors depend on the viewport: losing the primary viewport
    (or a capture with no viewport, e.g. an empty snapshot) is critical,
    losing a secondary viewport only degrades the run.
    """

    def __init__(self, primary_viewport: str = "mobile"):
        self._primary_viewport = primary_viewport

    @property
    def primary_viewport(self) -> str:
        return self._primary_viewport

    def classify(
        self,
        code: ErrorCode,
        viewport: Optional[str] = None
    ) -> Criticality:
        if code in _CAPTURE_CODES:
            if viewport is None or viewport == self._primary_viewport:
                return Criticality.CRITICAL
            return Criticality.RECOVERABLE
        return _FIXED_CRITICALITY[code]

    def error(
        self,
        stage: PipelineStage,
        code: ErrorCode,
        message: str,
        viewport: Optional[str] = None
    ) -> StageError:
        """Build a classified StageError."""
        return StageError(
            stage=stage,
            code=code,
            message=message,
            criticality=self.classify(code, viewport),
            viewport=viewport,
        )


# =============================================================================
# ERROR LEDGER
# =============================================================================

class ErrorLedger:
    """
    Ordered, append-only list of the errors recorded during one run.
    Entries are kept in stage-execution order.
    """

    def __init__(self):
        self._errors: List[StageError] = []

    def record(self, error: StageError):
        self._errors.append(error)

    def extend(self, errors: Iterable[StageError]):
        for error in errors:
            self.record(error)

    @property
    def errors(self) -> Tuple[StageError, ...]:
        return tuple(self._errors)

    @property
    def has_critical(self) -> bool:
        return any(e.is_critical for e in self._errors)

    @property
    def primary_error(self) -> Optional[StageError]:
        """First critical error, if any."""
        for error in self._errors:
            if error.is_critical:
                return error
        return None

    def status(self) -> RunStatus:
        if self.has_critical:
            return RunStatus.FAILED
        if self._errors:
            return RunStatus.DEGRADED
        return RunStatus.OK

    def __len__(self) -> int:
        return len(self._errors)
