"""
Integration Test Fixtures

Fixed clock, URLs and orchestrator builders for deterministic runs.
All fixtures are explicit - no random generation.
"""

from datetime import datetime, timezone
import asyncio

from collaborators.providers.mock import (
    MockCaptureCollaborator, MockRenderCollaborator, MockSynthesisCollaborator
)
from storefront_audit.cache import InMemoryCacheStore
from storefront_audit.config import AuditConfig
from storefront_audit.contracts.collaborators import (
    RenderCollaborator, RenderOutcome, SynthesisCollaborator
)
from storefront_audit.engine import AuditOrchestrator
from storefront_audit.errors import CollaboratorError
from storefront_audit.contracts.base import ErrorCode


# =============================================================================
# FIXED VALUES
# =============================================================================

T1 = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)

PRODUCT_URL = "https://shop.example.com/products/joggers"
PRODUCT_URL_VARIANT = "https://SHOP.example.com/products/joggers?utm_source=ads#reviews"
OTHER_PRODUCT_URL = "https://shop.example.com/products/hoodie"


def fixed_clock():
    return T1


# =============================================================================
# COLLABORATOR DOUBLES
# =============================================================================

class FlakyRenderCollaborator(RenderCollaborator):
    """Fails the first `failures` calls, then renders like the mock."""

    def __init__(self, failures: int = 1):
        self._remaining = failures
        self.calls = 0

    async def render(self, report):
        self.calls += 1
        if self._remaining > 0:
            self._remaining -= 1
            raise CollaboratorError(ErrorCode.RENDER_FAILED, "disk full")
        return RenderOutcome(report_ref=f"mock://reports/{report.audit_key}.json")


class EmptyRenderCollaborator(RenderCollaborator):
    """Returns an outcome without a report reference."""

    async def render(self, report):
        return RenderOutcome(report_ref="")


class RaisingCaptureCollaborator(MockCaptureCollaborator):
    """Raises a plain exception, not a CollaboratorError, for one viewport."""

    def __init__(self, viewport: str = "mobile", error: Exception = None):
        super().__init__()
        self._viewport = viewport
        self._error = error or RuntimeError("browser crashed")

    async def capture(self, request):
        if request.viewport.name == self._viewport:
            self.calls += 1
            raise self._error
        return await super().capture(request)


class RecoveringCaptureCollaborator(MockCaptureCollaborator):
    """Times out on desktop for the first `failed_runs` calls, then captures."""

    def __init__(self, failed_runs: int = 1):
        super().__init__()
        self._remaining = failed_runs

    async def capture(self, request):
        if request.viewport.name == "desktop" and self._remaining > 0:
            self._remaining -= 1
            self.calls += 1
            raise CollaboratorError(
                ErrorCode.CAPTURE_TIMEOUT, "desktop capture timed out", viewport="desktop"
            )
        return await super().capture(request)


class RaisingSynthesisCollaborator(SynthesisCollaborator):
    """Synthesis that fails with an arbitrary exception."""

    def __init__(self, error: Exception = None):
        self._error = error or ValueError("model returned malformed JSON")
        self.calls = 0

    async def synthesize(self, request):
        self.calls += 1
        raise self._error


class RaisingRenderCollaborator(RenderCollaborator):
    """Renderer that fails with an arbitrary exception."""

    def __init__(self, error: Exception = None):
        self._error = error or OSError("disk full")
        self.calls = 0

    async def render(self, report):
        self.calls += 1
        raise self._error


# =============================================================================
# BUILDERS
# =============================================================================

def build_orchestrator(
    capture=None,
    render=None,
    synthesis=None,
    config=None,
    store=None,
    **config_overrides
):
    """Orchestrator over mock collaborators and a fixed clock."""
    if config is None:
        config = AuditConfig(**config_overrides)
    return AuditOrchestrator(
        capture=capture or MockCaptureCollaborator(),
        render=render or MockRenderCollaborator(),
        synthesis=synthesis,
        config=config,
        store=store if store is not None else InMemoryCacheStore(),
        clock=fixed_clock,
    )


def run(coro):
    return asyncio.run(coro)


def exports_of(result):
    """The deterministic part of a result, for byte-level comparison."""
    data = result.to_dict()
    data.pop('durationMs')
    data.pop('cache')
    return data


__all__ = [
    'T1', 'PRODUCT_URL', 'PRODUCT_URL_VARIANT', 'OTHER_PRODUCT_URL',
    'fixed_clock', 'FlakyRenderCollaborator', 'EmptyRenderCollaborator',
    'RaisingCaptureCollaborator', 'RecoveringCaptureCollaborator',
    'RaisingSynthesisCollaborator', 'RaisingRenderCollaborator',
    'build_orchestrator', 'run', 'exports_of',
    'MockCaptureCollaborator', 'MockRenderCollaborator', 'MockSynthesisCollaborator',
]
