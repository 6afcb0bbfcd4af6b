"""
Collaborator Providers
======================

Test doubles for the collaborator interfaces.

Available providers:
- MockCaptureCollaborator: Deterministic capture with per-viewport failures
- MockSynthesisCollaborator: Deterministic synthesis with failure modes
- MockRenderCollaborator: Deterministic render with failure modes
"""

from .mock import (
    MockCaptureCollaborator,
    MockRenderCollaborator,
    MockSynthesisCollaborator,
    sample_facts,
)

__all__ = [
    'MockCaptureCollaborator',
    'MockRenderCollaborator',
    'MockSynthesisCollaborator',
    'sample_facts',
]
