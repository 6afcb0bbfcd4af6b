"""
Collaborators Package

ARCHITECTURAL BOUNDARY:
=======================
Implementations of the capture, synthesis and render interfaces
declared in storefront_audit.contracts.collaborators.

DIRECTION OF DEPENDENCY:
========================
collaborators -> storefront_audit.contracts

NEVER:
- storefront_audit core layers importing from this package
  (only the API wiring in storefront_audit.api does)
- Collaborators reading or writing the Stage Cache
"""

from .capture import HttpCaptureCollaborator
from .facts_collector import FactsCollector, collect_facts
from .render import FileRenderCollaborator, tickets_to_csv
from .synthesis import OfflineSynthesizer

__all__ = [
    'HttpCaptureCollaborator',
    'FactsCollector',
    'collect_facts',
    'FileRenderCollaborator',
    'tickets_to_csv',
    'OfflineSynthesizer',
]
