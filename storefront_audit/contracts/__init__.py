"""
Audit Contracts

Immutable data shared by every layer of the audit pipeline.
Layers may import these types but never mutate them.
"""

from .base import (
    AuditMode,
    Criticality,
    DESKTOP_VIEWPORT,
    ErrorCode,
    EvidenceCompleteness,
    MOBILE_VIEWPORT,
    PipelineStage,
    RunStatus,
    StageError,
    Viewport,
    to_plain,
)
from .facts import (
    CaptureArtifacts,
    FactCategory,
    PageFacts,
    PdpFacts,
    StructureFacts,
    TechnicalFacts,
    ViewportArtifact,
)
from .exports import (
    BreakdownItem,
    Evidence,
    EvidenceLevel,
    EvidenceType,
    OwnerHint,
    Pillar,
    ScoreResult,
    Ticket,
    TicketCategory,
    TicketConfidence,
    TicketEffort,
    TicketImpact,
    TicketRisk,
)
from .versions import DEFAULT_VERSIONS, VersionRegistry

__all__ = [
    'AuditMode', 'Criticality', 'DESKTOP_VIEWPORT', 'ErrorCode',
    'EvidenceCompleteness', 'MOBILE_VIEWPORT', 'PipelineStage', 'RunStatus',
    'StageError', 'Viewport', 'to_plain',
    'CaptureArtifacts', 'FactCategory', 'PageFacts', 'PdpFacts',
    'StructureFacts', 'TechnicalFacts', 'ViewportArtifact',
    'BreakdownItem', 'Evidence', 'EvidenceLevel', 'EvidenceType', 'OwnerHint',
    'Pillar', 'ScoreResult', 'Ticket', 'TicketCategory', 'TicketConfidence',
    'TicketEffort', 'TicketImpact', 'TicketRisk',
    'DEFAULT_VERSIONS', 'VersionRegistry',
]
