"""
File Render

Writes an aggregated audit report to disk as JSON plus a ticket CSV.

Layout: <output_dir>/<audit_key>/report.json
        <output_dir>/<audit_key>/tickets.csv
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, List
import asyncio
import csv
import io
import json
import logging

from storefront_audit.contracts.base import ErrorCode
from storefront_audit.contracts.collaborators import (
    AuditReport, RenderCollaborator, RenderOutcome
)
from storefront_audit.contracts.exports import Ticket
from storefront_audit.errors import CollaboratorError


logger = logging.getLogger(__name__)


# =============================================================================
# CSV EXPORT v1
# =============================================================================

CSV_COLUMNS = (
    'ticket_id', 'mode', 'title', 'impact', 'effort', 'risk', 'confidence',
    'category', 'why', 'evidence_refs', 'how_to', 'validation', 'quick_win',
    'owner_hint', 'url_context',
)

LIST_SEPARATOR = '|'


def ticket_to_row(ticket: Ticket, url_context: str) -> Dict[str, str]:
    """Flatten one ticket into a CSV v1 row (all values are strings)."""
    return {
        'ticket_id': ticket.ticket_id,
        'mode': ticket.mode.value,
        'title': ticket.title,
        'impact': ticket.impact.value,
        'effort': ticket.effort.value,
        'risk': ticket.risk.value,
        'confidence': ticket.confidence.value,
        'category': ticket.category.value,
        'why': ticket.why,
        'evidence_refs': LIST_SEPARATOR.join(ticket.evidence_refs),
        'how_to': LIST_SEPARATOR.join(ticket.how_to),
        'validation': LIST_SEPARATOR.join(ticket.validation),
        'quick_win': 'true' if ticket.quick_win else 'false',
        'owner_hint': ticket.owner_hint.value,
        'url_context': url_context,
    }


def tickets_to_csv(tickets: Iterable[Ticket], url_context: str) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator='\n')
    writer.writeheader()
    for ticket in tickets:
        writer.writerow(ticket_to_row(ticket, url_context))
    return buffer.getvalue()


# =============================================================================
# RENDERER
# =============================================================================

class FileRenderCollaborator(RenderCollaborator):
    """Renders reports into a local output directory."""

    def __init__(self, output_dir: str = "output"):
        self._output_dir = Path(output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    async def render(self, report: AuditReport) -> RenderOutcome:
        return await asyncio.to_thread(self._write, report)

    def _write(self, report: AuditReport) -> RenderOutcome:
        target = self._output_dir / report.audit_key
        report_path = target / "report.json"
        csv_path = target / "tickets.csv"
        try:
            target.mkdir(parents=True, exist_ok=True)
            report_path.write_text(
                json.dumps(report.to_dict(), indent=2, sort_keys=True, ensure_ascii=False),
                encoding="utf-8",
            )
            csv_path.write_text(
                tickets_to_csv(report.tickets, report.normalized_url),
                encoding="utf-8",
            )
        except OSError as e:
            raise CollaboratorError(
                ErrorCode.RENDER_FAILED, f"Cannot write report for {report.audit_key}: {e}"
            ) from e

        logger.info("Rendered %s to %s", report.audit_key, target)
        return RenderOutcome(report_ref=str(report_path), csv_ref=str(csv_path))


def read_rows(csv_text: str) -> List[Dict[str, str]]:
    return list(csv.DictReader(io.StringIO(csv_text)))
