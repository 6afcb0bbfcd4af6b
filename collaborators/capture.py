"""
HTTP Capture

Fetches a product page over HTTP and extracts its facts.

PRINCIPLES:
===========
1. Store raw HTML - the html_ref always points at the exact bytes parsed
2. Failed fetches are explicit CollaboratorErrors, never empty captures
3. No screenshots: a plain HTTP fetch cannot render the page
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Optional
import hashlib
import logging

import httpx

from storefront_audit.contracts.base import ErrorCode
from storefront_audit.contracts.collaborators import (
    CaptureCollaborator, CaptureRequest, ViewportCapture
)
from storefront_audit.errors import CollaboratorError

from .facts_collector import collect_facts


logger = logging.getLogger(__name__)


USER_AGENTS: Dict[str, str] = {
    'mobile': (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
    ),
    'desktop': (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
}

BLOCKED_STATUSES = frozenset({401, 403, 429, 503})


class HttpCaptureCollaborator(CaptureCollaborator):
    """
    Captures a page by fetching its HTML.

    Args:
        html_dir: Directory where raw HTML is written; when None the
            html_ref is a content digest only
        transport: Optional httpx transport (tests use httpx.MockTransport)
        user_agent: Overrides the per-viewport user agents
    """

    def __init__(
        self,
        html_dir: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: Optional[str] = None
    ):
        self._html_dir = Path(html_dir) if html_dir else None
        self._transport = transport
        self._user_agent = user_agent

    def _headers(self, request: CaptureRequest) -> Dict[str, str]:
        agent = self._user_agent or USER_AGENTS.get(
            request.viewport.name, USER_AGENTS['desktop']
        )
        return {
            'User-Agent': agent,
            'Accept-Language': request.locale,
        }

    async def capture(self, request: CaptureRequest) -> ViewportCapture:
        viewport = request.viewport.name
        try:
            async with httpx.AsyncClient(
                timeout=request.timeout_seconds,
                transport=self._transport,
                follow_redirects=True
            ) as client:
                response = await client.get(
                    request.normalized_url,
                    headers=self._headers(request)
                )
        except httpx.TimeoutException as e:
            raise CollaboratorError(
                ErrorCode.CAPTURE_TIMEOUT,
                f"Timed out fetching {request.normalized_url}: {e}",
                viewport=viewport
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorError(
                ErrorCode.CAPTURE_BLOCKED,
                f"Network error fetching {request.normalized_url}: {e}",
                viewport=viewport
            ) from e

        if response.status_code in BLOCKED_STATUSES or not response.is_success:
            raise CollaboratorError(
                ErrorCode.CAPTURE_BLOCKED,
                f"HTTP {response.status_code} for {request.normalized_url}",
                viewport=viewport
            )

        html = response.text
        html_ref = self._store_html(response.content)
        logger.info(
            "Captured %s (%s): %d bytes", request.normalized_url, viewport, len(response.content)
        )
        return ViewportCapture(
            viewport=request.viewport,
            screenshot_ref=None,
            html_ref=html_ref,
            facts=collect_facts(html),
        )

    def _store_html(self, raw: bytes) -> str:
        digest = hashlib.sha256(raw).hexdigest()
        if self._html_dir is None:
            return f"sha256:{digest}"
        path = self._html_dir / f"{digest}.html"
        try:
            self._html_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(raw)
        except OSError as e:
            raise CollaboratorError(
                ErrorCode.CAPTURE_BLOCKED, f"Cannot store raw HTML: {e}"
            ) from e
        return str(path)
