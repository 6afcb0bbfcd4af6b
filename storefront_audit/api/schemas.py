"""
API Schemas

Pydantic request models for the HTTP surface. Response bodies are the
`to_dict()` views of AuditResult and StatusView.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class AuditRequest(BaseModel):
    url: str = Field(..., description="Product page URL (http or https)")
    locale: Optional[str] = Field(None, description="Report locale, defaults to the server's")
    copy_ready: bool = False
    white_label: Optional[Dict[str, str]] = None
