"""
HTTP API

Thin FastAPI surface over AuditOrchestrator. Holds no audit logic.
"""

from .server import app, create_app, build_orchestrator

__all__ = ['app', 'create_app', 'build_orchestrator']
