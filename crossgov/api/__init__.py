"""
CrossGov HTTP API

Provides:
  - create_app: FastAPI application factory over GovernanceService
"""

from .app import create_app, status_for

__all__ = ["create_app", "status_for"]
