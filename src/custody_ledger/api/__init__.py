"""API routes module."""

from .routes_cases import router as cases_router
from .routes_evidence import router as evidence_router
from .routes_verify import router as verify_router

__all__ = ["cases_router", "evidence_router", "verify_router"]
