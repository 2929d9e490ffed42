"""
Shared service instances for the API routes.
"""

import base64
import binascii

from fastapi import HTTPException

from ..config import get_settings
from ..services import EvidenceManager
from ..storage import LocalBlobStore, NoopLedgerRecorder, SQLEvidenceRepository, get_db

# Manager instance (shared across requests)
_manager: EvidenceManager | None = None


def get_manager() -> EvidenceManager:
    """Get or create the shared evidence manager."""
    global _manager
    if _manager is None:
        settings = get_settings()
        _manager = EvidenceManager(
            repository=SQLEvidenceRepository(get_db()),
            blob_store=LocalBlobStore(settings.blob_dir),
            ledger=NoopLedgerRecorder(enabled=settings.ledger_enabled),
            system_actor=settings.system_actor,
        )
    return _manager


def reset_manager() -> None:
    """Drop the shared manager so the next request rebuilds it."""
    global _manager
    _manager = None


def decode_content(content_base64: str) -> bytes:
    """Decode an uploaded file body, enforcing the configured size limit."""
    try:
        data = base64.b64decode(content_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid base64 content: {e}") from e

    if len(data) > get_settings().max_upload_bytes:
        raise HTTPException(status_code=413, detail="File exceeds upload limit")
    return data
