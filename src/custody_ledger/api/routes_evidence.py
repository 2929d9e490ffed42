"""
Evidence upload, custody and proof API routes.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..services import EvidenceManager, EvidenceMetadata
from .deps import decode_content, get_manager

logger = logging.getLogger("custody_ledger.api.evidence")

router = APIRouter(prefix="/evidence", tags=["Evidence"])


class AddEvidenceRequest(BaseModel):
    """Request to add a file as evidence of a case."""

    case_id: str = Field(..., description="Owning case")
    filename: str = Field(..., min_length=1)
    content_base64: str = Field(..., description="File bytes, base64 encoded")
    custody_officer: str = Field(..., min_length=1, description="Officer taking initial custody")
    filetype: str | None = None
    notes: str | None = None


class CustodyTransferRequest(BaseModel):
    """Request to transfer custody of an item."""

    officer: str = Field(..., min_length=1, description="Officer receiving custody")
    notes: str | None = None


@router.post("")
async def add_evidence(
    request: AddEvidenceRequest,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    """
    Store a file, record it against the case and checkpoint the case root.
    """
    data = decode_content(request.content_base64)
    result = await manager.add_evidence(
        request.case_id,
        data,
        EvidenceMetadata(
            filename=request.filename,
            custody_officer=request.custody_officer,
            filetype=request.filetype,
            notes=request.notes,
        ),
    )
    return {"message": "Evidence stored and case checkpointed", **result}


@router.get("/{evidence_id}")
async def get_evidence(
    evidence_id: str,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    return await manager.repository.get_evidence(evidence_id)


@router.post("/{evidence_id}/custody")
async def transfer_custody(
    evidence_id: str,
    request: CustodyTransferRequest,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    """Append a custody transfer. Does not affect the Merkle root."""
    return await manager.transfer_custody(evidence_id, request.officer, request.notes)


@router.get("/{evidence_id}/proof")
async def get_proof(
    evidence_id: str,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    """Get the item's persisted inclusion proof and current leaf."""
    return await manager.get_proof(evidence_id)
