"""
Case management and case integrity API routes.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..services import EvidenceManager
from .deps import get_manager

logger = logging.getLogger("custody_ledger.api.cases")

router = APIRouter(prefix="/cases", tags=["Cases"])


class CreateCaseRequest(BaseModel):
    """Request to open a case."""

    title: str = Field(..., min_length=1, description="Case title")
    description: str | None = None
    officer: str | None = Field(None, description="Lead officer")


class CheckpointRequest(BaseModel):
    """Request to re-checkpoint a case root."""

    actor: str = Field(..., min_length=1, description="Who is checkpointing")
    reason: str = Field(..., min_length=1, description="Why the root is being rewritten")
    force: bool = Field(
        False, description="Rewrite the root even if current records no longer match it"
    )


@router.post("")
async def create_case(
    request: CreateCaseRequest,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    """Open a new case. Its integrity is PENDING until the first checkpoint."""
    return await manager.repository.create_case(
        title=request.title,
        description=request.description,
        officer=request.officer,
    )


@router.get("")
async def list_cases(manager: EvidenceManager = Depends(get_manager)) -> dict[str, Any]:
    cases = await manager.repository.list_cases()
    return {"cases": cases, "count": len(cases)}


@router.get("/{case_id}")
async def get_case(case_id: str, manager: EvidenceManager = Depends(get_manager)) -> dict[str, Any]:
    return await manager.repository.get_case(case_id)


@router.get("/{case_id}/evidence")
async def list_case_evidence(
    case_id: str,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    evidence = await manager.repository.list_evidence(case_id)
    return {"case_id": case_id, "evidence": evidence}


@router.post("/{case_id}/checkpoint")
async def checkpoint_case(
    case_id: str,
    request: CheckpointRequest,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    """
    Explicitly rewrite the case root from current evidence.

    Audited: the previous root, actor, reason and force flag are kept in the
    checkpoint log. Refused with 409 when the case fails its integrity check,
    unless force is set.
    """
    logger.warning(
        f"🔐 Manual checkpoint of case {case_id} by {request.actor}: {request.reason}",
        extra={"case_id": case_id, "action": "checkpoint"},
    )
    return await manager.checkpoint_case(
        case_id,
        actor=request.actor,
        reason=request.reason,
        force=request.force,
    )


@router.get("/{case_id}/checkpoints")
async def list_checkpoints(
    case_id: str,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    checkpoints = await manager.repository.list_checkpoints(case_id)
    return {"case_id": case_id, "checkpoints": checkpoints}


@router.get("/{case_id}/integrity")
async def check_case_integrity(
    case_id: str,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    """
    Recompute the case root from current records and replay every proof.

    Reports CHAIN_TAMPERED, ITEM_TAMPERED (with the implicated items),
    PENDING or VALID.
    """
    report = await manager.checker.check_case_integrity(case_id)
    return report.to_dict()
