"""
Integrity verification API routes.
"""

import logging
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..integrity import (
    LeafPayload,
    MerkleProof,
    ProofNode,
    generate_proof,
    get_root,
    hash_leaf,
    verify_proof,
)
from ..services import EvidenceManager
from .deps import decode_content, get_manager

logger = logging.getLogger("custody_ledger.api.verify")

router = APIRouter(prefix="/verify", tags=["Integrity"])

HEX64 = r"^[0-9a-fA-F]{64}$"


class ProofNodeModel(BaseModel):
    position: Literal["left", "right"]
    hash: str = Field(..., pattern=HEX64)


class ProofModel(BaseModel):
    """Wire shape of a Merkle proof."""

    leaf: str = Field(..., pattern=HEX64)
    siblings: list[ProofNodeModel] = Field(default_factory=list)
    root: str = Field(..., pattern=HEX64)

    def to_proof(self) -> MerkleProof:
        return MerkleProof(
            leaf=self.leaf,
            siblings=[ProofNode(position=node.position, hash=node.hash) for node in self.siblings],
            root=self.root,
        )


class LeafPayloadModel(BaseModel):
    case_id: str
    evidence_id: str
    content_id: str
    content_hash: str
    timestamp: str = Field(..., description="ISO-8601 timestamp as hashed")


class LeavesRequest(BaseModel):
    leaves: list[Annotated[str, Field(pattern=HEX64)]] = Field(
        ..., description="Ordered leaf digests"
    )
    index: int | None = Field(None, description="Leaf to prove (proof generation only)")


class VerifyProofRequest(BaseModel):
    """Request to verify a leaf against a proof and a trusted root."""

    leaf: str = Field(..., description="Leaf digest to verify")
    proof: ProofModel
    expected_root: str = Field(..., description="Externally trusted root")


class VerifyEvidenceRequest(BaseModel):
    """Request to verify an evidence item, optionally against a comparison file."""

    content_base64: str | None = Field(
        None, description="Comparison file; stored content is used if omitted"
    )


@router.post("/leaf")
async def compute_leaf(payload: LeafPayloadModel) -> dict[str, str]:
    """Hash the five identifying fields of an evidence item."""
    return {"leaf": hash_leaf(LeafPayload(**payload.model_dump()))}


@router.post("/root")
async def compute_root(request: LeavesRequest) -> dict[str, Any]:
    """Compute the root of an ordered leaf list."""
    return {"root": get_root(request.leaves), "leaf_count": len(request.leaves)}


@router.post("/generate-proof")
async def create_proof(request: LeavesRequest) -> dict[str, Any]:
    """Generate an inclusion proof for one leaf of an ordered leaf list."""
    if request.index is None:
        raise HTTPException(status_code=400, detail="index is required")

    try:
        proof = generate_proof(request.leaves, request.index)
    except (ValueError, IndexError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return proof.to_dict()


@router.post("/proof")
async def check_proof(request: VerifyProofRequest) -> dict[str, Any]:
    """
    Verify a leaf against a proof.

    Valid only if the recomputed root equals both the expected root and the
    root embedded in the proof.
    """
    is_valid = verify_proof(request.leaf, request.proof.to_proof(), request.expected_root)
    return {
        "valid": is_valid,
        "leaf": request.leaf,
        "expected_root": request.expected_root,
    }


@router.post("/evidence/{evidence_id}")
async def verify_evidence(
    evidence_id: str,
    request: VerifyEvidenceRequest,
    manager: EvidenceManager = Depends(get_manager),
) -> dict[str, Any]:
    """
    Verify content and chain integrity of one evidence item.

    Content is checked by re-hashing file bytes; chain by rebuilding the
    case tree from current records and comparing with the stored root.
    """
    file_bytes = None
    if request.content_base64 is not None:
        file_bytes = decode_content(request.content_base64)

    verification = await manager.verify_evidence(evidence_id, file_bytes)

    return {
        "message": (
            "Evidence integrity verified"
            if verification.verified
            else "Evidence integrity check failed"
        ),
        "verification": verification.to_dict(),
    }
