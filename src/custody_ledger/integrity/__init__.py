"""Integrity module - Merkle ledger and tamper detection."""

from .merkle_tree import (
    EMPTY_MERKLE_ROOT,
    LeafPayload,
    MerkleProof,
    MerkleTree,
    ProofNode,
    build_layers,
    generate_proof,
    get_root,
    hash_leaf,
    verify_proof,
)
from .checker import (
    CaseIntegrityReport,
    ContentIntegrityReport,
    EvidenceVerification,
    IntegrityChecker,
    IntegrityState,
    build_ledger,
)
from .records import EvidenceRecord, EvidenceRepository

__all__ = [
    "EMPTY_MERKLE_ROOT",
    "LeafPayload",
    "MerkleProof",
    "MerkleTree",
    "ProofNode",
    "build_layers",
    "generate_proof",
    "get_root",
    "hash_leaf",
    "verify_proof",
    "CaseIntegrityReport",
    "ContentIntegrityReport",
    "EvidenceVerification",
    "IntegrityChecker",
    "IntegrityState",
    "build_ledger",
    "EvidenceRecord",
    "EvidenceRepository",
]
