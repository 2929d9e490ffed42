"""
Integrity Checker - detects and localizes evidence tampering.

Answers two independent questions about a case:
- Content integrity: do a file's bytes still hash to the recorded content hash?
- Chain integrity: does the evidence set, as currently stored, still hash to
  the case's checkpointed Merkle root, and does each item's persisted proof
  still verify with its recomputed leaf?

Verification mismatches are results, never exceptions. Exceptions raised
here mean the check could not be performed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar

from ..exceptions import MalformedProofError
from .merkle_tree import (
    MerkleProof,
    MerkleTree,
    normalize_content_hash,
    sha256_hex,
    verify_proof,
)
from .records import EvidenceRecord, EvidenceRepository, ordering_key

logger = logging.getLogger("custody_ledger.integrity")


class IntegrityState(str, Enum):
    PENDING = "PENDING"
    VALID = "VALID"
    CHAIN_TAMPERED = "CHAIN_TAMPERED"
    ITEM_TAMPERED = "ITEM_TAMPERED"
    CONTENT_TAMPERED = "CONTENT_TAMPERED"


@dataclass(frozen=True)
class ChainValid:
    root: str
    state: ClassVar[IntegrityState] = IntegrityState.VALID

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state.value, "root": self.root}


@dataclass(frozen=True)
class ChainTampered:
    expected_root: str
    actual_root: str
    state: ClassVar[IntegrityState] = IntegrityState.CHAIN_TAMPERED

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "expected_root": self.expected_root,
            "actual_root": self.actual_root,
        }


@dataclass(frozen=True)
class ChainPending:
    calculated_root: str
    state: ClassVar[IntegrityState] = IntegrityState.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state.value, "calculated_root": self.calculated_root}


@dataclass(frozen=True)
class ContentValid:
    content_hash: str
    state: ClassVar[IntegrityState] = IntegrityState.VALID

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state.value, "content_hash": self.content_hash}


@dataclass(frozen=True)
class ContentTampered:
    expected: str
    actual: str
    state: ClassVar[IntegrityState] = IntegrityState.CONTENT_TAMPERED

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state.value, "expected": self.expected, "actual": self.actual}


ChainStatus = ChainValid | ChainTampered | ChainPending
ContentStatus = ContentValid | ContentTampered


@dataclass
class CaseIntegrityReport:
    """Result of a full case check."""

    case_id: str
    status: ChainStatus
    calculated_root: str
    stored_root: str | None
    tampered_items: set[str] = field(default_factory=set)
    unproven_items: set[str] = field(default_factory=set)
    # evidence id -> leaf stored at checkpoint time and leaf recomputed now
    leaf_changes: dict[str, dict[str, str | None]] = field(default_factory=dict)
    evidence_count: int = 0
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def chain_valid(self) -> bool:
        """False only when the recomputed root disagrees with the stored one."""
        return not isinstance(self.status, ChainTampered)

    @property
    def state(self) -> IntegrityState:
        if isinstance(self.status, (ChainPending, ChainTampered)):
            return self.status.state
        if self.tampered_items:
            return IntegrityState.ITEM_TAMPERED
        return IntegrityState.VALID

    def to_dict(self) -> dict[str, Any]:
        return {
            "case_id": self.case_id,
            "state": self.state.value,
            "chain_valid": self.chain_valid,
            "calculated_root": self.calculated_root,
            "stored_root": self.stored_root,
            "tampered_items": sorted(self.tampered_items),
            "unproven_items": sorted(self.unproven_items),
            "leaf_changes": {key: self.leaf_changes[key] for key in sorted(self.leaf_changes)},
            "evidence_count": self.evidence_count,
            "status": self.status.to_dict(),
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class ContentIntegrityReport:
    """Result of re-hashing one item's file bytes."""

    evidence_id: str
    status: ContentStatus
    stored_hash: str
    computed_hash: str

    @property
    def content_valid(self) -> bool:
        return isinstance(self.status, ContentValid)

    def to_dict(self) -> dict[str, Any]:
        return {
            "evidence_id": self.evidence_id,
            "content_valid": self.content_valid,
            "stored_hash": self.stored_hash,
            "computed_hash": self.computed_hash,
            "status": self.status.to_dict(),
        }


@dataclass
class EvidenceVerification:
    """Combined content and chain verdict for one evidence item."""

    evidence_id: str
    content: ContentIntegrityReport
    case: CaseIntegrityReport

    @property
    def item_tampered(self) -> bool:
        return self.evidence_id in self.case.tampered_items

    @property
    def chain_valid(self) -> bool:
        return self.case.chain_valid and not self.item_tampered

    @property
    def verified(self) -> bool:
        return self.content.content_valid and self.chain_valid

    @property
    def status_message(self) -> str:
        if not self.content.content_valid:
            return "File Content Mismatch (Tampered File)"
        if not self.chain_valid:
            return "Database Record Mismatch (Tampered Metadata)"
        return "Integrity Verified"

    def to_dict(self) -> dict[str, Any]:
        return {
            "evidence_id": self.evidence_id,
            "verified": self.verified,
            "content_valid": self.content.content_valid,
            "chain_valid": self.chain_valid,
            "item_tampered": self.item_tampered,
            "status_message": self.status_message,
            "stored_hash": self.content.stored_hash,
            "computed_hash": self.content.computed_hash,
            "calculated_root": self.case.calculated_root,
            "stored_root": self.case.stored_root,
            "case_state": self.case.state.value,
        }


@dataclass
class Ledger:
    """A freshly computed tree over a case's evidence."""

    root: str
    order: list[str]
    leaves: dict[str, str]
    proofs: dict[str, MerkleProof]


def build_ledger(records: list[EvidenceRecord]) -> Ledger:
    """
    Compute leaves, root and every item's proof for a set of records.

    Records are put in deterministic leaf order first, so the result does
    not depend on the order the repository returned them in.
    """
    ordered = sorted(records, key=ordering_key)

    tree = MerkleTree()
    leaves = [tree.add_leaf(record.leaf_payload()) for record in ordered]
    root = tree.build()

    return Ledger(
        root=root,
        order=[record.evidence_id for record in ordered],
        leaves={record.evidence_id: leaf for record, leaf in zip(ordered, leaves)},
        proofs={record.evidence_id: tree.get_proof(index) for index, record in enumerate(ordered)},
    )


class IntegrityChecker:
    """
    Checks cases and evidence items against their checkpointed state.

    Usage:
        checker = IntegrityChecker(repository)
        report = await checker.check_case_integrity(case_id)
        content = await checker.check_content_integrity(evidence_id, data)
    """

    def __init__(
        self,
        repository: EvidenceRepository,
        content_hasher: Callable[[bytes], str] = sha256_hex,
    ):
        """
        Initialize checker.

        Args:
            repository: Evidence repository to read current rows from
            content_hasher: Hash function over raw file bytes
        """
        self.repository = repository
        self.content_hasher = content_hasher

    async def check_case_integrity(self, case_id: str) -> CaseIntegrityReport:
        """
        Recompute a case's root from current rows and replay every item proof.

        Both checks always run: the root comparison detects that something
        changed, the proof replay localizes which items changed.

        Raises:
            CaseNotFoundError: if the case does not exist
            IntegrityCheckError: if the repository or a stored proof is unusable
        """
        stored_root, records = await self.repository.read_case_snapshot(case_id)
        return await self.evaluate_snapshot(case_id, stored_root, records)

    async def evaluate_snapshot(
        self,
        case_id: str,
        stored_root: str | None,
        records: list[EvidenceRecord],
    ) -> CaseIntegrityReport:
        """
        Check already read evidence records against a stored root.

        Raises:
            MalformedProofError: if a stored proof is unusable
        """
        ledger = await asyncio.to_thread(build_ledger, records)
        calculated_root = ledger.root

        report = CaseIntegrityReport(
            case_id=case_id,
            status=ChainPending(calculated_root=calculated_root),
            calculated_root=calculated_root,
            stored_root=stored_root,
            evidence_count=len(records),
        )

        if stored_root is None:
            logger.info(
                f"Case {case_id} has no checkpointed root; integrity pending",
                extra={"action": "case_integrity", "case_id": case_id},
            )
            return report

        if calculated_root == stored_root.lower():
            report.status = ChainValid(root=calculated_root)
        else:
            report.status = ChainTampered(expected_root=stored_root, actual_root=calculated_root)
            logger.warning(
                f"🚨 Case {case_id} root mismatch: stored {stored_root[:16]}..., "
                f"calculated {calculated_root[:16]}...",
                extra={"action": "case_integrity", "case_id": case_id},
            )

        for record in records:
            if record.merkle_proof is None:
                report.unproven_items.add(record.evidence_id)
                continue

            proof = self._load_proof(record)
            leaf = ledger.leaves[record.evidence_id]

            if not verify_proof(leaf, proof, stored_root):
                report.tampered_items.add(record.evidence_id)
                report.leaf_changes[record.evidence_id] = {
                    "stored_leaf": record.leaf_hash,
                    "current_leaf": leaf,
                }
                logger.warning(
                    f"🚨 Evidence {record.evidence_id} no longer matches its proof",
                    extra={
                        "action": "case_integrity",
                        "case_id": case_id,
                        "evidence_id": record.evidence_id,
                    },
                )

        logger.info(
            f"Case {case_id} integrity: {report.state.value} "
            f"({report.evidence_count} items, {len(report.tampered_items)} tampered)",
            extra={"action": "case_integrity", "case_id": case_id},
        )
        return report

    async def check_content_integrity(
        self,
        evidence_id: str,
        file_bytes: bytes,
    ) -> ContentIntegrityReport:
        """
        Compare the hash of actual file bytes with the recorded content hash.

        Raises:
            EvidenceNotFoundError: if the evidence does not exist
        """
        record = await self.repository.read_evidence(evidence_id)

        computed_hash = self.content_hasher(file_bytes)
        stored_hash = record.content_hash

        if normalize_content_hash(stored_hash) == normalize_content_hash(computed_hash):
            status: ContentStatus = ContentValid(content_hash=computed_hash)
        else:
            status = ContentTampered(expected=stored_hash, actual=computed_hash)
            logger.warning(
                f"🚨 Evidence {evidence_id} content hash mismatch: "
                f"stored {stored_hash[:16]}..., computed {computed_hash[:16]}...",
                extra={"action": "content_integrity", "evidence_id": evidence_id},
            )

        return ContentIntegrityReport(
            evidence_id=evidence_id,
            status=status,
            stored_hash=stored_hash,
            computed_hash=computed_hash,
        )

    async def verify_evidence(self, evidence_id: str, file_bytes: bytes) -> EvidenceVerification:
        """Run content and chain checks for one item and combine them."""
        content = await self.check_content_integrity(evidence_id, file_bytes)
        record = await self.repository.read_evidence(evidence_id)
        case = await self.check_case_integrity(record.case_id)

        return EvidenceVerification(evidence_id=evidence_id, content=content, case=case)

    @staticmethod
    def _load_proof(record: EvidenceRecord) -> MerkleProof:
        try:
            return MerkleProof.from_dict(record.merkle_proof)
        except MalformedProofError as e:
            logger.error(f"❌ Stored proof for evidence {record.evidence_id} is malformed: {e}")
            raise MalformedProofError(
                f"Stored proof for evidence {record.evidence_id} is malformed: {e}"
            ) from e
