"""
Record types and the repository contract consumed by the integrity checker.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from .merkle_tree import LeafPayload, format_timestamp, hash_leaf


@dataclass
class EvidenceRecord:
    """The integrity checker's view of one evidence row, as currently stored."""

    evidence_id: str
    case_id: str
    content_id: str
    content_hash: str
    created_at: datetime
    merkle_proof: dict[str, Any] | None = None
    leaf_hash: str | None = None

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.created_at)

    def leaf_payload(self) -> LeafPayload:
        """Build the leaf payload from current field values."""
        return LeafPayload(
            case_id=self.case_id,
            evidence_id=self.evidence_id,
            content_id=self.content_id,
            content_hash=self.content_hash,
            timestamp=self.timestamp,
        )

    def current_leaf(self) -> str:
        return hash_leaf(self.leaf_payload())


def ordering_key(record: EvidenceRecord) -> tuple[datetime, str]:
    """Deterministic leaf order: creation time, then evidence id."""
    return (record.created_at, record.evidence_id)


class EvidenceRepository(Protocol):
    """Read side of the evidence store used for integrity checks."""

    async def read_case_evidence(self, case_id: str) -> list[EvidenceRecord]:
        """All evidence of a case from one consistent snapshot, in leaf order."""
        ...

    async def read_case_root(self, case_id: str) -> str | None:
        """The case's checkpointed root, or None if never checkpointed."""
        ...

    async def read_case_snapshot(self, case_id: str) -> tuple[str | None, list[EvidenceRecord]]:
        """Root and evidence read together in one transaction."""
        ...

    async def read_evidence(self, evidence_id: str) -> EvidenceRecord:
        ...
