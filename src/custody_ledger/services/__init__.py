"""Services module - evidence orchestration."""

from .evidence_manager import EvidenceManager, EvidenceMetadata

__all__ = ["EvidenceManager", "EvidenceMetadata"]
