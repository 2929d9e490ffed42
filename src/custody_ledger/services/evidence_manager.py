"""
Evidence Manager - orchestrates storage, checkpointing and verification.

Adding evidence stores the file bytes, inserts the evidence row and then
re-checkpoints the case, provided the records already under the stored
root still match it: every leaf is recomputed, the tree rebuilt and the
new root written together with every item's proof.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any

from ..exceptions import CheckpointRefusedError
from ..integrity.checker import (
    EvidenceVerification,
    IntegrityChecker,
    IntegrityState,
    build_ledger,
)
from ..integrity.merkle_tree import MerkleProof, sha256_hex
from ..integrity.records import EvidenceRecord
from ..storage.blobstore import BlobStore
from ..storage.ledger import LedgerRecorder
from ..storage.models import utcnow
from ..storage.repository import SQLEvidenceRepository

logger = logging.getLogger("custody_ledger.evidence")


@dataclass
class EvidenceMetadata:
    """Descriptive fields supplied with an upload."""

    filename: str
    custody_officer: str
    filetype: str | None = None
    notes: str | None = None


class EvidenceManager:
    """
    High-level evidence operations for a host application.

    Collaborators are injected; nothing is initialized implicitly.
    """

    def __init__(
        self,
        repository: SQLEvidenceRepository,
        blob_store: BlobStore,
        ledger: LedgerRecorder | None = None,
        system_actor: str = "system",
    ):
        self.repository = repository
        self.blob_store = blob_store
        self.ledger = ledger
        self.system_actor = system_actor
        self.checker = IntegrityChecker(repository)
        # A lock lives only while some checkpoint of its case holds or awaits it
        self._case_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, case_id: str) -> asyncio.Lock:
        lock = self._case_locks.get(case_id)
        if lock is None:
            lock = self._case_locks[case_id] = asyncio.Lock()
        return lock

    async def add_evidence(
        self,
        case_id: str,
        data: bytes,
        metadata: EvidenceMetadata,
    ) -> dict[str, Any]:
        """
        Store a file as evidence of a case and checkpoint the case.

        Raises:
            CheckpointRefusedError: if the case no longer matches its stored root

        Returns:
            The stored evidence row, including its new proof, and the case root
        """
        content_hash = sha256_hex(data)
        logger.info(
            f"📥 Adding evidence {metadata.filename} to case {case_id} (sha256 {content_hash[:16]}...)",
            extra={"case_id": case_id, "action": "add_evidence"},
        )

        stored_root, records = await self.repository.read_case_snapshot(case_id)
        await self._ensure_untampered(case_id, stored_root, records)

        content_id = await self.blob_store.store(data, metadata.filename)

        evidence = await self.repository.add_evidence(
            case_id=case_id,
            filename=metadata.filename,
            content_id=content_id,
            content_hash=content_hash,
            filetype=metadata.filetype,
            filesize=len(data),
            notes=metadata.notes,
            custody_officer=metadata.custody_officer,
            created_at=utcnow(),
        )

        checkpoint = await self.checkpoint_case(
            case_id,
            actor=metadata.custody_officer,
            reason=f"Evidence {evidence['id']} added",
        )

        evidence = await self.repository.get_evidence(evidence["id"])
        return {"evidence": evidence, "merkle_root": checkpoint["merkle_root"]}

    async def checkpoint_case(
        self,
        case_id: str,
        actor: str | None = None,
        reason: str | None = None,
        force: bool = False,
    ) -> dict[str, Any]:
        """
        Recompute and persist a case's root and every item's proof.

        Single writer per case: an in-process lock serializes local callers
        and the repository's compare-and-swap rejects any other writer.

        Args:
            case_id: Case to checkpoint
            actor: Who is checkpointing; the system actor if omitted
            reason: Audit note kept with the checkpoint
            force: Rewrite the root even if current records no longer match it

        Raises:
            CheckpointRefusedError: if the case fails its integrity check and
                force is not set
            CheckpointConflictError: if another writer changed the root first
        """
        lock = self._lock_for(case_id)
        async with lock:
            previous_root, records = await self.repository.read_case_snapshot(case_id)

            if force:
                logger.warning(
                    f"⚠️ Forced checkpoint of case {case_id} by {actor or self.system_actor}",
                    extra={"case_id": case_id, "action": "checkpoint"},
                )
            else:
                await self._ensure_untampered(case_id, previous_root, records)

            ledger = await asyncio.to_thread(build_ledger, records)

            checkpoint = await self.repository.write_checkpoint(
                case_id=case_id,
                expected_root=previous_root,
                new_root=ledger.root,
                leaves=ledger.leaves,
                proofs=ledger.proofs,
                actor=actor or self.system_actor,
                reason=reason,
                forced=force,
            )

            if self.ledger is not None:
                tx_id = await self.ledger.record(case_id, ledger.root)
                if tx_id is not None:
                    checkpoint = await self.repository.attach_ledger_tx(
                        checkpoint["id"], ledger.order, tx_id
                    )

            return checkpoint

    async def _ensure_untampered(
        self,
        case_id: str,
        stored_root: str | None,
        records: list[EvidenceRecord],
    ) -> None:
        """
        Refuse to rewrite a root the current records no longer match.

        Only records proven under the stored root are checked; records added
        since the last checkpoint have no proof yet and join the next tree.
        """
        if stored_root is None:
            return

        proven = [record for record in records if record.merkle_proof is not None]
        report = await self.checker.evaluate_snapshot(case_id, stored_root, proven)

        if report.state is not IntegrityState.VALID:
            raise CheckpointRefusedError(case_id, report.state.value, report.tampered_items)

    async def transfer_custody(
        self,
        evidence_id: str,
        new_officer: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Record a custody transfer; the hashed fields are not modified."""
        record = await self.repository.read_evidence(evidence_id)
        entry = {
            "officer": new_officer,
            "timestamp": utcnow().isoformat(),
            "action": "CUSTODY_TRANSFER",
            "notes": notes,
            "content_id": record.content_id,
        }
        evidence = await self.repository.append_custody(evidence_id, entry)
        logger.info(
            f"✅ Custody of {evidence_id} transferred to {new_officer}",
            extra={"evidence_id": evidence_id, "action": "custody_transfer"},
        )
        return evidence

    async def verify_evidence(
        self,
        evidence_id: str,
        file_bytes: bytes | None = None,
    ) -> EvidenceVerification:
        """
        Verify one item's content and chain integrity.

        Args:
            evidence_id: Evidence to verify
            file_bytes: Comparison file; fetched from the blob store if omitted
        """
        if file_bytes is None:
            record = await self.repository.read_evidence(evidence_id)
            file_bytes = await self.blob_store.retrieve(record.content_id)

        verification = await self.checker.verify_evidence(evidence_id, file_bytes)
        await self.repository.mark_verified(evidence_id, verification.verified)

        logger.info(
            f"🔍 Evidence {evidence_id}: {verification.status_message}",
            extra={"evidence_id": evidence_id, "action": "verify_evidence"},
        )
        return verification

    async def get_proof(self, evidence_id: str) -> dict[str, Any]:
        """The item's persisted proof and the case root it was issued against."""
        record = await self.repository.read_evidence(evidence_id)
        case_root = await self.repository.read_case_root(record.case_id)

        proof = None
        if record.merkle_proof is not None:
            proof = MerkleProof.from_dict(record.merkle_proof).to_dict()

        return {
            "evidence_id": evidence_id,
            "case_id": record.case_id,
            "leaf": record.current_leaf(),
            "proof": proof,
            "case_root": case_root,
        }
