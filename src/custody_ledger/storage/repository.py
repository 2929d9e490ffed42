"""
Evidence repository backed by SQLAlchemy.

Implements the read contract the integrity checker consumes plus the writes
the evidence manager needs. Every SQLAlchemy failure is surfaced as a
RepositoryError so callers can tell "could not check" from "tampered".
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import (
    CaseNotFoundError,
    CheckpointConflictError,
    EvidenceNotFoundError,
    RepositoryError,
)
from ..integrity.merkle_tree import MerkleProof
from ..integrity.records import EvidenceRecord
from .database import Database
from .models import CaseDB, CheckpointDB, EvidenceDB, utcnow

logger = logging.getLogger("custody_ledger.storage")


def to_record(row: EvidenceDB) -> EvidenceRecord:
    """Project an evidence row onto the fields the checker needs."""
    return EvidenceRecord(
        evidence_id=row.id,
        case_id=row.case_id,
        content_id=row.content_id,
        content_hash=row.content_hash,
        created_at=row.created_at,
        merkle_proof=row.merkle_proof,
        leaf_hash=row.leaf_hash,
    )


class SQLEvidenceRepository:
    """Case and evidence persistence over an async Database."""

    def __init__(self, db: Database):
        self.db = db

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self.db.session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"❌ Evidence repository error: {e}", exc_info=True)
            raise RepositoryError(f"Evidence repository unavailable: {e}") from e

    @staticmethod
    async def _get_case(session: AsyncSession, case_id: str) -> CaseDB:
        case = await session.get(CaseDB, case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    @staticmethod
    async def _get_evidence(session: AsyncSession, evidence_id: str) -> EvidenceDB:
        evidence = await session.get(EvidenceDB, evidence_id)
        if evidence is None:
            raise EvidenceNotFoundError(evidence_id)
        return evidence

    @staticmethod
    async def _case_evidence_rows(session: AsyncSession, case_id: str) -> list[EvidenceDB]:
        result = await session.execute(
            select(EvidenceDB)
            .where(EvidenceDB.case_id == case_id)
            .order_by(EvidenceDB.created_at.asc(), EvidenceDB.id.asc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Read contract used by the integrity checker
    # ------------------------------------------------------------------

    async def read_case_evidence(self, case_id: str) -> list[EvidenceRecord]:
        async with self._session() as session:
            await self._get_case(session, case_id)
            rows = await self._case_evidence_rows(session, case_id)
            return [to_record(row) for row in rows]

    async def read_case_root(self, case_id: str) -> str | None:
        async with self._session() as session:
            case = await self._get_case(session, case_id)
            return case.merkle_root

    async def read_case_snapshot(self, case_id: str) -> tuple[str | None, list[EvidenceRecord]]:
        async with self._session() as session:
            case = await self._get_case(session, case_id)
            rows = await self._case_evidence_rows(session, case_id)
            return case.merkle_root, [to_record(row) for row in rows]

    async def read_evidence(self, evidence_id: str) -> EvidenceRecord:
        async with self._session() as session:
            row = await self._get_evidence(session, evidence_id)
            return to_record(row)

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    async def create_case(
        self,
        title: str,
        description: str | None = None,
        officer: str | None = None,
    ) -> dict[str, Any]:
        async with self._session() as session:
            case = CaseDB(
                id=str(uuid4()),
                title=title,
                description=description,
                officer=officer,
                status="OPEN",
                merkle_root=None,
            )
            session.add(case)
            await session.flush()
            logger.info(f"📁 Created case {case.id}", extra={"case_id": case.id})
            return case.to_dict()

    async def get_case(self, case_id: str) -> dict[str, Any]:
        async with self._session() as session:
            case = await self._get_case(session, case_id)
            data = case.to_dict()
            data["evidence_count"] = await session.scalar(
                select(func.count()).select_from(EvidenceDB).where(EvidenceDB.case_id == case_id)
            )
            return data

    async def list_cases(self) -> list[dict[str, Any]]:
        async with self._session() as session:
            result = await session.execute(select(CaseDB).order_by(CaseDB.created_at.desc()))
            return [case.to_dict() for case in result.scalars().all()]

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    async def add_evidence(
        self,
        case_id: str,
        filename: str,
        content_id: str,
        content_hash: str,
        filetype: str | None = None,
        filesize: int = 0,
        notes: str | None = None,
        custody_officer: str | None = None,
        created_at: datetime | None = None,
    ) -> dict[str, Any]:
        created_at = created_at or utcnow()
        async with self._session() as session:
            await self._get_case(session, case_id)
            evidence = EvidenceDB(
                id=str(uuid4()),
                case_id=case_id,
                filename=filename,
                filetype=filetype,
                filesize=filesize,
                notes=notes,
                content_id=content_id,
                content_hash=content_hash,
                custody_chain=[
                    {
                        "officer": custody_officer,
                        "timestamp": created_at.isoformat(),
                        "action": "INITIAL_UPLOAD",
                        "content_id": content_id,
                    }
                ],
                verified=False,
                created_at=created_at,
                updated_at=created_at,
            )
            session.add(evidence)
            await session.flush()
            logger.info(
                f"💾 Stored evidence {evidence.id} in case {case_id}",
                extra={"case_id": case_id, "evidence_id": evidence.id},
            )
            return evidence.to_dict()

    async def get_evidence(self, evidence_id: str) -> dict[str, Any]:
        async with self._session() as session:
            row = await self._get_evidence(session, evidence_id)
            return row.to_dict()

    async def list_evidence(self, case_id: str) -> list[dict[str, Any]]:
        async with self._session() as session:
            await self._get_case(session, case_id)
            rows = await self._case_evidence_rows(session, case_id)
            return [row.to_dict() for row in rows]

    async def append_custody(self, evidence_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        """Append a custody entry; hashed fields are left untouched."""
        async with self._session() as session:
            row = await self._get_evidence(session, evidence_id)
            # Reassign so the JSON column registers the change
            row.custody_chain = [*(row.custody_chain or []), entry]
            row.updated_at = utcnow()
            await session.flush()
            return row.to_dict()

    async def mark_verified(self, evidence_id: str, verified: bool) -> None:
        async with self._session() as session:
            row = await self._get_evidence(session, evidence_id)
            row.verified = verified

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def write_checkpoint(
        self,
        case_id: str,
        expected_root: str | None,
        new_root: str,
        leaves: dict[str, str],
        proofs: dict[str, MerkleProof],
        actor: str,
        reason: str | None = None,
        forced: bool = False,
    ) -> dict[str, Any]:
        """
        Atomically replace a case root and every item's proof.

        The root is swapped only if it still equals expected_root and the
        case still holds exactly the evidence the proofs were built for.

        Raises:
            CheckpointConflictError: if another writer got there first
        """
        async with self._session() as session:
            case = await self._get_case(session, case_id)

            evidence_ids = set(
                (
                    await session.execute(
                        select(EvidenceDB.id).where(EvidenceDB.case_id == case_id)
                    )
                ).scalars().all()
            )
            if evidence_ids != set(proofs):
                raise CheckpointConflictError(case_id, expected_root, case.merkle_root)

            root_matches = (
                CaseDB.merkle_root.is_(None)
                if expected_root is None
                else CaseDB.merkle_root == expected_root
            )
            result = await session.execute(
                update(CaseDB)
                .where(CaseDB.id == case_id, root_matches)
                .values(merkle_root=new_root, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.refresh(case)
                raise CheckpointConflictError(case_id, expected_root, case.merkle_root)

            for evidence_id, proof in proofs.items():
                await session.execute(
                    update(EvidenceDB)
                    .where(EvidenceDB.id == evidence_id)
                    .values(
                        leaf_hash=leaves[evidence_id],
                        merkle_proof=proof.to_dict(),
                        ledger_tx_id=None,
                        verified=True,
                    )
                    .execution_options(synchronize_session=False)
                )

            checkpoint = CheckpointDB(
                case_id=case_id,
                previous_root=expected_root,
                merkle_root=new_root,
                evidence_count=len(proofs),
                actor=actor,
                reason=reason,
                forced=forced,
            )
            session.add(checkpoint)
            await session.flush()

            logger.info(
                f"🔐 Checkpointed case {case_id}: {new_root[:16]}... ({len(proofs)} items)",
                extra={"case_id": case_id, "action": "checkpoint"},
            )
            return checkpoint.to_dict()

    async def attach_ledger_tx(
        self,
        checkpoint_id: int,
        evidence_ids: list[str],
        ledger_tx_id: str,
    ) -> dict[str, Any]:
        """Store the ledger transaction of a committed checkpoint."""
        async with self._session() as session:
            checkpoint = await session.get(CheckpointDB, checkpoint_id)
            if checkpoint is None:
                raise RepositoryError(f"Checkpoint {checkpoint_id} not found")
            checkpoint.ledger_tx_id = ledger_tx_id

            if evidence_ids:
                await session.execute(
                    update(EvidenceDB)
                    .where(
                        EvidenceDB.case_id == checkpoint.case_id,
                        EvidenceDB.id.in_(evidence_ids),
                    )
                    .values(ledger_tx_id=ledger_tx_id)
                    .execution_options(synchronize_session=False)
                )

            await session.flush()
            return checkpoint.to_dict()

    async def list_checkpoints(self, case_id: str) -> list[dict[str, Any]]:
        async with self._session() as session:
            await self._get_case(session, case_id)
            result = await session.execute(
                select(CheckpointDB)
                .where(CheckpointDB.case_id == case_id)
                .order_by(CheckpointDB.id.asc())
            )
            return [checkpoint.to_dict() for checkpoint in result.scalars().all()]
