"""
Tests for the SQL repository and evidence manager against SQLite.
"""

import asyncio
import gc

import pytest
from sqlalchemy import update

from custody_ledger.exceptions import (
    BlobStoreError,
    CaseNotFoundError,
    CheckpointConflictError,
    CheckpointRefusedError,
    RepositoryError,
)
from custody_ledger.integrity import EMPTY_MERKLE_ROOT, IntegrityState, MerkleProof, verify_proof
from custody_ledger.services import EvidenceManager, EvidenceMetadata
from custody_ledger.storage import (
    Database,
    EvidenceDB,
    LocalBlobStore,
    NoopLedgerRecorder,
    SQLEvidenceRepository,
)

from sample_evidence import SAMPLE_FILES, content_hash


async def make_manager(settings) -> tuple[Database, EvidenceManager]:
    db = Database(settings.database_url)
    await db.init_db()
    manager = EvidenceManager(
        repository=SQLEvidenceRepository(db),
        blob_store=LocalBlobStore(settings.blob_dir),
        ledger=NoopLedgerRecorder(),
    )
    return db, manager


async def add_all(manager: EvidenceManager, case_id: str) -> list[str]:
    ids = []
    for name, data in list(SAMPLE_FILES.items())[:3]:
        result = await manager.add_evidence(
            case_id, data, EvidenceMetadata(filename=name, custody_officer="Officer Reyes")
        )
        ids.append(result["evidence"]["id"])
    return ids


class ConflictingRepository(SQLEvidenceRepository):
    """Loses every root compare-and-swap."""

    async def write_checkpoint(self, case_id, expected_root, *args, **kwargs):
        raise CheckpointConflictError(case_id, expected_root, "ab" * 32)


def run(coro):
    return asyncio.run(coro)


class TestRepository:
    """Test the SQL repository directly."""

    def test_new_case_is_pending(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Harbour theft", officer="Officer Reyes")
            root = await manager.repository.read_case_root(case["id"])
            report = await manager.checker.check_case_integrity(case["id"])
            await db.close()
            return case, root, report

        case, root, report = run(scenario())

        assert case["merkle_root"] is None
        assert root is None
        assert report.state == IntegrityState.PENDING
        assert report.calculated_root == EMPTY_MERKLE_ROOT

    def test_unknown_case(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            try:
                await manager.repository.read_case_evidence("missing")
            finally:
                await db.close()

        with pytest.raises(CaseNotFoundError):
            run(scenario())

    def test_read_failure_is_repository_error(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            await db.drop_db()
            try:
                await manager.checker.check_case_integrity("any")
            finally:
                await db.close()

        with pytest.raises(RepositoryError):
            run(scenario())

    def test_checkpoint_compare_and_swap(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("CAS")
            await manager.checkpoint_case(case["id"], actor="tester", reason="initial")
            try:
                await manager.repository.write_checkpoint(
                    case_id=case["id"],
                    expected_root=None,
                    new_root="ab" * 32,
                    leaves={},
                    proofs={},
                    actor="intruder",
                )
            finally:
                await db.close()

        with pytest.raises(CheckpointConflictError):
            run(scenario())

    def test_checkpoint_rejects_stale_evidence_set(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Stale")
            await add_all(manager, case["id"])
            root = await manager.repository.read_case_root(case["id"])
            try:
                await manager.repository.write_checkpoint(
                    case_id=case["id"],
                    expected_root=root,
                    new_root=EMPTY_MERKLE_ROOT,
                    leaves={},
                    proofs={},
                    actor="tester",
                )
            finally:
                await db.close()

        with pytest.raises(CheckpointConflictError):
            run(scenario())


class TestEvidenceManager:
    """Test evidence lifecycle and tamper detection end to end."""

    def test_add_evidence_checkpoints_case(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Harbour theft")
            ids = await add_all(manager, case["id"])
            root = await manager.repository.read_case_root(case["id"])
            records = await manager.repository.read_case_evidence(case["id"])
            report = await manager.checker.check_case_integrity(case["id"])
            checkpoints = await manager.repository.list_checkpoints(case["id"])
            await db.close()
            return ids, root, records, report, checkpoints

        ids, root, records, report, checkpoints = run(scenario())

        assert {r.evidence_id for r in records} == set(ids)
        assert [r.created_at for r in records] == sorted(r.created_at for r in records)
        assert report.state == IntegrityState.VALID
        assert report.stored_root == root
        assert len(checkpoints) == 3
        assert checkpoints[0]["previous_root"] is None
        assert checkpoints[-1]["merkle_root"] == root
        assert checkpoints[-1]["ledger_tx_id"].startswith("0x")

        for record in records:
            proof = MerkleProof.from_dict(record.merkle_proof)
            assert proof.root == root
            assert verify_proof(record.current_leaf(), proof, root)

    def test_blob_is_content_addressed(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Blobs")
            data = SAMPLE_FILES["dashcam.mp4"]
            result = await manager.add_evidence(
                case["id"], data, EvidenceMetadata(filename="dashcam.mp4", custody_officer="o")
            )
            stored = await manager.blob_store.retrieve(result["evidence"]["content_id"])
            await db.close()
            return result["evidence"], stored

        evidence, stored = run(scenario())

        assert evidence["content_id"] == f"local-{content_hash(SAMPLE_FILES['dashcam.mp4'])}"
        assert evidence["content_hash"] == content_hash(SAMPLE_FILES["dashcam.mp4"])
        assert stored == SAMPLE_FILES["dashcam.mp4"]

    def test_direct_row_edit_detected(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Tamper")
            ids = await add_all(manager, case["id"])

            async with db.session() as session:
                await session.execute(
                    update(EvidenceDB)
                    .where(EvidenceDB.id == ids[1])
                    .values(content_hash=content_hash(b"swapped file"))
                )

            report = await manager.checker.check_case_integrity(case["id"])
            verification = await manager.verify_evidence(ids[0])
            await db.close()
            return ids, report, verification

        ids, report, verification = run(scenario())

        assert not report.chain_valid
        assert report.state == IntegrityState.CHAIN_TAMPERED
        assert report.tampered_items == {ids[1]}
        # Item 0's own file is intact, but the case chain is not
        assert verification.content.content_valid
        assert not verification.verified

    def test_custody_transfer_keeps_root(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Custody")
            ids = await add_all(manager, case["id"])
            evidence = await manager.transfer_custody(ids[0], "Officer Okafor", "Lab analysis")
            report = await manager.checker.check_case_integrity(case["id"])
            await db.close()
            return evidence, report

        evidence, report = run(scenario())

        assert [e["action"] for e in evidence["custody_chain"]] == ["INITIAL_UPLOAD", "CUSTODY_TRANSFER"]
        assert evidence["custody_chain"][-1]["officer"] == "Officer Okafor"
        assert report.state == IntegrityState.VALID

    def test_verify_with_stored_and_forged_content(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Verify")
            ids = await add_all(manager, case["id"])
            stored = await manager.verify_evidence(ids[2])
            forged = await manager.verify_evidence(ids[2], b"forged comparison file")
            row = await manager.repository.get_evidence(ids[2])
            await db.close()
            return stored, forged, row

        stored, forged, row = run(scenario())

        assert stored.verified
        assert not forged.verified
        assert forged.chain_valid
        assert forged.status_message == "File Content Mismatch (Tampered File)"
        assert row["verified"] is False

    def test_missing_blob_is_unable_to_verify(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Missing blob")
            ids = await add_all(manager, case["id"])
            record = await manager.repository.read_evidence(ids[0])
            digest = record.content_id.removeprefix("local-")
            (settings_env.blob_dir / digest[:2] / digest).unlink()
            try:
                await manager.verify_evidence(ids[0])
            finally:
                await db.close()

        with pytest.raises(BlobStoreError):
            run(scenario())

    def test_concurrent_checkpoints_serialize(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Concurrent")
            await add_all(manager, case["id"])
            await asyncio.gather(
                *(manager.checkpoint_case(case["id"], actor=f"a{i}", reason="recheck") for i in range(4))
            )
            checkpoints = await manager.repository.list_checkpoints(case["id"])
            report = await manager.checker.check_case_integrity(case["id"])
            await db.close()
            return checkpoints, report

        checkpoints, report = run(scenario())

        assert len(checkpoints) == 7
        assert report.state == IntegrityState.VALID

    def test_get_proof(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Proof")
            ids = await add_all(manager, case["id"])
            result = await manager.get_proof(ids[1])
            await db.close()
            return result

        result = run(scenario())

        proof = MerkleProof.from_dict(result["proof"])
        assert verify_proof(result["leaf"], proof, result["case_root"])

    def test_add_evidence_refused_after_row_edit(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Absorb")
            ids = await add_all(manager, case["id"])
            root = await manager.repository.read_case_root(case["id"])

            async with db.session() as session:
                await session.execute(
                    update(EvidenceDB)
                    .where(EvidenceDB.id == ids[1])
                    .values(content_hash=content_hash(b"swapped file"))
                )

            with pytest.raises(CheckpointRefusedError) as refused:
                await manager.add_evidence(
                    case["id"],
                    SAMPLE_FILES["cctv_still.png"],
                    EvidenceMetadata(filename="cctv_still.png", custody_officer="Officer Reyes"),
                )

            report = await manager.checker.check_case_integrity(case["id"])
            root_after = await manager.repository.read_case_root(case["id"])
            evidence = await manager.repository.list_evidence(case["id"])
            await db.close()
            return ids, root, refused.value, report, root_after, evidence

        ids, root, refused, report, root_after, evidence = run(scenario())

        assert refused.state == "CHAIN_TAMPERED"
        assert refused.tampered_items == {ids[1]}
        assert root_after == root
        assert report.state == IntegrityState.CHAIN_TAMPERED
        assert report.tampered_items == {ids[1]}
        assert len(evidence) == 3

    def test_only_forced_checkpoint_rewrites_tampered_case(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            case = await manager.repository.create_case("Forced")
            ids = await add_all(manager, case["id"])

            async with db.session() as session:
                await session.execute(
                    update(EvidenceDB)
                    .where(EvidenceDB.id == ids[0])
                    .values(content_id="local-elsewhere")
                )

            with pytest.raises(CheckpointRefusedError):
                await manager.checkpoint_case(case["id"], actor="Sgt. Malik", reason="recheck")

            await manager.checkpoint_case(
                case["id"], actor="Sgt. Malik", reason="Record corrected by court order", force=True
            )
            report = await manager.checker.check_case_integrity(case["id"])
            checkpoints = await manager.repository.list_checkpoints(case["id"])
            await db.close()
            return report, checkpoints

        report, checkpoints = run(scenario())

        assert report.state == IntegrityState.VALID
        assert len(checkpoints) == 4
        assert checkpoints[-1]["forced"] is True
        assert checkpoints[-1]["actor"] == "Sgt. Malik"
        assert not any(c["forced"] for c in checkpoints[:-1])

    def test_ledger_recorded_only_after_root_written(self, settings_env):
        async def scenario():
            db = Database(settings_env.database_url)
            await db.init_db()
            ledger = NoopLedgerRecorder()
            manager = EvidenceManager(
                repository=ConflictingRepository(db),
                blob_store=LocalBlobStore(settings_env.blob_dir),
                ledger=ledger,
            )
            case = await manager.repository.create_case("Lost race")
            try:
                with pytest.raises(CheckpointConflictError):
                    await manager.checkpoint_case(case["id"])
            finally:
                await db.close()
            return ledger

        ledger = run(scenario())

        assert ledger.recorded == 0
        assert list(ledger.transactions) == []

    def test_case_locks_released(self, settings_env):
        async def scenario():
            db, manager = await make_manager(settings_env)
            for title in ("one", "two", "three"):
                case = await manager.repository.create_case(title)
                await manager.checkpoint_case(case["id"])
            await db.close()
            return manager

        manager = run(scenario())
        gc.collect()

        assert len(manager._case_locks) == 0


class TestLedgerRecorder:
    """Test the synthetic ledger recorder."""

    def test_history_is_capped(self):
        ledger = NoopLedgerRecorder(history_size=2)

        async def scenario():
            return [await ledger.record("case", f"{i:064x}") for i in range(3)]

        tx_ids = run(scenario())

        assert ledger.recorded == 3
        assert [tx["tx_id"] for tx in ledger.transactions] == tx_ids[1:]
        assert len(set(tx_ids)) == 3

    def test_disabled_records_nothing(self):
        ledger = NoopLedgerRecorder(enabled=False)

        assert run(ledger.record("case", "0" * 64)) is None
        assert ledger.recorded == 0
