"""
Sample evidence data for testing the custody ledger.
"""

import hashlib
from datetime import datetime, timedelta

from custody_ledger.integrity import EvidenceRecord, build_ledger

SAMPLE_FILES = {
    "dashcam.mp4": b"\x00\x00\x00\x18ftypmp42 dashcam footage 2024-01-15 10:30",
    "witness_statement.txt": b"I saw the vehicle leave the harbour at 10:42.",
    "phone_extraction.json": b'{"imei": "356938035643809", "messages": 1204}',
    "cctv_still.png": b"\x89PNG\r\n\x1a\n cctv frame 00:14:07",
}

BASE_TIME = datetime(2024, 1, 15, 10, 30, 0, 123000)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def make_record(
    case_id: str,
    evidence_id: str,
    data: bytes,
    offset_seconds: int = 0,
) -> EvidenceRecord:
    digest = content_hash(data)
    return EvidenceRecord(
        evidence_id=evidence_id,
        case_id=case_id,
        content_id=f"local-{digest}",
        content_hash=digest,
        created_at=BASE_TIME + timedelta(seconds=offset_seconds),
    )


def make_case_records(case_id: str = "case-001") -> list[EvidenceRecord]:
    """Evidence A, B, C for one case, one second apart."""
    files = list(SAMPLE_FILES.values())
    return [
        make_record(case_id, name, files[i], offset_seconds=i)
        for i, name in enumerate(["evidence-a", "evidence-b", "evidence-c"])
    ]


def checkpoint(records: list[EvidenceRecord]) -> str:
    """Attach fresh proofs to records and return the root they prove against."""
    ledger = build_ledger(records)
    for record in records:
        record.merkle_proof = ledger.proofs[record.evidence_id].to_dict()
        record.leaf_hash = ledger.leaves[record.evidence_id]
    return ledger.root
