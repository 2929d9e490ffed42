"""
SQLAlchemy models for case and evidence storage.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow() -> datetime:
    """Naive UTC now, millisecond precision (the precision leaves are hashed at)."""
    now = datetime.utcnow()
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""
    pass


class CaseDB(Base):
    """Investigative case owning a set of evidence."""

    __tablename__ = "cases"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    officer = Column(String(255))
    status = Column(String(20), default="OPEN", index=True)

    # Immutable checkpoint; NULL until first checkpoint
    merkle_root = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    evidence = relationship("EvidenceDB", back_populates="case")
    checkpoints = relationship("CheckpointDB", back_populates="case")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "officer": self.officer,
            "status": self.status,
            "merkle_root": self.merkle_root,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class EvidenceDB(Base):
    """Evidence item with its snapshotted inclusion proof."""

    __tablename__ = "evidence"

    id = Column(String(36), primary_key=True)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)

    # File metadata
    filename = Column(String(512), nullable=False)
    filetype = Column(String(255))
    filesize = Column(Integer, default=0)
    notes = Column(Text)

    # Hashed fields (with case_id, id and created_at)
    content_id = Column(String(255), nullable=False)
    content_hash = Column(String(80), nullable=False)

    # Merkle ledger state
    leaf_hash = Column(String(64), nullable=True)
    merkle_proof = Column(JSON, nullable=True)
    ledger_tx_id = Column(String(80), nullable=True)
    verified = Column(Boolean, default=False)

    custody_chain = Column(JSON, default=list)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    case = relationship("CaseDB", back_populates="evidence")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "case_id": self.case_id,
            "filename": self.filename,
            "filetype": self.filetype,
            "filesize": self.filesize,
            "notes": self.notes,
            "content_id": self.content_id,
            "content_hash": self.content_hash,
            "leaf_hash": self.leaf_hash,
            "merkle_proof": self.merkle_proof,
            "ledger_tx_id": self.ledger_tx_id,
            "verified": self.verified,
            "custody_chain": self.custody_chain or [],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class CheckpointDB(Base):
    """Audit row for every write of a case root."""

    __tablename__ = "checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    previous_root = Column(String(64), nullable=True)
    merkle_root = Column(String(64), nullable=False)
    evidence_count = Column(Integer, nullable=False)
    actor = Column(String(255), nullable=False)
    reason = Column(Text)
    forced = Column(Boolean, default=False, nullable=False)
    ledger_tx_id = Column(String(80), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    case = relationship("CaseDB", back_populates="checkpoints")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "case_id": self.case_id,
            "previous_root": self.previous_root,
            "merkle_root": self.merkle_root,
            "evidence_count": self.evidence_count,
            "actor": self.actor,
            "reason": self.reason,
            "forced": bool(self.forced),
            "ledger_tx_id": self.ledger_tx_id,
            "created_at": _iso(self.created_at),
        }
