"""
Ledger transaction recording.

An audit trail of checkpointed roots, keyed by a transaction identifier.
It is not part of the integrity guarantee: verification never consults it.
"""

import hashlib
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

logger = logging.getLogger("custody_ledger.ledger")


class LedgerRecorder(Protocol):
    async def record(self, case_id: str, merkle_root: str) -> str | None:
        """Record a checkpointed root and return its transaction id."""
        ...


class NoopLedgerRecorder:
    """Produces a synthetic transaction id for each checkpoint and logs it."""

    def __init__(self, enabled: bool = True, history_size: int = 1000):
        self.enabled = enabled
        self.recorded = 0
        # Most recent transactions only
        self.transactions: deque[dict[str, str]] = deque(maxlen=history_size)

    async def record(self, case_id: str, merkle_root: str) -> str | None:
        if not self.enabled:
            return None

        timestamp = datetime.now(timezone.utc).isoformat()
        content = f"{case_id}:{merkle_root}:{timestamp}:{self.recorded}"
        tx_id = "0x" + hashlib.sha256(content.encode()).hexdigest()

        self.recorded += 1
        self.transactions.append(
            {
                "tx_id": tx_id,
                "case_id": case_id,
                "merkle_root": merkle_root,
                "timestamp": timestamp,
            }
        )
        logger.info(f"⛓️ Recorded root for case {case_id} as {tx_id[:18]}...")
        return tx_id
