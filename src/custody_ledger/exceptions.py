"""
Exception hierarchy for the custody ledger.

Hash or root disagreements are never raised: they are reported as result
values by the integrity checker. Exceptions here mean either a caller error
(bad input, unknown ids) or that a check could not be performed at all.
"""


class CustodyLedgerError(Exception):
    """Base class for all custody ledger errors."""


class CaseNotFoundError(CustodyLedgerError, LookupError):
    """Raised when a case id does not exist in the repository."""

    def __init__(self, case_id: str):
        super().__init__(f"Case {case_id} not found")
        self.case_id = case_id


class EvidenceNotFoundError(CustodyLedgerError, LookupError):
    """Raised when an evidence id does not exist in the repository."""

    def __init__(self, evidence_id: str):
        super().__init__(f"Evidence {evidence_id} not found")
        self.evidence_id = evidence_id


class IntegrityCheckError(CustodyLedgerError):
    """
    An integrity check could not be completed.

    Distinct from a failed verification: callers must report this as
    "unable to verify", never as "tampered".
    """


class RepositoryError(IntegrityCheckError):
    """The evidence repository could not be read or written."""


class MalformedProofError(IntegrityCheckError):
    """A persisted Merkle proof does not have the expected wire shape."""


class BlobStoreError(IntegrityCheckError):
    """File content could not be stored or retrieved."""


class CheckpointConflictError(CustodyLedgerError):
    """Another writer changed the case root while a checkpoint was in progress."""

    def __init__(self, case_id: str, expected_root: str | None, actual_root: str | None):
        super().__init__(
            f"Checkpoint conflict on case {case_id}: "
            f"expected root {expected_root}, found {actual_root}"
        )
        self.case_id = case_id
        self.expected_root = expected_root
        self.actual_root = actual_root


class CheckpointRefusedError(CustodyLedgerError):
    """
    A case no longer matches its stored root, so it was not re-checkpointed.

    Rewriting the root would absorb the changed records into a new trusted
    root. Only an explicit, forced checkpoint may do that.
    """

    def __init__(self, case_id: str, state: str, tampered_items: set[str] | None = None):
        items = ", ".join(sorted(tampered_items or ())) or "none localized"
        super().__init__(f"Refusing to checkpoint case {case_id}: integrity is {state} ({items})")
        self.case_id = case_id
        self.state = state
        self.tampered_items = set(tampered_items or ())
