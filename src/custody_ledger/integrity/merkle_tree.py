"""
Merkle Tree implementation for evidence metadata integrity.

Each leaf is a SHA-256 digest of one evidence item's identifying fields.
Layers are built by hashing adjacent pairs of raw digest bytes until a single
root remains; an odd node at the end of a layer is paired with itself.

Key Properties:
- Tamper Detection: Any change to a hashed field changes the root
- Efficient Proofs: An item is verified with O(log n) sibling hashes
- Interoperable: Leaf serialization and proof wire format are fixed
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from ..exceptions import MalformedProofError

# Root of a case with no evidence; never produced by hashing
EMPTY_MERKLE_ROOT = "0" * 64

CONTENT_HASH_PREFIX = "sha256-"

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")

_LONE_SURROGATE = re.compile("[\ud800-\udfff]")

Position = Literal["left", "right"]


@dataclass(frozen=True)
class LeafPayload:
    """The five evidence fields whose mutation must be detectable."""

    case_id: str
    evidence_id: str
    content_id: str
    content_hash: str
    timestamp: str

    def serialize(self) -> bytes:
        """Canonical byte form: compact JSON array in fixed field order."""
        fields = [
            self.case_id,
            self.evidence_id,
            self.content_id,
            self.content_hash,
            self.timestamp,
        ]
        text = json.dumps(fields, separators=(",", ":"), ensure_ascii=False)
        return _escape_lone_surrogates(text).encode("utf-8")


def _escape_lone_surrogates(text: str) -> str:
    """
    Join surrogate pairs and write any unpaired surrogate as ``\\udxxx``.

    Unpaired surrogates have no UTF-8 form; escaping them keeps leaf bytes
    identical to a well-formed JSON serializer's output.
    """
    if not _LONE_SURROGATE.search(text):
        return text
    text = text.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "surrogatepass")
    return _LONE_SURROGATE.sub(lambda m: f"\\u{ord(m.group()):04x}", text)


@dataclass
class ProofNode:
    """One sibling on the path from a leaf to the root."""

    position: Position
    hash: str

    def to_dict(self) -> dict[str, str]:
        return {"position": self.position, "hash": self.hash}


@dataclass
class MerkleProof:
    """Proof that a leaf is part of the Merkle Tree."""

    leaf: str
    siblings: list[ProofNode] = field(default_factory=list)
    root: str = EMPTY_MERKLE_ROOT

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stable wire shape."""
        return {
            "leaf": self.leaf,
            "siblings": [node.to_dict() for node in self.siblings],
            "root": self.root,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MerkleProof":
        """
        Parse a proof from its wire shape.

        Raises:
            MalformedProofError: if the shape or any digest is invalid
        """
        if not isinstance(data, dict):
            raise MalformedProofError(f"Proof must be an object, got {type(data).__name__}")

        leaf = data.get("leaf")
        root = data.get("root")
        raw_siblings = data.get("siblings")

        for name, value in (("leaf", leaf), ("root", root)):
            if not isinstance(value, str) or not _HEX64.match(value):
                raise MalformedProofError(f"Proof {name} is not a 64-character hex digest")

        if not isinstance(raw_siblings, list):
            raise MalformedProofError("Proof siblings must be a list")

        siblings: list[ProofNode] = []
        for i, node in enumerate(raw_siblings):
            if not isinstance(node, dict):
                raise MalformedProofError(f"Sibling {i} must be an object")
            position = node.get("position")
            sibling_hash = node.get("hash")
            if position not in ("left", "right"):
                raise MalformedProofError(f"Sibling {i} has invalid position {position!r}")
            if not isinstance(sibling_hash, str) or not _HEX64.match(sibling_hash):
                raise MalformedProofError(f"Sibling {i} hash is not a 64-character hex digest")
            siblings.append(ProofNode(position=position, hash=sibling_hash))

        return cls(leaf=leaf, siblings=siblings, root=root)


def sha256_hex(data: str | bytes) -> str:
    """Compute the lowercase hex SHA-256 of data."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def normalize_hash(value: str) -> str:
    """Ensure consistent lowercase hex format."""
    return value.lower()


def normalize_content_hash(value: str) -> str:
    """Strip the optional ``sha256-`` prefix from a recorded content hash."""
    value = value.strip().lower()
    if value.startswith(CONTENT_HASH_PREFIX):
        value = value[len(CONTENT_HASH_PREFIX):]
    return value


def format_timestamp(value: datetime) -> str:
    """
    Render a datetime the way leaf payloads expect it.

    UTC, millisecond precision, ``Z`` suffix (``2024-01-01T10:00:00.000Z``).
    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def hash_leaf(payload: LeafPayload) -> str:
    """Deterministically hash an evidence item's identifying fields."""
    return sha256_hex(payload.serialize())


def hash_pair(left: str, right: str) -> str:
    """Hash a pair of hex digests over their raw bytes (left || right)."""
    return sha256_hex(bytes.fromhex(normalize_hash(left)) + bytes.fromhex(normalize_hash(right)))


def build_layers(leaves: list[str]) -> list[list[str]]:
    """
    Build all tree layers from leaf digests up to the root.

    Args:
        leaves: Ordered leaf digests

    Returns:
        Layers, leaves first and root last; empty list for no leaves
    """
    if not leaves:
        return []

    layers = [[normalize_hash(leaf) for leaf in leaves]]

    while len(layers[-1]) > 1:
        current = layers[-1]
        next_level = []

        for i in range(0, len(current), 2):
            left = current[i]
            # Duplicate last node if odd count
            right = current[i + 1] if i + 1 < len(current) else left
            next_level.append(hash_pair(left, right))

        layers.append(next_level)

    return layers


def get_root(leaves: list[str]) -> str:
    """Get the Merkle Root of leaves, or the empty sentinel."""
    layers = build_layers(leaves)
    if not layers:
        return EMPTY_MERKLE_ROOT
    return layers[-1][0]


def generate_proof(leaves: list[str], target_index: int) -> MerkleProof:
    """
    Generate a Merkle Proof for one leaf.

    Args:
        leaves: Ordered leaf digests
        target_index: Index of the leaf (0-based)

    Returns:
        MerkleProof with the sibling path and the tree root

    Raises:
        ValueError: if leaves is empty
        IndexError: if target_index is out of range
    """
    if not leaves:
        raise ValueError("Cannot generate a Merkle proof from an empty tree")

    if target_index < 0 or target_index >= len(leaves):
        raise IndexError(
            f"Leaf index {target_index} out of range for tree with {len(leaves)} leaves"
        )

    return proof_from_layers(build_layers(leaves), target_index)


def proof_from_layers(layers: list[list[str]], target_index: int) -> MerkleProof:
    """Extract the sibling path for one leaf from already built layers."""
    siblings: list[ProofNode] = []
    index = target_index

    for level in layers[:-1]:  # Exclude root level
        if index % 2 == 0:
            # Current is left child, sibling is right (or itself if last)
            sibling_index = index + 1 if index + 1 < len(level) else index
            position: Position = "right"
        else:
            sibling_index = index - 1
            position = "left"

        siblings.append(ProofNode(position=position, hash=level[sibling_index]))
        index //= 2

    return MerkleProof(leaf=layers[0][target_index], siblings=siblings, root=layers[-1][0])


def verify_proof(leaf: str, proof: MerkleProof, expected_root: str) -> bool:
    """
    Verify a leaf against a proof and an externally trusted root.

    The folded hash must equal both expected_root and the root carried by
    the proof itself. Never raises; any malformed input is a failed check.
    """
    if not isinstance(leaf, str) or not _HEX64.match(leaf):
        return False

    current_hash = normalize_hash(leaf)

    for node in proof.siblings:
        if not isinstance(node.hash, str) or not _HEX64.match(node.hash):
            return False
        if node.position == "left":
            current_hash = hash_pair(node.hash, current_hash)
        elif node.position == "right":
            current_hash = hash_pair(current_hash, node.hash)
        else:
            return False

    if not isinstance(expected_root, str) or not isinstance(proof.root, str):
        return False

    return current_hash == normalize_hash(expected_root) and current_hash == normalize_hash(proof.root)


class MerkleTree:
    """
    Merkle Tree over an ordered list of leaf digests.

    Usage:
        tree = MerkleTree()
        for record in records:
            tree.add_leaf(record.leaf_payload())
        root = tree.build()
        proof = tree.get_proof(0)
        is_valid = tree.verify_proof(proof)
    """

    def __init__(self, leaves: list[str] | None = None):
        self._leaves: list[str] = list(leaves or [])
        self._layers: list[list[str]] = []
        self._built = False

    def add_leaf(self, payload: LeafPayload) -> str:
        """
        Add an evidence leaf to the tree.

        Returns:
            Hash of the added leaf
        """
        leaf_hash = hash_leaf(payload)
        self.add_leaf_hash(leaf_hash)
        return leaf_hash

    def add_leaf_hash(self, leaf_hash: str) -> None:
        """Add a pre-computed leaf hash."""
        if self._built:
            raise RuntimeError("Cannot add leaves after tree is built")
        self._leaves.append(normalize_hash(leaf_hash))

    def build(self) -> str:
        """
        Build the tree and return the root hash.

        An empty tree builds to EMPTY_MERKLE_ROOT.
        """
        self._layers = build_layers(self._leaves)
        self._built = True
        return self.root

    @property
    def root(self) -> str:
        if not self._layers:
            return EMPTY_MERKLE_ROOT
        return self._layers[-1][0]

    @property
    def layers(self) -> list[list[str]]:
        return [list(level) for level in self._layers]

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def get_proof(self, leaf_index: int) -> MerkleProof:
        """Generate a proof for a leaf of the built tree."""
        if not self._built:
            raise RuntimeError("Tree must be built first")
        if not self._layers:
            raise ValueError("Cannot generate a Merkle proof from an empty tree")
        if leaf_index < 0 or leaf_index >= len(self._leaves):
            raise IndexError(
                f"Leaf index {leaf_index} out of range for tree with {len(self._leaves)} leaves"
            )
        return proof_from_layers(self._layers, leaf_index)

    def verify_proof(self, proof: MerkleProof) -> bool:
        """Verify a proof against this tree's root."""
        return verify_proof(proof.leaf, proof, self.root)
