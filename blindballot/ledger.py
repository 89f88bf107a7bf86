"""
Anonymous Ballot Ledger

One Election per ledger. Each certified ballot is appended to a hash chain
so the record is publicly auditable and tamper-evident.

Key properties:
- A ballot is accepted only with a valid authority signature on its message
  integer, checked with the election's public (n, e) alone
- Consumed signatures are tracked in a spent-set to prevent replays
- Ballots are accepted only inside [opens_at, closes_at)
- Each ballot's escrow key can be set once, by the ballot owner only
"""

import enum
import hashlib
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import NamedTuple, Optional

from .blind_signature import parse_decimal, verify
from .errors import (
    ConstructionError,
    ElectionClosed,
    ElectionNotStarted,
    EscrowKeyAlreadySet,
    IndexOutOfRange,
    InvalidPublicKey,
    InvalidWindow,
    LedgerCorrupted,
    MessageTooLarge,
    NotOwner,
    SignatureInvalid,
    SignatureReplayed,
)

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


class ElectionState(enum.Enum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    CLOSED = "closed"


class Candidate(NamedTuple):
    id: int
    name: str


class Ballot:
    def __init__(
        self,
        index: int,
        owner: str,
        encrypted_content: bytes,
        signature: int,
        cast_at: int,
        previous_hash: str,
        escrow_key: bytes = b"",
    ):
        self.index = index
        self.owner = owner
        self.encrypted_content = bytes(encrypted_content)
        self.signature = int(signature)
        self.cast_at = cast_at
        self.previous_hash = previous_hash
        self.escrow_key = bytes(escrow_key)
        self.hash = self._compute_hash()
        self.escrow_hash = self._compute_escrow_hash()

    def _compute_hash(self) -> str:
        # escrow_key is covered by escrow_hash: it is set after the ballot is chained
        content = json.dumps(
            {
                "index": self.index,
                "owner": self.owner,
                "encrypted_content": self.encrypted_content.hex(),
                "signature": str(self.signature),
                "cast_at": self.cast_at,
                "previous_hash": self.previous_hash,
            },
            sort_keys=True,
        )
        return hashlib.sha256(content.encode()).hexdigest()

    def _compute_escrow_hash(self) -> str:
        if not self.escrow_key:
            return ""
        return hashlib.sha256(self.hash.encode() + self.escrow_key).hexdigest()

    @property
    def has_escrow_key(self) -> bool:
        return len(self.escrow_key) > 0

    def set_escrow_key(self, key: bytes):
        self.escrow_key = bytes(key)
        self.escrow_hash = self._compute_escrow_hash()

    def copy(self) -> "Ballot":
        return Ballot.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "owner": self.owner,
            "encrypted_content": self.encrypted_content.hex(),
            "signature": str(self.signature),
            "escrow_key": self.escrow_key.hex(),
            "escrow_hash": self.escrow_hash,
            "cast_at": self.cast_at,
            "previous_hash": self.previous_hash,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Ballot":
        b = cls(
            index=data["index"],
            owner=data["owner"],
            encrypted_content=bytes.fromhex(data["encrypted_content"]),
            signature=parse_decimal(data["signature"]),
            cast_at=data["cast_at"],
            previous_hash=data["previous_hash"],
            escrow_key=bytes.fromhex(data.get("escrow_key", "")),
        )
        b.hash = data["hash"]
        b.escrow_hash = data.get("escrow_hash", "")
        return b

    def __repr__(self):
        return f"<Ballot #{self.index} owner={self.owner!r} escrow={'set' if self.has_escrow_key else 'unset'}>"


def _to_candidate(position: int, value) -> Candidate:
    if isinstance(value, Candidate):
        return Candidate(position, value.name)
    if isinstance(value, dict):
        return Candidate(position, str(value["name"]))
    return Candidate(position, str(value))


class Election:
    def __init__(
        self,
        multiple_choice: bool,
        opens_at: int,
        closes_at: int,
        candidates,
        modulus,
        exponent,
        election_id: Optional[int] = None,
        path: Optional[Path] = None,
        clock=time.time,
    ):
        opens_at = int(opens_at)
        closes_at = int(closes_at)
        if opens_at >= closes_at:
            raise InvalidWindow()

        modulus = parse_decimal(modulus)
        exponent = parse_decimal(exponent)
        if modulus <= 3 or exponent < 3:
            raise InvalidPublicKey()

        self.election_id = election_id
        self.multiple_choice = bool(multiple_choice)
        self.opens_at = opens_at
        self.closes_at = closes_at
        self.modulus = modulus
        self.exponent = exponent
        self.candidates = tuple(_to_candidate(i, c) for i, c in enumerate(candidates))

        self._lock = threading.Lock()
        self._clock = clock
        self._path = Path(path) if path is not None else None
        self._ballots: list[Ballot] = []
        self._used_signatures: set[int] = set()

        if self._path is not None:
            self._save()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        with self._lock:
            return self._to_dict()

    def _to_dict(self) -> dict:
        return {
            "election_id": self.election_id,
            "multiple_choice": self.multiple_choice,
            "opens_at": self.opens_at,
            "closes_at": self.closes_at,
            "modulus": str(self.modulus),
            "exponent": str(self.exponent),
            "candidates": [c._asdict() for c in self.candidates],
            "used_signatures": sorted(str(s) for s in self._used_signatures),
            "ballots": [b.to_dict() for b in self._ballots],
        }

    def _save(self):
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(self._to_dict(), f, indent=2)
        os.replace(tmp, self._path)

    @classmethod
    def from_dict(cls, data: dict, path: Optional[Path] = None, clock=time.time) -> "Election":
        election = cls.__new__(cls)
        try:
            cls.__init__(
                election,
                multiple_choice=data["multiple_choice"],
                opens_at=data["opens_at"],
                closes_at=data["closes_at"],
                candidates=[c["name"] for c in data["candidates"]],
                modulus=data["modulus"],
                exponent=data["exponent"],
                election_id=data.get("election_id"),
                clock=clock,
            )
            election._ballots = [Ballot.from_dict(b) for b in data["ballots"]]
            election._used_signatures = {int(s) for s in data["used_signatures"]}
        except (KeyError, TypeError, ValueError, ConstructionError) as exc:
            raise LedgerCorrupted(f"Malformed election document: {exc}") from exc
        if not election._is_valid():
            raise LedgerCorrupted("Ballot chain integrity check failed")
        election._path = Path(path) if path is not None else None
        return election

    @classmethod
    def load(cls, path: Path, clock=time.time) -> "Election":
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exc:
                raise LedgerCorrupted(f"{path} is not valid JSON") from exc
        return cls.from_dict(data, path=path, clock=clock)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _now(self) -> int:
        return int(self._clock())

    def state(self, now: Optional[int] = None) -> ElectionState:
        now = self._now() if now is None else now
        if now < self.opens_at:
            return ElectionState.NOT_STARTED
        if now < self.closes_at:
            return ElectionState.OPEN
        return ElectionState.CLOSED

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def cast_ballot(self, owner: str, encrypted_content: bytes, message_integer, signature) -> int:
        """
        Record a certified ballot and return its index.

        Checks run in a fixed order so a timing rejection never reveals
        whether a signature was already spent: signature validity, replay,
        then the voting window.
        """
        if not isinstance(encrypted_content, (bytes, bytearray)):
            raise TypeError("encrypted_content must be bytes")
        m = parse_decimal(message_integer)
        sig = parse_decimal(signature)

        with self._lock:
            now = self._now()

            if m >= self.modulus:
                raise MessageTooLarge()
            if not verify(sig, m, self.exponent, self.modulus):
                logger.info("Election %s: rejected ballot with invalid signature", self.election_id)
                raise SignatureInvalid()
            if sig in self._used_signatures:
                logger.warning("Election %s: replayed signature rejected", self.election_id)
                raise SignatureReplayed()

            state = self.state(now)
            if state is ElectionState.NOT_STARTED:
                raise ElectionNotStarted()
            if state is ElectionState.CLOSED:
                raise ElectionClosed()

            previous_hash = self._ballots[-1].hash if self._ballots else GENESIS_HASH
            ballot = Ballot(
                index=len(self._ballots),
                owner=owner,
                encrypted_content=encrypted_content,
                signature=sig,
                cast_at=now,
                previous_hash=previous_hash,
            )
            self._ballots.append(ballot)
            self._used_signatures.add(sig)
            try:
                self._save()
            except Exception:
                self._ballots.pop()
                self._used_signatures.discard(sig)
                raise

            logger.info("Election %s: ballot #%d cast", self.election_id, ballot.index)
            return ballot.index

    def reveal_escrow_key(self, caller: str, ballot_index: int, key: bytes) -> Ballot:
        """Set a ballot's escrow key, once, on behalf of its owner."""
        if not isinstance(key, (bytes, bytearray)) or len(key) == 0:
            raise ValueError("Escrow key must be non-empty bytes")

        with self._lock:
            ballot = self._get_ballot(ballot_index)
            if caller != ballot.owner:
                raise NotOwner()
            if ballot.has_escrow_key:
                raise EscrowKeyAlreadySet()

            ballot.set_escrow_key(key)
            try:
                self._save()
            except Exception:
                ballot.set_escrow_key(b"")
                raise

            logger.info("Election %s: escrow key revealed for ballot #%d", self.election_id, ballot.index)
            return ballot.copy()

    def _get_ballot(self, index) -> Ballot:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._ballots):
            raise IndexOutOfRange(f"Ballot index {index!r} out of range")
        return self._ballots[index]

    # ------------------------------------------------------------------
    # Query / audit
    # ------------------------------------------------------------------

    def candidate_count(self) -> int:
        return len(self.candidates)

    def ballot_count(self) -> int:
        with self._lock:
            return len(self._ballots)

    def used_signature_count(self) -> int:
        with self._lock:
            return len(self._used_signatures)

    def ballot_at(self, index: int) -> Ballot:
        with self._lock:
            return self._get_ballot(index).copy()

    def is_signature_used(self, signature) -> bool:
        sig = parse_decimal(signature)
        with self._lock:
            return sig in self._used_signatures

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "election_id": self.election_id,
                "state": self.state().value,
                "candidate_count": len(self.candidates),
                "ballot_count": len(self._ballots),
                "used_signature_count": len(self._used_signatures),
                "escrow_keys_revealed": sum(1 for b in self._ballots if b.has_escrow_key),
            }

    def describe(self) -> dict:
        """Public summary without the ballots themselves."""
        return {
            "election_id": self.election_id,
            "multiple_choice": self.multiple_choice,
            "opens_at": self.opens_at,
            "closes_at": self.closes_at,
            "state": self.state().value,
            "modulus": str(self.modulus),
            "exponent": str(self.exponent),
            "candidates": [c._asdict() for c in self.candidates],
        }

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _is_valid(self) -> bool:
        """Verify chain integrity, escrow keys, and that the spent-set matches the ballots."""
        previous_hash = GENESIS_HASH
        for i, ballot in enumerate(self._ballots):
            if ballot.index != i:
                return False
            if ballot.previous_hash != previous_hash:
                return False
            if ballot.hash != ballot._compute_hash():
                return False
            if ballot.escrow_hash != ballot._compute_escrow_hash():
                return False
            previous_hash = ballot.hash
        signatures = [b.signature for b in self._ballots]
        return len(set(signatures)) == len(signatures) and self._used_signatures == set(signatures)

    def verify_chain(self) -> dict:
        """Public method for ledger verification (audit tool)."""
        with self._lock:
            valid = self._is_valid()
            return {
                "valid": valid,
                "ballot_count": len(self._ballots),
                "message": "Ledger integrity verified" if valid else "Ledger integrity FAILED",
            }
