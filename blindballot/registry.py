"""
Election Registry

Creates elections on behalf of a single owner, indexes them by sequential
id, and notifies subscribers of every new election. When given a storage
directory, each election is kept as ``election_<id>.json`` and reloaded on
start-up.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, NamedTuple, Optional

from .errors import ElectionNotFound, NotRegistryOwner
from .ledger import Election

logger = logging.getLogger(__name__)


class ElectionAdded(NamedTuple):
    election_id: int


class ElectionRegistry:
    def __init__(self, owner: str, storage_dir: Optional[Path] = None, clock=time.time):
        self.owner = owner
        self._storage_dir = Path(storage_dir) if storage_dir is not None else None
        self._clock = clock
        self._lock = threading.Lock()
        self._elections: list[Election] = []
        self._subscribers: list[Callable[[ElectionAdded], None]] = []
        self._load()

    def _path_for(self, election_id: int) -> Optional[Path]:
        if self._storage_dir is None:
            return None
        return self._storage_dir / f"election_{election_id:05d}.json"

    def _load(self):
        if self._storage_dir is None or not self._storage_dir.exists():
            return
        election_id = 0
        while True:
            path = self._path_for(election_id)
            if not path.exists():
                break
            self._elections.append(Election.load(path, clock=self._clock))
            election_id += 1
        if self._elections:
            logger.info("Loaded %d election(s) from %s", len(self._elections), self._storage_dir)

    def subscribe(self, callback: Callable[[ElectionAdded], None]):
        """Register a callback invoked with an ElectionAdded event."""
        self._subscribers.append(callback)

    def create_election(
        self,
        caller: str,
        multiple_choice: bool,
        opens_at: int,
        closes_at: int,
        candidates,
        modulus,
        exponent,
    ) -> int:
        if caller != self.owner:
            raise NotRegistryOwner()

        with self._lock:
            election_id = len(self._elections)
            election = Election(
                multiple_choice=multiple_choice,
                opens_at=opens_at,
                closes_at=closes_at,
                candidates=candidates,
                modulus=modulus,
                exponent=exponent,
                election_id=election_id,
                path=self._path_for(election_id),
                clock=self._clock,
            )
            self._elections.append(election)

        logger.info("Election %d created with %d candidate(s)", election_id, election.candidate_count())
        event = ElectionAdded(election_id)
        for callback in list(self._subscribers):
            callback(event)
        return election_id

    def get_election(self, election_id: int) -> Election:
        with self._lock:
            if isinstance(election_id, int) and 0 <= election_id < len(self._elections):
                return self._elections[election_id]
        raise ElectionNotFound(f"Election {election_id!r} not found")

    def election_count(self) -> int:
        with self._lock:
            return len(self._elections)

    def list_elections(self) -> list:
        with self._lock:
            elections = list(self._elections)
        return [e.describe() for e in elections]
