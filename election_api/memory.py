"""In-process store for tests and local development."""
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .entities import Ballot, Candidate, Position, Voter, utcnow
from .errors import AlreadyVoted, DuplicateName, DuplicateVoter, NotFound
from .store import Store

logger = logging.getLogger(__name__)


def _copy_ballot(ballot: Ballot) -> Ballot:
    return replace(ballot, selections={k: list(v) for k, v in ballot.selections.items()})


class MemoryStore(Store):
    """
    Dictionary-backed store.

    Each method runs without awaiting in between its check and its write, so
    every call is atomic with respect to other tasks on the event loop. There
    is no rollback: transaction() only marks the block.
    """

    supports_transactions = False

    def __init__(self):
        self.positions: Dict[str, Position] = {}
        self.candidates: Dict[str, Candidate] = {}
        self.voters: Dict[str, Voter] = {}
        self.ballots: Dict[str, Ballot] = {}

    async def initialize(self):
        logger.info("In-memory store initialized")

    async def check_health(self) -> bool:
        return True

    @asynccontextmanager
    async def transaction(self):
        yield

    # Positions

    async def insert_position(self, position: Position) -> Position:
        if any(p.name == position.name for p in self.positions.values()):
            raise DuplicateName(position.name)
        self.positions[position.id] = replace(position)
        return replace(position)

    async def get_position(self, position_id: str) -> Optional[Position]:
        position = self.positions.get(position_id)
        return replace(position) if position else None

    async def get_position_by_name(self, name: str) -> Optional[Position]:
        for position in self.positions.values():
            if position.name == name:
                return replace(position)
        return None

    async def list_positions(self, status: Optional[str] = None) -> List[Position]:
        positions = [
            replace(p) for p in self.positions.values()
            if status is None or p.status == status
        ]
        return sorted(positions, key=lambda p: (p.order, p.name))

    async def update_position(self, position: Position) -> Position:
        if position.id not in self.positions:
            raise NotFound("Position", position.id)
        if any(p.name == position.name and p.id != position.id for p in self.positions.values()):
            raise DuplicateName(position.name)
        position.updated_at = utcnow()
        self.positions[position.id] = replace(position)
        return replace(position)

    async def delete_position(self, position_id: str) -> bool:
        return self.positions.pop(position_id, None) is not None

    async def count_candidates(self, position_id: str) -> int:
        return sum(1 for c in self.candidates.values() if c.position_id == position_id)

    # Candidates

    async def insert_candidate(self, candidate: Candidate) -> Candidate:
        self.candidates[candidate.id] = replace(candidate)
        return replace(candidate)

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        candidate = self.candidates.get(candidate_id)
        return replace(candidate) if candidate else None

    async def list_candidates(self, search: Optional[str] = None,
                              position_id: Optional[str] = None) -> List[Candidate]:
        needle = search.lower() if search else None
        result = []
        for candidate in self.candidates.values():
            if position_id and candidate.position_id != position_id:
                continue
            if needle and needle not in candidate.first_name.lower() \
                    and needle not in candidate.last_name.lower():
                continue
            result.append(replace(candidate))
        return result

    async def update_candidate(self, candidate: Candidate) -> Candidate:
        if candidate.id not in self.candidates:
            raise NotFound("Candidate", candidate.id)
        # The counter is owned by increment_votes; never overwrite it from a copy
        candidate.votes = self.candidates[candidate.id].votes
        candidate.updated_at = utcnow()
        self.candidates[candidate.id] = replace(candidate)
        return replace(candidate)

    async def delete_candidate(self, candidate_id: str) -> bool:
        return self.candidates.pop(candidate_id, None) is not None

    async def increment_votes(self, candidate_ids: Iterable[str], strict: bool = True) -> int:
        ids = list(dict.fromkeys(candidate_ids))
        missing = [cid for cid in ids if cid not in self.candidates]
        if strict and missing:
            raise NotFound("Candidate", missing[0])
        now = utcnow()
        count = 0
        for cid in ids:
            candidate = self.candidates.get(cid)
            if candidate is None:
                continue
            candidate.votes += 1
            candidate.updated_at = now
            count += 1
        return count

    async def reset_votes(self) -> int:
        for candidate in self.candidates.values():
            candidate.votes = 0
        return len(self.candidates)

    async def recount_votes(self) -> int:
        tallies: Dict[str, int] = {}
        for ballot in self.ballots.values():
            for cid in ballot.candidate_ids:
                tallies[cid] = tallies.get(cid, 0) + 1
        changed = 0
        for candidate in self.candidates.values():
            expected = tallies.get(candidate.id, 0)
            if candidate.votes != expected:
                candidate.votes = expected
                changed += 1
        return changed

    # Voters

    async def insert_voter(self, voter: Voter) -> Voter:
        if any(v.company_id == voter.company_id for v in self.voters.values()):
            raise DuplicateVoter(voter.company_id)
        self.voters[voter.id] = replace(voter)
        return replace(voter)

    async def get_voter(self, voter_id: str) -> Optional[Voter]:
        voter = self.voters.get(voter_id)
        return replace(voter) if voter else None

    async def get_voter_by_company_id(self, company_id: str) -> Optional[Voter]:
        for voter in self.voters.values():
            if voter.company_id == company_id:
                return replace(voter)
        return None

    async def update_voter_password(self, voter_id: str, password_hash: str) -> bool:
        voter = self.voters.get(voter_id)
        if voter is None:
            return False
        voter.password_hash = password_hash
        voter.updated_at = utcnow()
        return True

    async def mark_voted(self, voter_id: str) -> bool:
        voter = self.voters.get(voter_id)
        if voter is None:
            return False
        voter.has_voted = True
        voter.updated_at = utcnow()
        return True

    async def reset_voted(self) -> int:
        changed = 0
        for voter in self.voters.values():
            if voter.has_voted:
                voter.has_voted = False
                changed += 1
        return changed

    async def flag_voters_with_ballots(self) -> int:
        changed = 0
        for voter_id in self.ballots:
            voter = self.voters.get(voter_id)
            if voter is not None and not voter.has_voted:
                voter.has_voted = True
                changed += 1
        return changed

    async def delete_voters(self, role: str) -> int:
        doomed = [vid for vid, v in self.voters.items() if v.role == role]
        for voter_id in doomed:
            del self.voters[voter_id]
        return len(doomed)

    # Ballots, keyed by voter id so the key doubles as the uniqueness guard

    async def insert_ballot(self, ballot: Ballot) -> Ballot:
        if ballot.voter_id in self.ballots:
            raise AlreadyVoted(ballot.voter_id)
        self.ballots[ballot.voter_id] = _copy_ballot(ballot)
        return _copy_ballot(ballot)

    async def get_ballot_by_voter(self, voter_id: str) -> Optional[Ballot]:
        ballot = self.ballots.get(voter_id)
        return _copy_ballot(ballot) if ballot else None

    async def count_ballots(self) -> int:
        return len(self.ballots)

    async def delete_ballots(self) -> int:
        count = len(self.ballots)
        self.ballots.clear()
        return count
