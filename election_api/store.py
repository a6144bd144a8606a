"""Storage contract shared by the PostgreSQL and in-memory backends."""
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable, List, Optional

from .entities import Ballot, Candidate, Position, Voter


class Store(ABC):
    """
    Persistence for positions, candidates, voters and ballots.

    Implementations must enforce unique position names, unique voter company
    ids and one ballot per voter at the storage level, and must apply vote
    increments atomically per candidate.
    """

    # True when transaction() provides all-or-nothing commits
    supports_transactions: bool = False

    async def initialize(self) -> None:
        """Open connections and create the schema if needed."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def check_health(self) -> bool:
        ...

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """Group the store calls made inside the block into one unit of work."""

    # Positions

    @abstractmethod
    async def insert_position(self, position: Position) -> Position:
        """Raises DuplicateName when the name is taken."""

    @abstractmethod
    async def get_position(self, position_id: str) -> Optional[Position]:
        ...

    @abstractmethod
    async def get_position_by_name(self, name: str) -> Optional[Position]:
        ...

    @abstractmethod
    async def list_positions(self, status: Optional[str] = None) -> List[Position]:
        """Positions sorted by order, then name."""

    @abstractmethod
    async def update_position(self, position: Position) -> Position:
        """Raises DuplicateName when renamed onto an existing name."""

    @abstractmethod
    async def delete_position(self, position_id: str) -> bool:
        ...

    @abstractmethod
    async def count_candidates(self, position_id: str) -> int:
        ...

    # Candidates

    @abstractmethod
    async def insert_candidate(self, candidate: Candidate) -> Candidate:
        ...

    @abstractmethod
    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        ...

    @abstractmethod
    async def list_candidates(self, search: Optional[str] = None,
                              position_id: Optional[str] = None) -> List[Candidate]:
        """Candidates in creation order, optionally filtered."""

    @abstractmethod
    async def update_candidate(self, candidate: Candidate) -> Candidate:
        ...

    @abstractmethod
    async def delete_candidate(self, candidate_id: str) -> bool:
        ...

    @abstractmethod
    async def increment_votes(self, candidate_ids: Iterable[str], strict: bool = True) -> int:
        """
        Add one vote to each candidate.

        Returns the number of candidates incremented. In strict mode an
        unknown id raises NotFound.
        """

    @abstractmethod
    async def reset_votes(self) -> int:
        ...

    @abstractmethod
    async def recount_votes(self) -> int:
        """Set every tally to the count found in stored ballots. Returns candidates changed."""

    # Voters

    @abstractmethod
    async def insert_voter(self, voter: Voter) -> Voter:
        """Raises DuplicateVoter when the company id is taken."""

    @abstractmethod
    async def get_voter(self, voter_id: str) -> Optional[Voter]:
        ...

    @abstractmethod
    async def get_voter_by_company_id(self, company_id: str) -> Optional[Voter]:
        ...

    @abstractmethod
    async def update_voter_password(self, voter_id: str, password_hash: str) -> bool:
        ...

    @abstractmethod
    async def mark_voted(self, voter_id: str) -> bool:
        ...

    @abstractmethod
    async def reset_voted(self) -> int:
        ...

    @abstractmethod
    async def flag_voters_with_ballots(self) -> int:
        """Set has_voted on every voter owning a ballot. Returns voters changed."""

    @abstractmethod
    async def delete_voters(self, role: str) -> int:
        ...

    # Ballots

    @abstractmethod
    async def insert_ballot(self, ballot: Ballot) -> Ballot:
        """Raises AlreadyVoted when the voter already owns a ballot."""

    @abstractmethod
    async def get_ballot_by_voter(self, voter_id: str) -> Optional[Ballot]:
        ...

    @abstractmethod
    async def count_ballots(self) -> int:
        ...

    @abstractmethod
    async def delete_ballots(self) -> int:
        ...
