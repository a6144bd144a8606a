"""Vote ledger: one immutable ballot per voter."""
import logging
from typing import Dict, List, Optional

from .entities import Ballot
from .store import Store

logger = logging.getLogger(__name__)


class VoteLedger:
    """
    Records ballots.

    Uniqueness per voter is enforced by the store on insert, so two concurrent
    submissions from the same voter cannot both be recorded.
    """

    def __init__(self, store: Store):
        self.store = store

    async def has_voted(self, voter_id: str) -> bool:
        return await self.store.get_ballot_by_voter(voter_id) is not None

    async def get_ballot(self, voter_id: str) -> Optional[Ballot]:
        return await self.store.get_ballot_by_voter(voter_id)

    async def record_ballot(self, voter_id: str, selections: Dict[str, List[str]]) -> Ballot:
        """Persist a ballot. Raises AlreadyVoted if the voter already has one."""
        ballot = await self.store.insert_ballot(Ballot(
            voter_id=voter_id,
            selections={pid: list(ids) for pid, ids in selections.items()},
        ))
        logger.debug(f"Ballot recorded: id={ballot.id}, voter={voter_id}")
        return ballot

    async def count(self) -> int:
        return await self.store.count_ballots()

    async def clear_all(self) -> int:
        deleted = await self.store.delete_ballots()
        logger.info(f"Ballots cleared: {deleted}")
        return deleted
