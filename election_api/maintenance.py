"""Election-cycle maintenance: reset for a new election and repair partial commits."""
import logging
from typing import Dict

from .candidates import CandidateRegistry
from .ledger import VoteLedger
from .store import Store
from .voters import VoterRegistry

logger = logging.getLogger(__name__)


class ElectionMaintenance:
    """Administrative bulk operations over ballots, voters and tallies."""

    def __init__(self, store: Store, ledger: VoteLedger,
                 candidates: CandidateRegistry, voters: VoterRegistry):
        self.store = store
        self.ledger = ledger
        self.candidates = candidates
        self.voters = voters

    async def clear_for_new_election(self) -> Dict[str, int]:
        """Delete all ballots, reset every has_voted flag and every tally."""
        async with self.store.transaction():
            votes_deleted = await self.ledger.clear_all()
            users_reset = await self.voters.reset_all_voted()
            candidates_reset = await self.candidates.reset_all_votes()

        logger.info(
            f"Database cleared for new election: ballots={votes_deleted}, "
            f"voters={users_reset}, candidates={candidates_reset}"
        )
        return {
            "votes_deleted": votes_deleted,
            "users_reset": users_reset,
            "candidates_votes_reset": candidates_reset,
        }

    async def reconcile(self) -> Dict[str, int]:
        """
        Bring flags and tallies back in line with the stored ballots.

        Every voter owning a ballot is flagged, and every tally is recomputed
        from the ballots. Running it again changes nothing.
        """
        async with self.store.transaction():
            voters_flagged = await self.store.flag_voters_with_ballots()
            candidates_corrected = await self.store.recount_votes()

        if voters_flagged or candidates_corrected:
            logger.warning(
                f"Reconcile repaired state: voters_flagged={voters_flagged}, "
                f"candidates_corrected={candidates_corrected}"
            )
        else:
            logger.info("Reconcile found nothing to repair")
        return {
            "voters_flagged": voters_flagged,
            "candidates_corrected": candidates_corrected,
        }
