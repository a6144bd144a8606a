"""
Vote casting: validate a ballot completely, then commit it.

Validation (voting open, voter eligible, per-position selection rules,
candidate membership) only reads. The commit is a three-step saga:

    1. record the ballot in the ledger
    2. add one vote to every selected candidate
    3. flag the voter as having voted

On a transactional store the saga runs in one transaction and a failure rolls
it back. On a store without transactions a failure after step 1 leaves a
recorded ballot behind; that state is reported as PartialCommit and repaired
by the reconcile pass in maintenance.py.
"""
import logging
from typing import Dict, Iterable, List, Mapping

from .candidates import CandidateRegistry
from .election_state import ElectionState
from .entities import Ballot
from .errors import (
    AlreadyVoted,
    ElectionError,
    EmptyBallot,
    InvalidCandidate,
    InvalidPosition,
    PartialCommit,
    SelectionCountViolation,
    VoterNotFound,
    VotingClosed,
)
from .ledger import VoteLedger
from .metrics import ballot_rejections, ballots_cast, partial_commits
from .store import Store
from .voters import VoterRegistry

logger = logging.getLogger(__name__)


def normalize_selections(selections: Mapping[str, Iterable[str]]) -> Dict[str, List[str]]:
    """Collapse repeated candidate ids per position, keeping first occurrence."""
    return {
        position_id: list(dict.fromkeys(candidate_ids or []))
        for position_id, candidate_ids in selections.items()
    }


class VoteCastingService:
    """Validates and commits ballots."""

    def __init__(self, store: Store, election_state: ElectionState,
                 candidates: CandidateRegistry, ledger: VoteLedger, voters: VoterRegistry):
        self.store = store
        self.election_state = election_state
        self.candidates = candidates
        self.ledger = ledger
        self.voters = voters

    async def cast_vote(self, voter_id: str, selections: Mapping[str, Iterable[str]]) -> Ballot:
        """
        Cast a ballot for a voter.

        Args:
            voter_id: Authenticated voter
            selections: Position id -> candidate ids, checked in submission order

        Returns:
            The stored ballot

        Raises:
            VotingClosed, VoterNotFound, AlreadyVoted, EmptyBallot,
            InvalidPosition, SelectionCountViolation, InvalidCandidate:
                nothing was written
            PartialCommit: the ballot was stored but a later step failed
        """
        try:
            normalized = await self._validate(voter_id, selections)
            ballot = await self._commit(voter_id, normalized)
        except PartialCommit:
            raise
        except ElectionError as e:
            ballot_rejections.labels(error_type=e.error).inc()
            logger.warning(f"Ballot rejected: voter={voter_id}, error={e.error}, reason={e.message}")
            raise

        ballots_cast.inc()
        logger.info(
            f"Ballot cast: id={ballot.id}, voter={voter_id}, "
            f"positions={len(ballot.selections)}, candidates={len(ballot.candidate_ids)}"
        )
        return ballot

    async def _validate(self, voter_id: str,
                        selections: Mapping[str, Iterable[str]]) -> Dict[str, List[str]]:
        if not self.election_state.is_voting_open():
            raise VotingClosed()

        voter = await self.store.get_voter(voter_id)
        if voter is None:
            raise VoterNotFound(voter_id)
        if voter.has_voted or await self.ledger.has_voted(voter_id):
            raise AlreadyVoted(voter_id)

        if not selections:
            raise EmptyBallot()
        normalized = normalize_selections(selections)

        total_selected = 0
        for position_id, candidate_ids in normalized.items():
            position = await self.store.get_position(position_id)
            if position is None or not position.is_active:
                raise InvalidPosition(position_id)

            count = len(candidate_ids)
            if count < position.min_selectable or count > position.max_selectable:
                raise SelectionCountViolation(
                    position.id, position.name,
                    position.min_selectable, position.max_selectable, count
                )

            for candidate_id in candidate_ids:
                candidate = await self.store.get_candidate(candidate_id)
                if candidate is None or candidate.position_id != position_id:
                    raise InvalidCandidate(candidate_id, position.id, position.name)

            total_selected += count

        if total_selected == 0:
            raise EmptyBallot("Please select at least one candidate overall.")

        return normalized

    async def _commit(self, voter_id: str, selections: Dict[str, List[str]]) -> Ballot:
        ballot = None
        stage = "record_ballot"
        try:
            async with self.store.transaction():
                ballot = await self.ledger.record_ballot(voter_id, selections)
                stage = "increment_votes"
                await self.candidates.increment_votes(ballot.candidate_ids, strict=True)
                stage = "mark_voted"
                await self.voters.mark_voted(voter_id)
        except Exception as e:
            if ballot is None or self.store.supports_transactions:
                raise
            partial_commits.labels(stage=stage).inc()
            logger.critical(
                f"PARTIAL COMMIT: ballot={ballot.id} voter={voter_id} stored but "
                f"{stage} failed: {e}. Run reconcile to repair."
            )
            raise PartialCommit(ballot.id, voter_id, stage) from e
        return ballot
