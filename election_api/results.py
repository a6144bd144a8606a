"""Results aggregation with tally redaction while voting is open."""
import logging
from typing import Any, Dict, List

from .election_state import ElectionState
from .entities import PositionStatus
from .store import Store

logger = logging.getLogger(__name__)


class ResultsAggregator:
    """Builds the per-position results view."""

    def __init__(self, store: Store, election_state: ElectionState):
        self.store = store
        self.election_state = election_state

    async def get_results(self) -> Dict[str, Any]:
        """
        Tally every active position.

        Positions come in (order, name) order. Once voting is closed candidates
        are sorted by votes, highest first; equal counts keep candidate
        creation order because the sort is stable over the store's
        creation-ordered listing. While voting is open every vote count is
        reported as None and candidates stay in creation order, so the
        ranking is not revealed either.

        Returns:
            Dictionary with is_voting_open and a positions list
        """
        is_voting_open = self.election_state.is_voting_open()
        positions = await self.store.list_positions(PositionStatus.ACTIVE.value)

        detailed: List[Dict[str, Any]] = []
        for position in positions:
            candidates = await self.store.list_candidates(position_id=position.id)
            if not is_voting_open:
                candidates = sorted(candidates, key=lambda c: c.votes, reverse=True)

            detailed.append({
                "position_id": position.id,
                "position_name": position.name,
                "order": position.order,
                "number_of_winners": position.min_winners,
                "candidates": [
                    {
                        "id": c.id,
                        "first_name": c.first_name,
                        "last_name": c.last_name,
                        "full_name": c.full_name,
                        "profile_photo": c.profile_photo,
                        "votes": None if is_voting_open else c.votes,
                    }
                    for c in candidates
                ],
            })

        return {"is_voting_open": is_voting_open, "positions": detailed}
