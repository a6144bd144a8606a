"""Tests for ballot validation and the casting saga."""

import asyncio

import pytest
from prometheus_client import REGISTRY

from election_api.casting import normalize_selections
from election_api.errors import (
    AlreadyVoted,
    EmptyBallot,
    InvalidCandidate,
    InvalidPosition,
    PartialCommit,
    SelectionCountViolation,
    VoterNotFound,
    VotingClosed,
)
from election_api.main import Services
from election_api.memory import MemoryStore


class FailingStore(MemoryStore):
    """Memory store that fails one commit step on demand."""

    def __init__(self, fail_on: str):
        super().__init__()
        self.fail_on = fail_on

    async def increment_votes(self, candidate_ids, strict=True):
        if self.fail_on == "increment_votes":
            raise RuntimeError("counter update lost")
        return await super().increment_votes(candidate_ids, strict=strict)

    async def mark_voted(self, voter_id):
        if self.fail_on == "mark_voted":
            raise RuntimeError("voter update lost")
        return await super().mark_voted(voter_id)


class TransactionalFailingStore(FailingStore):
    supports_transactions = True


def sample_value(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0


def test_normalize_selections_collapses_duplicates():
    assert normalize_selections({"p1": ["a", "b", "a"], "p2": []}) == {"p1": ["a", "b"], "p2": []}


class TestCastVote:

    async def test_successful_cast(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)

        ballot = await services.casting.cast_vote(voter.id, {
            ballot_setup["president"]: [ballot_setup["alice"]],
            ballot_setup["board"]: [ballot_setup["carol"], ballot_setup["dave"]],
        })

        assert ballot.voter_id == voter.id
        assert sorted(ballot.candidate_ids) == sorted(
            [ballot_setup["alice"], ballot_setup["carol"], ballot_setup["dave"]]
        )
        assert (await services.voters.get(voter.id)).has_voted is True
        assert (await services.ledger.get_ballot(voter.id)).id == ballot.id
        for key in ("alice", "carol", "dave"):
            assert (await services.candidates.get(ballot_setup[key])).votes == 1
        for key in ("bob", "erin"):
            assert (await services.candidates.get(ballot_setup[key])).votes == 0

    async def test_duplicate_candidate_ids_count_once(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)

        ballot = await services.casting.cast_vote(voter.id, {
            ballot_setup["board"]: [ballot_setup["carol"], ballot_setup["carol"]],
        })

        assert ballot.selections == {ballot_setup["board"]: [ballot_setup["carol"]]}
        assert (await services.candidates.get(ballot_setup["carol"])).votes == 1

    async def test_voting_closed(self, services, voter, ballot_setup):
        before = sample_value("ballot_rejections_total", {"error_type": "VotingClosed"})

        with pytest.raises(VotingClosed) as exc_info:
            await services.casting.cast_vote(voter.id, {ballot_setup["president"]: [ballot_setup["alice"]]})

        assert exc_info.value.status_code == 403
        assert await services.ledger.count() == 0
        assert sample_value("ballot_rejections_total", {"error_type": "VotingClosed"}) == before + 1

    async def test_unknown_voter(self, services, election_state, ballot_setup):
        election_state.set_voting_open(True)

        with pytest.raises(VoterNotFound):
            await services.casting.cast_vote("ghost", {ballot_setup["president"]: [ballot_setup["alice"]]})

    async def test_second_ballot_is_rejected(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)
        await services.casting.cast_vote(voter.id, {ballot_setup["president"]: [ballot_setup["alice"]]})

        with pytest.raises(AlreadyVoted) as exc_info:
            await services.casting.cast_vote(voter.id, {ballot_setup["president"]: [ballot_setup["bob"]]})

        assert exc_info.value.status_code == 409
        assert (await services.candidates.get(ballot_setup["bob"])).votes == 0

    async def test_concurrent_ballots_from_one_voter(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)
        selections = {ballot_setup["president"]: [ballot_setup["alice"]]}

        outcomes = await asyncio.gather(
            *[services.casting.cast_vote(voter.id, selections) for _ in range(5)],
            return_exceptions=True
        )

        accepted = [o for o in outcomes if not isinstance(o, Exception)]
        rejected = [o for o in outcomes if isinstance(o, Exception)]
        assert len(accepted) == 1
        assert all(isinstance(o, AlreadyVoted) for o in rejected)
        assert await services.ledger.count() == 1
        assert (await services.candidates.get(ballot_setup["alice"])).votes == 1

    async def test_empty_selections(self, services, election_state, voter):
        election_state.set_voting_open(True)

        with pytest.raises(EmptyBallot):
            await services.casting.cast_vote(voter.id, {})

    async def test_no_candidate_selected_overall(self, services, election_state, voter):
        election_state.set_voting_open(True)
        optional = await services.positions.create(
            "Optional Seat", min_winners=1, min_selectable=0, max_selectable=1
        )

        with pytest.raises(EmptyBallot):
            await services.casting.cast_vote(voter.id, {optional.id: []})

        assert (await services.voters.get(voter.id)).has_voted is False

    async def test_skipping_optional_position(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)
        optional = await services.positions.create(
            "Optional Seat", min_winners=1, min_selectable=0, max_selectable=1
        )

        ballot = await services.casting.cast_vote(voter.id, {
            optional.id: [],
            ballot_setup["president"]: [ballot_setup["bob"]],
        })

        assert ballot.selections[optional.id] == []

    async def test_selection_count_violation_writes_nothing(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)

        with pytest.raises(SelectionCountViolation) as exc_info:
            await services.casting.cast_vote(voter.id, {
                ballot_setup["board"]: [ballot_setup["carol"]],
                ballot_setup["president"]: [ballot_setup["alice"], ballot_setup["bob"]],
            })

        assert exc_info.value.details == {
            "position_id": ballot_setup["president"],
            "min_selectable": 1,
            "max_selectable": 1,
            "received": 2,
        }
        assert await services.ledger.count() == 0
        assert (await services.candidates.get(ballot_setup["carol"])).votes == 0
        assert (await services.voters.get(voter.id)).has_voted is False

    async def test_too_few_selections(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)

        with pytest.raises(SelectionCountViolation):
            await services.casting.cast_vote(voter.id, {ballot_setup["president"]: []})

    async def test_candidate_from_other_position(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)

        with pytest.raises(InvalidCandidate) as exc_info:
            await services.casting.cast_vote(voter.id, {ballot_setup["president"]: [ballot_setup["carol"]]})

        assert exc_info.value.details["candidate_id"] == ballot_setup["carol"]

    async def test_unknown_candidate(self, services, election_state, voter, ballot_setup):
        election_state.set_voting_open(True)

        with pytest.raises(InvalidCandidate):
            await services.casting.cast_vote(voter.id, {ballot_setup["president"]: ["ghost"]})

    @pytest.mark.parametrize("position_key", ["archived", None])
    async def test_inactive_or_unknown_position(self, services, election_state, voter, ballot_setup, position_key):
        election_state.set_voting_open(True)
        position_id = ballot_setup[position_key] if position_key else "ghost"

        with pytest.raises(InvalidPosition) as exc_info:
            await services.casting.cast_vote(voter.id, {position_id: [ballot_setup["old"]]})

        assert exc_info.value.details["position_id"] == position_id


class TestPartialCommit:

    async def _setup(self, fail_on, store_cls, election_state, test_settings):
        store = store_cls(fail_on)
        services = Services.build(store, election_state, test_settings)
        election_state.set_voting_open(True)
        position = await services.positions.create("President", min_winners=1, min_selectable=1, max_selectable=1)
        candidate = await services.candidates.create("alice", "smith", position.id)
        voter = await services.voters.ensure_admin("EMP-9", "secret", "VOTING", "ADMIN")
        return services, position, candidate, voter

    async def test_failure_after_ballot_reports_partial_commit(self, election_state, test_settings):
        services, position, candidate, voter = await self._setup(
            "mark_voted", FailingStore, election_state, test_settings
        )
        before = sample_value("partial_commits_total", {"stage": "mark_voted"})

        with pytest.raises(PartialCommit) as exc_info:
            await services.casting.cast_vote(voter.id, {position.id: [candidate.id]})

        ballot = await services.ledger.get_ballot(voter.id)
        assert exc_info.value.details == {
            "ballot_id": ballot.id,
            "voter_id": voter.id,
            "stage": "mark_voted",
        }
        assert exc_info.value.status_code == 500
        assert (await services.candidates.get(candidate.id)).votes == 1
        assert (await services.voters.get(voter.id)).has_voted is False
        assert sample_value("partial_commits_total", {"stage": "mark_voted"}) == before + 1

        # The recorded ballot still blocks a retry
        with pytest.raises(AlreadyVoted):
            await services.casting.cast_vote(voter.id, {position.id: [candidate.id]})

    async def test_failed_increment_is_repaired_by_reconcile(self, election_state, test_settings):
        services, position, candidate, voter = await self._setup(
            "increment_votes", FailingStore, election_state, test_settings
        )

        with pytest.raises(PartialCommit) as exc_info:
            await services.casting.cast_vote(voter.id, {position.id: [candidate.id]})
        assert exc_info.value.details["stage"] == "increment_votes"
        assert (await services.candidates.get(candidate.id)).votes == 0

        repaired = await services.maintenance.reconcile()

        assert repaired == {"voters_flagged": 1, "candidates_corrected": 1}
        assert (await services.candidates.get(candidate.id)).votes == 1
        assert (await services.voters.get(voter.id)).has_voted is True

    async def test_transactional_store_reraises_original_error(self, election_state, test_settings):
        services, position, candidate, voter = await self._setup(
            "mark_voted", TransactionalFailingStore, election_state, test_settings
        )

        with pytest.raises(RuntimeError, match="voter update lost"):
            await services.casting.cast_vote(voter.id, {position.id: [candidate.id]})
