"""Tests for the candidate registry."""

import pytest

from election_api.candidates import capitalize_words
from election_api.errors import MissingField, NotFound, PositionNotFound


@pytest.mark.parametrize("raw,expected", [
    ("  aDA  ", "Ada"),
    ("mary ann", "Mary Ann"),
    ("o'neil", "O'Neil"),
    ("", ""),
    (None, ""),
])
def test_capitalize_words(raw, expected):
    assert capitalize_words(raw) == expected


class TestCandidateRegistry:

    async def test_create_normalizes_names_and_defaults(self, services, ballot_setup):
        candidate = await services.candidates.create("GRACE", "hopper", ballot_setup["board"])

        assert candidate.first_name == "Grace"
        assert candidate.last_name == "Hopper"
        assert candidate.full_name == "Grace Hopper"
        assert candidate.profile_photo == "default.jpg"
        assert candidate.votes == 0

    async def test_create_requires_fields(self, services):
        with pytest.raises(MissingField) as exc_info:
            await services.candidates.create("Grace", "", None)

        assert exc_info.value.details["fields"] == ["last_name", "position_id"]

    async def test_create_for_unknown_position(self, services):
        with pytest.raises(PositionNotFound) as exc_info:
            await services.candidates.create("Grace", "Hopper", "nope")

        assert exc_info.value.status_code == 400

    async def test_list_with_search_and_position(self, services, ballot_setup):
        by_name = await services.candidates.list(search="AL")
        by_position = await services.candidates.list(position_id=ballot_setup["president"])
        both = await services.candidates.list(search="o", position_id=ballot_setup["president"])

        assert [c.id for c in by_name] == [ballot_setup["alice"]]
        assert {c.id for c in by_position} == {ballot_setup["alice"], ballot_setup["bob"]}
        assert [c.id for c in both] == [ballot_setup["bob"]]

    async def test_update_keeps_votes(self, services, ballot_setup):
        await services.candidates.increment_votes([ballot_setup["carol"]])

        updated = await services.candidates.update(
            ballot_setup["carol"], first_name="caroline", profile_photo="carol.png"
        )

        assert updated.first_name == "Caroline"
        assert updated.last_name == "White"
        assert updated.profile_photo == "carol.png"
        assert updated.votes == 1

    async def test_move_to_unknown_position(self, services, ballot_setup):
        with pytest.raises(PositionNotFound):
            await services.candidates.update(ballot_setup["carol"], position_id="nope")

    async def test_delete(self, services, ballot_setup):
        await services.candidates.delete(ballot_setup["erin"])

        with pytest.raises(NotFound):
            await services.candidates.get(ballot_setup["erin"])
        with pytest.raises(NotFound):
            await services.candidates.delete(ballot_setup["erin"])


class TestIncrementVotes:

    async def test_each_id_counted_once(self, services, ballot_setup):
        updated = await services.candidates.increment_votes(
            [ballot_setup["carol"], ballot_setup["carol"], ballot_setup["dave"]]
        )

        assert updated == 2
        assert (await services.candidates.get(ballot_setup["carol"])).votes == 1
        assert (await services.candidates.get(ballot_setup["dave"])).votes == 1

    async def test_empty_set_is_noop(self, services):
        assert await services.candidates.increment_votes([]) == 0

    async def test_strict_mode_is_all_or_nothing(self, services, ballot_setup):
        with pytest.raises(NotFound):
            await services.candidates.increment_votes([ballot_setup["carol"], "ghost"])

        assert (await services.candidates.get(ballot_setup["carol"])).votes == 0

    async def test_lenient_mode_skips_unknown(self, services, ballot_setup):
        updated = await services.candidates.increment_votes(
            [ballot_setup["carol"], "ghost"], strict=False
        )

        assert updated == 1

    async def test_reset_all_votes(self, services, ballot_setup):
        await services.candidates.increment_votes([ballot_setup["alice"], ballot_setup["carol"]])

        reset = await services.candidates.reset_all_votes()

        assert reset == 6
        assert all(c.votes == 0 for c in await services.candidates.list())
