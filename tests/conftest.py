"""Shared fixtures for the election service tests.

Everything runs against the in-memory store, so no database is needed.
bcrypt is set to its minimum cost to keep password hashing fast.
"""

from typing import Dict

import pytest

from election_api.config import Settings
from election_api.election_state import ElectionState
from election_api.entities import Voter
from election_api.main import Services
from election_api.memory import MemoryStore

TEST_JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        STORAGE_BACKEND="memory",
        BCRYPT_ROUNDS=4,
        JWT_SECRET=TEST_JWT_SECRET,
        ADMIN_COMPANY_ID=None,
        ADMIN_PASSWORD=None,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def election_state() -> ElectionState:
    return ElectionState()


@pytest.fixture
def services(store, election_state, test_settings) -> Services:
    return Services.build(store, election_state, test_settings)


@pytest.fixture
async def voter(store) -> Voter:
    """A voter inserted directly; its password is never checked."""
    return await store.insert_voter(Voter(
        first_name="ADA",
        last_name="LOVELACE",
        company_id="EMP-0001",
        password_hash="unused",
    ))


@pytest.fixture
async def ballot_setup(services) -> Dict[str, str]:
    """Two active positions with candidates, plus an inactive position.

    - President: exactly one selection
    - Board: one or two selections
    - Archived: inactive, one selection
    """
    president = await services.positions.create(
        "President", min_winners=1, min_selectable=1, max_selectable=1, order=1
    )
    board = await services.positions.create(
        "Board", min_winners=2, min_selectable=1, max_selectable=2, order=2
    )
    archived = await services.positions.create(
        "Archived", min_winners=1, min_selectable=1, max_selectable=1,
        status="inactive", order=3
    )

    alice = await services.candidates.create("alice", "smith", president.id)
    bob = await services.candidates.create("bob", "jones", president.id)
    carol = await services.candidates.create("carol", "white", board.id)
    dave = await services.candidates.create("dave", "brown", board.id)
    erin = await services.candidates.create("erin", "black", board.id)
    old = await services.candidates.create("old", "timer", archived.id)

    return {
        "president": president.id,
        "board": board.id,
        "archived": archived.id,
        "alice": alice.id,
        "bob": bob.id,
        "carol": carol.id,
        "dave": dave.id,
        "erin": erin.id,
        "old": old.id,
    }
