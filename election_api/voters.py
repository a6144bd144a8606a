"""Voter accounts: registration, login and per-voter vote status."""
import logging
from typing import Optional

from .auth import hash_password_async, verify_password_async
from .election_state import ElectionState
from .entities import Role, Voter
from .errors import (
    DuplicateVoter,
    HasDependents,
    InvalidCredentials,
    InvalidValue,
    MissingField,
    RegistrationClosed,
    VoterNotFound,
)
from .store import Store

logger = logging.getLogger(__name__)


def normalize_company_id(company_id: Optional[str]) -> str:
    return company_id.strip().upper() if company_id else ""


class VoterRegistry:
    """Manages voter accounts and the has_voted flag."""

    def __init__(self, store: Store, election_state: ElectionState,
                 bcrypt_rounds: int = 12, password_min_length: int = 3):
        self.store = store
        self.election_state = election_state
        self.bcrypt_rounds = bcrypt_rounds
        self.password_min_length = password_min_length

    def _check_password(self, field: str, password: str) -> None:
        if len(password) < self.password_min_length:
            raise InvalidValue(
                field,
                f"Password must be at least {self.password_min_length} characters long."
            )

    async def _create(self, first_name, last_name, company_id, password, role) -> Voter:
        first_name = first_name.strip().upper() if first_name else ""
        last_name = last_name.strip().upper() if last_name else ""
        company_id = normalize_company_id(company_id)
        missing = [
            field for field, value in (
                ("first_name", first_name),
                ("last_name", last_name),
                ("company_id", company_id),
                ("password", password),
            )
            if not value
        ]
        if missing:
            raise MissingField(*missing)
        self._check_password("password", password)

        if await self.store.get_voter_by_company_id(company_id):
            raise DuplicateVoter(company_id)

        return await self.store.insert_voter(Voter(
            first_name=first_name,
            last_name=last_name,
            company_id=company_id,
            password_hash=await hash_password_async(password, self.bcrypt_rounds),
            role=role,
        ))

    async def register(self, first_name: Optional[str], last_name: Optional[str],
                       company_id: Optional[str], password: Optional[str]) -> Voter:
        """Self-service registration, allowed only while registration is open."""
        if not self.election_state.is_registration_open():
            raise RegistrationClosed()
        voter = await self._create(first_name, last_name, company_id, password, Role.VOTER.value)
        logger.info(f"Voter registered: id={voter.id}, company_id={voter.company_id}")
        return voter

    async def ensure_admin(self, company_id: str, password: str,
                           first_name: str = "ELECTION", last_name: str = "ADMIN") -> Voter:
        """Create the bootstrap administrator unless the company id already exists."""
        existing = await self.store.get_voter_by_company_id(normalize_company_id(company_id))
        if existing:
            return existing
        admin = await self._create(first_name, last_name, company_id, password, Role.ADMIN.value)
        logger.info(f"Administrator account created: company_id={admin.company_id}")
        return admin

    async def authenticate(self, company_id: Optional[str], password: Optional[str]) -> Voter:
        company_id = normalize_company_id(company_id)
        if not company_id or not password:
            raise MissingField(*[f for f, v in (("company_id", company_id), ("password", password)) if not v])

        voter = await self.store.get_voter_by_company_id(company_id)
        if voter is None or not await verify_password_async(password, voter.password_hash):
            logger.warning(f"Failed login for company_id={company_id}")
            raise InvalidCredentials()
        return voter

    async def change_password(self, voter_id: str, current_password: str, new_password: str) -> None:
        voter = await self.get(voter_id)
        if not current_password or not new_password:
            raise MissingField(*[f for f, v in (("current_password", current_password),
                                                ("new_password", new_password)) if not v])
        if not await verify_password_async(current_password, voter.password_hash):
            raise InvalidCredentials()
        self._check_password("new_password", new_password)

        password_hash = await hash_password_async(new_password, self.bcrypt_rounds)
        if not await self.store.update_voter_password(voter_id, password_hash):
            raise VoterNotFound(voter_id)
        logger.info(f"Password changed: voter={voter_id}")

    async def get(self, voter_id: str) -> Voter:
        voter = await self.store.get_voter(voter_id)
        if voter is None:
            raise VoterNotFound(voter_id)
        return voter

    async def vote_status(self, voter_id: str) -> bool:
        return (await self.get(voter_id)).has_voted

    async def mark_voted(self, voter_id: str) -> None:
        if not await self.store.mark_voted(voter_id):
            raise VoterNotFound(voter_id)

    async def reset_all_voted(self) -> int:
        count = await self.store.reset_voted()
        logger.info(f"has_voted reset for {count} voter(s)")
        return count

    async def delete_all_voters(self) -> int:
        """Remove every non-admin account. Refused while ballots exist."""
        ballots = await self.store.count_ballots()
        if ballots:
            raise HasDependents("Voters", None, ballots, "ballot(s)")
        deleted = await self.store.delete_voters(Role.VOTER.value)
        logger.warning(f"Bulk voter delete removed {deleted} account(s)")
        return deleted
