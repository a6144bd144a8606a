"""
Entities stored by the election service.

This module contains:
- Position, Candidate, Voter, Ballot: records persisted by the store
- PositionStatus, Role: enumerations for constrained fields
- Identifier and timestamp helpers
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class PositionStatus(str, Enum):
    """Whether a position takes part in the current election."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class Role(str, Enum):
    """Account roles."""
    VOTER = "voter"
    ADMIN = "admin"


def new_id() -> str:
    """Generate a new entity identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Current UTC time, timezone aware."""
    return datetime.now(timezone.utc)


@dataclass
class Position:
    """
    An electable seat and its selection rules.

    Attributes:
        name: Unique display name
        status: active or inactive; only active positions accept ballots
        order: Sort key for ballots and results, not unique
        min_winners: Number of winners reported in results
        min_selectable: Fewest candidates a ballot may select
        max_selectable: Most candidates a ballot may select
    """
    name: str
    min_winners: int
    min_selectable: int
    max_selectable: int
    description: Optional[str] = None
    status: str = PositionStatus.ACTIVE.value
    order: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Candidate:
    """A person standing for a position, with a running vote counter."""
    first_name: str
    last_name: str
    position_id: str
    profile_photo: str = "default.jpg"
    votes: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["full_name"] = self.full_name
        return data


@dataclass
class Voter:
    """A registered user account. The password hash never leaves the service."""
    first_name: str
    last_name: str
    company_id: str
    password_hash: str
    has_voted: bool = False
    role: str = Role.VOTER.value
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_public_dict(self) -> Dict[str, Any]:
        """Convert to dictionary without the password hash."""
        data = asdict(self)
        data.pop("password_hash")
        data["full_name"] = self.full_name
        return data


@dataclass
class Ballot:
    """
    A voter's final selections.

    Attributes:
        voter_id: Owner; at most one ballot exists per voter
        selections: Position id -> candidate ids chosen for that position
    """
    voter_id: str
    selections: Dict[str, List[str]]
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def candidate_ids(self) -> List[str]:
        """All selected candidate ids across positions."""
        return [cid for ids in self.selections.values() for cid in ids]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
