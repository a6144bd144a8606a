"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


# Auth

class RegisterRequest(BaseModel):
    """Voter self-registration request model."""

    first_name: Optional[str] = Field(default=None, description="First name")
    last_name: Optional[str] = Field(default=None, description="Last name")
    company_id: Optional[str] = Field(default=None, description="Company employee ID")
    password: Optional[str] = Field(default=None, description="Password (min 3 characters)")

    class Config:
        json_schema_extra = {
            "example": {
                "first_name": "Ada",
                "last_name": "Lovelace",
                "company_id": "EMP-0042",
                "password": "s3cret"
            }
        }


class LoginRequest(BaseModel):
    """Login request model."""

    company_id: Optional[str] = Field(default=None, description="Company employee ID")
    password: Optional[str] = Field(default=None, description="Password")


class ChangePasswordRequest(BaseModel):
    """Password change request model."""

    current_password: Optional[str] = None
    new_password: Optional[str] = None


class VoterResponse(BaseModel):
    """Voter account, without credentials."""

    id: str
    first_name: str
    last_name: str
    full_name: str
    company_id: str
    has_voted: bool
    role: Literal["voter", "admin"]
    created_at: datetime
    updated_at: datetime


class AuthResponse(BaseModel):
    """Token issued on registration or login."""

    status: str = "success"
    token: str
    user: VoterResponse


# Positions

class PositionCreateRequest(BaseModel):
    """Position creation request model."""

    name: Optional[str] = Field(default=None, description="Unique position name")
    description: Optional[str] = None
    status: Literal["active", "inactive"] = "active"
    order: int = Field(default=0, description="Sort key on ballots and results")
    min_winners: Optional[int] = Field(default=None, description="Number of winners reported")
    min_selectable: Optional[int] = Field(default=None, description="Fewest candidates a ballot may select")
    max_selectable: Optional[int] = Field(default=None, description="Most candidates a ballot may select")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Board Member",
                "description": "Employee representatives on the board",
                "status": "active",
                "order": 1,
                "min_winners": 3,
                "min_selectable": 1,
                "max_selectable": 3
            }
        }


class PositionUpdateRequest(BaseModel):
    """Partial position update; omitted fields are unchanged."""

    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None
    order: Optional[int] = None
    min_winners: Optional[int] = None
    min_selectable: Optional[int] = None
    max_selectable: Optional[int] = None


class PositionResponse(BaseModel):
    """Position response model."""

    id: str
    name: str
    description: Optional[str] = None
    status: Literal["active", "inactive"]
    order: int
    min_winners: int
    min_selectable: int
    max_selectable: int
    created_at: datetime
    updated_at: datetime


# Candidates

class CandidateCreateRequest(BaseModel):
    """Candidate creation request model."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position_id: Optional[str] = Field(default=None, description="Position the candidate stands for")
    profile_photo: Optional[str] = Field(default=None, description="Photo reference")


class CandidateUpdateRequest(BaseModel):
    """Partial candidate update; omitted fields are unchanged."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position_id: Optional[str] = None
    profile_photo: Optional[str] = None


class CandidateResponse(BaseModel):
    """Candidate response model."""

    id: str
    first_name: str
    last_name: str
    full_name: str
    profile_photo: str
    position_id: str
    votes: int
    created_at: datetime
    updated_at: datetime


class CandidateListResponse(BaseModel):
    status: str = "success"
    results: int
    candidates: List[CandidateResponse]


# Votes

class CastVoteRequest(BaseModel):
    """Ballot submission request model."""

    selections: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Position ID -> selected candidate IDs"
    )

    @field_validator("selections")
    @classmethod
    def strip_ids(cls, v):
        """Strip whitespace around position and candidate IDs.

        Two keys naming the same position once stripped are refused rather
        than merged, so no submitted selection is dropped.
        """
        stripped = {}
        for position_id, candidate_ids in v.items():
            key = position_id.strip()
            if key in stripped:
                raise ValueError(f"Position {key} appears more than once in selections")
            stripped[key] = [cid.strip() for cid in candidate_ids]
        return stripped

    class Config:
        json_schema_extra = {
            "example": {
                "selections": {
                    "4f1c2e...": ["9a8b7c...", "1d2e3f..."],
                    "7b6a5d...": ["0c1d2e..."]
                }
            }
        }


class BallotResponse(BaseModel):
    """Stored ballot."""

    id: str
    voter_id: str
    selections: Dict[str, List[str]]
    created_at: datetime


class CastVoteResponse(BaseModel):
    status: str = "success"
    message: str = "Vote cast successfully!"
    ballot: BallotResponse


class CandidateResult(BaseModel):
    """Candidate tally; votes is null while voting is open."""

    id: str
    first_name: str
    last_name: str
    full_name: str
    profile_photo: str
    votes: Optional[int] = None


class PositionResult(BaseModel):
    position_id: str
    position_name: str
    order: int
    number_of_winners: int
    candidates: List[CandidateResult]


class ResultsResponse(BaseModel):
    """Election results response model."""

    status: str = "success"
    is_voting_open: bool
    positions: List[PositionResult]


class UserVoteStatusResponse(BaseModel):
    status: str = "success"
    has_voted: bool


# Election state and administration

class VotingStatusResponse(BaseModel):
    status: str = "success"
    message: Optional[str] = None
    is_voting_open: bool


class RegistrationStatusResponse(BaseModel):
    status: str = "success"
    message: Optional[str] = None
    is_registration_open: bool


class MaintenanceResponse(BaseModel):
    """Outcome of a bulk administrative operation."""

    status: str = "success"
    message: str
    details: Dict[str, int] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    status: str = "success"
    message: str


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(..., description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "SelectionCountViolation",
                "message": 'For position "Board Member", you must select between 1 and 3 candidates. You selected 4.',
                "details": {
                    "position_id": "4f1c2e...",
                    "min_selectable": 1,
                    "max_selectable": 3,
                    "received": 4
                }
            }
        }
