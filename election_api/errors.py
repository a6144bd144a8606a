"""
Error taxonomy for the election service.

Every client-facing failure is an ElectionError subclass carrying the HTTP
status it maps to, a stable error name and a details dict precise enough for
the caller to correct the request.
"""
from typing import Any, Dict, Optional


class ElectionError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def error(self) -> str:
        return type(self).__name__


# Entity lookups

class NotFound(ElectionError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity} not found.",
            {"entity": entity, "id": entity_id}
        )


class VoterNotFound(NotFound):
    def __init__(self, voter_id: str):
        super().__init__("Voter", voter_id)


class PositionNotFound(ElectionError):
    """A candidate references a position that does not exist."""

    def __init__(self, position_id: str):
        super().__init__(
            f"Position {position_id} does not exist.",
            {"position_id": position_id}
        )


# Input validation

class MissingField(ElectionError):
    def __init__(self, *fields: str):
        super().__init__(
            f"Missing required field(s): {', '.join(fields)}.",
            {"fields": list(fields)}
        )


class InvalidValue(ElectionError):
    def __init__(self, field: str, message: str):
        super().__init__(message, {"field": field})


class InvalidRange(ElectionError):
    def __init__(self, field: str, message: str):
        super().__init__(message, {"field": field})


# Conflicts

class DuplicateName(ElectionError):
    status_code = 409

    def __init__(self, name: str):
        super().__init__(
            f"Position with name '{name}' already exists.",
            {"name": name}
        )


class DuplicateVoter(ElectionError):
    status_code = 409

    def __init__(self, company_id: str):
        super().__init__(
            "User with this Company ID already exists.",
            {"company_id": company_id}
        )


class HasDependents(ElectionError):
    status_code = 409

    def __init__(self, entity: str, entity_id: Optional[str], count: int, dependents: str):
        super().__init__(
            f"Cannot delete {entity.lower()}. {count} {dependents} currently depend on it.",
            {"entity": entity, "id": entity_id, "count": count}
        )
        self.count = count


# Election state

class VotingClosed(ElectionError):
    status_code = 403

    def __init__(self):
        super().__init__("Voting is currently closed.")


class RegistrationClosed(ElectionError):
    status_code = 403

    def __init__(self):
        super().__init__("User registration is currently disabled.")


# Ballot validation

class AlreadyVoted(ElectionError):
    status_code = 409

    def __init__(self, voter_id: str):
        super().__init__("You have already voted.", {"voter_id": voter_id})


class EmptyBallot(ElectionError):
    def __init__(self, message: str = "No votes submitted."):
        super().__init__(message)


class InvalidPosition(ElectionError):
    def __init__(self, position_id: str):
        super().__init__(
            f"Invalid or inactive position ID: {position_id}.",
            {"position_id": position_id}
        )


class SelectionCountViolation(ElectionError):
    def __init__(self, position_id: str, position_name: str,
                 min_selectable: int, max_selectable: int, received: int):
        super().__init__(
            f'For position "{position_name}", you must select between '
            f"{min_selectable} and {max_selectable} candidates. "
            f"You selected {received}.",
            {
                "position_id": position_id,
                "min_selectable": min_selectable,
                "max_selectable": max_selectable,
                "received": received,
            }
        )


class InvalidCandidate(ElectionError):
    def __init__(self, candidate_id: str, position_id: str, position_name: str):
        super().__init__(
            f'Invalid candidate ID {candidate_id} for position "{position_name}".',
            {"candidate_id": candidate_id, "position_id": position_id}
        )


class PartialCommit(ElectionError):
    """
    A ballot was stored but a later casting step failed.

    The system holds a recorded ballot with uncounted votes or an unflagged
    voter until the reconcile pass runs.
    """

    status_code = 500

    def __init__(self, ballot_id: str, voter_id: str, stage: str):
        super().__init__(
            "Ballot was recorded but the vote could not be fully committed.",
            {"ballot_id": ballot_id, "voter_id": voter_id, "stage": stage}
        )


# Authentication

class AuthenticationFailed(ElectionError):
    status_code = 401

    def __init__(self, message: str = "You are not logged in! Please log in to get access."):
        super().__init__(message)


class InvalidCredentials(AuthenticationFailed):
    def __init__(self):
        super().__init__("Incorrect Company ID or password.")


class PermissionDenied(ElectionError):
    status_code = 403

    def __init__(self):
        super().__init__("You do not have permission to perform this action.")


class StorageError(Exception):
    """Unexpected failure in the persistence layer."""
    pass
