"""
Company election API.

This package contains the election domain and its HTTP surface:
- Positions, candidates and voter accounts
- Ballot validation and the casting saga
- Results with tally redaction while voting is open
- PostgreSQL and in-memory storage backends
"""

from .election_state import ElectionState
from .entities import Ballot, Candidate, Position, PositionStatus, Role, Voter
from .errors import ElectionError, PartialCommit
from .memory import MemoryStore
from .store import Store

__all__ = [
    'Ballot',
    'Candidate',
    'ElectionError',
    'ElectionState',
    'MemoryStore',
    'PartialCommit',
    'Position',
    'PositionStatus',
    'Role',
    'Store',
    'Voter',
]

__version__ = '1.0.0'
