"""Voting and registration flags shared by every request of one process."""
import logging
import threading

from .metrics import election_state_changes

logger = logging.getLogger(__name__)


class ElectionState:
    """
    Process-wide election flags.

    Both flags start closed and are not persisted: a restart closes voting
    and registration until an administrator reopens them.
    """

    def __init__(self, voting_open: bool = False, registration_open: bool = False):
        self._lock = threading.Lock()
        self._voting_open = voting_open
        self._registration_open = registration_open

    def is_voting_open(self) -> bool:
        with self._lock:
            return self._voting_open

    def set_voting_open(self, is_open: bool) -> None:
        with self._lock:
            self._voting_open = bool(is_open)
        election_state_changes.labels(flag="voting", state=_label(is_open)).inc()
        logger.info(f"Voting status changed to: {_label(is_open).upper()}")

    def is_registration_open(self) -> bool:
        with self._lock:
            return self._registration_open

    def set_registration_open(self, is_open: bool) -> None:
        with self._lock:
            self._registration_open = bool(is_open)
        election_state_changes.labels(flag="registration", state=_label(is_open)).inc()
        logger.info(f"Registration status changed to: {_label(is_open).upper()}")


def _label(is_open: bool) -> str:
    return "open" if is_open else "closed"
