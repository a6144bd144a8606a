"""Candidate registry: people standing for positions and their tallies."""
import logging
import re
from typing import Iterable, List, Optional

from .entities import Candidate
from .errors import MissingField, NotFound, PositionNotFound
from .store import Store

logger = logging.getLogger(__name__)

_WORD_START = re.compile(r"\b\w")


def capitalize_words(text: Optional[str]) -> str:
    """Title-case a name: first letter of each word upper, the rest lower."""
    if not text:
        return ""
    return _WORD_START.sub(lambda m: m.group(0).upper(), text.strip().lower())


class CandidateRegistry:
    """Creates, edits and counts votes for candidates."""

    def __init__(self, store: Store, default_photo: str = "default.jpg"):
        self.store = store
        self.default_photo = default_photo

    async def _require_position(self, position_id: str) -> None:
        if await self.store.get_position(position_id) is None:
            raise PositionNotFound(position_id)

    async def create(
        self,
        first_name: Optional[str],
        last_name: Optional[str],
        position_id: Optional[str],
        profile_photo: Optional[str] = None,
    ) -> Candidate:
        first_name = capitalize_words(first_name)
        last_name = capitalize_words(last_name)
        missing = [
            field for field, value in (
                ("first_name", first_name),
                ("last_name", last_name),
                ("position_id", position_id),
            )
            if not value
        ]
        if missing:
            raise MissingField(*missing)

        await self._require_position(position_id)

        candidate = await self.store.insert_candidate(Candidate(
            first_name=first_name,
            last_name=last_name,
            position_id=position_id,
            profile_photo=profile_photo or self.default_photo,
        ))
        logger.info(f"Candidate created: id={candidate.id}, name={candidate.full_name}")
        return candidate

    async def get(self, candidate_id: str) -> Candidate:
        candidate = await self.store.get_candidate(candidate_id)
        if candidate is None:
            raise NotFound("Candidate", candidate_id)
        return candidate

    async def list(self, search: Optional[str] = None,
                   position_id: Optional[str] = None) -> List[Candidate]:
        search = search.strip() if search else None
        return await self.store.list_candidates(search=search or None, position_id=position_id)

    async def update(
        self,
        candidate_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        position_id: Optional[str] = None,
        profile_photo: Optional[str] = None,
    ) -> Candidate:
        candidate = await self.get(candidate_id)

        if first_name:
            candidate.first_name = capitalize_words(first_name)
        if last_name:
            candidate.last_name = capitalize_words(last_name)
        if position_id and position_id != candidate.position_id:
            await self._require_position(position_id)
            candidate.position_id = position_id
        if profile_photo:
            candidate.profile_photo = profile_photo

        updated = await self.store.update_candidate(candidate)
        logger.info(f"Candidate updated: id={updated.id}, name={updated.full_name}")
        return updated

    async def delete(self, candidate_id: str) -> None:
        if not await self.store.delete_candidate(candidate_id):
            raise NotFound("Candidate", candidate_id)
        logger.info(f"Candidate deleted: id={candidate_id}")

    async def increment_votes(self, candidate_ids: Iterable[str], strict: bool = True) -> int:
        """
        Add one vote to each candidate atomically.

        An empty id set is a no-op. With strict=False unknown ids are skipped,
        which is what bulk maintenance wants; casting uses strict mode.
        """
        ids = list(dict.fromkeys(candidate_ids))
        if not ids:
            return 0
        return await self.store.increment_votes(ids, strict=strict)

    async def reset_all_votes(self) -> int:
        count = await self.store.reset_votes()
        logger.info(f"Vote counters reset for {count} candidate(s)")
        return count
