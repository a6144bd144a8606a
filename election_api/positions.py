"""Position registry: electable seats and their selection rules."""
import logging
from typing import List, Optional

from .entities import Position, PositionStatus
from .errors import (
    DuplicateName,
    HasDependents,
    InvalidRange,
    InvalidValue,
    MissingField,
    NotFound,
)
from .store import Store

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "name", "description", "status", "order",
    "min_winners", "min_selectable", "max_selectable",
)


def normalize_status(status: str) -> str:
    try:
        return PositionStatus(status).value
    except ValueError:
        raise InvalidValue("status", f"Status must be 'active' or 'inactive', got '{status}'.")


def validate_rules(position: Position) -> None:
    """Check the selection-count invariants of a position."""
    if position.min_winners < 0:
        raise InvalidRange("min_winners", "Minimum winners cannot be less than 0.")
    if position.min_selectable < 0:
        raise InvalidRange("min_selectable", "Minimum selectable candidates cannot be less than 0.")
    if position.max_selectable < 1:
        raise InvalidRange("max_selectable", "Maximum selectable candidates cannot be less than 1.")
    if position.max_selectable < position.min_selectable:
        raise InvalidRange(
            "max_selectable",
            f"Maximum selectable candidates ({position.max_selectable}) cannot be less "
            f"than minimum selectable candidates ({position.min_selectable})."
        )


class PositionRegistry:
    """Creates, edits and looks up positions."""

    def __init__(self, store: Store):
        self.store = store

    async def create(
        self,
        name: Optional[str],
        min_winners: Optional[int] = None,
        min_selectable: Optional[int] = None,
        max_selectable: Optional[int] = None,
        description: Optional[str] = None,
        status: str = PositionStatus.ACTIVE.value,
        order: int = 0,
    ) -> Position:
        name = name.strip() if name else ""
        missing = [
            field for field, value in (
                ("name", name),
                ("min_winners", min_winners),
                ("min_selectable", min_selectable),
                ("max_selectable", max_selectable),
            )
            if value is None or value == ""
        ]
        if missing:
            raise MissingField(*missing)

        position = Position(
            name=name,
            description=description.strip() if description else description,
            status=normalize_status(status),
            order=order if order is not None else 0,
            min_winners=min_winners,
            min_selectable=min_selectable,
            max_selectable=max_selectable,
        )
        validate_rules(position)

        if await self.store.get_position_by_name(name):
            raise DuplicateName(name)

        created = await self.store.insert_position(position)
        logger.info(f"Position created: id={created.id}, name={created.name}")
        return created

    async def get(self, position_id: str) -> Position:
        position = await self.store.get_position(position_id)
        if position is None:
            raise NotFound("Position", position_id)
        return position

    async def list(self, status: Optional[str] = None) -> List[Position]:
        if status is not None:
            status = normalize_status(status)
        return await self.store.list_positions(status)

    async def update(self, position_id: str, **fields) -> Position:
        """
        Apply a partial update. Fields passed as None are left unchanged.

        Selection counts may change after ballots exist; stored ballots are
        not revalidated.
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidValue(sorted(unknown)[0], f"Unknown position field(s): {', '.join(sorted(unknown))}.")

        position = await self.get(position_id)

        name = fields.get("name")
        if name is not None:
            name = name.strip()
            if not name:
                raise MissingField("name")
            if name != position.name:
                if await self.store.get_position_by_name(name):
                    raise DuplicateName(name)
                position.name = name

        if fields.get("status") is not None:
            position.status = normalize_status(fields["status"])
        for field in ("description", "order", "min_winners", "min_selectable", "max_selectable"):
            if fields.get(field) is not None:
                setattr(position, field, fields[field])

        validate_rules(position)

        updated = await self.store.update_position(position)
        logger.info(f"Position updated: id={updated.id}, name={updated.name}")
        return updated

    async def delete(self, position_id: str) -> None:
        await self.get(position_id)

        assigned = await self.store.count_candidates(position_id)
        if assigned > 0:
            raise HasDependents("Position", position_id, assigned, "candidate(s)")

        if not await self.store.delete_position(position_id):
            raise NotFound("Position", position_id)
        logger.info(f"Position deleted: id={position_id}")
