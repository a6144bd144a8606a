"""PostgreSQL database connection and queries."""
import json
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Iterable, List, Optional

import asyncpg

from .config import Settings, settings as default_settings
from .entities import Ballot, Candidate, Position, Voter
from .errors import AlreadyVoted, DuplicateName, DuplicateVoter, NotFound, StorageError
from .store import Store

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS positions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL CONSTRAINT positions_name_key UNIQUE,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
    sort_order INTEGER NOT NULL DEFAULT 0,
    min_winners INTEGER NOT NULL CHECK (min_winners >= 0),
    min_selectable INTEGER NOT NULL CHECK (min_selectable >= 0),
    max_selectable INTEGER NOT NULL CHECK (max_selectable >= 1 AND max_selectable >= min_selectable),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS candidates (
    id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    profile_photo TEXT NOT NULL DEFAULT 'default.jpg',
    position_id TEXT NOT NULL REFERENCES positions(id),
    votes INTEGER NOT NULL DEFAULT 0 CHECK (votes >= 0),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS candidates_position_id_idx ON candidates (position_id);

CREATE TABLE IF NOT EXISTS voters (
    id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    company_id TEXT NOT NULL CONSTRAINT voters_company_id_key UNIQUE,
    password_hash TEXT NOT NULL,
    has_voted BOOLEAN NOT NULL DEFAULT FALSE,
    role TEXT NOT NULL DEFAULT 'voter' CHECK (role IN ('voter', 'admin')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS ballots (
    id TEXT PRIMARY KEY,
    voter_id TEXT NOT NULL CONSTRAINT ballots_voter_id_key UNIQUE REFERENCES voters(id),
    selections JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def _position(row) -> Position:
    return Position(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        status=row["status"],
        order=row["sort_order"],
        min_winners=row["min_winners"],
        min_selectable=row["min_selectable"],
        max_selectable=row["max_selectable"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _candidate(row) -> Candidate:
    return Candidate(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        profile_photo=row["profile_photo"],
        position_id=row["position_id"],
        votes=row["votes"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _voter(row) -> Voter:
    return Voter(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        company_id=row["company_id"],
        password_hash=row["password_hash"],
        has_voted=row["has_voted"],
        role=row["role"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _ballot(row) -> Ballot:
    selections = row["selections"]
    if isinstance(selections, str):
        selections = json.loads(selections)
    return Ballot(
        id=row["id"],
        voter_id=row["voter_id"],
        selections=selections,
        created_at=row["created_at"],
    )


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PostgresStore(Store):
    """
    Async PostgreSQL store.

    Calls made inside transaction() share one pooled connection, bound to the
    current task through a context variable.
    """

    supports_transactions = True

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.pool: Optional[asyncpg.Pool] = None
        self._connection: ContextVar[Optional[asyncpg.Connection]] = ContextVar(
            f"election_db_connection_{id(self)}", default=None
        )

    async def initialize(self):
        """Initialize database connection pool and schema."""
        try:
            self.pool = await asyncpg.create_pool(
                self.config.postgres_dsn,
                min_size=self.config.POSTGRES_POOL_MIN_SIZE,
                max_size=self.config.POSTGRES_POOL_MAX_SIZE,
                command_timeout=60
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA)
                logger.info("PostgreSQL schema verified")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")

    async def check_health(self) -> bool:
        """Check database connection health."""
        try:
            if not self.pool:
                return False
            async with self._acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    @asynccontextmanager
    async def _acquire(self):
        conn = self._connection.get()
        if conn is not None:
            yield conn
            return
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        conn = self._connection.get()
        if conn is not None:
            # Nested block: savepoint on the bound connection
            async with conn.transaction():
                yield
            return
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                token = self._connection.set(conn)
                try:
                    yield
                finally:
                    self._connection.reset(token)

    async def _fetch(self, query: str, *args) -> list:
        try:
            async with self._acquire() as conn:
                return await conn.fetch(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}")
            raise StorageError(str(e)) from e

    async def _fetchrow(self, query: str, *args):
        try:
            async with self._acquire() as conn:
                return await conn.fetchrow(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}")
            raise StorageError(str(e)) from e

    async def _fetchval(self, query: str, *args):
        try:
            async with self._acquire() as conn:
                return await conn.fetchval(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}")
            raise StorageError(str(e)) from e

    async def _execute_count(self, query: str, *args) -> int:
        """Run a DML statement and return the affected row count."""
        try:
            async with self._acquire() as conn:
                status = await conn.execute(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Statement failed: {e}")
            raise StorageError(str(e)) from e
        # Status strings look like "UPDATE 3" or "DELETE 0"
        return int(status.split()[-1])

    # Positions

    async def insert_position(self, position: Position) -> Position:
        query = """
            INSERT INTO positions
            (id, name, description, status, sort_order, min_winners,
             min_selectable, max_selectable, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            RETURNING *
        """
        try:
            async with self._acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    position.id, position.name, position.description, position.status,
                    position.order, position.min_winners, position.min_selectable,
                    position.max_selectable, position.created_at, position.updated_at
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateName(position.name)
        except asyncpg.PostgresError as e:
            logger.error(f"Error inserting position: {e}")
            raise StorageError(str(e)) from e
        return _position(row)

    async def get_position(self, position_id: str) -> Optional[Position]:
        row = await self._fetchrow("SELECT * FROM positions WHERE id = $1", position_id)
        return _position(row) if row else None

    async def get_position_by_name(self, name: str) -> Optional[Position]:
        row = await self._fetchrow("SELECT * FROM positions WHERE name = $1", name)
        return _position(row) if row else None

    async def list_positions(self, status: Optional[str] = None) -> List[Position]:
        if status is None:
            rows = await self._fetch("SELECT * FROM positions ORDER BY sort_order, name")
        else:
            rows = await self._fetch(
                "SELECT * FROM positions WHERE status = $1 ORDER BY sort_order, name",
                status
            )
        return [_position(row) for row in rows]

    async def update_position(self, position: Position) -> Position:
        query = """
            UPDATE positions SET
                name = $2, description = $3, status = $4, sort_order = $5,
                min_winners = $6, min_selectable = $7, max_selectable = $8,
                updated_at = NOW()
            WHERE id = $1
            RETURNING *
        """
        try:
            async with self._acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    position.id, position.name, position.description, position.status,
                    position.order, position.min_winners, position.min_selectable,
                    position.max_selectable
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateName(position.name)
        except asyncpg.PostgresError as e:
            logger.error(f"Error updating position {position.id}: {e}")
            raise StorageError(str(e)) from e
        if row is None:
            raise NotFound("Position", position.id)
        return _position(row)

    async def delete_position(self, position_id: str) -> bool:
        return await self._execute_count("DELETE FROM positions WHERE id = $1", position_id) > 0

    async def count_candidates(self, position_id: str) -> int:
        return await self._fetchval(
            "SELECT COUNT(*) FROM candidates WHERE position_id = $1", position_id
        )

    # Candidates

    async def insert_candidate(self, candidate: Candidate) -> Candidate:
        row = await self._fetchrow(
            """
            INSERT INTO candidates
            (id, first_name, last_name, profile_photo, position_id, votes, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
            """,
            candidate.id, candidate.first_name, candidate.last_name, candidate.profile_photo,
            candidate.position_id, candidate.votes, candidate.created_at, candidate.updated_at
        )
        return _candidate(row)

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        row = await self._fetchrow("SELECT * FROM candidates WHERE id = $1", candidate_id)
        return _candidate(row) if row else None

    async def list_candidates(self, search: Optional[str] = None,
                              position_id: Optional[str] = None) -> List[Candidate]:
        clauses = []
        args = []
        if search:
            args.append(_like_pattern(search))
            clauses.append(f"(first_name ILIKE ${len(args)} OR last_name ILIKE ${len(args)})")
        if position_id:
            args.append(position_id)
            clauses.append(f"position_id = ${len(args)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetch(
            f"SELECT * FROM candidates {where} ORDER BY created_at, id", *args
        )
        return [_candidate(row) for row in rows]

    async def update_candidate(self, candidate: Candidate) -> Candidate:
        row = await self._fetchrow(
            """
            UPDATE candidates SET
                first_name = $2, last_name = $3, profile_photo = $4,
                position_id = $5, updated_at = NOW()
            WHERE id = $1
            RETURNING *
            """,
            candidate.id, candidate.first_name, candidate.last_name,
            candidate.profile_photo, candidate.position_id
        )
        if row is None:
            raise NotFound("Candidate", candidate.id)
        return _candidate(row)

    async def delete_candidate(self, candidate_id: str) -> bool:
        return await self._execute_count("DELETE FROM candidates WHERE id = $1", candidate_id) > 0

    async def increment_votes(self, candidate_ids: Iterable[str], strict: bool = True) -> int:
        """
        Add one vote to each candidate in a single statement.

        Outside a transaction a strict failure leaves the existing candidates
        incremented; inside one the caller's rollback undoes them.
        """
        ids = list(dict.fromkeys(candidate_ids))
        if not ids:
            return 0
        rows = await self._fetch(
            """
            UPDATE candidates SET votes = votes + 1, updated_at = NOW()
            WHERE id = ANY($1::text[])
            RETURNING id
            """,
            ids
        )
        if strict and len(rows) < len(ids):
            found = {row["id"] for row in rows}
            missing = [cid for cid in ids if cid not in found]
            raise NotFound("Candidate", missing[0])
        return len(rows)

    async def reset_votes(self) -> int:
        return await self._execute_count("UPDATE candidates SET votes = 0, updated_at = NOW()")

    async def recount_votes(self) -> int:
        return await self._execute_count(
            """
            WITH tallies AS (
                SELECT cid AS candidate_id, COUNT(*) AS n
                FROM ballots b
                CROSS JOIN LATERAL jsonb_each(b.selections) AS s(position_id, ids)
                CROSS JOIN LATERAL jsonb_array_elements_text(s.ids) AS cid
                GROUP BY cid
            )
            UPDATE candidates c
            SET votes = COALESCE(t.n, 0), updated_at = NOW()
            FROM candidates c2
            LEFT JOIN tallies t ON t.candidate_id = c2.id
            WHERE c.id = c2.id AND c.votes <> COALESCE(t.n, 0)
            """
        )

    # Voters

    async def insert_voter(self, voter: Voter) -> Voter:
        query = """
            INSERT INTO voters
            (id, first_name, last_name, company_id, password_hash, has_voted, role,
             created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
        """
        try:
            async with self._acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    voter.id, voter.first_name, voter.last_name, voter.company_id,
                    voter.password_hash, voter.has_voted, voter.role,
                    voter.created_at, voter.updated_at
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateVoter(voter.company_id)
        except asyncpg.PostgresError as e:
            logger.error(f"Error inserting voter: {e}")
            raise StorageError(str(e)) from e
        return _voter(row)

    async def get_voter(self, voter_id: str) -> Optional[Voter]:
        row = await self._fetchrow("SELECT * FROM voters WHERE id = $1", voter_id)
        return _voter(row) if row else None

    async def get_voter_by_company_id(self, company_id: str) -> Optional[Voter]:
        row = await self._fetchrow("SELECT * FROM voters WHERE company_id = $1", company_id)
        return _voter(row) if row else None

    async def update_voter_password(self, voter_id: str, password_hash: str) -> bool:
        return await self._execute_count(
            "UPDATE voters SET password_hash = $2, updated_at = NOW() WHERE id = $1",
            voter_id, password_hash
        ) > 0

    async def mark_voted(self, voter_id: str) -> bool:
        return await self._execute_count(
            "UPDATE voters SET has_voted = TRUE, updated_at = NOW() WHERE id = $1",
            voter_id
        ) > 0

    async def reset_voted(self) -> int:
        return await self._execute_count(
            "UPDATE voters SET has_voted = FALSE, updated_at = NOW() WHERE has_voted"
        )

    async def flag_voters_with_ballots(self) -> int:
        return await self._execute_count(
            """
            UPDATE voters SET has_voted = TRUE, updated_at = NOW()
            WHERE NOT has_voted AND id IN (SELECT voter_id FROM ballots)
            """
        )

    async def delete_voters(self, role: str) -> int:
        return await self._execute_count("DELETE FROM voters WHERE role = $1", role)

    # Ballots

    async def insert_ballot(self, ballot: Ballot) -> Ballot:
        query = """
            INSERT INTO ballots (id, voter_id, selections, created_at)
            VALUES ($1, $2, $3::jsonb, $4)
            RETURNING *
        """
        try:
            async with self._acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    ballot.id, ballot.voter_id, json.dumps(ballot.selections), ballot.created_at
                )
        except asyncpg.UniqueViolationError:
            raise AlreadyVoted(ballot.voter_id)
        except asyncpg.PostgresError as e:
            logger.error(f"Error inserting ballot for voter {ballot.voter_id}: {e}")
            raise StorageError(str(e)) from e
        return _ballot(row)

    async def get_ballot_by_voter(self, voter_id: str) -> Optional[Ballot]:
        row = await self._fetchrow("SELECT * FROM ballots WHERE voter_id = $1", voter_id)
        return _ballot(row) if row else None

    async def count_ballots(self) -> int:
        return await self._fetchval("SELECT COUNT(*) FROM ballots")

    async def delete_ballots(self) -> int:
        return await self._execute_count("DELETE FROM ballots")
