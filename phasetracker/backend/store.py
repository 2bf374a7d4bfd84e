"""Persistence interfaces and implementations for encounters and participant flags."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import json
import logging
from typing import Any, Protocol
import uuid

from phasetracker.backend.access import ROLE_HOST, ROLE_PLAYER, hash_token, role_for_token
from phasetracker.backend.errors import NotFound, StoreFailure
from phasetracker.backend.models import CreatedEncounter, Encounter, EncounterAccess, FlagUpdate, Participant

logger = logging.getLogger(__name__)


class AssignmentStore(Protocol):
    def get(self, participant_id: str, key: str) -> Any | None:
        """Return a stored flag value or None when the flag is unset."""

    def get_flags(self, participant_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Return every stored flag of each participant in one read; unknown ids map to {}."""

    async def set(self, participant_id: str, key: str, value: Any) -> None:
        """Persist one flag; a None value removes it."""

    async def bulk_set(self, encounter: Encounter, updates: list[FlagUpdate]) -> None:
        """Persist several flags across the participants of one encounter."""


class EncounterRegistry(Protocol):
    def create_encounter(self, name: str, host_token: str, player_token: str) -> CreatedEncounter:
        """Create encounter and persist token hashes."""

    def get_encounter_access(self, encounter_id: str, raw_token: str) -> EncounterAccess | None:
        """Return encounter and role when token is valid."""

    def add_participant(self, encounter_id: str, name: str) -> Participant:
        """Append a participant to the encounter's iteration order."""

    def set_round(self, encounter_id: str, round_number: int) -> Encounter:
        """Store a new round counter and return the updated encounter."""


class TrackerStore(AssignmentStore, EncounterRegistry, Protocol):
    pass


@dataclass
class InMemoryTrackerStore:
    server_salt: str

    def __post_init__(self) -> None:
        self._encounters: dict[str, dict[str, Any]] = {}
        self._flags: dict[str, dict[str, Any]] = {}

    def get(self, participant_id: str, key: str) -> Any | None:
        return self._flags.get(participant_id, {}).get(key)

    def get_flags(self, participant_ids: list[str]) -> dict[str, dict[str, Any]]:
        return {pid: dict(self._flags.get(pid, {})) for pid in participant_ids}

    async def set(self, participant_id: str, key: str, value: Any) -> None:
        self._write_flag(participant_id, key, value)

    async def bulk_set(self, encounter: Encounter, updates: list[FlagUpdate]) -> None:
        for update in updates:
            self._write_flag(update.participant_id, update.field, update.value)

    def _write_flag(self, participant_id: str, key: str, value: Any) -> None:
        if value is None:
            self._flags.get(participant_id, {}).pop(key, None)
            return
        self._flags.setdefault(participant_id, {})[key] = value

    def create_encounter(self, name: str, host_token: str, player_token: str) -> CreatedEncounter:
        encounter_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        self._encounters[encounter_id] = {
            "encounter": Encounter(encounter_id=encounter_id, name=name, round=1),
            "tokens": {
                ROLE_HOST: hash_token(host_token, self.server_salt),
                ROLE_PLAYER: hash_token(player_token, self.server_salt),
            },
            "createdAt": now,
            "updatedAt": now,
        }
        logger.info("Created encounter %s (%s)", encounter_id, name)
        return CreatedEncounter(encounter_id=encounter_id, host_token=host_token, player_token=player_token)

    def get_encounter_access(self, encounter_id: str, raw_token: str) -> EncounterAccess | None:
        payload = self._encounters.get(encounter_id)
        if payload is None:
            return None
        role = role_for_token(raw_token, payload["tokens"], self.server_salt)
        if role is None:
            return None
        return EncounterAccess(encounter=payload["encounter"], role=role)

    def add_participant(self, encounter_id: str, name: str) -> Participant:
        payload = self._payload(encounter_id)
        participant = Participant(participant_id=str(uuid.uuid4()), name=name)
        encounter: Encounter = payload["encounter"]
        payload["encounter"] = replace(encounter, participants=encounter.participants + (participant,))
        self._touch(payload)
        return participant

    def set_round(self, encounter_id: str, round_number: int) -> Encounter:
        payload = self._payload(encounter_id)
        payload["encounter"] = replace(payload["encounter"], round=round_number)
        self._touch(payload)
        return payload["encounter"]

    def _payload(self, encounter_id: str) -> dict[str, Any]:
        payload = self._encounters.get(encounter_id)
        if payload is None:
            raise NotFound(f"Unknown encounter {encounter_id}")
        return payload

    def _touch(self, payload: dict[str, Any]) -> None:
        payload["updatedAt"] = datetime.now(timezone.utc).isoformat()


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    import psycopg

    try:
        yield
    except psycopg.Error as exc:
        logger.error("Postgres %s failed: %s", operation, exc)
        raise StoreFailure(f"{operation} failed") from exc


_UPSERT_FLAG = """
    INSERT INTO participant_flags (participant_id, key, value, updated_at)
    VALUES (%s, %s, %s::jsonb, %s)
    ON CONFLICT (participant_id, key)
    DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
"""

_DELETE_FLAG = "DELETE FROM participant_flags WHERE participant_id = %s AND key = %s"


@dataclass
class PostgresTrackerStore:
    database_url: str
    server_salt: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    async def _connect_async(self) -> Any:
        import psycopg

        return await psycopg.AsyncConnection.connect(self.database_url)

    def get(self, participant_id: str, key: str) -> Any | None:
        with _store_errors("flag read"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT value FROM participant_flags WHERE participant_id = %s AND key = %s",
                        (participant_id, key),
                    )
                    row = cur.fetchone()
        if row is None:
            return None
        # jsonb arrives already decoded.
        return row[0]

    def get_flags(self, participant_ids: list[str]) -> dict[str, dict[str, Any]]:
        flags: dict[str, dict[str, Any]] = {pid: {} for pid in participant_ids}
        if not participant_ids:
            return flags
        with _store_errors("flag read"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT participant_id, key, value FROM participant_flags WHERE participant_id = ANY(%s)",
                        (list(participant_ids),),
                    )
                    rows = cur.fetchall()
        for participant_id, key, value in rows:
            flags.setdefault(participant_id, {})[key] = value
        return flags

    async def set(self, participant_id: str, key: str, value: Any) -> None:
        with _store_errors("flag write"):
            async with await self._connect_async() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(*self._flag_statement(participant_id, key, value))
                await conn.commit()

    async def bulk_set(self, encounter: Encounter, updates: list[FlagUpdate]) -> None:
        if not updates:
            return
        with _store_errors("bulk flag write"):
            async with await self._connect_async() as conn:
                async with conn.cursor() as cur:
                    for update in updates:
                        await cur.execute(*self._flag_statement(update.participant_id, update.field, update.value))
                await conn.commit()
        logger.debug("Bulk wrote %d flags for encounter %s", len(updates), encounter.encounter_id)

    def _flag_statement(self, participant_id: str, key: str, value: Any) -> tuple[str, tuple]:
        if value is None:
            return _DELETE_FLAG, (participant_id, key)
        return _UPSERT_FLAG, (participant_id, key, json.dumps(value), datetime.now(timezone.utc))

    def create_encounter(self, name: str, host_token: str, player_token: str) -> CreatedEncounter:
        encounter_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)

        with _store_errors("encounter create"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO encounters (id, name, round, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s)
                        """,
                        (encounter_id, name, 1, now, now),
                    )
                    cur.execute(
                        """
                        INSERT INTO encounter_tokens (id, encounter_id, role, token_hash, created_at, revoked_at)
                        VALUES (%s, %s, 'HOST', %s, %s, NULL), (%s, %s, 'PLAYER', %s, %s, NULL)
                        """,
                        (
                            str(uuid.uuid4()),
                            encounter_id,
                            hash_token(host_token, self.server_salt),
                            now,
                            str(uuid.uuid4()),
                            encounter_id,
                            hash_token(player_token, self.server_salt),
                            now,
                        ),
                    )
                conn.commit()

        logger.info("Created encounter %s (%s)", encounter_id, name)
        return CreatedEncounter(encounter_id=encounter_id, host_token=host_token, player_token=player_token)

    def get_encounter_access(self, encounter_id: str, raw_token: str) -> EncounterAccess | None:
        token_hash = hash_token(raw_token, self.server_salt)
        with _store_errors("encounter read"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT t.role
                        FROM encounter_tokens t
                        WHERE t.encounter_id = %s
                          AND t.token_hash = %s
                          AND t.revoked_at IS NULL
                        """,
                        (encounter_id, token_hash),
                    )
                    row = cur.fetchone()
                    if row is None:
                        return None
                    encounter = self._load_encounter(cur, encounter_id)

        return EncounterAccess(encounter=encounter, role=row[0])

    def add_participant(self, encounter_id: str, name: str) -> Participant:
        participant = Participant(participant_id=str(uuid.uuid4()), name=name)
        now = datetime.now(timezone.utc)
        with _store_errors("participant create"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1 FROM encounters WHERE id = %s", (encounter_id,))
                    if cur.fetchone() is None:
                        raise NotFound(f"Unknown encounter {encounter_id}")
                    cur.execute(
                        """
                        INSERT INTO participants (id, encounter_id, name, position, created_at)
                        SELECT %s, %s, %s, COALESCE(MAX(position) + 1, 0), %s
                        FROM participants
                        WHERE encounter_id = %s
                        """,
                        (participant.participant_id, encounter_id, name, now, encounter_id),
                    )
                conn.commit()
        return participant

    def set_round(self, encounter_id: str, round_number: int) -> Encounter:
        now = datetime.now(timezone.utc)
        with _store_errors("round update"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "UPDATE encounters SET round = %s, updated_at = %s WHERE id = %s",
                        (round_number, now, encounter_id),
                    )
                    if cur.rowcount == 0:
                        raise NotFound(f"Unknown encounter {encounter_id}")
                    encounter = self._load_encounter(cur, encounter_id)
                conn.commit()
        return encounter

    def _load_encounter(self, cur: Any, encounter_id: str) -> Encounter:
        cur.execute("SELECT name, round FROM encounters WHERE id = %s", (encounter_id,))
        row = cur.fetchone()
        if row is None:
            raise NotFound(f"Unknown encounter {encounter_id}")
        name, round_number = row
        cur.execute(
            "SELECT id, name FROM participants WHERE encounter_id = %s ORDER BY position",
            (encounter_id,),
        )
        participants = tuple(Participant(participant_id=pid, name=pname) for pid, pname in cur.fetchall())
        return Encounter(encounter_id=encounter_id, name=name, round=int(round_number), participants=participants)


def create_store(database_url: str | None, server_salt: str) -> TrackerStore:
    if database_url:
        return PostgresTrackerStore(database_url=database_url, server_salt=server_salt)
    return InMemoryTrackerStore(server_salt=server_salt)
