"""Phase assignment records: read with defaults, write, group and reset."""

from __future__ import annotations

import logging
from typing import Any

from phasetracker.backend.models import (
    DEFAULT_RECORD,
    FLAG_GROUP_ID,
    FLAG_MELEE_ROLE,
    FLAG_ORDER,
    FLAG_PHASE,
    FLAG_REACTION_ROLL,
    FLAG_ROUND,
    PHASE_ORDER,
    AssignmentRecord,
    Encounter,
    FlagUpdate,
    MeleeRole,
    Participant,
    Phase,
)
from phasetracker.backend.ordering import sort_by_order
from phasetracker.backend.store import AssignmentStore

logger = logging.getLogger(__name__)


def _coerce_number(raw: Any, default: float | None, participant_id: str, key: str) -> float | None:
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed %s=%r for participant %s", key, raw, participant_id)
        return default


def _coerce_enum(raw: Any, enum_type: type, default: Any, participant_id: str, key: str) -> Any:
    if raw is None:
        return default
    try:
        return enum_type(raw)
    except ValueError:
        logger.warning("Ignoring unknown %s=%r for participant %s", key, raw, participant_id)
        return default


def record_from_flags(participant_id: str, flags: dict[str, Any]) -> AssignmentRecord:
    """Merge one participant's stored flags with defaults; malformed values fall back."""
    order = _coerce_number(flags.get(FLAG_ORDER), DEFAULT_RECORD.order, participant_id, FLAG_ORDER)
    round_number = _coerce_number(flags.get(FLAG_ROUND), DEFAULT_RECORD.round, participant_id, FLAG_ROUND)
    group_id = flags.get(FLAG_GROUP_ID)
    return AssignmentRecord(
        phase=_coerce_enum(flags.get(FLAG_PHASE), Phase, DEFAULT_RECORD.phase, participant_id, FLAG_PHASE),
        order=order,
        round=int(round_number),
        melee_role=_coerce_enum(flags.get(FLAG_MELEE_ROLE), MeleeRole, None, participant_id, FLAG_MELEE_ROLE),
        engagement_group_id=str(group_id) if group_id is not None else None,
        reaction_roll=_coerce_number(flags.get(FLAG_REACTION_ROLL), None, participant_id, FLAG_REACTION_ROLL),
    )


def read_assignment(store: AssignmentStore, participant_id: str) -> AssignmentRecord:
    """Return the stored record merged with defaults; malformed values fall back."""
    flags = store.get_flags([participant_id]).get(participant_id, {})
    return record_from_flags(participant_id, flags)


async def write_assignment(
    store: AssignmentStore,
    participant_id: str,
    phase: Phase,
    order: float,
    round_number: int,
) -> None:
    """Overwrite phase, order and round; engagement flags are left alone."""
    await store.set(participant_id, FLAG_PHASE, Phase(phase).value)
    await store.set(participant_id, FLAG_ORDER, order)
    await store.set(participant_id, FLAG_ROUND, round_number)


async def write_engagement(
    store: AssignmentStore,
    participant_id: str,
    group_id: str | None,
    role: MeleeRole | None,
) -> None:
    await store.set(participant_id, FLAG_GROUP_ID, group_id)
    await store.set(participant_id, FLAG_MELEE_ROLE, role.value if role is not None else None)


def read_encounter(store: AssignmentStore, encounter: Encounter) -> dict[str, AssignmentRecord]:
    """Read the records of every participant with a single store read."""
    ids = [p.participant_id for p in encounter.participants]
    flags = store.get_flags(ids)
    return {pid: record_from_flags(pid, flags.get(pid, {})) for pid in ids}


def group_records(encounter: Encounter, records: dict[str, AssignmentRecord]) -> dict[Phase, list[Participant]]:
    """Partition the encounter by phase, each list sorted by order.

    Every phase is present, in display order, even when empty. Ties keep the
    encounter's own iteration order.
    """
    buckets: dict[Phase, list[tuple[float, Participant]]] = {phase: [] for phase in PHASE_ORDER}
    for participant in encounter.participants:
        record = records[participant.participant_id]
        buckets[record.phase].append((record.order, participant))
    return {phase: sort_by_order(entries) for phase, entries in buckets.items()}


def group_by_phase(store: AssignmentStore, encounter: Encounter) -> dict[Phase, list[Participant]]:
    return group_records(encounter, read_encounter(store, encounter))


async def reset_all(store: AssignmentStore, encounter: Encounter) -> None:
    """Move every participant back to ``none`` for the encounter's round.

    Melee role and engagement group flags are intentionally not touched.
    """
    updates: list[FlagUpdate] = []
    for participant in encounter.participants:
        updates.append(FlagUpdate(participant.participant_id, FLAG_PHASE, Phase.NONE.value))
        updates.append(FlagUpdate(participant.participant_id, FLAG_ORDER, 0))
        updates.append(FlagUpdate(participant.participant_id, FLAG_ROUND, encounter.round))
    await store.bulk_set(encounter, updates)
    logger.info("Reset %d participants of encounter %s", len(encounter.participants), encounter.encounter_id)

