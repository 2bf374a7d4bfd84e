"""Reaction roll results supplied from outside the tracker."""

from __future__ import annotations

import logging
from typing import Protocol

from phasetracker.backend.models import FLAG_REACTION_ROLL, Encounter, Participant, Phase, TransitionResult
from phasetracker.backend.ordering import sort_by_roll
from phasetracker.backend.state import group_records, read_encounter, write_assignment
from phasetracker.backend.store import AssignmentStore
from phasetracker.backend.transitions import parse_phase, require_participant

logger = logging.getLogger(__name__)

ORDER_STEP = 1000


class ReactionRoller(Protocol):
    async def roll_for(self, participant: Participant) -> float | None:
        """Return a reaction result, or None when no roll could be made."""


async def record_reaction(
    store: AssignmentStore,
    encounter: Encounter,
    participant_id: str,
    value: float,
) -> TransitionResult:
    participant = require_participant(encounter, participant_id)
    await store.set(participant.participant_id, FLAG_REACTION_ROLL, float(value))
    logger.info("Recorded reaction %s for %s", value, participant.participant_id)
    return TransitionResult(
        changed=(participant.participant_id,),
        events=[{"kind": "reaction_recorded", "participantId": participant.participant_id, "value": float(value)}],
    )


async def roll_reaction(
    store: AssignmentStore,
    encounter: Encounter,
    participant_id: str,
    roller: ReactionRoller,
) -> float | None:
    """Ask ``roller`` for a result and store it; a None result leaves the record alone.

    Backs the ``ROLL_REACTION`` action when the app is created with a roller.
    """
    participant = require_participant(encounter, participant_id)
    result = await roller.roll_for(participant)
    if result is None:
        logger.warning("No reaction result available for %s", participant.participant_id)
        return None
    await record_reaction(store, encounter, participant.participant_id, result)
    return float(result)


async def sort_phase_by_reaction(store: AssignmentStore, encounter: Encounter, phase: Phase | str) -> TransitionResult:
    """Reorder one phase so the highest reaction roll comes first.

    Ties keep encounter order. Only order values change; roles and groups stay.
    """
    target = parse_phase(phase)
    records = read_encounter(store, encounter)
    members = group_records(encounter, records)[target]
    by_position = sorted(members, key=lambda member: encounter.position(member.participant_id))
    ranked = sort_by_roll((records[m.participant_id].reaction_roll, m) for m in by_position)

    for index, member in enumerate(ranked):
        await write_assignment(store, member.participant_id, target, float((index + 1) * ORDER_STEP), encounter.round)

    changed = tuple(member.participant_id for member in ranked)
    logger.info("Sorted %d participants in %s by reaction", len(ranked), target.value)
    return TransitionResult(changed=changed, events=[{"kind": "phase_sorted", "phase": target.value, "order": list(changed)}])
