"""Phase assignment and reordering."""

from __future__ import annotations

import logging
from typing import Any

from phasetracker.backend.errors import NotFound
from phasetracker.backend.models import Encounter, Participant, Phase, TransitionResult
from phasetracker.backend.ordering import insertion_order
from phasetracker.backend.state import group_records, read_encounter, write_assignment, write_engagement
from phasetracker.backend.store import AssignmentStore

logger = logging.getLogger(__name__)


def require_participant(encounter: Encounter, participant_id: Any) -> Participant:
    participant = encounter.find(participant_id) if isinstance(participant_id, str) else None
    if participant is None:
        raise NotFound(f"Unknown participant {participant_id!r} in encounter {encounter.encounter_id}")
    return participant


def parse_phase(value: Any) -> Phase:
    try:
        return Phase(value)
    except ValueError as exc:
        raise NotFound(f"Unknown phase {value!r}") from exc


async def assign_phase(
    store: AssignmentStore,
    encounter: Encounter,
    participant_id: str,
    target_phase: Phase | str,
    target_index: int,
    round_number: int | None = None,
) -> TransitionResult:
    """Place a participant at ``target_index`` of ``target_phase``.

    The index refers to the phase as currently displayed, the moving
    participant included. Changing phase severs any engagement; reordering
    inside the same phase keeps it.
    """
    participant = require_participant(encounter, participant_id)
    phase = parse_phase(target_phase)
    if round_number is None:
        round_number = encounter.round

    records = read_encounter(store, encounter)
    previous = records[participant.participant_id]
    members = group_records(encounter, records)[phase]
    order = insertion_order([records[m.participant_id].order for m in members], target_index)

    await write_assignment(store, participant.participant_id, phase, order, round_number)

    events: list[dict[str, Any]] = [
        {
            "kind": "phase_assigned",
            "participantId": participant.participant_id,
            "from": previous.phase.value,
            "to": phase.value,
            "order": order,
            "round": round_number,
        }
    ]
    if previous.phase != phase:
        await write_engagement(store, participant.participant_id, None, None)
        if previous.is_engaged or previous.melee_role is not None:
            events.append(
                {
                    "kind": "engagement_cleared",
                    "participantId": participant.participant_id,
                    "groupId": previous.engagement_group_id,
                }
            )

    logger.info(
        "Assigned %s to %s at order %s (round %s)", participant.participant_id, phase.value, order, round_number
    )
    return TransitionResult(changed=(participant.participant_id,), events=events)
