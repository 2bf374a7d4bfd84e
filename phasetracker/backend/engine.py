"""Action dispatch for phase and engagement changes."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from phasetracker.backend.engagement import disengage, engage, join_group, toggle_role
from phasetracker.backend.errors import InvalidState
from phasetracker.backend.models import Encounter, TransitionResult
from phasetracker.backend.reactions import ReactionRoller, record_reaction, roll_reaction, sort_phase_by_reaction
from phasetracker.backend.state import reset_all
from phasetracker.backend.store import TrackerStore
from phasetracker.backend.transitions import assign_phase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    encounter: Encounter
    engine_events: list[dict[str, Any]]


async def apply_tracker_action(
    store: TrackerStore,
    encounter: Encounter,
    action: dict[str, Any],
    clear_on_round_advance: bool = False,
    roller: ReactionRoller | None = None,
) -> ActionResult:
    """Apply one client action and return the (possibly updated) encounter plus events.

    ``ROLL_REACTION`` needs a ``roller``; without one the action is rejected.
    """
    action_type = str(action.get("type", "")).upper()
    participant_id = action.get("participantId")

    result: TransitionResult
    if action_type == "ASSIGN_PHASE":
        index = action.get("index", len(encounter.participants))
        if isinstance(index, bool) or not isinstance(index, int):
            raise InvalidState(f"Insertion index must be an integer, got {index!r}")
        result = await assign_phase(store, encounter, participant_id, action.get("phase"), index)
    elif action_type == "ENGAGE":
        result = await engage(store, encounter, participant_id, action.get("targetId"))
    elif action_type == "JOIN_GROUP":
        result = await join_group(store, encounter, participant_id, str(action.get("groupId", "")))
    elif action_type == "TOGGLE_ROLE":
        result = await toggle_role(store, encounter, participant_id)
    elif action_type == "DISENGAGE":
        result = await disengage(store, encounter, participant_id)
    elif action_type == "RECORD_REACTION":
        value = action.get("value")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidState(f"Reaction value must be numeric, got {value!r}")
        result = await record_reaction(store, encounter, participant_id, value)
    elif action_type == "ROLL_REACTION":
        if roller is None:
            raise InvalidState("No reaction roller is configured")
        rolled = await roll_reaction(store, encounter, participant_id, roller)
        result = TransitionResult(
            changed=(participant_id,) if rolled is not None else (),
            events=[{"kind": "reaction_rolled", "participantId": participant_id, "value": rolled}],
        )
    elif action_type == "SORT_BY_REACTION":
        result = await sort_phase_by_reaction(store, encounter, action.get("phase"))
    elif action_type == "RESET_ALL":
        await reset_all(store, encounter)
        result = TransitionResult(
            changed=tuple(p.participant_id for p in encounter.participants),
            events=[{"kind": "phases_reset", "round": encounter.round}],
        )
    elif action_type == "NEXT_ROUND":
        return await _apply_next_round(store, encounter, action, clear_on_round_advance)
    else:
        logger.debug("Ignoring unknown action type %r", action_type)
        return ActionResult(encounter=encounter, engine_events=[])

    return ActionResult(encounter=encounter, engine_events=[{**event, "action": action} for event in result.events])


async def _apply_next_round(
    store: TrackerStore,
    encounter: Encounter,
    action: dict[str, Any],
    clear_on_round_advance: bool,
) -> ActionResult:
    next_encounter = store.set_round(encounter.encounter_id, encounter.round + 1)
    events: list[dict[str, Any]] = [
        {"kind": "timing", "timing": "round_end", "round": encounter.round, "action": action},
        {"kind": "timing", "timing": "round_start", "round": next_encounter.round, "action": action},
    ]
    if clear_on_round_advance:
        await reset_all(store, next_encounter)
        events.append({"kind": "phases_reset", "round": next_encounter.round, "action": action})
    logger.info("Encounter %s advanced to round %d", encounter.encounter_id, next_encounter.round)
    return ActionResult(encounter=next_encounter, engine_events=events)
