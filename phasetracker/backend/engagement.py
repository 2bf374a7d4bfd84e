"""Melee engagement groups and attacker/defender roles.

A group is not stored anywhere; it is the set of melee participants sharing
an ``engagementGroupId``. Only groups with at least two melee members count
as engaged. A participant left alone in a group by ``disengage`` keeps its
stale reference until the next ``engage`` sweeps it.
"""

from __future__ import annotations

import logging
from typing import Any
import uuid

from phasetracker.backend.errors import InvalidState, NotFound
from phasetracker.backend.models import AssignmentRecord, Encounter, MeleeRole, Participant, Phase, TransitionResult
from phasetracker.backend.ordering import sort_by_roll
from phasetracker.backend.state import read_encounter, write_engagement
from phasetracker.backend.store import AssignmentStore
from phasetracker.backend.transitions import require_participant

logger = logging.getLogger(__name__)


def _members(encounter: Encounter, records: dict[str, AssignmentRecord], group_id: str | None) -> list[str]:
    if group_id is None:
        return []
    return [
        p.participant_id
        for p in encounter.participants
        if records[p.participant_id].phase == Phase.MELEE and records[p.participant_id].engagement_group_id == group_id
    ]


def _active_group(encounter: Encounter, records: dict[str, AssignmentRecord], participant_id: str) -> str | None:
    """Group id of ``participant_id`` if that group still has two melee members."""
    group_id = records[participant_id].engagement_group_id
    if records[participant_id].phase != Phase.MELEE or len(_members(encounter, records, group_id)) < 2:
        return None
    return group_id


def _require_melee(encounter: Encounter, records: dict[str, AssignmentRecord], participant_id: Any) -> str:
    participant = require_participant(encounter, participant_id)
    if records[participant.participant_id].phase != Phase.MELEE:
        raise InvalidState(f"Participant {participant.participant_id} is not in the melee phase")
    return participant.participant_id


async def _release(store: AssignmentStore, participant_id: str, group_id: str | None, events: list[dict[str, Any]]) -> None:
    await write_engagement(store, participant_id, None, None)
    events.append({"kind": "engagement_released", "participantId": participant_id, "groupId": group_id})


async def _leave_previous_group(
    store: AssignmentStore,
    encounter: Encounter,
    records: dict[str, AssignmentRecord],
    participant_id: str,
    keep: set[str],
    events: list[dict[str, Any]],
) -> None:
    # A 1v1 cannot shrink to a single dangling reference.
    old_group = _active_group(encounter, records, participant_id)
    if old_group is None:
        return
    others = [pid for pid in _members(encounter, records, old_group) if pid != participant_id and pid not in keep]
    if len(others) == 1 and len(_members(encounter, records, old_group)) == 2:
        await _release(store, others[0], old_group, events)


async def _sweep_stale_groups(
    store: AssignmentStore,
    encounter: Encounter,
    records: dict[str, AssignmentRecord],
    events: list[dict[str, Any]],
) -> None:
    for participant in encounter.participants:
        record = records[participant.participant_id]
        if record.phase != Phase.MELEE or record.engagement_group_id is None:
            continue
        if len(_members(encounter, records, record.engagement_group_id)) == 1:
            await _release(store, participant.participant_id, record.engagement_group_id, events)


def engagement_groups(store: AssignmentStore, encounter: Encounter) -> dict[str, list[Participant]]:
    """Return engaged groups with at least two melee members, in encounter order."""
    return groups_from_records(encounter, read_encounter(store, encounter))


def groups_from_records(encounter: Encounter, records: dict[str, AssignmentRecord]) -> dict[str, list[Participant]]:
    groups: dict[str, list[Participant]] = {}
    for participant in encounter.participants:
        record = records[participant.participant_id]
        if record.phase == Phase.MELEE and record.engagement_group_id is not None:
            groups.setdefault(record.engagement_group_id, []).append(participant)
    return {group_id: members for group_id, members in groups.items() if len(members) >= 2}


async def engage(store: AssignmentStore, encounter: Encounter, initiator_id: str, target_id: str) -> TransitionResult:
    """Engage ``initiator_id`` with ``target_id``, joining the target's group if it has one."""
    records = read_encounter(store, encounter)
    initiator = _require_melee(encounter, records, initiator_id)
    target = _require_melee(encounter, records, target_id)
    if initiator == target:
        raise InvalidState("A participant cannot engage itself")
    target_group = _active_group(encounter, records, target)
    if target_group is not None and _active_group(encounter, records, initiator) == target_group:
        raise InvalidState(f"Participants {initiator} and {target} are already engaged")

    events: list[dict[str, Any]] = []
    await _sweep_stale_groups(store, encounter, records, events)

    if target_group is not None:
        result = await join_group(store, encounter, initiator, target_group)
    else:
        result = await form_group(store, encounter, [initiator, target])
    changed = tuple(dict.fromkeys([event["participantId"] for event in events] + list(result.changed)))
    return TransitionResult(changed=changed, events=events + result.events)


async def form_group(store: AssignmentStore, encounter: Encounter, member_ids: list[str]) -> TransitionResult:
    """Create a fresh group; the highest reaction roll attacks, everyone else defends."""
    records = read_encounter(store, encounter)
    members = list(dict.fromkeys(_require_melee(encounter, records, pid) for pid in member_ids))
    if len(members) < 2:
        raise InvalidState("An engagement group needs at least two members")

    events: list[dict[str, Any]] = []
    for member in members:
        await _leave_previous_group(store, encounter, records, member, set(members), events)

    by_position = sorted(members, key=encounter.position)
    ranked = sort_by_roll((records[pid].reaction_roll, pid) for pid in by_position)
    group_id = uuid.uuid4().hex
    for index, member in enumerate(ranked):
        role = MeleeRole.ATTACKER if index == 0 else MeleeRole.DEFENDER
        await write_engagement(store, member, group_id, role)

    events.append({"kind": "group_formed", "groupId": group_id, "attacker": ranked[0], "defenders": ranked[1:]})
    logger.info("Formed engagement group %s with %s", group_id, ", ".join(ranked))
    changed = tuple(dict.fromkeys([event["participantId"] for event in events[:-1]] + ranked))
    return TransitionResult(changed=changed, events=events)


async def join_group(store: AssignmentStore, encounter: Encounter, joiner_id: str, group_id: str) -> TransitionResult:
    """Add ``joiner_id`` to ``group_id`` as attacker; incumbents become defenders."""
    records = read_encounter(store, encounter)
    joiner = _require_melee(encounter, records, joiner_id)
    if records[joiner].engagement_group_id == group_id:
        raise InvalidState(f"Participant {joiner} already belongs to group {group_id}")
    incumbents = _members(encounter, records, group_id)
    if not incumbents:
        raise NotFound(f"Unknown engagement group {group_id}")

    events: list[dict[str, Any]] = []
    await _leave_previous_group(store, encounter, records, joiner, set(), events)

    await write_engagement(store, joiner, group_id, MeleeRole.ATTACKER)
    for member in incumbents:
        await write_engagement(store, member, group_id, MeleeRole.DEFENDER)

    events.append({"kind": "group_joined", "groupId": group_id, "participantId": joiner, "defenders": incumbents})
    logger.info("Participant %s joined engagement group %s as attacker", joiner, group_id)
    changed = tuple(dict.fromkeys([event["participantId"] for event in events] + incumbents))
    return TransitionResult(changed=changed, events=events)


async def toggle_role(store: AssignmentStore, encounter: Encounter, participant_id: str) -> TransitionResult:
    """Flip attacker/defender; in a 1v1 the opponent flips as well."""
    records = read_encounter(store, encounter)
    participant = _require_melee(encounter, records, participant_id)
    current = records[participant].melee_role
    if current is None:
        raise InvalidState(f"Participant {participant} has no melee role to toggle")

    group_id = records[participant].engagement_group_id
    new_role = current.flipped()
    await write_engagement(store, participant, group_id, new_role)
    changed = [participant]

    members = _members(encounter, records, group_id)
    if len(members) == 2 and participant in members:
        other = next(pid for pid in members if pid != participant)
        await write_engagement(store, other, group_id, new_role.flipped())
        changed.append(other)

    logger.info("Toggled melee role of %s to %s", participant, new_role.value)
    return TransitionResult(
        changed=tuple(changed),
        events=[{"kind": "role_toggled", "participantId": participant, "role": new_role.value, "changed": changed}],
    )


async def disengage(store: AssignmentStore, encounter: Encounter, participant_id: str) -> TransitionResult:
    """Drop one participant out of its group; the rest of the group is left as is."""
    records = read_encounter(store, encounter)
    participant = _require_melee(encounter, records, participant_id)
    group_id = records[participant].engagement_group_id
    if group_id is None:
        raise InvalidState(f"Participant {participant} is not engaged")

    await write_engagement(store, participant, None, None)
    logger.info("Participant %s left engagement group %s", participant, group_id)
    return TransitionResult(
        changed=(participant,),
        events=[{"kind": "disengaged", "participantId": participant, "groupId": group_id}],
    )
