import pytest

from phasetracker.backend.engine import apply_tracker_action
from phasetracker.backend.errors import InvalidState, NotFound
from phasetracker.backend.models import MeleeRole, Phase
from phasetracker.backend.state import read_assignment


def _encounter_with(store, *names):
    created = store.create_encounter(name="Bridge", host_token="host-1", player_token="player-1")
    for name in names:
        store.add_participant(created.encounter_id, name)
    return store.get_encounter_access(created.encounter_id, "host-1").encounter


@pytest.mark.asyncio
async def test_assign_phase_action_defaults_to_end_of_phase(store) -> None:
    encounter = _encounter_with(store, "Alva", "Bror")
    alva, bror = (p.participant_id for p in encounter.participants)

    await apply_tracker_action(store, encounter, {"type": "ASSIGN_PHASE", "participantId": alva, "phase": "melee"})
    result = await apply_tracker_action(
        store, encounter, {"type": "assign_phase", "participantId": bror, "phase": "melee"}
    )

    assert read_assignment(store, alva).order == 1000
    assert read_assignment(store, bror).order == 2000
    assert read_assignment(store, bror).round == 1
    assert result.engine_events[0]["kind"] == "phase_assigned"
    assert result.engine_events[0]["action"]["participantId"] == bror


@pytest.mark.asyncio
async def test_assign_phase_action_rejects_non_integer_index(store) -> None:
    encounter = _encounter_with(store, "Alva")
    alva = encounter.participants[0].participant_id

    with pytest.raises(InvalidState):
        await apply_tracker_action(
            store, encounter, {"type": "ASSIGN_PHASE", "participantId": alva, "phase": "melee", "index": "1"}
        )


@pytest.mark.asyncio
async def test_engage_toggle_and_disengage_actions(store) -> None:
    encounter = _encounter_with(store, "Alva", "Bror")
    alva, bror = (p.participant_id for p in encounter.participants)
    for pid in (alva, bror):
        await apply_tracker_action(store, encounter, {"type": "ASSIGN_PHASE", "participantId": pid, "phase": "melee"})
    await apply_tracker_action(store, encounter, {"type": "RECORD_REACTION", "participantId": bror, "value": 14})

    await apply_tracker_action(store, encounter, {"type": "ENGAGE", "participantId": alva, "targetId": bror})
    assert read_assignment(store, bror).melee_role is MeleeRole.ATTACKER

    await apply_tracker_action(store, encounter, {"type": "TOGGLE_ROLE", "participantId": bror})
    assert read_assignment(store, alva).melee_role is MeleeRole.ATTACKER
    assert read_assignment(store, bror).melee_role is MeleeRole.DEFENDER

    result = await apply_tracker_action(store, encounter, {"type": "DISENGAGE", "participantId": alva})
    assert read_assignment(store, alva).engagement_group_id is None
    assert result.engine_events[0]["kind"] == "disengaged"


@pytest.mark.asyncio
async def test_join_group_action(store) -> None:
    encounter = _encounter_with(store, "Alva", "Bror", "Cilla")
    alva, bror, cilla = (p.participant_id for p in encounter.participants)
    for pid in (alva, bror, cilla):
        await apply_tracker_action(store, encounter, {"type": "ASSIGN_PHASE", "participantId": pid, "phase": "melee"})
    await apply_tracker_action(store, encounter, {"type": "ENGAGE", "participantId": alva, "targetId": bror})
    group_id = read_assignment(store, alva).engagement_group_id

    await apply_tracker_action(store, encounter, {"type": "JOIN_GROUP", "participantId": cilla, "groupId": group_id})

    assert read_assignment(store, cilla).melee_role is MeleeRole.ATTACKER
    assert read_assignment(store, alva).melee_role is MeleeRole.DEFENDER


@pytest.mark.asyncio
async def test_record_reaction_action_requires_number(store) -> None:
    encounter = _encounter_with(store, "Alva")
    alva = encounter.participants[0].participant_id

    with pytest.raises(InvalidState):
        await apply_tracker_action(store, encounter, {"type": "RECORD_REACTION", "participantId": alva, "value": "9"})


@pytest.mark.asyncio
async def test_engage_action_with_missing_target_reports_not_found(store) -> None:
    encounter = _encounter_with(store, "Alva")
    alva = encounter.participants[0].participant_id
    await apply_tracker_action(store, encounter, {"type": "ASSIGN_PHASE", "participantId": alva, "phase": "melee"})

    with pytest.raises(NotFound):
        await apply_tracker_action(store, encounter, {"type": "ENGAGE", "participantId": alva})


@pytest.mark.asyncio
async def test_sort_and_reset_actions(store) -> None:
    encounter = _encounter_with(store, "Alva", "Bror")
    alva, bror = (p.participant_id for p in encounter.participants)
    for pid in (alva, bror):
        await apply_tracker_action(store, encounter, {"type": "ASSIGN_PHASE", "participantId": pid, "phase": "ranged"})
    await apply_tracker_action(store, encounter, {"type": "RECORD_REACTION", "participantId": bror, "value": 6})

    await apply_tracker_action(store, encounter, {"type": "SORT_BY_REACTION", "phase": "ranged"})
    assert read_assignment(store, bror).order < read_assignment(store, alva).order

    result = await apply_tracker_action(store, encounter, {"type": "RESET_ALL"})
    assert read_assignment(store, alva).phase is Phase.NONE
    assert result.engine_events[0]["kind"] == "phases_reset"


@pytest.mark.asyncio
async def test_next_round_advances_and_optionally_clears(store) -> None:
    encounter = _encounter_with(store, "Alva")
    alva = encounter.participants[0].participant_id
    await apply_tracker_action(store, encounter, {"type": "ASSIGN_PHASE", "participantId": alva, "phase": "mystic"})

    kept = await apply_tracker_action(store, encounter, {"type": "NEXT_ROUND"})
    assert kept.encounter.round == 2
    assert read_assignment(store, alva).phase is Phase.MYSTIC
    assert [event["timing"] for event in kept.engine_events] == ["round_end", "round_start"]

    cleared = await apply_tracker_action(
        store, kept.encounter, {"type": "NEXT_ROUND"}, clear_on_round_advance=True
    )
    assert cleared.encounter.round == 3
    record = read_assignment(store, alva)
    assert record.phase is Phase.NONE
    assert record.round == 3
    assert cleared.engine_events[-1]["kind"] == "phases_reset"


@pytest.mark.asyncio
async def test_unknown_action_is_ignored(store) -> None:
    encounter = _encounter_with(store, "Alva")

    result = await apply_tracker_action(store, encounter, {"type": "DANCE"})

    assert result.encounter == encounter
    assert result.engine_events == []


class _FixedRoller:
    def __init__(self, result):
        self.result = result

    async def roll_for(self, participant):
        return self.result


@pytest.mark.asyncio
async def test_roll_reaction_action_stores_rolled_value(store) -> None:
    encounter = _encounter_with(store, "Alva")
    alva = encounter.participants[0].participant_id

    result = await apply_tracker_action(
        store, encounter, {"type": "ROLL_REACTION", "participantId": alva}, roller=_FixedRoller(13)
    )

    assert read_assignment(store, alva).reaction_roll == 13
    assert result.engine_events[0]["kind"] == "reaction_rolled"
    assert result.engine_events[0]["value"] == 13


@pytest.mark.asyncio
async def test_roll_reaction_action_without_roller_is_rejected(store) -> None:
    encounter = _encounter_with(store, "Alva")
    alva = encounter.participants[0].participant_id

    with pytest.raises(InvalidState):
        await apply_tracker_action(store, encounter, {"type": "ROLL_REACTION", "participantId": alva})
