import pytest

from phasetracker.backend.errors import NotFound
from phasetracker.backend.models import MeleeRole, Phase
from phasetracker.backend.reactions import record_reaction, roll_reaction, sort_phase_by_reaction
from phasetracker.backend.state import group_by_phase, read_assignment


class _FixedRoller:
    def __init__(self, result):
        self.result = result
        self.calls: list[str] = []

    async def roll_for(self, participant):
        self.calls.append(participant.participant_id)
        return self.result


@pytest.mark.asyncio
async def test_record_reaction_stores_value(store, make_encounter) -> None:
    encounter = make_encounter("a")

    result = await record_reaction(store, encounter, "a", 12)

    assert read_assignment(store, "a").reaction_roll == 12
    assert result.events[0]["kind"] == "reaction_recorded"


@pytest.mark.asyncio
async def test_record_reaction_rejects_unknown_participant(store, make_encounter) -> None:
    with pytest.raises(NotFound):
        await record_reaction(store, make_encounter("a"), "b", 3)


@pytest.mark.asyncio
async def test_roll_reaction_stores_roller_result(store, make_encounter) -> None:
    roller = _FixedRoller(9)

    total = await roll_reaction(store, make_encounter("a"), "a", roller)

    assert total == 9
    assert roller.calls == ["a"]
    assert read_assignment(store, "a").reaction_roll == 9


@pytest.mark.asyncio
async def test_roll_reaction_without_result_keeps_previous_value(store, seed, make_encounter) -> None:
    seed("a", reactionRoll=5)

    total = await roll_reaction(store, make_encounter("a"), "a", _FixedRoller(None))

    assert total is None
    assert read_assignment(store, "a").reaction_roll == 5


@pytest.mark.asyncio
async def test_sort_phase_by_reaction_puts_highest_first(store, seed, make_encounter) -> None:
    encounter = make_encounter("a", "b", "c", "d", round_number=3)
    seed("a", phase="ranged", order=100, reactionRoll=4)
    seed("b", phase="ranged", order=200, reactionRoll=10)
    seed("c", phase="ranged", order=300)
    seed("d", phase="mystic", order=50, reactionRoll=20)

    result = await sort_phase_by_reaction(store, encounter, "ranged")

    assert [p.participant_id for p in group_by_phase(store, encounter)[Phase.RANGED]] == ["b", "a", "c"]
    assert read_assignment(store, "b").order == 1000
    assert read_assignment(store, "c").order == 3000
    assert read_assignment(store, "d").order == 50
    assert result.changed == ("b", "a", "c")


@pytest.mark.asyncio
async def test_sort_phase_by_reaction_keeps_engagement(store, seed, make_encounter) -> None:
    encounter = make_encounter("a", "b")
    seed("a", phase="melee", order=100, reactionRoll=1, meleeRole="attacker", engagementGroupId="g1")
    seed("b", phase="melee", order=200, reactionRoll=1, meleeRole="defender", engagementGroupId="g1")

    await sort_phase_by_reaction(store, encounter, Phase.MELEE)

    assert read_assignment(store, "a").melee_role is MeleeRole.ATTACKER
    assert read_assignment(store, "b").engagement_group_id == "g1"
    assert [p.participant_id for p in group_by_phase(store, encounter)[Phase.MELEE]] == ["a", "b"]
