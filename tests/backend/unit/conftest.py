from collections.abc import Callable
from typing import Any

import pytest

from phasetracker.backend.models import Encounter, Participant
from phasetracker.backend.store import InMemoryTrackerStore


@pytest.fixture
def store() -> InMemoryTrackerStore:
    return InMemoryTrackerStore(server_salt="test-salt")


@pytest.fixture
def make_encounter() -> Callable[..., Encounter]:
    def _make(*participant_ids: str, round_number: int = 1) -> Encounter:
        return Encounter(
            encounter_id="enc-1",
            name="Skirmish",
            round=round_number,
            participants=tuple(Participant(participant_id=pid, name=pid.upper()) for pid in participant_ids),
        )

    return _make


@pytest.fixture
def seed(store: InMemoryTrackerStore) -> Callable[..., None]:
    def _seed(participant_id: str, **flags: Any) -> None:
        for key, value in flags.items():
            store._write_flag(participant_id, key, value)

    return _seed
