"""Domain models for phase assignments, encounters and API contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Phase(str, Enum):
    RANGED = "ranged"
    MELEE = "melee"
    MYSTIC = "mystic"
    NONE = "none"


class MeleeRole(str, Enum):
    ATTACKER = "attacker"
    DEFENDER = "defender"

    def flipped(self) -> "MeleeRole":
        if self is MeleeRole.ATTACKER:
            return MeleeRole.DEFENDER
        return MeleeRole.ATTACKER


# Display order of the phases; grouping and views iterate in this order.
PHASE_ORDER: tuple[Phase, ...] = (Phase.RANGED, Phase.MELEE, Phase.MYSTIC, Phase.NONE)

PHASES: tuple[dict[str, str], ...] = (
    {"id": Phase.RANGED.value, "label": "Avståndsfasen", "icon": "fa-bow-arrow"},
    {"id": Phase.MELEE.value, "label": "Närstridsfasen", "icon": "fa-swords"},
    {"id": Phase.MYSTIC.value, "label": "Mystikfasen", "icon": "fa-sparkles"},
    {"id": Phase.NONE.value, "label": "Ej aktiv", "icon": "fa-user-clock"},
)

# Flag keys as persisted per participant.
FLAG_PHASE = "phase"
FLAG_ORDER = "order"
FLAG_ROUND = "round"
FLAG_MELEE_ROLE = "meleeRole"
FLAG_GROUP_ID = "engagementGroupId"
FLAG_REACTION_ROLL = "reactionRoll"


@dataclass(frozen=True)
class AssignmentRecord:
    phase: Phase = Phase.NONE
    order: float = 0
    round: int = 0
    melee_role: MeleeRole | None = None
    engagement_group_id: str | None = None
    reaction_roll: float | None = None

    @property
    def is_engaged(self) -> bool:
        return self.engagement_group_id is not None

    def to_flags(self) -> dict[str, Any]:
        """Serialise to the camelCase flag map used by stores and the API."""
        return {
            FLAG_PHASE: self.phase.value,
            FLAG_ORDER: self.order,
            FLAG_ROUND: self.round,
            FLAG_MELEE_ROLE: self.melee_role.value if self.melee_role is not None else None,
            FLAG_GROUP_ID: self.engagement_group_id,
            FLAG_REACTION_ROLL: self.reaction_roll,
        }


DEFAULT_RECORD = AssignmentRecord()


@dataclass(frozen=True)
class Participant:
    participant_id: str
    name: str


@dataclass(frozen=True)
class Encounter:
    encounter_id: str
    name: str
    round: int = 0
    participants: tuple[Participant, ...] = ()

    def find(self, participant_id: str) -> Participant | None:
        for participant in self.participants:
            if participant.participant_id == participant_id:
                return participant
        return None

    def position(self, participant_id: str) -> int:
        for index, participant in enumerate(self.participants):
            if participant.participant_id == participant_id:
                return index
        return len(self.participants)


@dataclass(frozen=True)
class FlagUpdate:
    participant_id: str
    field: str
    value: Any


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a successful mutation: touched participants plus log events."""

    changed: tuple[str, ...] = ()
    events: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class EncounterAccess:
    encounter: Encounter
    role: str


@dataclass(frozen=True)
class CreatedEncounter:
    encounter_id: str
    host_token: str
    player_token: str
