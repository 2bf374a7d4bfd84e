"""Phase view builder for clients."""

from __future__ import annotations

from typing import Any

from phasetracker.backend.engagement import groups_from_records
from phasetracker.backend.models import PHASES, Encounter, Phase
from phasetracker.backend.state import group_records, read_encounter
from phasetracker.backend.store import AssignmentStore


def build_phase_view(store: AssignmentStore, encounter: Encounter) -> dict[str, Any]:
    """Return the JSON-ready grouping: phases in display order, then engagements."""
    records = read_encounter(store, encounter)
    grouped = group_records(encounter, records)
    phases: list[dict[str, Any]] = []
    for config in PHASES:
        members = grouped[Phase(config["id"])]
        phases.append(
            {
                **config,
                "count": len(members),
                "participants": [
                    {
                        "id": member.participant_id,
                        "name": member.name,
                        "flags": records[member.participant_id].to_flags(),
                    }
                    for member in members
                ],
            }
        )

    return {
        "encounterId": encounter.encounter_id,
        "name": encounter.name,
        "round": encounter.round,
        "phases": phases,
        "engagements": [
            {"groupId": group_id, "members": [member.participant_id for member in members]}
            for group_id, members in groups_from_records(encounter, records).items()
        ],
    }
