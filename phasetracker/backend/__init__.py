"""Backend package for the phase tracker."""

from .config import TrackerSettings, configure_logging, load_settings
from .errors import InvalidState, NotFound, StoreFailure, TrackerError
from .models import AssignmentRecord, Encounter, MeleeRole, Participant, Phase
from .store import AssignmentStore, InMemoryTrackerStore, PostgresTrackerStore, create_store

__all__ = [
    "AssignmentRecord",
    "AssignmentStore",
    "configure_logging",
    "create_store",
    "Encounter",
    "InMemoryTrackerStore",
    "InvalidState",
    "load_settings",
    "MeleeRole",
    "NotFound",
    "Participant",
    "Phase",
    "PostgresTrackerStore",
    "StoreFailure",
    "TrackerError",
    "TrackerSettings",
]
