"""Failure types raised by tracker operations."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for every failure reported by the tracker core."""


class NotFound(TrackerError):
    """Unknown encounter, participant, phase or group reference."""


class InvalidState(TrackerError):
    """A transition was requested while its preconditions do not hold."""


class StoreFailure(TrackerError):
    """The flag store could not read or persist a value."""
