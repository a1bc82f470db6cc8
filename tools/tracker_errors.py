"""
Tracker Error Types — the small set of failures that reach callers.

Bad input is coerced, unknown ids are no-ops, and ambiguous skill checks
are abstentions; none of those raise. A failed save is the one thing a
caller must hear about, because silently losing a write is not acceptable.
"""


class TrackerError(Exception):
    """Base class for all tracker errors."""
    pass


class PersistenceError(TrackerError):
    """The state backend failed to load or save. Retrying save is safe."""
    pass


class BackendNotConnectedError(PersistenceError):
    """The backend was used before connect() succeeded."""
    pass
