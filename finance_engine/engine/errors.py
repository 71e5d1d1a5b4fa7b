"""
Engine Exceptions

Storage (NotFoundError, ConcurrencyError) and ledger (LedgerError) failures
keep their own hierarchies. These cover requests the engine refuses on
its own account.
"""


class EngineError(Exception):
    """Base exception for engine-level refusals."""
    pass


class AutoTrackingDisabledError(EngineError):
    """Auto recalculation requested for a goal that is not auto-tracked."""
    pass


class RolloverDisabledError(EngineError):
    """Rollover requested for a budget that does not allow it."""
    pass


class InvalidStateError(EngineError):
    """The entity is not in a state that allows the requested action."""
    pass


class OccurrenceClaimedError(EngineError):
    """Another worker holds the processing claim on this occurrence."""
    pass
