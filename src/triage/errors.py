"""Exception hierarchy for the triage engine."""


class TriageError(Exception):
    """Base exception for triage errors."""

    pass


class PersistenceError(TriageError):
    """A feedback sink could not durably record an event."""

    pass


class ConfigError(TriageError):
    """Configuration could not be loaded or validated."""

    pass
