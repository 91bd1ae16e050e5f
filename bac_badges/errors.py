"""Error taxonomy for the BAC and badge engine."""


class BadgeEngineError(Exception):
    """Base class for errors raised by the engine."""


class InvalidProfile(BadgeEngineError, ValueError):
    """Profile cannot be used for BAC estimation (bad weight or gender)."""


class UnknownMetric(BadgeEngineError, KeyError):
    """Criteria referenced a metric that is not in the catalog."""

    def __init__(self, metric: str):
        super().__init__(metric)
        self.metric = metric

    def __str__(self) -> str:
        return f"Unknown metric: {self.metric}"


class MissingSessionContext(BadgeEngineError):
    """A session-scoped metric or badge was used without a session id."""


class InvalidCriteria(BadgeEngineError, ValueError):
    """Criteria document is malformed (operator, timeframe or value)."""


class PersistenceFailure(BadgeEngineError):
    """The persistence collaborator failed to answer or to write."""
