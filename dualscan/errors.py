"""Exception types."""


class DualscanError(Exception):
    """Base class for engine errors."""
    pass


class SessionError(DualscanError):
    """The session cannot start at all, e.g. the file list is unusable."""
    pass


class StrategyError(DualscanError):
    """A detection strategy raised while analyzing a unit."""

    def __init__(self, rule_id: str, source: str, cause: Exception):
        self.rule_id = rule_id
        self.source = source
        self.cause = cause
        super().__init__(f"{source} strategy of {rule_id} failed: {type(cause).__name__}: {cause}")
