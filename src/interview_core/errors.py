"""Exception hierarchy for the interview engine."""


class InterviewError(Exception):
    """Base class for all interview engine errors."""
    pass


class GuardContractError(InterviewError, TypeError):
    """Raised when a navigation guard returns something other than True, False or FORCE."""
    pass


class ProtocolError(InterviewError, ValueError):
    """Raised when protocol input cannot be turned into model objects."""
    pass


class SessionError(InterviewError):
    """Raised when a session operation cannot be applied safely."""
    pass


class ConfigError(InterviewError, ValueError):
    """Raised when settings cannot be loaded."""
    pass
