"""Exception types for the edge router.

Match failures are never exceptions; only configuration mistakes and
programming errors in middleware composition are raised from the core.
"""


class ConfigurationError(ValueError):
    """Raised when a rule or pattern cannot be compiled."""


class PatternError(ConfigurationError):
    """Raised when a host or path pattern is malformed.

    Attributes:
        pattern: The offending pattern text
        reason: Human readable description of the problem
    """

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")


class MiddlewareChainError(RuntimeError):
    """Raised when a link calls the continuation past the end of its chain."""
