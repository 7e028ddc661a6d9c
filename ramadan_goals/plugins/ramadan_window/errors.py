"""
Errors raised while resolving the Ramadan window.
"""


class RamadanWindowError(Exception):
    """Base class; str(error) is the user-facing message."""


class ValidationError(RamadanWindowError):
    """A start/end pair is malformed or does not span a lunar month."""


class ResolverError(RamadanWindowError):
    """AlAdhan was unreachable, answered with an error, or returned unusable dates."""
