"""Error types raised by the function engine and the solver drivers."""

from __future__ import annotations


class TermoptError(Exception):
    """Base class for termopt errors."""


class InvalidArgumentError(TermoptError, ValueError):
    """A caller-supplied argument violates a registration or sizing rule."""


class NotSupportedError(TermoptError, NotImplementedError):
    """The requested evaluation mode is not available for this function."""


__all__ = ["TermoptError", "InvalidArgumentError", "NotSupportedError"]
