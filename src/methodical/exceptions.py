"""Exceptions raised by methodical."""


class MethodicalError(Exception):
    """Base class for methodical errors."""


class DimensionMismatch(MethodicalError, ValueError):
    """Paired tables (or arrays) do not share the expected dimensions."""


class InvalidMethod(MethodicalError, ValueError):
    """Unrecognized correlation or p-value adjustment method."""


class NoSitesInWindow(MethodicalError):
    """No methylation sites fall within the window around an anchor.

    Not fatal for a batch: the anchor is reported and skipped.
    """


class InsufficientSamples(MethodicalError):
    """Fewer than three samples are shared by the methylation matrix and a feature."""
