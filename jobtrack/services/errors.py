from __future__ import annotations


class AnalyticsError(RuntimeError):
    pass


class NotFoundError(AnalyticsError):
    """An identifier did not resolve to a job, line item or work order."""


class InvalidInputError(AnalyticsError):
    """The request cannot be computed as given (e.g. too few jobs to compare)."""
