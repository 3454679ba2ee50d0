"""Exceptions raised by the planner engine."""
from __future__ import annotations


class PlannerError(Exception):
    pass


class StoreError(PlannerError):
    """A read or write against the record store failed."""


class UnknownTaskError(PlannerError, KeyError):
    """The id is not in the working set (or names a template that is not loaded)."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class ValidationError(PlannerError, ValueError):
    """Fields passed to create/update are unknown, not editable, or inconsistent."""
