"""Tri-state operation results.

A mutating operation either changed state, found nothing to do, or failed.
Callers use the distinction to skip persistence and re-rendering. A CHANGED
result may still carry an error: the change was applied but could not be
persisted.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .errors import PlexBookError


class Outcome(str, Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationResult:
    outcome: Outcome
    value: Any = None
    error: Optional[PlexBookError] = None

    @classmethod
    def changed(cls, value: Any = None, error: Optional[PlexBookError] = None) -> "OperationResult":
        return cls(Outcome.CHANGED, value, error)

    @classmethod
    def unchanged(cls, value: Any = None) -> "OperationResult":
        return cls(Outcome.UNCHANGED, value)

    @classmethod
    def failed(cls, error: PlexBookError) -> "OperationResult":
        return cls(Outcome.FAILED, error=error)

    @property
    def is_changed(self) -> bool:
        return self.outcome is Outcome.CHANGED

    @property
    def is_unchanged(self) -> bool:
        return self.outcome is Outcome.UNCHANGED

    @property
    def is_failed(self) -> bool:
        return self.outcome is Outcome.FAILED

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILED

    def __str__(self) -> str:
        if self.error is not None:
            return f"OperationResult({self.outcome.value}: {type(self.error).__name__}: {self.error})"
        return f"OperationResult({self.outcome.value})"
