"""Registration and resolution errors raised by the task graph kernel."""

from __future__ import annotations

from typing import Iterable


class TaskGraphError(Exception):
    """Base class for task graph construction/resolution problems."""


class UnknownTaskError(TaskGraphError, LookupError):
    def __init__(
        self,
        name: str,
        *,
        referenced_by: str | None = None,
        suggestions: Iterable[str] = (),
    ) -> None:
        self.name = name
        self.referenced_by = referenced_by
        self.suggestions = tuple(suggestions)

        message = f"Unknown task: {name!r}"
        if referenced_by:
            message += f" (referenced by {referenced_by!r})"
        if self.suggestions:
            message += f"; did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)


class DuplicateTaskError(TaskGraphError, ValueError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Duplicate task name: {name!r}")


class TaskCycleError(TaskGraphError, ValueError):
    def __init__(self, cycle: Iterable[str]) -> None:
        self.cycle = tuple(cycle)
        super().__init__("Task reference cycle: " + " -> ".join(self.cycle))
