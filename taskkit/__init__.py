"""Reusable task-graph kernel (series/parallel composition + named registry).

This package is intentionally independent of `epub_build.*`. Anything specific to
building e-book packages (stages, transforms, paths, preview/watch wiring) must
live in the consuming application.
"""

from taskkit.config_namespace import ConfigNamespace
from taskkit.engine.tasks import (
    Action,
    DefaultTaskRecorder,
    NullTaskRecorder,
    Parallel,
    Series,
    Task,
    TaskContext,
    TaskOutcome,
    TaskRecorder,
    TaskRef,
    TaskRunner,
    parallel,
    series,
    utc_now_iso8601,
)
from taskkit.errors import DuplicateTaskError, TaskCycleError, TaskGraphError, UnknownTaskError
from taskkit.registry import TaskRegistry

__all__ = [
    "Action",
    "ConfigNamespace",
    "DefaultTaskRecorder",
    "DuplicateTaskError",
    "NullTaskRecorder",
    "Parallel",
    "Series",
    "Task",
    "TaskContext",
    "TaskCycleError",
    "TaskGraphError",
    "TaskOutcome",
    "TaskRecorder",
    "TaskRef",
    "TaskRegistry",
    "TaskRunner",
    "UnknownTaskError",
    "parallel",
    "series",
    "utc_now_iso8601",
]
