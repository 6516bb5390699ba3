"""Engine primitives for building and running named task graphs."""

from taskkit.engine.tasks import (
    Action,
    DefaultTaskRecorder,
    NullTaskRecorder,
    Parallel,
    Series,
    Task,
    TaskContext,
    TaskKind,
    TaskOutcome,
    TaskRecorder,
    TaskRef,
    TaskRunner,
    as_task,
    format_duration,
    iter_refs,
    parallel,
    series,
    utc_now_iso8601,
)

__all__ = [
    "Action",
    "DefaultTaskRecorder",
    "NullTaskRecorder",
    "Parallel",
    "Series",
    "Task",
    "TaskContext",
    "TaskKind",
    "TaskOutcome",
    "TaskRecorder",
    "TaskRef",
    "TaskRunner",
    "as_task",
    "format_duration",
    "iter_refs",
    "parallel",
    "series",
    "utc_now_iso8601",
]
