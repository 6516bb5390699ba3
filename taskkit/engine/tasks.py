"""Execution engine for named task graphs (series/parallel trees of actions).

This module is intentionally app-agnostic and must not import `epub_build.*`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterator, Literal, Protocol, TypeAlias

if TYPE_CHECKING:  # pragma: no cover
    from taskkit.registry import TaskRegistry

TaskKind: TypeAlias = Literal["action", "series", "parallel"]


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class TaskContext(Protocol):
    logger: logging.Logger
    records: list[dict[str, Any]]


def _normalize_name(value: Any, *, label: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{label} must be a string (type={type(value).__name__})")
    name = value.strip()
    if not name:
        raise ValueError(f"{label} cannot be empty")
    return name


@dataclass(frozen=True)
class Action:
    """Leaf task: a side-effecting callable taking the task context.

    `fn` may be a coroutine function (awaited on the loop) or a plain callable
    (run in a worker thread; an awaitable return value is awaited).
    """

    name: str
    fn: Callable[[Any], Any]
    doc: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _normalize_name(self.name, label="Action name"))
        if not callable(self.fn):
            raise TypeError(f"Action fn must be callable (type={type(self.fn).__name__})")


@dataclass(frozen=True)
class TaskRef:
    """By-name reference to a registered task, resolved at startup."""

    name: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _normalize_name(self.name, label="Task reference"))


@dataclass(frozen=True)
class Series:
    tasks: tuple["Task", ...] = ()
    name: str | None = None

    def __post_init__(self) -> None:
        if self.name is not None:
            object.__setattr__(self, "name", _normalize_name(self.name, label="Series name"))
        object.__setattr__(self, "tasks", tuple(as_task(task) for task in self.tasks))


@dataclass(frozen=True)
class Parallel:
    tasks: tuple["Task", ...] = ()
    name: str | None = None

    def __post_init__(self) -> None:
        if self.name is not None:
            object.__setattr__(self, "name", _normalize_name(self.name, label="Parallel name"))
        object.__setattr__(self, "tasks", tuple(as_task(task) for task in self.tasks))


Task: TypeAlias = Action | TaskRef | Series | Parallel


def as_task(task: "Task | str") -> "Task":
    if isinstance(task, str):
        return TaskRef(task)
    if isinstance(task, (Action, TaskRef, Series, Parallel)):
        return task
    raise TypeError(
        f"Expected a task or task name (type={type(task).__name__})"
    )


def series(*tasks: "Task | str", name: str | None = None) -> Series:
    """Compose tasks to run one after another; nothing is executed here."""

    return Series(tasks=tuple(tasks), name=name)


def parallel(*tasks: "Task | str", name: str | None = None) -> Parallel:
    """Compose tasks to start together; nothing is executed here."""

    return Parallel(tasks=tuple(tasks), name=name)


def iter_refs(task: Task) -> Iterator[str]:
    """Yield every `TaskRef` name inside a task tree (refs are not followed)."""

    if isinstance(task, TaskRef):
        yield task.name
    elif isinstance(task, (Series, Parallel)):
        for child in task.tasks:
            yield from iter_refs(child)


def task_kind(task: Task) -> TaskKind:
    if isinstance(task, Series):
        return "series"
    if isinstance(task, Parallel):
        return "parallel"
    return "action"


@dataclass(frozen=True)
class TaskOutcome:
    name: str
    ok: bool
    duration_ms: int
    error: Exception | None = None
    failed_path: str | None = None


class TaskRecorder(Protocol):
    def on_task_start(self, ctx: TaskContext, path: str, *, kind: TaskKind) -> None:
        ...

    def on_task_end(self, ctx: TaskContext, record: dict[str, Any]) -> None:
        ...

    def on_task_error(
        self, ctx: TaskContext, path: str, exc: Exception, *, kind: TaskKind, duration_ms: int
    ) -> None:
        ...


def format_duration(duration_ms: int) -> str:
    if duration_ms < 1000:
        return f"{duration_ms} ms"
    return f"{duration_ms / 1000:.2f} s"


class DefaultTaskRecorder:
    def on_task_start(self, ctx: TaskContext, path: str, *, kind: TaskKind) -> None:
        if kind == "action":
            ctx.logger.info("Starting '%s'...", path)
        else:
            ctx.logger.debug("Starting '%s' (%s)...", path, kind)

    def on_task_end(self, ctx: TaskContext, record: dict[str, Any]) -> None:
        ctx.records.append(record)
        path = record.get("path", "<unknown>")
        duration = format_duration(int(record.get("duration_ms", 0) or 0))
        if record.get("type") == "action":
            ctx.logger.info("Finished '%s' after %s", path, duration)
        else:
            ctx.logger.debug("Finished '%s' after %s", path, duration)

    def on_task_error(
        self, ctx: TaskContext, path: str, exc: Exception, *, kind: TaskKind, duration_ms: int
    ) -> None:
        ctx.records.append(
            {
                "type": kind,
                "path": path,
                "ok": False,
                "duration_ms": duration_ms,
                "error": f"{type(exc).__name__}: {exc}",
                "created_at": utc_now_iso8601(),
            }
        )
        if kind == "action":
            ctx.logger.error("'%s' errored after %s: %s", path, format_duration(duration_ms), exc)
        else:
            ctx.logger.debug("'%s' failed after %s", path, format_duration(duration_ms))


class NullTaskRecorder:
    def on_task_start(self, ctx: TaskContext, path: str, *, kind: TaskKind) -> None:
        return

    def on_task_end(self, ctx: TaskContext, record: dict[str, Any]) -> None:
        return

    def on_task_error(
        self, ctx: TaskContext, path: str, exc: Exception, *, kind: TaskKind, duration_ms: int
    ) -> None:
        return


def _json_safe(value: Any, *, max_depth: int = 4, max_items: int = 25) -> Any:
    if max_depth <= 0:
        return "<max_depth>"
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
        out = [_json_safe(item, max_depth=max_depth - 1, max_items=max_items) for item in items[:max_items]]
        if len(items) > max_items:
            out.append(f"<{len(items) - max_items} more>")
        return out
    if isinstance(value, dict):
        out_map: dict[str, Any] = {}
        for idx, (key, item) in enumerate(value.items()):
            if idx >= max_items:
                out_map["<more>"] = f"<{len(value) - max_items} more>"
                break
            out_map[str(key)] = _json_safe(item, max_depth=max_depth - 1, max_items=max_items)
        return out_map
    return repr(value)


def _attach_task_error(exc: Exception, *, task_path: str, task_name: str) -> None:
    # Innermost attachment wins.
    for attr, value in (("task_path", task_path), ("task_name", task_name)):
        if hasattr(exc, attr):
            continue
        try:
            setattr(exc, attr, value)
        except AttributeError:
            pass


@dataclass
class TaskRunner:
    """Resolve a registered task by name and execute its composition tree."""

    registry: "TaskRegistry"
    recorder: TaskRecorder = field(default_factory=DefaultTaskRecorder)

    def __post_init__(self) -> None:
        for method in ("on_task_start", "on_task_end", "on_task_error"):
            if not callable(getattr(self.recorder, method, None)):
                raise TypeError(f"Task recorder missing required method: {method}")
        self.registry.validate()

    async def run(self, ctx: TaskContext, name: str) -> TaskOutcome:
        """Run `name` to completion; raises `UnknownTaskError` before executing anything."""

        task = self.registry.get(name)
        root = name.strip()
        started = time.perf_counter()
        try:
            await self._execute(ctx, task, [root])
        except Exception as exc:
            return TaskOutcome(
                name=root,
                ok=False,
                duration_ms=_elapsed_ms(started),
                error=exc,
                failed_path=getattr(exc, "task_path", root),
            )
        return TaskOutcome(name=root, ok=True, duration_ms=_elapsed_ms(started))

    def _child_name(self, task: Task, *, index: int) -> str:
        if isinstance(task, (Action, TaskRef)):
            return task.name
        return task.name or f"{task_kind(task)}_{index + 1:02d}"

    async def _execute(self, ctx: TaskContext, task: Task, path_segments: list[str]) -> Any:
        if isinstance(task, TaskRef):
            return await self._execute(ctx, self.registry.get(task.name), path_segments)

        kind = task_kind(task)
        path = "/".join(path_segments)
        started = time.perf_counter()
        self.recorder.on_task_start(ctx, path, kind=kind)
        try:
            if isinstance(task, Action):
                result = await self._call(ctx, task)
            elif isinstance(task, Series):
                result = None
                for idx, child in enumerate(task.tasks):
                    await self._execute(ctx, child, [*path_segments, self._child_name(child, index=idx)])
            else:
                result = None
                await self._execute_parallel(ctx, task, path_segments)
        except Exception as exc:
            _attach_task_error(exc, task_path=path, task_name=path_segments[-1])
            try:
                self.recorder.on_task_error(
                    ctx, path, exc, kind=kind, duration_ms=_elapsed_ms(started)
                )
            except Exception:
                ctx.logger.exception("Task recorder failed during error handling for %s", path)
            raise

        record: dict[str, Any] = {
            "type": kind,
            "name": path_segments[-1],
            "path": path,
            "ok": True,
            "duration_ms": _elapsed_ms(started),
            "created_at": utc_now_iso8601(),
        }
        if isinstance(task, Action) and task.doc:
            record["doc"] = task.doc
        if result is not None:
            record["result"] = _json_safe(result)
        self.recorder.on_task_end(ctx, record)
        return result

    async def _execute_parallel(
        self, ctx: TaskContext, task: Parallel, path_segments: list[str]
    ) -> None:
        children = [
            self._execute(ctx, child, [*path_segments, self._child_name(child, index=idx)])
            for idx, child in enumerate(task.tasks)
        ]
        results = await asyncio.gather(*children, return_exceptions=True)

        failures: list[Exception] = []
        for result in results:
            if isinstance(result, Exception):
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
        if not failures:
            return

        if len(failures) > 1:
            ctx.logger.error(
                "%d of %d parallel tasks failed under '%s': %s",
                len(failures),
                len(results),
                "/".join(path_segments),
                ", ".join(str(getattr(exc, "task_path", "?")) for exc in failures),
            )
        raise failures[0]

    async def _call(self, ctx: TaskContext, action: Action) -> Any:
        if inspect.iscoroutinefunction(action.fn):
            return await action.fn(ctx)
        result = await asyncio.to_thread(action.fn, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))
