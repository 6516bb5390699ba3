from __future__ import annotations

import difflib
from typing import Any, Iterable, Mapping

from taskkit.engine.tasks import Action, Task, TaskRef, as_task, iter_refs, task_kind
from taskkit.errors import DuplicateTaskError, TaskCycleError, UnknownTaskError


class TaskRegistry:
    """Named tasks, resolved and checked once before anything runs."""

    def __init__(self) -> None:
        self._by_name: dict[str, Task] = {}

    @classmethod
    def from_mapping(cls, tasks: Mapping[str, "Task | str"] | Iterable[tuple[str, "Task | str"]]) -> "TaskRegistry":
        registry = cls()
        items = tasks.items() if isinstance(tasks, Mapping) else tasks
        for name, task in items:
            registry.register(name, task)
        return registry

    def register(self, name: str, task: "Task | str") -> Task:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Task name must be a non-empty string")
        key = name.strip()
        if key in self._by_name:
            raise DuplicateTaskError(key)
        coerced = as_task(task)
        self._by_name[key] = coerced
        return coerced

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._by_name

    def available(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_name.keys()))

    def get(self, name: str) -> Task:
        key = (name or "").strip() if isinstance(name, str) else ""
        task = self._by_name.get(key)
        if task is None:
            raise UnknownTaskError(str(name), suggestions=self.suggest(key))
        return task

    def describe(self) -> tuple[dict[str, Any], ...]:
        rows: list[dict[str, Any]] = []
        for name in self.available():
            task = self._by_name[name]
            rows.append(
                {
                    "name": name,
                    "kind": "ref" if isinstance(task, TaskRef) else task_kind(task),
                    "doc": task.doc if isinstance(task, Action) else None,
                    "depends_on": sorted(set(iter_refs(task))),
                }
            )
        return tuple(rows)

    def suggest(self, name: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (name or "").strip()
        if not key or not self._by_name:
            return ()
        return tuple(difflib.get_close_matches(key, list(self._by_name.keys()), n=limit))

    def validate(self) -> None:
        """Check every reference resolves and the reference graph is acyclic."""

        for name, task in self._by_name.items():
            for ref in iter_refs(task):
                if ref not in self._by_name:
                    raise UnknownTaskError(ref, referenced_by=name, suggestions=self.suggest(ref))

        done: set[str] = set()
        for name in self.available():
            self._visit(name, stack=[], done=done)

    def _visit(self, name: str, *, stack: list[str], done: set[str]) -> None:
        if name in done:
            return
        if name in stack:
            raise TaskCycleError([*stack[stack.index(name) :], name])
        stack.append(name)
        for ref in iter_refs(self._by_name[name]):
            self._visit(ref, stack=stack, done=done)
        stack.pop()
        done.add(name)
