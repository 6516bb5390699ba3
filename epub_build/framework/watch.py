"""Watch source files and rerun named tasks on change.

Each `WatchBinding` gets a producer (the change stream, filtered to the
binding's patterns) and a consumer (the rerun loop) sharing a single pending
slot: changes that arrive while a rerun is in flight collapse into exactly
one follow-up run. Bindings are independent of each other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Iterable, Sequence

import watchfiles

from epub_build.framework.globs import GlobSet
from epub_build.framework.stage import StageScope

if TYPE_CHECKING:  # pragma: no cover
    from epub_build.framework.runtime import BuildContext
    from taskkit import TaskRunner

ChangeSource = Callable[[Path, asyncio.Event], AsyncIterator[Iterable[Any]]]


def default_change_source(root: Path, stop_event: asyncio.Event) -> AsyncIterator[Iterable[Any]]:
    return watchfiles.awatch(root, stop_event=stop_event)


@dataclass(frozen=True)
class WatchBinding:
    patterns: tuple[str, ...]
    task: str
    reload: bool = True
    scope: StageScope = "content"

    def __post_init__(self) -> None:
        object.__setattr__(self, "patterns", tuple(self.patterns))
        GlobSet(self.patterns)
        if not isinstance(self.task, str) or not self.task.strip():
            raise TypeError("WatchBinding.task must be a non-empty string")
        object.__setattr__(self, "task", self.task.strip())


class PendingSlot:
    """Single-slot latest-pending flag shared by one producer and one consumer."""

    def __init__(self) -> None:
        self.dirty = False
        self.closed = False
        self._wake = asyncio.Event()

    def mark(self) -> None:
        self.dirty = True
        self._wake.set()

    def close(self) -> None:
        self.closed = True
        self._wake.set()

    async def take(self) -> bool:
        """Wait for pending work; False once closed with nothing pending."""

        while True:
            if self.dirty:
                self.dirty = False
                return True
            if self.closed:
                return False
            await self._wake.wait()
            self._wake.clear()


def _changed_paths(batch: Iterable[Any]) -> list[str]:
    paths: list[str] = []
    for item in batch:
        if isinstance(item, tuple):
            paths.append(str(item[-1]))
        else:
            paths.append(str(item))
    return paths


class WatchCoordinator:
    def __init__(
        self,
        runner: "TaskRunner",
        ctx: "BuildContext",
        *,
        change_source: ChangeSource | None = None,
    ) -> None:
        self.runner = runner
        self.ctx = ctx
        self.change_source = change_source or default_change_source

    @property
    def logger(self) -> logging.Logger:
        return self.ctx.logger

    def scope_root(self, binding: WatchBinding) -> Path:
        paths = self.ctx.paths
        return paths.source_content if binding.scope == "content" else paths.source_root

    def relevant(self, binding: WatchBinding, batch: Iterable[Any]) -> list[str]:
        root = self.scope_root(binding).resolve()
        globs = GlobSet(binding.patterns)
        matched: set[str] = set()
        for raw in _changed_paths(batch):
            path = Path(raw)
            if not path.is_absolute():
                path = root / path
            try:
                rel_path = path.resolve().relative_to(root).as_posix()
            except ValueError:
                continue
            if globs.matches(rel_path):
                matched.add(rel_path)
        return sorted(matched)

    async def rerun(self, binding: WatchBinding) -> bool:
        outcome = await self.runner.run(self.ctx, binding.task)
        if not outcome.ok:
            self.logger.error(
                "Rebuild of '%s' failed at '%s': %s", binding.task, outcome.failed_path, outcome.error
            )
            return False

        session = self.ctx.session
        if binding.reload and session is not None:
            session.reload()
        return True

    async def _consume(self, binding: WatchBinding, slot: PendingSlot) -> None:
        while await slot.take():
            if self.ctx.shutdown.is_set():
                return
            await self.rerun(binding)

    async def watch(self, binding: WatchBinding) -> None:
        """Watch until the change stream ends (shutdown), rerunning `binding.task`."""

        root = self.scope_root(binding)
        if not root.is_dir():
            self.logger.warning("Not watching '%s': %s does not exist", binding.task, root)
            return

        self.logger.info("Watching %s for '%s'", ", ".join(binding.patterns), binding.task)
        slot = PendingSlot()
        consumer = asyncio.create_task(self._consume(binding, slot))
        try:
            async for batch in self.change_source(root, self.ctx.shutdown):
                changed = self.relevant(binding, batch)
                if not changed:
                    continue
                self.logger.info("Changed (%s): %s", binding.task, ", ".join(changed))
                slot.mark()
        except asyncio.CancelledError:
            consumer.cancel()
            raise
        finally:
            slot.close()
        await consumer

    async def watch_all(self, bindings: Sequence[WatchBinding]) -> None:
        await asyncio.gather(*(self.watch(binding) for binding in bindings))
