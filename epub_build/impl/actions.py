"""Leaf actions: the tasks that perform actual I/O."""

from __future__ import annotations

import asyncio
import shutil
import webbrowser
from typing import Any, Sequence

from epub_build.framework.errors import ValidationInvocationError
from epub_build.framework.packaging import ArchiveRequest, pack
from epub_build.framework.preview import PreviewSession
from epub_build.framework.runtime import BuildContext
from epub_build.framework.stage import PipelineStage, run_stage
from epub_build.framework.validation import validate_archive
from epub_build.framework.watch import ChangeSource, WatchBinding, WatchCoordinator
from taskkit import Action


def clean(ctx: BuildContext) -> dict[str, Any]:
    build_root = ctx.paths.build_root
    if not build_root.exists():
        ctx.logger.debug("Nothing to clean at %s", build_root)
        return {"removed": False}
    shutil.rmtree(build_root)
    ctx.logger.info("Removed %s", build_root)
    return {"removed": True}


def stage_action(stage: PipelineStage) -> Action:
    def _run(ctx: BuildContext) -> dict[str, Any]:
        return run_stage(stage, ctx).summary()

    return Action(name=stage.name, fn=_run, doc=stage.doc)


async def serve(ctx: BuildContext) -> dict[str, Any]:
    if ctx.session is not None:
        raise RuntimeError("Preview session already running for this build")

    cfg = ctx.config
    session = PreviewSession(
        ctx.paths.build_content,
        host=cfg.host,
        port=cfg.port,
        start_path=cfg.start_path,
        logger=ctx.logger,
    )
    await session.start()
    ctx.session = session

    if cfg.open_browser:
        await asyncio.to_thread(webbrowser.open, session.url + session.start_path)
    return {"url": session.url}


def watch_action(
    name: str,
    bindings: Sequence[WatchBinding],
    *,
    change_source: ChangeSource | None = None,
    doc: str | None = None,
) -> Action:
    bindings = tuple(bindings)

    async def _watch(ctx: BuildContext) -> None:
        if ctx.runner is None:
            raise RuntimeError(f"{name} needs ctx.runner to rerun tasks")
        coordinator = WatchCoordinator(ctx.runner, ctx, change_source=change_source)
        await coordinator.watch_all(bindings)

    return Action(name=name, fn=_watch, doc=doc)


def package(ctx: BuildContext) -> dict[str, Any]:
    report = pack(ArchiveRequest.from_paths(ctx.paths), logger=ctx.logger)
    return {"archive": str(report.archive_path), "entries": len(report.entries)}


async def validate(ctx: BuildContext) -> dict[str, Any]:
    try:
        report = await validate_archive(
            ctx.paths.archive_path,
            ctx.config.validator_command,
            log_path=ctx.paths.errors_path,
            cwd=ctx.config.project_root,
            logger=ctx.logger,
        )
    except ValidationInvocationError as exc:
        ctx.logger.error("Validation skipped: %s", exc)
        return {"ran": False}
    return {"ran": True, "returncode": report.returncode}
