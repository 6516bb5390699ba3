from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from dataclasses import dataclass
from typing import Any, Mapping

from epub_build.foundation.logging_utils import close_logger, generate_run_id, setup_build_logger
from epub_build.framework.config import BuildConfig, ResolvedPaths, resolve_paths
from epub_build.framework.runtime import BuildContext
from epub_build.framework.stage import PipelineStage, audit_coverage, check_output_collisions
from epub_build.framework.watch import ChangeSource
from epub_build.impl.tasks import DEFAULT_TASK, build_task_registry, default_mode_for
from epub_build.stages.registry import build_stages
from taskkit import TaskOutcome, TaskRegistry, TaskRunner, utc_now_iso8601


@dataclass(frozen=True)
class PreparedBuild:
    config: BuildConfig
    paths: ResolvedPaths
    stages: dict[str, PipelineStage]
    registry: TaskRegistry
    warnings: tuple[str, ...]


def prepare_build(
    cfg_dict: Mapping[str, Any],
    *,
    project_root: str | os.PathLike[str],
    task_name: str = DEFAULT_TASK,
    mode: str | None = None,
    change_source: ChangeSource | None = None,
) -> PreparedBuild:
    """
    Everything that can fail before a task runs: config, stages, registry, task lookup.

    Mode precedence: explicit `mode`, then the mode implied by the entry point,
    then the config file's `mode`. Nothing is written to disk here.

    Raises:
        ConfigurationError: invalid config or stage options.
        UnknownTaskError / DuplicateTaskError / TaskCycleError: registration errors.
    """

    config, warnings = BuildConfig.from_dict(
        cfg_dict, project_root=project_root, mode=mode or default_mode_for(task_name)
    )
    stages = build_stages(config.stage_options)
    registry = build_task_registry(config, stages=stages, change_source=change_source)
    registry.get(task_name)
    return PreparedBuild(
        config=config,
        paths=resolve_paths(config),
        stages=stages,
        registry=registry,
        warnings=tuple(warnings),
    )


def _log_config_meta(logger: logging.Logger, config_meta: Mapping[str, Any] | None) -> None:
    if not config_meta:
        return
    mode = config_meta.get("mode")
    paths = config_meta.get("paths") or []
    env_var = config_meta.get("env_var") or "EPUB_BUILD_CONFIG"
    if mode in {"env", "explicit"} and paths:
        label = f"env {env_var}" if mode == "env" else "explicit path"
        logger.info("Loaded config from %s=%s", label, paths[0])
    elif len(paths) > 1:
        logger.info("Loaded config base=%s local=%s", paths[0], paths[1])
    elif paths:
        logger.info("Loaded config base=%s", paths[0])


def _startup_checks(prepared: PreparedBuild, logger: logging.Logger) -> None:
    stages = list(prepared.stages.values())
    check_output_collisions(stages, prepared.paths, prepared.config.mode)

    coverage = audit_coverage(stages, prepared.paths)
    for path in coverage.unclaimed:
        logger.warning("Source file not handled by any stage: %s", path)
    for path, owners in sorted(coverage.overclaimed.items()):
        logger.warning("Source file claimed by several stages (%s): %s", ", ".join(owners), path)


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, shutdown: asyncio.Event, logger: logging.Logger
) -> list[int]:
    installed: list[int] = []

    def _request_shutdown(signum: int) -> None:
        logger.info("Received %s; shutting down", signal.Signals(signum).name)
        shutdown.set()
        # A second signal gets the default behaviour.
        for sig in installed:
            loop.remove_signal_handler(sig)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)
    return installed


async def execute(ctx: BuildContext, runner: TaskRunner, task_name: str) -> TaskOutcome:
    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, ctx.shutdown, ctx.logger)
    try:
        return await runner.run(ctx, task_name)
    finally:
        if ctx.session is not None:
            await ctx.session.stop()
            ctx.session = None
        for sig in installed:
            loop.remove_signal_handler(sig)


def write_run_summary(path: str, ctx: BuildContext, outcome: TaskOutcome) -> None:
    payload = {
        "run_id": ctx.run_id,
        "created_at": utc_now_iso8601(),
        "task": outcome.name,
        "mode": ctx.mode,
        "ok": outcome.ok,
        "duration_ms": outcome.duration_ms,
        "failed_path": outcome.failed_path,
        "error": f"{type(outcome.error).__name__}: {outcome.error}" if outcome.error else None,
        "tasks": ctx.records,
    }
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)


def run_build(
    prepared: PreparedBuild,
    *,
    task_name: str = DEFAULT_TASK,
    config_meta: Mapping[str, Any] | None = None,
    run_id: str | None = None,
    verbose: bool = False,
) -> TaskOutcome:
    run_id = run_id or generate_run_id()
    paths = prepared.paths
    log_dir = str(paths.log_dir) if paths.log_dir else None
    logger, log_file = setup_build_logger(log_dir, run_id, verbose=verbose)

    try:
        _log_config_meta(logger, config_meta)
        for warning in prepared.warnings:
            logger.warning("%s", warning)
        _startup_checks(prepared, logger)

        ctx = BuildContext(config=prepared.config, paths=paths, logger=logger, run_id=run_id)
        runner = TaskRunner(prepared.registry)
        ctx.runner = runner

        logger.info("Using %s mode for '%s' (%s)", ctx.mode, task_name, prepared.config.title)
        outcome = asyncio.run(execute(ctx, runner, task_name))
        if outcome.ok:
            logger.info("Finished '%s' in %d ms", outcome.name, outcome.duration_ms)
        else:
            logger.error("'%s' failed at '%s': %s", outcome.name, outcome.failed_path, outcome.error)

        if log_dir:
            summary_path = os.path.join(log_dir, f"{run_id}_tasks.json")
            write_run_summary(summary_path, ctx, outcome)
            logger.debug("Wrote task summary to %s", summary_path)
        if log_file:
            logger.info("Build log stored at %s", log_file)
        return outcome
    finally:
        close_logger(logger)
