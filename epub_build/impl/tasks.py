from __future__ import annotations

from typing import Mapping

from epub_build.framework.config import BuildConfig, BuildMode
from epub_build.framework.stage import PipelineStage
from epub_build.framework.watch import ChangeSource, WatchBinding
from epub_build.impl import actions
from epub_build.stages.registry import build_stages
from taskkit import Action, TaskRegistry, parallel, series

DEFAULT_TASK = "dev"

# Entry points and the build mode each implies (`--mode` overrides).
ENTRY_POINTS: dict[str, BuildMode] = {
    "dev": "development",
    "build-proof": "production",
    "build-epub": "production",
    "build-validate": "production",
}

DEV_WATCHED_STAGES = ("markup", "styles", "images", "scripts")
PROOF_WATCHED_STAGES = ("markup", "styles")


def default_mode_for(task_name: str) -> BuildMode | None:
    return ENTRY_POINTS.get((task_name or "").strip())


def watch_bindings(
    stages: Mapping[str, PipelineStage], names: tuple[str, ...], *, reload: bool
) -> tuple[WatchBinding, ...]:
    return tuple(
        WatchBinding(patterns=stages[name].patterns, task=name, reload=reload, scope=stages[name].scope)
        for name in names
    )


def build_task_registry(
    config: BuildConfig,
    *,
    stages: Mapping[str, PipelineStage] | None = None,
    change_source: ChangeSource | None = None,
) -> TaskRegistry:
    """Register every leaf action, helper composite and entry point."""

    stages = dict(stages) if stages is not None else build_stages(config.stage_options)
    registry = TaskRegistry()

    registry.register("clean", Action("clean", actions.clean, doc="Delete the build directory."))
    for name, stage in stages.items():
        registry.register(name, actions.stage_action(stage))

    registry.register("copy", parallel("static", "metadata"))
    registry.register("build", parallel("markup", "images", "styles", "scripts"))

    registry.register("serve", Action("serve", actions.serve, doc="Start the preview server."))
    registry.register(
        "watch",
        actions.watch_action(
            "watch",
            watch_bindings(stages, DEV_WATCHED_STAGES, reload=True),
            change_source=change_source,
            doc="Rebuild on change and reload the preview.",
        ),
    )
    registry.register(
        "watch-proof",
        actions.watch_action(
            "watch-proof",
            watch_bindings(stages, PROOF_WATCHED_STAGES, reload=False),
            change_source=change_source,
            doc="Rebuild markup and styles on change (no preview).",
        ),
    )
    registry.register("package", Action("package", actions.package, doc="Zip the build tree into the archive."))
    registry.register("validate", Action("validate", actions.validate, doc="Run the external archive checker."))

    registry.register("dev", series("clean", "copy", "build", "serve", "watch"))
    registry.register("build-proof", series("clean", "copy", "build", "watch-proof"))
    registry.register("build-epub", series("clean", "copy", "build", "package"))
    registry.register("build-validate", series("build-epub", "validate"))

    registry.validate()
    return registry
