"""Project-specific framework utilities.

This package contains the structural pieces that are generic *within* this
repo (configuration and path resolution, the build context, the pipeline-stage
abstraction, packaging, validation, preview and watch coordination), but
intentionally excludes the concrete stage catalog and task wiring.

Common entrypoints:

- `epub_build.framework.config`: `BuildConfig.from_dict` + `resolve_paths`
- `epub_build.framework.stage`: `PipelineStage`, `Transform`, `run_stage`

For the project-agnostic task graph (series/parallel composition, registry,
runner), use `taskkit`.
"""
