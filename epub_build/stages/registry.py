from __future__ import annotations

import difflib
from functools import lru_cache
from typing import Any, Mapping

from epub_build.framework.errors import ConfigurationError
from epub_build.framework.stage import PipelineStage, StageRef


@lru_cache(maxsize=1)
def get_stage_catalog() -> dict[str, StageRef]:
    """All stage refs in build order; owning stages come before derived ones."""

    from epub_build.stages import images, markup, scripts, static, styles  # noqa: PLC0415

    refs = (markup.STAGE, images.STAGE, styles.STAGE, scripts.STAGE, static.STATIC, static.METADATA)
    return {ref.id: ref for ref in refs}


# Stages whose patterns are derived from what the owning stages claim.
_DERIVED_STAGES = ("static",)


def build_stages(stage_options: Mapping[str, Any] | None = None) -> dict[str, PipelineStage]:
    """
    Build every catalog stage from its `stages.<id>` option block.

    Raises:
        ConfigurationError: unknown stage ids or invalid/unknown stage options.
    """

    options = dict(stage_options or {})
    catalog = get_stage_catalog()

    unknown = sorted(set(options) - set(catalog))
    if unknown:
        hints = []
        for stage_id in unknown:
            matches = difflib.get_close_matches(stage_id, list(catalog), n=3, cutoff=0.6)
            hints.append(f"{stage_id} (did you mean: {', '.join(matches)}?)" if matches else stage_id)
        raise ConfigurationError("Unknown stages in config: " + ", ".join(hints))

    built: dict[str, PipelineStage] = {}
    for stage_id, ref in catalog.items():
        if stage_id not in _DERIVED_STAGES:
            built[stage_id] = ref.build(options.get(stage_id))

    claimed = tuple(
        stage.owns for stage in built.values() if stage.owns and stage.scope == "content"
    )
    for stage_id in _DERIVED_STAGES:
        built[stage_id] = catalog[stage_id].build(options.get(stage_id), claimed=claimed)

    return {stage_id: built[stage_id] for stage_id in catalog}
