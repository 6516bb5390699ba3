from __future__ import annotations

from epub_build.framework.stage import PipelineStage, StageRef
from taskkit.config_namespace import ConfigNamespace

STATIC_ID = "static"
METADATA_ID = "metadata"


def _build_static(cfg: ConfigNamespace, *, claimed: tuple[str, ...]) -> PipelineStage:
    # Everything under the content dir that no other content stage owns.
    exclusions = tuple(f"!{directory}/**" for directory in sorted(set(claimed)))
    return PipelineStage(
        name=STATIC_ID,
        patterns=("**/*", *exclusions),
        doc="Copy content files no other stage owns (fonts, package documents, ...).",
    )


def _build_metadata(cfg: ConfigNamespace, *, claimed: tuple[str, ...]) -> PipelineStage:
    return PipelineStage(
        name=METADATA_ID,
        patterns=("mimetype", "META-INF/**"),
        scope="package",
        owns="META-INF",
        doc="Copy the container files (mimetype, META-INF/) to the package root.",
    )


STATIC = StageRef(id=STATIC_ID, builder=_build_static, doc="Unowned content files, copied as-is")
METADATA = StageRef(id=METADATA_ID, builder=_build_metadata, doc="mimetype + META-INF/ at the package root")
