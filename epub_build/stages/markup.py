from __future__ import annotations

from pathlib import PurePosixPath

from epub_build.framework.runtime import BuildContext
from epub_build.framework.stage import Asset, PipelineStage, StageRef, Transform
from taskkit.config_namespace import ConfigNamespace

KIND_ID = "markup"


class ReplaceExtension(Transform):
    name = "replace_extension"
    modes = frozenset({"production"})

    def __init__(self, extension: str = ".xhtml") -> None:
        extension = extension.strip()
        if not extension.startswith(".") or len(extension) < 2 or "/" in extension:
            raise ValueError(f"{KIND_ID}.extension must look like '.xhtml' (got {extension!r})")
        self.extension = extension

    def output_path(self, path: str) -> str:
        current = PurePosixPath(path)
        if current.suffix.lower() != ".html":
            return path
        return current.with_suffix(self.extension).as_posix()

    def apply(self, asset: Asset, ctx: BuildContext) -> Asset:
        return asset


def _build(cfg: ConfigNamespace, *, claimed: tuple[str, ...]) -> PipelineStage:
    extension = cfg.get_str("extension", default=".xhtml") or ".xhtml"
    return PipelineStage(
        name=KIND_ID,
        patterns=("html/**/*",),
        transforms=(ReplaceExtension(extension),),
        base="html",
        dest="xhtml",
        owns="html",
        doc="Copy html/ into xhtml/; chapters take the XHTML extension in production, other files keep their names.",
    )


STAGE = StageRef(id=KIND_ID, builder=_build, doc="html/ -> xhtml/ (chapters renamed in production)")
