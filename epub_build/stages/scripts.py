from __future__ import annotations

from pathlib import PurePosixPath

import rjsmin

from epub_build.framework.runtime import BuildContext
from epub_build.framework.stage import Asset, PipelineStage, StageRef, Transform
from taskkit.config_namespace import ConfigNamespace

KIND_ID = "scripts"


class MinifyJs(Transform):
    """rjsmin minification; non-JavaScript files under js/ pass through untouched."""

    name = "minify_js"
    modes = frozenset({"production"})

    def __init__(self, *, keep_bang_comments: bool = False) -> None:
        self.keep_bang_comments = keep_bang_comments

    def apply(self, asset: Asset, ctx: BuildContext) -> Asset:
        if PurePosixPath(asset.path).suffix.lower() != ".js":
            return asset
        return asset.with_text(rjsmin.jsmin(asset.text(), keep_bang_comments=self.keep_bang_comments))


def _build(cfg: ConfigNamespace, *, claimed: tuple[str, ...]) -> PipelineStage:
    keep_bang_comments = cfg.get_bool("keep_bang_comments", default=False)
    return PipelineStage(
        name=KIND_ID,
        patterns=("js/**/*",),
        transforms=(MinifyJs(keep_bang_comments=keep_bang_comments),),
        base="js",
        dest="js",
        owns="js",
    )


STAGE = StageRef(id=KIND_ID, builder=_build, doc="JavaScript -> js/ (minified in production)")
