"""Sass stylesheets -> css/.

Development: source maps are collected while compiling and embedded as a
data URI. Production: compiled output is minified, no maps. Partials
(`_*.scss`) are only ever pulled in through `@import`/`@use` and are never
emitted on their own. Anything else under scss/ (plain CSS, fonts, ...) is
flattened into css/ unchanged, except that CSS is minified in production.
"""

from __future__ import annotations

import base64
import json
from dataclasses import replace
from pathlib import PurePosixPath

import rcssmin
import sass

from epub_build.framework.runtime import BuildContext
from epub_build.framework.stage import Asset, PipelineStage, StageRef, Transform
from taskkit.config_namespace import ConfigNamespace

KIND_ID = "styles"
OUTPUT_STYLES = ("expanded", "nested", "compact", "compressed")


def _has_suffix(path: str, suffix: str) -> bool:
    return PurePosixPath(path).suffix.lower() == suffix


class InitSourceMaps(Transform):
    name = "init_source_maps"
    modes = frozenset({"development"})

    def apply(self, asset: Asset, ctx: BuildContext) -> Asset:
        if not _has_suffix(asset.path, ".scss"):
            return asset
        return replace(asset, source_map={})


class CompileSass(Transform):
    name = "sass"

    def __init__(self, *, output_style: str = "expanded", include_paths: tuple[str, ...] = ()) -> None:
        if output_style not in OUTPUT_STYLES:
            raise ValueError(f"Unknown Sass output style: {output_style!r}")
        self.output_style = output_style
        self.include_paths = tuple(include_paths)

    def skips(self, path: str) -> bool:
        name = PurePosixPath(path).name
        return name.startswith("_") and _has_suffix(name, ".scss")

    def output_path(self, path: str) -> str:
        if not _has_suffix(path, ".scss"):
            return path
        return PurePosixPath(path).with_suffix(".css").as_posix()

    def apply(self, asset: Asset, ctx: BuildContext) -> Asset | None:
        if not _has_suffix(asset.path, ".scss"):
            return asset

        # Configured include paths are relative to the project root.
        include_paths = [
            str(asset.source.parent),
            *(str(ctx.config.project_root / path) for path in self.include_paths),
        ]
        if asset.source_map is None:
            css = sass.compile(
                filename=str(asset.source),
                output_style=self.output_style,
                include_paths=include_paths,
            )
            return asset.with_text(css)

        css, source_map = sass.compile(
            filename=str(asset.source),
            output_style=self.output_style,
            include_paths=include_paths,
            source_map_filename=str(asset.source.with_suffix(".css.map")),
            source_map_contents=True,
            omit_source_map_url=True,
        )
        return replace(asset.with_text(css), source_map=json.loads(source_map))


class MinifyCss(Transform):
    name = "minify_css"
    modes = frozenset({"production"})

    def __init__(self, *, keep_bang_comments: bool = False) -> None:
        self.keep_bang_comments = keep_bang_comments

    def apply(self, asset: Asset, ctx: BuildContext) -> Asset:
        if not _has_suffix(asset.path, ".css"):
            return asset
        return asset.with_text(rcssmin.cssmin(asset.text(), keep_bang_comments=self.keep_bang_comments))


class WriteSourceMaps(Transform):
    name = "write_source_maps"
    modes = frozenset({"development"})

    def apply(self, asset: Asset, ctx: BuildContext) -> Asset:
        if asset.source_map is None:
            return asset
        payload = base64.b64encode(json.dumps(asset.source_map).encode("utf-8")).decode("ascii")
        css = asset.text().rstrip("\n")
        css += f"\n/*# sourceMappingURL=data:application/json;charset=utf-8;base64,{payload} */\n"
        return replace(asset.with_text(css), source_map=None)


def _build(cfg: ConfigNamespace, *, claimed: tuple[str, ...]) -> PipelineStage:
    output_style = cfg.get_str("output_style", default="expanded", choices=OUTPUT_STYLES) or "expanded"
    include_paths = cfg.get_list_str("include_paths", default=(), allow_empty=True)
    keep_bang_comments = cfg.get_bool("keep_bang_comments", default=False)

    return PipelineStage(
        name=KIND_ID,
        patterns=("scss/**/*",),
        transforms=(
            InitSourceMaps(),
            CompileSass(output_style=output_style, include_paths=tuple(include_paths)),
            MinifyCss(keep_bang_comments=keep_bang_comments),
            WriteSourceMaps(),
        ),
        base="scss",
        dest="css",
        flatten=True,
        owns="scss",
    )


STAGE = StageRef(id=KIND_ID, builder=_build, doc="Sass -> css/ (maps in development, minified in production)")
