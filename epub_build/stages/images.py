from __future__ import annotations

import io
from dataclasses import replace
from pathlib import PurePosixPath

from PIL import Image, UnidentifiedImageError

from epub_build.framework.runtime import BuildContext
from epub_build.framework.stage import Asset, PipelineStage, StageRef, Transform
from taskkit.config_namespace import ConfigNamespace

KIND_ID = "images"

_FORMATS = {".png": "PNG", ".jpg": "JPEG", ".jpeg": "JPEG"}
_JPEG_MODES = {"RGB", "L", "CMYK"}


class OptimizeImage(Transform):
    """Lossless PNG / re-encoded JPEG via Pillow; keeps the original when that is smaller.

    Other formats (SVG, GIF, WebP, ...) are copied unchanged.
    """

    name = "optimize_image"

    def __init__(self, *, jpeg_quality: int = 85, png_optimize: bool = True) -> None:
        self.jpeg_quality = jpeg_quality
        self.png_optimize = png_optimize

    def _encode(self, image: Image.Image, fmt: str) -> bytes | None:
        options: dict[str, object] = {}
        if image.info.get("icc_profile"):
            options["icc_profile"] = image.info["icc_profile"]
        if fmt == "PNG":
            options["optimize"] = self.png_optimize
        else:
            if image.mode not in _JPEG_MODES:
                return None
            options.update(quality=self.jpeg_quality, optimize=True, progressive=True)

        buffer = io.BytesIO()
        image.save(buffer, format=fmt, **options)
        return buffer.getvalue()

    def apply(self, asset: Asset, ctx: BuildContext) -> Asset:
        fmt = _FORMATS.get(PurePosixPath(asset.path).suffix.lower())
        if fmt is None:
            return asset

        try:
            with Image.open(io.BytesIO(asset.content)) as image:
                image.load()
                encoded = self._encode(image, fmt)
        except (UnidentifiedImageError, OSError) as exc:
            ctx.logger.warning("%s: not optimized (%s); copying unchanged", asset.path, exc)
            return asset

        if encoded is None or len(encoded) >= len(asset.content):
            return asset
        ctx.logger.debug(
            "%s: %d -> %d bytes", asset.path, len(asset.content), len(encoded)
        )
        return replace(asset, content=encoded)


def _build(cfg: ConfigNamespace, *, claimed: tuple[str, ...]) -> PipelineStage:
    jpeg_quality = cfg.get_int("jpeg_quality", default=85, min_value=1, max_value=95)
    png_optimize = cfg.get_bool("png_optimize", default=True)
    return PipelineStage(
        name=KIND_ID,
        patterns=("images/**/*",),
        transforms=(OptimizeImage(jpeg_quality=jpeg_quality, png_optimize=png_optimize),),
        base="images",
        dest="images",
        owns="images",
    )


STAGE = StageRef(id=KIND_ID, builder=_build, doc="Images -> images/ (optimized with Pillow)")
