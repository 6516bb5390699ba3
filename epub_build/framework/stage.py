"""Content pipeline stages: match -> conditionally transform -> relocate.

A `PipelineStage` is declarative: it names the files it owns (ordered globs),
the transforms to run (each tagged with the build modes it applies in) and
where outputs land. `run_stage` executes one stage against a build context;
`plan_outputs` computes the same destinations without reading file contents,
which is what the startup collision and coverage checks use.
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Iterable, Literal, Protocol, Sequence

from epub_build.framework.config import BUILD_MODES, ResolvedPaths
from epub_build.framework.errors import ConfigurationError, TransformError
from epub_build.framework.globs import GlobSet
from taskkit.config_namespace import ConfigNamespace

if TYPE_CHECKING:  # pragma: no cover
    from epub_build.framework.runtime import BuildContext

StageScope = Literal["content", "package"]

_module_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Asset:
    """One in-flight file.

    `path` is the destination-relative POSIX path; `source` the absolute
    source file. `source_map` is `None` unless a source-map transform started
    collecting one for this file.
    """

    path: str
    content: bytes
    source: Path
    source_map: dict[str, Any] | None = None

    def text(self) -> str:
        return self.content.decode("utf-8")

    def with_text(self, text: str) -> "Asset":
        return replace(self, content=text.encode("utf-8"))


class Transform:
    """Base class for stage transforms.

    `apply` returns the transformed asset, or `None` when the file is
    intentionally not emitted. Transforms never rename in `apply`; renames go
    through `output_path`, which the stage applies both when planning and when
    writing.
    """

    name: str = "transform"
    modes: frozenset[str] = frozenset(BUILD_MODES)

    def applies(self, mode: str) -> bool:
        return mode in self.modes

    def skips(self, path: str) -> bool:
        return False

    def output_path(self, path: str) -> str:
        return path

    def apply(self, asset: Asset, ctx: "BuildContext") -> Asset | None:
        raise NotImplementedError


@dataclass(frozen=True)
class PipelineStage:
    name: str
    patterns: tuple[str, ...]
    transforms: tuple[Transform, ...] = ()
    base: str = ""
    dest: str = ""
    flatten: bool = False
    scope: StageScope = "content"
    owns: str | None = None
    doc: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise TypeError("PipelineStage.name must be a non-empty string")
        if self.scope not in ("content", "package"):
            raise ValueError(f"PipelineStage.scope must be content or package (got {self.scope!r})")
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "patterns", tuple(self.patterns))
        object.__setattr__(self, "transforms", tuple(self.transforms))
        object.__setattr__(self, "base", self.base.strip("/"))
        object.__setattr__(self, "dest", self.dest.strip("/"))
        for transform in self.transforms:
            if not isinstance(transform, Transform):
                raise TypeError(
                    f"Stage {self.name}: transforms must be Transform instances "
                    f"(type={type(transform).__name__})"
                )

    @property
    def globs(self) -> GlobSet:
        return GlobSet(self.patterns)

    def source_root(self, paths: ResolvedPaths) -> Path:
        return paths.source_content if self.scope == "content" else paths.source_root

    def output_root(self, paths: ResolvedPaths) -> Path:
        return paths.build_content if self.scope == "content" else paths.package_root

    def active_transforms(self, mode: str) -> tuple[Transform, ...]:
        return tuple(t for t in self.transforms if t.applies(mode))

    def select(self, paths: ResolvedPaths) -> list[str]:
        return self.globs.filter(list_source_files(self.source_root(paths)))

    def relocate(self, rel_path: str) -> str:
        path = PurePosixPath(rel_path)
        if self.base:
            try:
                path = path.relative_to(self.base)
            except ValueError:
                pass
        if self.flatten:
            path = PurePosixPath(path.name)
        if self.dest:
            path = PurePosixPath(self.dest) / path
        return path.as_posix()

    def destination(self, rel_path: str, mode: str) -> str | None:
        """Planned output path relative to the output root, or None if not emitted."""

        transforms = self.active_transforms(mode)
        if any(t.skips(rel_path) for t in transforms):
            return None
        out = self.relocate(rel_path)
        for transform in transforms:
            out = transform.output_path(out)
        return out


def list_source_files(root: Path) -> list[str]:
    """Sorted relative POSIX paths of every file under `root`.

    Dotfiles and dot-directories are skipped, as build globs conventionally
    do. A missing root yields an empty list.
    """

    if not root.is_dir():
        return []
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        rel_dir = Path(dirpath).relative_to(root)
        for filename in filenames:
            if filename.startswith("."):
                continue
            found.append((rel_dir / filename).as_posix())
    return sorted(found)


@dataclass(frozen=True)
class StageReport:
    stage: str
    written: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()

    def summary(self) -> dict[str, Any]:
        return {"stage": self.stage, "written": len(self.written), "skipped": len(self.skipped)}


def _run_transforms(
    stage: PipelineStage, asset: Asset, rel_path: str, ctx: "BuildContext"
) -> Asset | None:
    current: Asset | None = asset
    for transform in stage.active_transforms(ctx.mode):
        if current is None:
            break
        if transform.skips(rel_path):
            return None
        try:
            result = transform.apply(current, ctx)
        except TransformError:
            raise
        except Exception as exc:
            raise TransformError(str(exc), path=rel_path, transform=transform.name) from exc
        if result is None:
            return None
        current = replace(result, path=transform.output_path(current.path))
    return current


def run_stage(stage: PipelineStage, ctx: "BuildContext") -> StageReport:
    """Run one stage to completion; the first per-file failure raises `TransformError`."""

    paths = ctx.paths
    source_root = stage.source_root(paths)
    output_root = stage.output_root(paths)
    selected = stage.select(paths)

    if not selected:
        ctx.logger.debug("Stage %s matched no files under %s", stage.name, source_root)
        return StageReport(stage=stage.name)

    written: list[str] = []
    skipped: list[str] = []
    for rel_path in selected:
        source = source_root / rel_path
        try:
            content = source.read_bytes()
        except OSError as exc:
            raise TransformError(f"cannot read source: {exc}", path=rel_path) from exc

        asset = Asset(path=stage.relocate(rel_path), content=content, source=source)
        result = _run_transforms(stage, asset, rel_path, ctx)
        if result is None:
            ctx.logger.debug("Stage %s: %s not emitted", stage.name, rel_path)
            skipped.append(rel_path)
            continue

        target = output_root / result.path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(result.content)
        except OSError as exc:
            raise TransformError(f"cannot write {target}: {exc}", path=rel_path) from exc
        written.append(result.path)
        ctx.logger.debug("Stage %s: %s -> %s", stage.name, rel_path, result.path)

    ctx.logger.debug(
        "Stage %s wrote %d file(s) to %s", stage.name, len(written), output_root
    )
    return StageReport(stage=stage.name, written=tuple(written), skipped=tuple(skipped))


def _source_key(stage: PipelineStage, paths: ResolvedPaths, rel_path: str) -> str:
    return (stage.source_root(paths) / rel_path).relative_to(paths.source_root).as_posix()


def plan_outputs(
    stages: Sequence[PipelineStage], paths: ResolvedPaths, mode: str
) -> dict[Path, list[tuple[str, str]]]:
    """Map every planned output file to the (stage, source path) pairs producing it."""

    planned: dict[Path, list[tuple[str, str]]] = defaultdict(list)
    for stage in stages:
        output_root = stage.output_root(paths)
        for rel_path in stage.select(paths):
            dest = stage.destination(rel_path, mode)
            if dest is None:
                continue
            planned[output_root / dest].append((stage.name, _source_key(stage, paths, rel_path)))
    return dict(planned)


def check_output_collisions(
    stages: Sequence[PipelineStage], paths: ResolvedPaths, mode: str
) -> None:
    """Raise `ConfigurationError` when two source files would write the same output."""

    collisions = {
        target: producers
        for target, producers in plan_outputs(stages, paths, mode).items()
        if len(producers) > 1
    }
    if not collisions:
        return

    lines = []
    for target in sorted(collisions):
        producers = ", ".join(f"{stage}:{source}" for stage, source in collisions[target])
        lines.append(f"{target.relative_to(paths.package_root).as_posix()} <- {producers}")
    raise ConfigurationError("Output collisions detected:\n  " + "\n  ".join(lines))


@dataclass(frozen=True)
class CoverageReport:
    unclaimed: tuple[str, ...] = ()
    overclaimed: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.unclaimed and not self.overclaimed


def audit_coverage(stages: Sequence[PipelineStage], paths: ResolvedPaths) -> CoverageReport:
    """Report source files claimed by no stage, or by more than one."""

    claims: dict[str, list[str]] = defaultdict(list)
    for stage in stages:
        for rel_path in stage.select(paths):
            claims[_source_key(stage, paths, rel_path)].append(stage.name)

    unclaimed = tuple(p for p in list_source_files(paths.source_root) if p not in claims)
    overclaimed = {p: tuple(names) for p, names in claims.items() if len(names) > 1}
    return CoverageReport(unclaimed=unclaimed, overclaimed=overclaimed)


class StageBuilder(Protocol):
    def __call__(self, cfg: ConfigNamespace, *, claimed: tuple[str, ...]) -> PipelineStage:
        ...


@dataclass(frozen=True)
class StageRef:
    """Catalog entry: builds a `PipelineStage` from its `stages.<id>` options.

    `claimed` carries the directories owned by the other content stages, for
    stages whose patterns are derived from what everyone else does not own.
    """

    id: str
    builder: StageBuilder
    doc: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise TypeError("StageRef.id must be a non-empty string")
        object.__setattr__(self, "id", self.id.strip())

    def build(self, options: Any, *, claimed: Iterable[str] = ()) -> PipelineStage:
        try:
            cfg = ConfigNamespace.from_optional(options, path=f"stages.{self.id}")
            stage = self.builder(cfg, claimed=tuple(claimed))
            cfg.assert_consumed()
        except (TypeError, ValueError) as exc:
            if isinstance(exc, ConfigurationError):
                raise
            raise ConfigurationError(str(exc)) from exc

        if not isinstance(stage, PipelineStage):
            raise TypeError(
                f"Stage builder returned non-PipelineStage (stage={self.id}, type={type(stage).__name__})"
            )
        if stage.name != self.id:
            raise ValueError(f"Stage builder returned mismatched name: expected={self.id} got={stage.name}")
        _module_logger.debug("Built stage %s with options %s", self.id, cfg.effective_values())
        return stage


__all__ = [
    "Asset",
    "CoverageReport",
    "PipelineStage",
    "StageBuilder",
    "StageRef",
    "StageReport",
    "StageScope",
    "Transform",
    "audit_coverage",
    "check_output_collisions",
    "list_source_files",
    "plan_outputs",
    "run_stage",
]
