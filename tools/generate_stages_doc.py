from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class StageDocRow:
    stage_id: str
    scope: str
    patterns: tuple[str, ...]
    dest: str
    transforms: tuple[str, ...]
    doc: str | None


@dataclass(frozen=True)
class TaskDocRow:
    name: str
    kind: str
    mode: str | None
    depends_on: tuple[str, ...]
    doc: str | None


def _ensure_import_path() -> None:
    project_root = Path(__file__).resolve().parent.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


def _transform_label(transform) -> str:
    modes = sorted(transform.modes)
    if len(modes) == 1:
        return f"{transform.name} ({modes[0]})"
    return transform.name


def _stage_rows() -> list[StageDocRow]:
    _ensure_import_path()
    from epub_build.stages.registry import build_stages, get_stage_catalog  # noqa: PLC0415

    catalog = get_stage_catalog()
    rows: list[StageDocRow] = []
    for stage_id, stage in build_stages().items():
        rows.append(
            StageDocRow(
                stage_id=stage_id,
                scope=stage.scope,
                patterns=stage.patterns,
                dest=stage.dest or ".",
                transforms=tuple(_transform_label(t) for t in stage.transforms),
                doc=(catalog[stage_id].doc or stage.doc or "").strip() or None,
            )
        )
    return rows


def _task_rows() -> list[TaskDocRow]:
    _ensure_import_path()
    from epub_build.framework.config import BuildConfig  # noqa: PLC0415
    from epub_build.impl.tasks import ENTRY_POINTS, build_task_registry  # noqa: PLC0415

    config, _warnings = BuildConfig.from_dict({"book": {"title": "Docs"}}, project_root=os.getcwd())
    rows: list[TaskDocRow] = []
    for row in build_task_registry(config).describe():
        rows.append(
            TaskDocRow(
                name=row["name"],
                kind=row["kind"],
                mode=ENTRY_POINTS.get(row["name"]),
                depends_on=tuple(row["depends_on"]),
                doc=row["doc"],
            )
        )
    return rows


def generate_markdown(*, stages: Iterable[StageDocRow], tasks: Iterable[TaskDocRow]) -> str:
    stages = list(stages)
    tasks = list(tasks)

    lines: list[str] = []
    lines.append("# Build Stages and Tasks")
    lines.append("")
    lines.append("This file is generated from `epub_build.stages.registry` and `epub_build.impl.tasks`.")
    lines.append("")
    lines.append("Regenerate with:")
    lines.append("")
    lines.append("```bash")
    lines.append("python tools/generate_stages_doc.py")
    lines.append("```")
    lines.append("")
    lines.append(f"Total stages: {len(stages)}")
    lines.append("")
    lines.append("## Stages")
    lines.append("")
    for row in stages:
        doc = f": {row.doc}" if row.doc else ""
        lines.append(f"- `{row.stage_id}` ({row.scope} -> `{row.dest}`){doc}")
        lines.append(f"  - patterns: {', '.join(f'`{p}`' for p in row.patterns)}")
        if row.transforms:
            lines.append(f"  - transforms: {', '.join(row.transforms)}")
    lines.append("")

    lines.append("## Entry points")
    lines.append("")
    for row in sorted((t for t in tasks if t.mode), key=lambda r: r.name):
        lines.append(f"- `{row.name}` [{row.mode}]: {row.kind} of {', '.join(row.depends_on)}")
    lines.append("")

    lines.append("## Other tasks")
    lines.append("")
    for row in sorted((t for t in tasks if not t.mode), key=lambda r: r.name):
        if row.doc:
            lines.append(f"- `{row.name}` ({row.kind}): {row.doc}")
        elif row.depends_on:
            lines.append(f"- `{row.name}` ({row.kind}): {', '.join(row.depends_on)}")
        else:
            lines.append(f"- `{row.name}` ({row.kind})")

    return "\n".join(lines).rstrip() + "\n"


def write_stages_doc(output_path: str) -> int:
    stages = _stage_rows()
    md = generate_markdown(stages=stages, tasks=_task_rows())

    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    with open(output_path, "w", encoding="utf-8", newline="\n") as handle:
        handle.write(md)

    print(f"Wrote {output_path} ({len(stages)} stages)")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="generate_stages_doc")
    parser.add_argument(
        "--output",
        default=os.path.join("docs", "stages.md"),
        help="Output markdown path (default: docs/stages.md)",
    )
    args = parser.parse_args(argv)

    try:
        return write_stages_doc(args.output)
    except Exception as exc:  # noqa: BLE001
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
