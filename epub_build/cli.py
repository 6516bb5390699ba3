from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from epub_build.framework.config import BUILD_MODES
from epub_build.impl.tasks import DEFAULT_TASK, ENTRY_POINTS

EXIT_OK = 0
EXIT_TASK_FAILED = 1
EXIT_USAGE = 2


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=None, help="Config file (skips the local overlay)")
    parser.add_argument("--mode", choices=BUILD_MODES, default=None, help="Override the build mode")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="epub-build", add_help=True)
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a named task (default: dev)")
    run.add_argument("task", nargs="?", default=DEFAULT_TASK)
    _add_config_args(run)
    run.add_argument("--strict", action="store_true", help="Treat unknown config keys as errors")
    run.add_argument("-v", "--verbose", action="store_true", help="Log DEBUG to the console")

    list_tasks = sub.add_parser("list-tasks", help="List registered tasks")
    list_tasks.add_argument("--config", default=None)

    show_paths = sub.add_parser("show-paths", help="Print resolved build paths")
    _add_config_args(show_paths)

    return parser


def _load(args: argparse.Namespace) -> tuple[dict, dict]:
    from epub_build.foundation.config_io import load_config

    cfg, meta = load_config(args.config)
    if getattr(args, "strict", False):
        cfg = {**cfg, "strict": True}
    return cfg, meta


def _cmd_run(args: argparse.Namespace) -> int:
    from epub_build.app.build import prepare_build, run_build

    cfg, meta = _load(args)
    prepared = prepare_build(cfg, project_root=meta["project_root"], task_name=args.task, mode=args.mode)
    outcome = run_build(prepared, task_name=args.task, config_meta=meta, verbose=args.verbose)
    return EXIT_OK if outcome.ok else EXIT_TASK_FAILED


def _cmd_list_tasks(args: argparse.Namespace) -> int:
    from epub_build.framework.config import BuildConfig
    from epub_build.impl.tasks import build_task_registry

    cfg, meta = _load(args)
    config, _warnings = BuildConfig.from_dict(cfg, project_root=meta["project_root"])
    registry = build_task_registry(config)
    for row in registry.describe():
        name = row["name"]
        label = f"{name} [{ENTRY_POINTS[name]}]" if name in ENTRY_POINTS else name
        detail = row["doc"] or ", ".join(row["depends_on"])
        print(f"{label:<34} {row['kind']:<9} {detail}")
    return EXIT_OK


def _cmd_show_paths(args: argparse.Namespace) -> int:
    from epub_build.framework.config import BuildConfig, resolve_paths

    cfg, meta = _load(args)
    config, _warnings = BuildConfig.from_dict(cfg, project_root=meta["project_root"], mode=args.mode)
    paths = resolve_paths(config)
    print(f"mode: {config.mode}")
    for key, value in vars(paths).items():
        print(f"{key}: {value}")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    from epub_build.framework.errors import ConfigurationError, TaskGraphError

    handlers = {"run": _cmd_run, "list-tasks": _cmd_list_tasks, "show-paths": _cmd_show_paths}
    handler = handlers.get(args.command)
    if handler is None:
        raise AssertionError(f"Unhandled command: {args.command}")

    try:
        return handler(args)
    except (ConfigurationError, TaskGraphError) as exc:
        print(f"epub-build: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except (FileNotFoundError, ValueError) as exc:
        print(f"epub-build: config error: {exc}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
