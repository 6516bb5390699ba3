from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any, Literal, Mapping

from epub_build.foundation.slugs import archive_filename, kebab_case
from epub_build.framework.errors import ConfigurationError

BuildMode = Literal["development", "production"]
BUILD_MODES: tuple[str, ...] = ("development", "production")

DEFAULT_VALIDATOR_COMMAND: tuple[str, ...] = ("java", "-jar", "bin/epubcheck.jar")
UNPACKED_ARCHIVE_SUFFIX = ".epub"


def parse_bool(value: Any, path: str) -> bool:
    """
    Strict boolean parsing to avoid bool('false') footguns.

    Accepts True/False, 0/1, and the strings true/false/1/0/yes/no
    (case-insensitive, surrounding whitespace ignored).
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes"}:
            return True
        if normalized in {"false", "0", "no"}:
            return False
    raise ConfigurationError(f"Invalid boolean for {path}: {value!r}")


def parse_int(value: Any, path: str, *, min_value: int | None = None, max_value: int | None = None) -> int:
    if value is None:
        raise ConfigurationError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid config type for {path}: expected int, got bool")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = int(value.strip())
        except ValueError as exc:
            raise ConfigurationError(f"Invalid config value for {path}: must be an int") from exc
    else:
        raise ConfigurationError(f"Invalid config type for {path}: expected int")

    if min_value is not None and parsed < min_value:
        raise ConfigurationError(f"Invalid config value for {path}: must be >= {min_value} (got {parsed})")
    if max_value is not None and parsed > max_value:
        raise ConfigurationError(f"Invalid config value for {path}: must be <= {max_value} (got {parsed})")
    return parsed


def parse_str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(
            f"Invalid config type for {path}: expected string, got {type(value).__name__}"
        )
    text = value.strip()
    if not text:
        raise ConfigurationError(f"Invalid config value for {path}: cannot be empty")
    return text


def parse_mode(value: Any, path: str) -> BuildMode:
    text = parse_str(value, path).lower()
    if text not in BUILD_MODES:
        raise ConfigurationError(
            f"Invalid config value for {path}: must be one of {', '.join(BUILD_MODES)} (got {value!r})"
        )
    return text  # type: ignore[return-value]


def parse_command(value: Any, path: str) -> tuple[str, ...]:
    """Accept an argv list or a shell-style string."""

    if isinstance(value, str):
        argv = shlex.split(value)
    elif isinstance(value, (list, tuple)):
        argv = [parse_str(item, f"{path}[{idx}]") for idx, item in enumerate(value)]
    else:
        raise ConfigurationError(f"Invalid config type for {path}: expected list or string")
    if not argv:
        raise ConfigurationError(f"Invalid config value for {path}: command cannot be empty")
    return tuple(argv)


def _parse_relative_dir(value: Any, path: str) -> str:
    text = parse_str(value, path).replace("\\", "/").strip("/")
    parts = PurePosixPath(text).parts
    if not parts or any(part in ("..", ".") for part in parts) or PurePosixPath(text).is_absolute():
        raise ConfigurationError(f"Invalid config value for {path}: must be a plain relative directory (got {value!r})")
    return text


def _section(cfg: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    raw = cfg.get(key)
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Invalid config type for {key}: expected mapping, got {type(raw).__name__}")
    return raw


@dataclass(frozen=True)
class BuildConfig:
    title: str
    project_root: Path
    source_dir: str = "src"
    build_dir: str = "build"
    content_dir: str = "EPUB"
    archive_dir: str = "."
    log_dir: str | None = ".epub-build/logs"
    host: str = "127.0.0.1"
    port: int = 3000
    start_path: str = "/xhtml"
    open_browser: bool = True
    validator_command: tuple[str, ...] = DEFAULT_VALIDATOR_COMMAND
    mode: BuildMode = "production"
    stage_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.title, str) or not self.title.strip():
            raise ConfigurationError("book.title must be a non-empty string")
        if not kebab_case(self.title):
            raise ConfigurationError(f"book.title produces an empty archive name: {self.title!r}")
        if self.mode not in BUILD_MODES:
            raise ConfigurationError(f"Invalid build mode: {self.mode!r}")
        if not self.start_path.startswith("/"):
            raise ConfigurationError(f"preview.start_path must start with '/' (got {self.start_path!r})")
        object.__setattr__(self, "project_root", Path(self.project_root).resolve())
        object.__setattr__(self, "stage_options", MappingProxyType(dict(self.stage_options)))

    @property
    def slug(self) -> str:
        return kebab_case(self.title)

    @property
    def archive_name(self) -> str:
        return archive_filename(self.title)

    @staticmethod
    def from_dict(
        cfg: Mapping[str, Any],
        *,
        project_root: str | Path,
        mode: str | None = None,
    ) -> tuple["BuildConfig", list[str]]:
        """
        Parse and validate configuration, returning (BuildConfig, warnings).

        `mode`, when given, overrides the config file's `mode` key (entry points
        imply a mode; `--mode` overrides both).

        Raises:
            ConfigurationError: if required keys are missing or invalid.
        """

        if not isinstance(cfg, Mapping):
            raise ConfigurationError("Config must be a mapping")

        warnings: list[str] = []
        strict_unknown_keys = parse_bool(cfg.get("strict"), "strict") if "strict" in cfg else False

        schema: Mapping[str, Any] = {
            "strict": None,
            "mode": None,
            "book": {"title": None},
            "paths": {"source": None, "build": None, "content": None, "archive": None, "logs": None},
            "preview": {"host": None, "port": None, "start_path": None, "open_browser": None},
            "validate": {"command": None},
            "stages": None,  # stage-owned namespaces, validated by each stage builder
        }

        unknown_keys: list[str] = []
        for key, value in cfg.items():
            if key not in schema:
                unknown_keys.append(str(key))
                continue
            subschema = schema[key]
            if isinstance(subschema, Mapping) and isinstance(value, Mapping):
                unknown_keys.extend(f"{key}.{sub}" for sub in value if sub not in subschema)
        if unknown_keys:
            unknown_keys = sorted(set(unknown_keys))
            if strict_unknown_keys:
                raise ConfigurationError("Unknown config keys: " + ", ".join(unknown_keys))
            warnings.extend(f"Unknown config key: {key}" for key in unknown_keys)

        book = _section(cfg, "book")
        if "title" not in book:
            raise ConfigurationError("Missing required config key: book.title")
        title = parse_str(book.get("title"), "book.title")

        paths = _section(cfg, "paths")
        preview = _section(cfg, "preview")
        validate = _section(cfg, "validate")
        stages = _section(cfg, "stages")

        if mode is not None:
            resolved_mode = parse_mode(mode, "--mode")
        elif "mode" in cfg:
            resolved_mode = parse_mode(cfg.get("mode"), "mode")
        else:
            resolved_mode = "production"

        log_dir: str | None = ".epub-build/logs"
        if "logs" in paths:
            log_dir = None if paths.get("logs") is None else parse_str(paths.get("logs"), "paths.logs")

        try:
            config = BuildConfig(
                title=title,
                project_root=Path(project_root),
                source_dir=parse_str(paths.get("source", "src"), "paths.source"),
                build_dir=parse_str(paths.get("build", "build"), "paths.build"),
                content_dir=_parse_relative_dir(paths.get("content", "EPUB"), "paths.content"),
                archive_dir=parse_str(paths.get("archive", "."), "paths.archive"),
                log_dir=log_dir,
                host=parse_str(preview.get("host", "127.0.0.1"), "preview.host"),
                port=parse_int(preview.get("port", 3000), "preview.port", min_value=0, max_value=65535),
                start_path=parse_str(preview.get("start_path", "/xhtml"), "preview.start_path"),
                open_browser=parse_bool(preview.get("open_browser", True), "preview.open_browser"),
                validator_command=parse_command(
                    validate.get("command", list(DEFAULT_VALIDATOR_COMMAND)), "validate.command"
                ),
                mode=resolved_mode,
                stage_options={str(k): v for k, v in stages.items()},
            )
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

        paths_resolved = resolve_paths(config)
        source_root = paths_resolved.source_root
        build_root = paths_resolved.build_root
        if build_root == source_root or build_root in source_root.parents:
            raise ConfigurationError(
                f"paths.build ({build_root}) must not contain paths.source ({source_root})"
            )
        if build_root == config.project_root or build_root in config.project_root.parents:
            raise ConfigurationError(
                f"paths.build ({build_root}) must not contain the project root"
            )

        return config, warnings


@dataclass(frozen=True)
class ResolvedPaths:
    source_root: Path
    source_content: Path
    build_root: Path
    package_root: Path
    build_content: Path
    archive_path: Path
    errors_path: Path
    log_dir: Path | None


def _anchor(root: Path, value: str) -> Path:
    candidate = Path(value).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    return Path(candidate.resolve(strict=False))


def resolve_paths(config: BuildConfig) -> ResolvedPaths:
    """
    Derive absolute source/build/archive paths from a config.

    Development builds into an unpacked-archive directory
    (`<build>/<slug>.epub/<content>`) so the preview serves the same relative
    layout the packaged archive exposes; other modes build into
    `<build>/<content>`, which is what gets archived.
    """

    root = config.project_root
    source_root = _anchor(root, config.source_dir)
    build_root = _anchor(root, config.build_dir)

    if config.mode == "development":
        package_root = build_root / f"{config.slug}{UNPACKED_ARCHIVE_SUFFIX}"
    else:
        package_root = build_root

    archive_path = _anchor(root, config.archive_dir) / config.archive_name
    return ResolvedPaths(
        source_root=source_root,
        source_content=source_root / config.content_dir,
        build_root=build_root,
        package_root=package_root,
        build_content=package_root / config.content_dir,
        archive_path=archive_path,
        errors_path=archive_path.with_name(archive_path.name + ".errors"),
        log_dir=_anchor(root, config.log_dir) if config.log_dir else None,
    )
