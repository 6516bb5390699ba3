from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "epub_build.yaml"
LOCAL_OVERLAY_FILENAME = "epub_build.local.yaml"
CONFIG_ENV_VAR = "EPUB_BUILD_CONFIG"


def find_project_root(start: str | os.PathLike[str] | None = None) -> str:
    """Walk upward from `start` to the directory holding the build config."""

    start_path = Path(start or os.getcwd()).resolve()
    if start_path.is_file():
        start_path = start_path.parent

    for candidate in (start_path, *start_path.parents):
        if (candidate / CONFIG_FILENAME).is_file():
            return str(candidate)

    raise FileNotFoundError(
        f"Cannot locate project root: searched from {start_path} for {CONFIG_FILENAME}"
    )


def _read_mapping(path: str) -> dict[str, Any]:
    """Parse one YAML file; an empty file is an empty mapping."""

    with open(path, "r", encoding="utf-8") as handle:
        try:
            payload = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path} (got {type(payload).__name__})")
    return dict(payload)


def _shape(value: Any) -> str:
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, (list, tuple)):
        return "list"
    return "scalar"


def merge_overlay(base: Any, overlay: Any, *, path: str = "") -> Any:
    """
    Merge a local overlay onto the base config.

    Mappings merge key by key, lists and scalars are replaced wholesale, and an
    explicit `null` in the overlay clears the base value. Changing the shape of
    a value (say a mapping into a list) is rejected with the dotted key path.
    """

    if overlay is None or base is None:
        return overlay

    base_shape, overlay_shape = _shape(base), _shape(overlay)
    if base_shape != overlay_shape:
        where = path or "<root>"
        raise ValueError(
            f"Local overlay changes the type of {where}: base is {base_shape}, overlay is {overlay_shape}"
        )

    if base_shape == "list":
        return list(overlay)
    if base_shape == "scalar":
        return overlay

    merged = dict(base)
    for key, value in overlay.items():
        child = f"{path}.{key}" if path else str(key)
        merged[key] = merge_overlay(base[key], value, path=child) if key in base else value
    return merged


def load_config(
    config_path: str | os.PathLike[str] | None = None,
    *,
    env_var: str | None = CONFIG_ENV_VAR,
    start_dir: str | os.PathLike[str] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load the build configuration mapping.

    Resolution order:
      1. `config_path` (explicit, single file, no overlay)
      2. the `env_var` environment variable (single file, no overlay)
      3. `epub_build.yaml` found by walking up from `start_dir`, with an
         optional sibling `epub_build.local.yaml` deep-merged on top

    Returns `(cfg, meta)`; `meta["project_root"]` is the directory relative
    paths in the config are anchored to.
    """

    explicit_path = None
    if config_path is not None:
        explicit_path = str(config_path).strip() or None
    elif env_var:
        explicit_path = os.environ.get(str(env_var), "").strip() or None

    if explicit_path:
        expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(explicit_path)))
        cfg = _read_mapping(expanded)
        meta = {
            "mode": "env" if config_path is None else "explicit",
            "paths": [expanded],
            "env_var": env_var,
            "project_root": os.path.dirname(expanded),
        }
        return cfg, meta

    project_root = find_project_root(start_dir)
    base_config_path = os.path.join(project_root, CONFIG_FILENAME)
    local_overlay_path = os.path.join(project_root, LOCAL_OVERLAY_FILENAME)

    cfg = _read_mapping(base_config_path)
    loaded_paths = [os.path.abspath(base_config_path)]
    mode = "base"

    if os.path.exists(local_overlay_path):
        overlay = _read_mapping(local_overlay_path)
        cfg = merge_overlay(cfg, overlay)
        loaded_paths.append(os.path.abspath(local_overlay_path))
        mode = "base+local"

    meta = {"mode": mode, "paths": loaded_paths, "env_var": env_var, "project_root": project_root}
    return cfg, meta
