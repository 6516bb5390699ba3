from pathlib import Path

import pytest

from epub_build.framework.config import BuildConfig, parse_bool, parse_command, resolve_paths
from epub_build.framework.errors import ConfigurationError


def _base_cfg(**overrides):
    cfg = {"book": {"title": "My Book"}}
    cfg.update(overrides)
    return cfg


def test_defaults_match_documented_layout(tmp_path):
    config, warnings = BuildConfig.from_dict(_base_cfg(), project_root=tmp_path)

    assert warnings == []
    assert config.mode == "production"
    assert config.slug == "my-book"
    assert config.archive_name == "my-book.epub"
    assert (config.source_dir, config.build_dir, config.content_dir) == ("src", "build", "EPUB")
    assert (config.host, config.port, config.start_path) == ("127.0.0.1", 3000, "/xhtml")
    assert config.validator_command == ("java", "-jar", "bin/epubcheck.jar")


def test_missing_title_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="book.title"):
        BuildConfig.from_dict({"paths": {"source": "src"}}, project_root=tmp_path)


def test_title_without_words_is_rejected(tmp_path):
    with pytest.raises(ConfigurationError, match="empty archive name"):
        BuildConfig.from_dict({"book": {"title": "!!!"}}, project_root=tmp_path)


def test_unknown_keys_warn_by_default_and_fail_when_strict(tmp_path):
    cfg = _base_cfg(preview={"prot": 4000}, extra=True)
    _config, warnings = BuildConfig.from_dict(cfg, project_root=tmp_path)
    assert "Unknown config key: extra" in warnings
    assert "Unknown config key: preview.prot" in warnings

    with pytest.raises(ConfigurationError, match="preview.prot"):
        BuildConfig.from_dict({**cfg, "strict": True}, project_root=tmp_path)


def test_explicit_mode_overrides_config_mode(tmp_path):
    config, _ = BuildConfig.from_dict(_base_cfg(mode="development"), project_root=tmp_path)
    assert config.mode == "development"

    config, _ = BuildConfig.from_dict(_base_cfg(mode="development"), project_root=tmp_path, mode="production")
    assert config.mode == "production"

    with pytest.raises(ConfigurationError, match="--mode"):
        BuildConfig.from_dict(_base_cfg(), project_root=tmp_path, mode="staging")


def test_invalid_scalars_are_rejected(tmp_path):
    with pytest.raises(ConfigurationError, match="preview.port"):
        BuildConfig.from_dict(_base_cfg(preview={"port": 70000}), project_root=tmp_path)
    with pytest.raises(ConfigurationError, match="preview.open_browser"):
        BuildConfig.from_dict(_base_cfg(preview={"open_browser": "sometimes"}), project_root=tmp_path)
    with pytest.raises(ConfigurationError, match="paths.content"):
        BuildConfig.from_dict(_base_cfg(paths={"content": "../EPUB"}), project_root=tmp_path)
    with pytest.raises(ConfigurationError, match="start with '/'"):
        BuildConfig.from_dict(_base_cfg(preview={"start_path": "xhtml"}), project_root=tmp_path)


def test_build_dir_may_not_contain_sources_or_project(tmp_path):
    with pytest.raises(ConfigurationError, match="must not contain paths.source"):
        BuildConfig.from_dict(_base_cfg(paths={"source": "build/src"}), project_root=tmp_path)
    with pytest.raises(ConfigurationError, match="must not contain"):
        BuildConfig.from_dict(_base_cfg(paths={"build": "."}), project_root=tmp_path)


def test_parse_bool_is_strict():
    assert parse_bool("yes", "x") is True
    assert parse_bool(" False ", "x") is False
    assert parse_bool(0, "x") is False
    with pytest.raises(ConfigurationError):
        parse_bool("false-ish", "x")
    with pytest.raises(ConfigurationError):
        parse_bool(None, "x")


def test_validator_command_accepts_list_or_string():
    assert parse_command("java -jar 'bin/epub check.jar'", "validate.command") == (
        "java",
        "-jar",
        "bin/epub check.jar",
    )
    assert parse_command(["epubcheck"], "validate.command") == ("epubcheck",)
    with pytest.raises(ConfigurationError):
        parse_command([], "validate.command")


def test_resolve_paths_is_deterministic(tmp_path):
    config, _ = BuildConfig.from_dict(_base_cfg(), project_root=tmp_path)
    assert resolve_paths(config) == resolve_paths(config)


def test_development_and_production_differ_only_by_unpacked_segment(tmp_path):
    prod, _ = BuildConfig.from_dict(_base_cfg(), project_root=tmp_path, mode="production")
    dev, _ = BuildConfig.from_dict(_base_cfg(), project_root=tmp_path, mode="development")
    prod_paths = resolve_paths(prod)
    dev_paths = resolve_paths(dev)
    root = Path(tmp_path).resolve()

    assert prod_paths.build_content == root / "build" / "EPUB"
    assert dev_paths.build_content == root / "build" / "my-book.epub" / "EPUB"
    assert prod_paths.package_root == root / "build"
    assert dev_paths.package_root == root / "build" / "my-book.epub"

    for field_name in ("source_root", "source_content", "build_root", "archive_path", "errors_path"):
        assert getattr(prod_paths, field_name) == getattr(dev_paths, field_name)


def test_archive_and_errors_paths(tmp_path):
    config, _ = BuildConfig.from_dict(_base_cfg(paths={"archive": "dist"}), project_root=tmp_path)
    paths = resolve_paths(config)

    assert paths.archive_path == Path(tmp_path).resolve() / "dist" / "my-book.epub"
    assert paths.errors_path.name == "my-book.epub.errors"
    assert paths.log_dir == Path(tmp_path).resolve() / ".epub-build" / "logs"


def test_stage_options_are_read_only(tmp_path):
    config, _ = BuildConfig.from_dict(
        _base_cfg(stages={"styles": {"output_style": "compressed"}}), project_root=tmp_path
    )
    assert config.stage_options["styles"] == {"output_style": "compressed"}
    with pytest.raises(TypeError):
        config.stage_options["scripts"] = {}  # type: ignore[index]
