import logging
from pathlib import Path

import pytest

from epub_build.framework.config import BuildConfig, resolve_paths
from epub_build.framework.errors import ConfigurationError, TransformError
from epub_build.framework.runtime import BuildContext
from epub_build.framework.stage import (
    Asset,
    PipelineStage,
    Transform,
    check_output_collisions,
    list_source_files,
    plan_outputs,
    run_stage,
)
from epub_build.stages.markup import ReplaceExtension


def _make_ctx(tmp_path, *, mode="production", logger_name="test.stage_pipeline") -> BuildContext:
    config = BuildConfig(title="My Book", project_root=tmp_path, mode=mode, open_browser=False)
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return BuildContext(config=config, paths=resolve_paths(config), logger=logger, run_id="test")


def _write(root: Path, rel_path: str, text: str = "x") -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class Upper(Transform):
    name = "upper"

    def apply(self, asset, ctx):
        return asset.with_text(asset.text().upper())


class DropAll(Transform):
    name = "drop_all"
    modes = frozenset({"development"})

    def apply(self, asset, ctx):
        return None


class Explode(Transform):
    name = "explode"

    def apply(self, asset, ctx):
        raise RuntimeError("cannot parse")


def _markup_stage(*transforms):
    return PipelineStage(
        name="markup",
        patterns=("html/**/*.html",),
        transforms=transforms or (ReplaceExtension(".xhtml"),),
        base="html",
        dest="xhtml",
    )


def test_mode_conditional_rename_runs_only_in_production(tmp_path):
    _write(tmp_path / "src" / "EPUB", "html/ch1.html", "<p>1</p>")
    _write(tmp_path / "src" / "EPUB", "html/part/ch2.html", "<p>2</p>")

    prod = _make_ctx(tmp_path, mode="production")
    report = run_stage(_markup_stage(), prod)
    assert report.written == ("xhtml/ch1.xhtml", "xhtml/part/ch2.xhtml")
    assert (prod.paths.build_content / "xhtml" / "ch1.xhtml").read_text(encoding="utf-8") == "<p>1</p>"

    dev = _make_ctx(tmp_path, mode="development")
    report = run_stage(_markup_stage(), dev)
    assert report.written == ("xhtml/ch1.html", "xhtml/part/ch2.html")
    assert (dev.paths.build_content / "xhtml" / "part" / "ch2.html").is_file()


def test_transforms_chain_and_mode_tags_are_honored(tmp_path):
    _write(tmp_path / "src" / "EPUB", "html/ch1.html", "hello")
    stage = _markup_stage(Upper(), DropAll())

    prod = _make_ctx(tmp_path, mode="production")
    assert run_stage(stage, prod).written == ("xhtml/ch1.html",)
    assert (prod.paths.build_content / "xhtml" / "ch1.html").read_text(encoding="utf-8") == "HELLO"

    dev = _make_ctx(tmp_path, mode="development")
    report = run_stage(stage, dev)
    assert report.written == ()
    assert report.skipped == ("html/ch1.html",)


def test_zero_matches_is_success(tmp_path):
    ctx = _make_ctx(tmp_path)
    report = run_stage(_markup_stage(), ctx)

    assert report.written == ()
    assert not ctx.paths.build_content.exists()


def test_transform_failure_names_file_and_transform(tmp_path):
    _write(tmp_path / "src" / "EPUB", "html/bad.html")
    ctx = _make_ctx(tmp_path)

    with pytest.raises(TransformError) as excinfo:
        run_stage(_markup_stage(Explode()), ctx)

    assert excinfo.value.path == "html/bad.html"
    assert excinfo.value.transform == "explode"
    assert "[explode] html/bad.html: cannot parse" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_flatten_and_dest(tmp_path):
    _write(tmp_path / "src" / "EPUB", "scss/theme/print.txt")
    stage = PipelineStage(name="flat", patterns=("scss/**/*",), base="scss", dest="css", flatten=True)

    assert stage.destination("scss/theme/print.txt", "production") == "css/print.txt"
    assert run_stage(stage, _make_ctx(tmp_path)).written == ("css/print.txt",)


def test_package_scope_writes_to_package_root(tmp_path):
    _write(tmp_path / "src", "mimetype", "application/epub+zip")
    _write(tmp_path / "src", "META-INF/container.xml", "<container/>")
    stage = PipelineStage(name="metadata", patterns=("mimetype", "META-INF/**"), scope="package")

    ctx = _make_ctx(tmp_path, mode="development")
    run_stage(stage, ctx)

    assert (ctx.paths.package_root / "mimetype").read_text(encoding="utf-8") == "application/epub+zip"
    assert (ctx.paths.package_root / "META-INF" / "container.xml").is_file()
    assert ctx.paths.package_root.name == "my-book.epub"


def test_output_collisions_are_detected_before_running(tmp_path):
    _write(tmp_path / "src" / "EPUB", "html/a/ch1.html")
    _write(tmp_path / "src" / "EPUB", "html/b/ch1.html")
    flat = PipelineStage(name="flat", patterns=("html/**/*.html",), base="html", dest="xhtml", flatten=True)
    ctx = _make_ctx(tmp_path)

    planned = plan_outputs([flat], ctx.paths, ctx.mode)
    assert len(planned[ctx.paths.build_content / "xhtml" / "ch1.html"]) == 2

    with pytest.raises(ConfigurationError, match="EPUB/xhtml/ch1.html"):
        check_output_collisions([flat], ctx.paths, ctx.mode)


def test_list_source_files_skips_dotfiles_and_sorts(tmp_path):
    _write(tmp_path, "b.txt")
    _write(tmp_path, "a/z.txt")
    _write(tmp_path, ".hidden")
    _write(tmp_path, ".git/config")

    assert list_source_files(tmp_path) == ["a/z.txt", "b.txt"]
    assert list_source_files(tmp_path / "missing") == []


def test_pipeline_stage_rejects_non_transforms():
    with pytest.raises(TypeError):
        PipelineStage(name="bad", patterns=("**/*",), transforms=(object(),))  # type: ignore[arg-type]


def test_asset_text_helpers(tmp_path):
    asset = Asset(path="a.txt", content=b"abc", source=tmp_path / "a.txt")
    assert asset.with_text("xyz").content == b"xyz"
    assert asset.text() == "abc"
