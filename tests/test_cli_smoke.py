import logging
import io
import json
import sys
import zipfile
from pathlib import Path

import yaml
from PIL import Image

from epub_build import cli
from epub_build.app.build import prepare_build, run_build

SCSS = "$ink: #222222;\nbody {\n  color: $ink;\n  p { margin: 0; }\n}\n"


def _write(root: Path, rel_path: str, data) -> None:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, bytes):
        path.write_bytes(data)
    else:
        path.write_text(data, encoding="utf-8")


def _png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), (10, 120, 200)).save(buffer, format="PNG", compress_level=0)
    return buffer.getvalue()


def _project(tmp_path, **overrides) -> Path:
    content = tmp_path / "src" / "EPUB"
    _write(content, "html/ch1.html", "<html><body><p>Chapter one</p></body></html>")
    _write(content, "scss/styles.scss", SCSS)
    _write(content, "images/cover.png", _png())

    cfg = {"book": {"title": "My Book"}, "preview": {"open_browser": False, "port": 0}}
    cfg.update(overrides)
    config_path = tmp_path / "epub_build.yaml"
    config_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return config_path


def test_build_epub_produces_expected_tree_and_archive(tmp_path):
    config_path = _project(tmp_path)

    rc = cli.main(["run", "build-epub", "--config", str(config_path)])

    assert rc == 0
    content = tmp_path / "build" / "EPUB"
    assert (content / "xhtml" / "ch1.xhtml").is_file()
    assert (content / "images" / "cover.png").is_file()
    css = (content / "css" / "styles.css").read_text(encoding="utf-8")
    assert css.replace(" ", "").startswith("body{color:#222")
    assert "\n" not in css.strip()

    with zipfile.ZipFile(tmp_path / "my-book.epub") as archive:
        assert sorted(archive.namelist()) == [
            "EPUB/css/styles.css",
            "EPUB/images/cover.png",
            "EPUB/xhtml/ch1.xhtml",
        ]

    logs = tmp_path / ".epub-build" / "logs"
    summaries = list(logs.glob("*_tasks.json"))
    assert len(summaries) == 1
    summary = json.loads(summaries[0].read_text(encoding="utf-8"))
    assert summary["ok"] is True
    assert summary["mode"] == "production"
    assert "build-epub/build/styles" in [record["path"] for record in summary["tasks"]]


def test_unknown_task_exits_2_and_touches_nothing(tmp_path, capsys):
    config_path = _project(tmp_path)

    rc = cli.main(["run", "build-epbu", "--config", str(config_path)])

    assert rc == 2
    assert "build-epub" in capsys.readouterr().err
    assert not (tmp_path / "build").exists()
    assert not (tmp_path / ".epub-build").exists()
    assert not (tmp_path / "my-book.epub").exists()


def test_failing_stage_exits_1_and_skips_packaging(tmp_path):
    config_path = _project(tmp_path)
    _write(tmp_path / "src" / "EPUB", "scss/styles.scss", "body { color: ; ")

    rc = cli.main(["run", "build-epub", "--config", str(config_path)])

    assert rc == 1
    assert not (tmp_path / "my-book.epub").exists()
    # Sibling stages in the same parallel group still ran to completion.
    assert (tmp_path / "build" / "EPUB" / "xhtml" / "ch1.xhtml").is_file()


def test_invalid_config_exits_2(tmp_path, capsys):
    config_path = _project(tmp_path, stages={"styles": {"output_style": "tiny"}})

    rc = cli.main(["run", "build-epub", "--config", str(config_path)])

    assert rc == 2
    assert "output_style" in capsys.readouterr().err


def test_strict_flag_rejects_unknown_keys(tmp_path):
    config_path = _project(tmp_path, typo_key=1)

    assert cli.main(["run", "build-epub", "--strict", "--config", str(config_path)]) == 2
    assert not (tmp_path / "build").exists()


def test_build_validate_is_non_fatal_for_checker_verdict_and_missing_checker(tmp_path):
    checker = [sys.executable, "-c", "import sys; print('E: bad', sys.argv[-1]); sys.exit(3)"]
    config_path = _project(tmp_path, validate={"command": checker})

    assert cli.main(["run", "build-validate", "--config", str(config_path)]) == 0
    report = (tmp_path / "my-book.epub.errors").read_text(encoding="utf-8")
    assert "E: bad" in report
    assert report.strip().endswith("my-book.epub")

    config_path = _project(tmp_path, validate={"command": ["no-such-epubcheck-binary"]})
    assert cli.main(["run", "build-validate", "--config", str(config_path)]) == 0


def test_dev_entry_point_builds_unpacked_tree_serves_and_watches(tmp_path):
    config_path = _project(tmp_path)
    cfg = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    watched_roots = []

    async def no_changes(root, stop_event):
        watched_roots.append(root)
        return
        yield  # pragma: no cover

    prepared = prepare_build(cfg, project_root=tmp_path, task_name="dev", change_source=no_changes)
    outcome = run_build(prepared, task_name="dev", run_id="dev_smoke")

    assert outcome.ok is True
    assert prepared.config.mode == "development"
    content = tmp_path / "build" / "my-book.epub" / "EPUB"
    assert (content / "xhtml" / "ch1.html").is_file()
    css = (content / "css" / "styles.css").read_text(encoding="utf-8")
    assert "sourceMappingURL=data:application/json" in css
    assert len(watched_roots) == 4
    assert not (tmp_path / "my-book.epub").is_file()


def test_mode_flag_overrides_entry_point_default(tmp_path):
    config_path = _project(tmp_path)

    rc = cli.main(["run", "build-epub", "--mode", "development", "--config", str(config_path)])

    assert rc == 0
    assert (tmp_path / "build" / "my-book.epub" / "EPUB" / "xhtml" / "ch1.html").is_file()
    with zipfile.ZipFile(tmp_path / "my-book.epub") as archive:
        assert "EPUB/xhtml/ch1.html" in archive.namelist()


def test_list_tasks_smoke(tmp_path, capsys):
    config_path = _project(tmp_path)

    assert cli.main(["list-tasks", "--config", str(config_path)]) == 0

    out = capsys.readouterr().out
    assert "build-epub [production]" in out
    assert "dev [development]" in out
    assert "watch-proof" in out


def test_show_paths_smoke(tmp_path, capsys):
    config_path = _project(tmp_path)

    assert cli.main(["show-paths", "--mode", "development", "--config", str(config_path)]) == 0

    out = capsys.readouterr().out
    assert "mode: development" in out
    assert str(Path(tmp_path).resolve() / "build" / "my-book.epub" / "EPUB") in out


def test_missing_config_exits_2(tmp_path, capsys):
    assert cli.main(["show-paths", "--config", str(tmp_path / "missing.yaml")]) == 2
    assert "config error" in capsys.readouterr().err


def test_run_build_closes_logger_handlers(tmp_path):
    config_path = _project(tmp_path)
    cfg = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    prepared = prepare_build(cfg, project_root=tmp_path, task_name="copy")

    outcome = run_build(prepared, task_name="copy", run_id="closed_handlers")

    assert outcome.ok is True
    assert logging.getLogger("epub_build.closed_handlers").handlers == []
    assert (tmp_path / ".epub-build" / "logs" / "closed_handlers_build.log").is_file()


def test_build_proof_builds_production_tree_and_watches_without_preview(tmp_path):
    config_path = _project(tmp_path)
    cfg = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    watched_roots = []

    async def no_changes(root, stop_event):
        watched_roots.append(root)
        return
        yield  # pragma: no cover

    prepared = prepare_build(cfg, project_root=tmp_path, task_name="build-proof", change_source=no_changes)
    outcome = run_build(prepared, task_name="build-proof", run_id="proof_smoke")

    assert outcome.ok is True
    assert prepared.config.mode == "production"
    assert (tmp_path / "build" / "EPUB" / "xhtml" / "ch1.xhtml").is_file()
    assert len(watched_roots) == 2
    assert not (tmp_path / "my-book.epub").exists()


def test_non_matching_files_in_owned_directories_reach_the_archive(tmp_path):
    config_path = _project(tmp_path)
    content = tmp_path / "src" / "EPUB"
    _write(content, "html/notes.txt", "reading notes")
    _write(content, "scss/legacy.css", "p {\n  margin: 0;\n}\n")

    assert cli.main(["run", "build-epub", "--config", str(config_path)]) == 0

    built = tmp_path / "build" / "EPUB"
    assert (built / "xhtml" / "notes.txt").read_text(encoding="utf-8") == "reading notes"
    assert (built / "css" / "legacy.css").read_text(encoding="utf-8").startswith("p{margin:0")
    with zipfile.ZipFile(tmp_path / "my-book.epub") as archive:
        names = set(archive.namelist())
    assert {"EPUB/xhtml/notes.txt", "EPUB/css/legacy.css", "EPUB/xhtml/ch1.xhtml"} <= names
