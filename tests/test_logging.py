import logging
from pathlib import Path

from epub_build.foundation.logging_utils import LOG_FORMAT, close_logger, generate_run_id, setup_build_logger


def test_build_logger_writes_utf8_file_at_debug(tmp_path: Path):
    logger, log_file = setup_build_logger(str(tmp_path / "logs"), "unicode_run")
    try:
        logger.debug("Rebuilt chapter → café.xhtml")
    finally:
        close_logger(logger)

    assert log_file == str(tmp_path / "logs" / "unicode_run_build.log")
    content = Path(log_file).read_text(encoding="utf-8")
    assert "Rebuilt chapter → café.xhtml" in content
    assert " | DEBUG | " in content


def test_console_handler_level_follows_verbose(tmp_path: Path):
    quiet, _ = setup_build_logger(None, "quiet_run")
    loud, _ = setup_build_logger(None, "loud_run", verbose=True)
    try:
        assert [h.level for h in quiet.handlers] == [logging.INFO]
        assert [h.level for h in loud.handlers] == [logging.DEBUG]
        assert quiet.propagate is False
        assert quiet.handlers[0].formatter._fmt == LOG_FORMAT
    finally:
        close_logger(quiet)
        close_logger(loud)


def test_close_logger_releases_handlers(tmp_path: Path):
    logger, _ = setup_build_logger(str(tmp_path), "closing_run")
    close_logger(logger)

    assert logger.handlers == []


def test_generate_run_id_is_timestamp_shaped():
    run_id = generate_run_id()
    date, time = run_id.split("_")
    assert len(date) == 8 and date.isdigit()
    assert len(time) == 6 and time.isdigit()
