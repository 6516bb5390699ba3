from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from epub_build.framework.errors import ValidationInvocationError


@dataclass(frozen=True)
class ValidationReport:
    archive_path: Path
    log_path: Path
    returncode: int

    @property
    def passed(self) -> bool:
        return self.returncode == 0


async def validate_archive(
    archive_path: Path,
    command: Sequence[str],
    *,
    log_path: Path | None = None,
    cwd: Path | None = None,
    logger: logging.Logger | None = None,
) -> ValidationReport:
    """
    Run the external checker on `archive_path`, capturing its output.

    stdout and stderr both go to `log_path` (default `<archive>.errors`). A
    non-zero exit is the checker's verdict and is only logged.

    Raises:
        ValidationInvocationError: the checker could not be started.
    """

    log = logger or logging.getLogger(__name__)
    archive_path = Path(archive_path)
    log_path = Path(log_path) if log_path is not None else archive_path.with_name(archive_path.name + ".errors")
    argv = [*command, str(archive_path)]

    log.info("Validating %s: %s", archive_path.name, " ".join(argv))
    try:
        with open(log_path, "wb") as handle:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=handle,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(cwd) if cwd is not None else None,
            )
            returncode = await process.wait()
    except OSError as exc:
        raise ValidationInvocationError(f"Could not run validator {argv[0]!r}: {exc}") from exc

    if returncode == 0:
        log.info("Validation passed; report written to %s", log_path)
    else:
        log.warning("Validator exited with status %d; see %s", returncode, log_path)
    return ValidationReport(archive_path=archive_path, log_path=log_path, returncode=returncode)
