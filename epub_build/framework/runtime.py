from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from epub_build.framework.config import BuildConfig, BuildMode, ResolvedPaths

if TYPE_CHECKING:  # pragma: no cover
    from epub_build.framework.preview import PreviewSession
    from taskkit import TaskRunner


@dataclass
class BuildContext:
    config: BuildConfig
    paths: ResolvedPaths
    logger: logging.Logger
    run_id: str

    records: list[dict[str, Any]] = field(default_factory=list)

    session: "PreviewSession | None" = None
    runner: "TaskRunner | None" = None
    shutdown: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def mode(self) -> BuildMode:
        return self.config.mode
