from __future__ import annotations

import logging
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path

from epub_build.framework.config import ResolvedPaths
from epub_build.framework.errors import PackagingError

MIMETYPE_ENTRY = "mimetype"


@dataclass(frozen=True)
class ArchiveRequest:
    source_root: Path
    archive_path: Path

    @classmethod
    def from_paths(cls, paths: ResolvedPaths) -> "ArchiveRequest":
        return cls(source_root=paths.package_root, archive_path=paths.archive_path)


@dataclass(frozen=True)
class ArchiveReport:
    archive_path: Path
    entries: tuple[str, ...]
    size_bytes: int


def _collect_entries(source_root: Path) -> list[str]:
    entries: list[str] = []
    for dirpath, dirnames, filenames in os.walk(source_root):
        dirnames.sort()
        rel_dir = Path(dirpath).relative_to(source_root)
        for filename in sorted(filenames):
            entries.append((rel_dir / filename).as_posix())
    # A root-level mimetype must be the first entry of an EPUB container.
    if MIMETYPE_ENTRY in entries:
        entries.remove(MIMETYPE_ENTRY)
        entries.insert(0, MIMETYPE_ENTRY)
    return entries


def pack(request: ArchiveRequest, *, logger: logging.Logger | None = None) -> ArchiveReport:
    """
    Zip every file under `request.source_root` into `request.archive_path`.

    Entry names are paths relative to the source root. A root-level
    `mimetype` is written first and stored uncompressed; everything else is
    deflated. An empty tree produces an empty archive.

    Raises:
        PackagingError: the tree is missing, the archive would land inside the
            tree, or any read/write fails.
    """

    log = logger or logging.getLogger(__name__)
    source_root = Path(request.source_root).resolve()
    archive_path = Path(request.archive_path).resolve()

    if not source_root.is_dir():
        raise PackagingError(f"Build tree not found: {source_root}")
    if source_root in archive_path.parents:
        raise PackagingError(f"Archive path {archive_path} is inside the build tree {source_root}")

    entries = _collect_entries(source_root)
    if not entries:
        log.warning("Build tree %s is empty; writing an empty archive", source_root)

    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry in entries:
                compress_type = zipfile.ZIP_STORED if entry == MIMETYPE_ENTRY else zipfile.ZIP_DEFLATED
                archive.write(source_root / entry, arcname=entry, compress_type=compress_type)
    except (OSError, zipfile.BadZipFile) as exc:
        raise PackagingError(f"Failed to write archive {archive_path}: {exc}") from exc

    size = archive_path.stat().st_size
    log.info("Packed %d file(s) into %s (%d bytes)", len(entries), archive_path, size)
    return ArchiveReport(archive_path=archive_path, entries=tuple(entries), size_bytes=size)
