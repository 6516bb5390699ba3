"""Ordered include/exclude glob matching over relative POSIX paths.

Pattern semantics follow the usual build-tool convention:

- `**` matches any number of directories (including none),
- `*` and `?` never cross a `/`,
- a leading `!` turns the pattern into an exclusion.

Patterns are applied in order: a path is selected if the last pattern that
matches it is an inclusion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    text = pattern.strip().lstrip("/")
    if not text:
        raise ValueError("Glob pattern cannot be empty")

    out: list[str] = []
    i = 0
    while i < len(text):
        if text.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif text.startswith("**", i):
            out.append(".*")
            i += 2
        elif text[i] == "*":
            out.append("[^/]*")
            i += 1
        elif text[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(text[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


@dataclass(frozen=True)
class GlobSet:
    patterns: tuple[str, ...]

    def __post_init__(self) -> None:
        patterns = tuple(str(p).strip() for p in self.patterns)
        if not any(p and not p.startswith("!") for p in patterns):
            raise ValueError(f"Glob set needs at least one inclusion pattern: {list(self.patterns)!r}")
        for pattern in patterns:
            compile_glob(pattern[1:] if pattern.startswith("!") else pattern)
        object.__setattr__(self, "patterns", patterns)

    def matches(self, rel_path: str) -> bool:
        selected = False
        for pattern in self.patterns:
            negated = pattern.startswith("!")
            body = pattern[1:] if negated else pattern
            if compile_glob(body).match(rel_path):
                selected = not negated
        return selected

    def filter(self, rel_paths: Iterable[str]) -> list[str]:
        return [path for path in rel_paths if self.matches(path)]