from __future__ import annotations

import re

# Runs of letters or digits in any script; underscores separate words.
_CHUNK_RE = re.compile(r"[^\W_]+")


def _split_words(chunk: str) -> list[str]:
    # Boundaries: letter/digit change, lower->Upper, and the last capital of an
    # acronym run ("XMLHttp" -> "XML", "Http").
    words: list[str] = []
    current = ""
    for index, char in enumerate(chunk):
        if current:
            prev = current[-1]
            following = chunk[index + 1] if index + 1 < len(chunk) else ""
            if (
                char.isdigit() != prev.isdigit()
                or (char.isupper() and prev.islower())
                or (char.isupper() and prev.isupper() and following.islower())
            ):
                words.append(current)
                current = ""
        current += char
    if current:
        words.append(current)
    return words


def kebab_case(text: str) -> str:
    """Lower-kebab-case a human title: "My Book" -> "my-book", "Café 2" -> "café-2".

    Letters outside ASCII are kept; scripts without case ("日本語") stay one word.
    """

    words = [word for chunk in _CHUNK_RE.findall(text or "") for word in _split_words(chunk)]
    return "-".join(word.lower() for word in words)


def archive_filename(title: str, *, extension: str = ".epub") -> str:
    slug = kebab_case(title)
    if not slug:
        raise ValueError(f"Title produces an empty archive name: {title!r}")
    return f"{slug}{extension}"
