"""Ant-style URL pattern matching.

``?`` matches one character, ``*`` matches zero or more characters within a
segment, ``**`` matches any number of whole segments (including none) and
``{name}`` / ``{name:regex}`` match a single segment.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable

_DUPLICATE_SLASHES = re.compile(r"/{2,}")


def _clean_slashes(value: str) -> str:
    value = _DUPLICATE_SLASHES.sub("/", value.strip())
    if not value.startswith("/"):
        value = "/" + value
    if len(value) > 1:
        value = value.rstrip("/") or "/"
    return value


def normalize_path(path: str) -> str:
    return _clean_slashes((path or "").split("?", 1)[0].split("#", 1)[0])


def _segment_regex(segment: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(segment):
        ch = segment[i]
        if ch == "{":
            end = segment.find("}", i)
            if end == -1:
                out.append(re.escape(segment[i:]))
                break
            _, _, custom = segment[i + 1 : end].partition(":")
            out.append(f"(?:{custom})" if custom else "[^/]+")
            i = end + 1
            continue
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    # Patterns keep "?" since it is a wildcard there.
    normalized = _clean_slashes(pattern)
    if normalized == "/":
        return re.compile(r"^/$")
    parts: list[str] = []
    for segment in normalized.strip("/").split("/"):
        if segment == "**":
            parts.append(r"(?:/[^/]+)*")
        else:
            parts.append("/" + _segment_regex(segment))
    return re.compile("^" + "".join(parts) + "/?$")


def match(pattern: str, path: str) -> bool:
    if not pattern or not pattern.strip():
        return False
    return compile_pattern(pattern.strip()).match(normalize_path(path)) is not None


def match_any(pattern: str, paths: Iterable[str]) -> bool:
    return any(match(pattern, path) for path in paths)
