"""Utility helpers for the catalog cache service."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass


TAG_RE = re.compile(r"\[[^\]]*\]|〈[^〉]*〉|【[^】]*】|\|[^|]*\||┃[^┃]*┃")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class ParsedName:
    """Display title split from the provider tags around it."""

    title: str
    tags: list[str]


def parse_name(name: str) -> ParsedName:
    """Strip provider tags such as ``[NL]`` or ``〈4K〉`` from a stream name."""

    value = unicodedata.normalize("NFC", name or "")
    tags = [match.group(0)[1:-1].strip() for match in TAG_RE.finditer(value)]
    title = TAG_RE.sub(" ", value)
    title = WHITESPACE_RE.sub(" ", title).strip(" -")
    return ParsedName(title=title, tags=[tag for tag in tags if tag])
