"""Header block parsing.

Turns raw ``Name: value`` text into an ordered multimap. Parsing is lenient:
lines without a colon are skipped and header names are not validated.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping

ParsedHeaders = dict[str, list[str]]

_LINE_BREAKS = re.compile(r"[\r\n]+")


def parse_headers(raw: str) -> ParsedHeaders:
    """Parse a raw header block.

    Only the first colon of a line separates name from value, so values such
    as URLs keep their colons. Repeated names accumulate values in order.
    """
    headers: ParsedHeaders = {}
    for line in _LINE_BREAKS.split(raw):
        if ":" not in line:
            continue
        name, value = line.split(":", 1)
        headers.setdefault(name.strip(), []).append(value.strip())
    return headers


def normalize_headers(headers: Mapping[str, str | Iterable[str]]) -> ParsedHeaders:
    """Copy a caller-supplied mapping into ParsedHeaders form.

    A plain string value counts as a single value.
    """
    normalized: ParsedHeaders = {}
    for name, values in headers.items():
        if isinstance(values, str):
            normalized[name] = [values]
        else:
            normalized[name] = list(values)
    return normalized
