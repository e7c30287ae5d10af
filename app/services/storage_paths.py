"""Hierarchical storage keys for publications."""

from __future__ import annotations

import re

from app.services.filename_parser import DEFAULT_NAME

PUBLICATIONS_PREFIX = "publications"
UNSAFE_NAME_RE = re.compile(r"[^\w. -]+")


def _name_segment(name: str) -> str:
    segment = UNSAFE_NAME_RE.sub("_", name.strip().lower())
    if segment in {"", ".", ".."}:
        return DEFAULT_NAME
    return segment


def build_storage_path(
    name: str,
    year: int | None = None,
    month: int | None = None,
    day: int | None = None,
) -> str:
    """Build ``publications/{name}[/{year}[/{MM}[/{DD}]]]``.

    A deeper segment is only added when every shallower one is present, so
    a day is never used without a month, nor a month without a year.
    """
    path = f"{PUBLICATIONS_PREFIX}/{_name_segment(name)}"
    if year:
        path += f"/{year}"
        if month:
            path += f"/{month:02d}"
            if day:
                path += f"/{day:02d}"
    return path
