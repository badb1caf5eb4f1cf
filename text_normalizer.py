"""Whitespace normalization shared by every text-acquisition path."""

from __future__ import annotations

import re

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Collapse tabs, newlines and repeated spaces into single spaces and trim.

    >>> normalize("Hello\\n\\tworld  !")
    'Hello world !'
    """

    return _WHITESPACE_RUN.sub(" ", text).strip()
