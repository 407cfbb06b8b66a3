"""Utility helpers for the Shufflist service."""

from __future__ import annotations

import json
import random
import re
import secrets
from typing import Any, MutableSequence, TypeVar
from urllib.parse import quote

T = TypeVar("T")

IMDB_ID_RE = re.compile(r"^tt\d+$")
PLACEHOLDER_POSTER_URL = "https://placehold.co/600x900/7B5BF5/ffffff/png"


def is_imdb_id(value: object) -> bool:
    """Return ``True`` for IMDB-style ``tt1234567`` identifiers."""

    return isinstance(value, str) and bool(IMDB_ID_RE.match(value.strip()))


def new_identifier() -> str:
    """Return a short random identifier for new lists and slots."""

    return secrets.token_hex(6)


def placeholder_poster_url(text: str) -> str:
    """Build a placeholder poster showing ``text`` one word per line."""

    label = "\n".join(text.split())
    return f"{PLACEHOLDER_POSTER_URL}?text={quote(label, safe='')}&font=PT Sans"


def shuffle_in_place(
    items: MutableSequence[T], rng: random.Random | None = None
) -> MutableSequence[T]:
    """Fisher-Yates shuffle: one backwards pass of swaps, every order equally likely."""

    generator = rng or random
    for index in range(len(items) - 1, 0, -1):
        swap = generator.randint(0, index)
        items[index], items[swap] = items[swap], items[index]
    return items


def extract_script_json(html: str, script_id: str) -> Any:
    """Parse the JSON body of the ``<script id=...>`` element in ``html``."""

    pattern = re.compile(
        rf"<script[^>]*\bid=\"{re.escape(script_id)}\"[^>]*>(.*?)</script>",
        re.DOTALL,
    )
    match = pattern.search(html)
    if not match:
        raise ValueError(f"{script_id} missing")
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{script_id} is not valid JSON") from exc
