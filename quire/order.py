from __future__ import annotations

import re

from .models import Entry

_DIGITS_RE = re.compile(r"(\d+)")


def natural_key(name: str) -> tuple:
    # ``chapter10`` sorts after ``chapter9``.
    parts = _DIGITS_RE.split(name)
    return tuple((0, int(part), part) if part.isdigit() else (1, part, part) for part in parts if part != "")


def _play_order_key(entry: Entry) -> tuple[bool, int]:
    return (entry.play_order is None, entry.play_order or 0)


def resolve_order(entries: list[Entry]) -> None:
    """Assign reading order and chapter numbers in place.

    Designated "before" documents come first, then chapters numbered from 1,
    then every other content document. Non-content entries get no play
    order and end up after the ordered ones, in their name-sorted order.

    Names are compared with ``natural_key`` rather than plain string order,
    so runs of digits compare by value: ``chapter10`` follows ``chapter9``.
    """
    entries.sort(key=lambda entry: natural_key(entry.name))

    before_total = sum(1 for entry in entries if entry.is_content and not entry.is_body and entry.is_before_chapters)
    chapter_total = sum(1 for entry in entries if entry.is_content and entry.is_body)

    before_count = chapter_count = after_count = 0
    for entry in entries:
        if not entry.is_content:
            entry.play_order = None
            entry.chapter_number = None
        elif entry.is_body:
            chapter_count += 1
            entry.play_order = before_total + chapter_count
            entry.chapter_number = chapter_count
        elif entry.is_before_chapters:
            before_count += 1
            entry.play_order = before_count
            entry.chapter_number = None
        else:
            after_count += 1
            entry.play_order = before_total + chapter_total + after_count
            entry.chapter_number = None

    entries.sort(key=_play_order_key)
