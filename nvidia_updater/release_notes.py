"""Plain-text rendering of the catalog's release-notes markup."""
from __future__ import annotations

import re
from datetime import datetime

ANCHOR_PATTERN = re.compile(r"<a.+>")
LEARN_MORE_MARKER = "Learn more"

TAG_REPLACEMENTS = (
    ("<br/>", "\n"),
    ("<br />", "\n"),
    ("<ul>", "\n"),
    ("</ul>", "\n"),
    ("<b>", ">> "),
    ("</b>", " <<"),
    ("<li>", "- "),
    ("</li>", "\n"),
    ("<p>", ""),
    ("</p>", ""),
    ("</a>", ""),
    ("\t", ""),
)


def release_notes_to_text(markup: str | None) -> str:
    if not markup:
        return ""
    text = markup
    for tag, replacement in TAG_REPLACEMENTS:
        text = text.replace(tag, replacement)
    text = ANCHOR_PATTERN.sub("", text)
    marker = text.find(LEARN_MORE_MARKER)
    if marker >= 0:
        text = text[:marker]
    lines = [line.strip() for line in text.strip().split("\n")]
    return "\n".join(lines)


def describe_release_age(released: datetime | None, now: datetime | None = None) -> str:
    if released is None:
        return "release date unknown"
    now = now or datetime.now()
    days = (now.date() - released.date()).days
    if days <= 0:
        return "released today"
    if days == 1:
        return "released yesterday"
    if days < 60:
        return f"released {days} days ago"
    return f"released {days // 30} months ago"
