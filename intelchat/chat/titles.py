"""Session titles derived from the opening user message."""

from __future__ import annotations

import re

MAX_TITLE_CHARS = 50

_APT_RE = re.compile(r"APT-?\d+", re.IGNORECASE)
_ACTOR_RE = re.compile(r"Lazarus|Kimsuky|Cozy Bear|Fancy Bear|LockBit|BlackCat|ALPHV|Conti|REvil|Cl0p", re.IGNORECASE)
_CVE_RE = re.compile(r"CVE-\d{4}-\d+", re.IGNORECASE)

# Checked in order; the first keyword present wins.
_KEYWORD_TITLES = (
    ("ransomware", "Ransomware query"),
    ("victim", "Victim inquiry"),
    ("malware", "Malware query"),
)


def _cap(title: str) -> str:
    if len(title) <= MAX_TITLE_CHARS:
        return title
    return title[: MAX_TITLE_CHARS - 3] + "..."


def derive_title(message: str) -> str:
    """
    APT ids win over named actors, which win over CVE ids, then keyword buckets.
    Otherwise the first five words, with "..." when the message is longer.
    """
    words = (message or "").split()
    if not words:
        return "New chat"
    txt = " ".join(words)

    m = _APT_RE.search(txt) or _ACTOR_RE.search(txt)
    if m:
        return _cap(f"{m.group(0)} inquiry")

    m = _CVE_RE.search(txt)
    if m:
        return _cap(f"{m.group(0)} lookup")

    low = txt.lower()
    for kw, title in _KEYWORD_TITLES:
        if kw in low:
            return title

    title = " ".join(words[:5])
    if len(words) > 5:
        title += "..."
    return _cap(title)
