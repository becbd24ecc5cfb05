import re
from typing import Optional

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def normalize_tag(tag: Optional[str]) -> str:
    return (tag or "").strip()


def fts_query(text: str) -> str:
    """Turn free text into a safe FTS5 MATCH expression.

    Each word becomes a quoted prefix term, so punctuation in user input can
    never produce an FTS5 syntax error and partial words still match.
    Returns "" when the text has no searchable words.
    """
    tokens = _TOKEN_RE.findall(text or "")
    return " ".join(f'"{t}"*' for t in tokens)


def make_snippet(s: str, query: str, radius: int = 80) -> str:
    """Window of ``s`` around the first occurrence of ``query`` (or of its first word)."""
    if not s:
        return ""
    flat = s.replace("\n", " ")
    lowered = flat.lower()
    needle = (query or "").strip().lower()
    start = lowered.find(needle) if needle else -1
    if start < 0:
        needle = ""
        for token in _TOKEN_RE.findall(query or ""):
            start = lowered.find(token.lower())
            if start >= 0:
                needle = token
                break
    if start < 0:
        start = 0
    begin = max(0, start - radius)
    end = min(len(flat), start + len(needle) + radius)
    snippet = flat[begin:end].strip()
    if begin > 0:
        snippet = "..." + snippet
    if end < len(flat):
        snippet = snippet + "..."
    return snippet
