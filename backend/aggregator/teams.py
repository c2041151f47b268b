"""
Team-name normalization and fuzzy similarity.

Different upstreams spell the same club differently ("Arsenal FC",
"Arsenal", "AFC Bournemouth"). Everything that compares team names goes
through ``normalize_team_name`` first.
"""
from __future__ import annotations

import math
import re
import unicodedata
from typing import Optional

# Club-form tokens that never distinguish two teams. City/United/Town do.
_REDUNDANT_TOKENS = re.compile(r"\b(fc|afc|cf|sc|ac|as|ss|rc|rfc)\b")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

EXACT_SCORE = 100
CONTAINMENT_SCALE = 90
TOKEN_SCALE = 80
MIN_TOKEN_LEN = 3
MIN_SHARED_WORD_LEN = 4


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_team_name(name: Optional[str]) -> str:
    if not name:
        return ""
    value = name.lower().strip()
    value = _REDUNDANT_TOKENS.sub("", value)
    value = _NON_ALNUM.sub("", value)
    return _WHITESPACE.sub(" ", value).strip()


def _tokens(normalized: str) -> list[str]:
    return [t for t in normalized.split(" ") if len(t) >= MIN_TOKEN_LEN]


def _tokens_related(a: str, b: str) -> bool:
    return a == b or a in b or b in a


def _directional_matches(source: list[str], target: list[str]) -> int:
    return sum(1 for s in source if any(_tokens_related(s, t) for t in target))


def similarity(a: Optional[str], b: Optional[str]) -> int:
    """
    Score how alike two team names are, 0..100.

    Exact match after normalization scores 100. If one name contains the
    other the score is the length ratio scaled to 90. Otherwise tokens of
    three or more characters are compared and the matched share is scaled
    to 80. The matched count is the smaller of the two directional counts
    so that ``similarity(a, b) == similarity(b, a)``.
    """
    na, nb = normalize_team_name(a), normalize_team_name(b)
    if not na or not nb:
        return 0
    if na == nb:
        return EXACT_SCORE

    if na in nb or nb in na:
        shorter, longer = sorted((len(na), len(nb)))
        return round_half_up(shorter / longer * CONTAINMENT_SCALE)

    tokens_a, tokens_b = _tokens(na), _tokens(nb)
    total = max(len(tokens_a), len(tokens_b))
    if total == 0:
        return 0
    matched = min(
        _directional_matches(tokens_a, tokens_b),
        _directional_matches(tokens_b, tokens_a),
    )
    return round_half_up(matched / total * TOKEN_SCALE)


def teams_match(a: Optional[str], b: Optional[str]) -> bool:
    """Boolean fuzzy match used to filter site listings for a requested team."""
    na, nb = normalize_team_name(a), normalize_team_name(b)
    if not na or not nb:
        return False
    if na == nb or na in nb or nb in na:
        return True
    words_b = {w for w in nb.split(" ") if len(w) >= MIN_SHARED_WORD_LEN}
    return any(w in words_b for w in na.split(" ") if len(w) >= MIN_SHARED_WORD_LEN)


def slugify(name: Optional[str]) -> str:
    """URL slug: ascii-folded, lower-case, runs of non-alphanumerics become "-"."""
    folded = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", folded.lower())
    return slug.strip("-")
