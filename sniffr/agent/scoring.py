"""Heuristic relevance scoring used when the remote ranker has no usable answer.

The point values are tuned by hand and kept stable on purpose; changing them
changes which element gets highlighted on real pages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from ..models import Candidate, ScoredCandidate

DEFAULT_MAX_RESULTS = 5
DEFAULT_MIN_ACCEPT_SCORE = 8

EXACT_MATCH_POINTS = 22
SUBSTRING_POINTS = 14
WORD_EXACT_POINTS = 7
WORD_SUBSTRING_POINTS = 5
WORD_HREF_POINTS = 3
HREF_QUERY_POINTS = 7
KEYWORD_POINTS = 2
KEYWORD_QUERY_POINTS = 3
HEADING_POINTS = 3
CONCISE_LABEL_POINTS = 5
LONG_LABEL_PENALTY = 3
FILLER_PENALTY = 2

REGION_POINTS = {
    "nav": 11,
    "header": 6,
    "upper": 4,
    "footer": -5,
    "body": 0,
}

# "portal" appears twice, so portal matches are weighted double.
NAV_KEYWORDS = [
    "portal",
    "login",
    "log in",
    "sign in",
    "account",
    "dashboard",
    "student",
    "admissions",
    "apply",
    "register",
    "registration",
    "calendar",
    "schedule",
    "billing",
    "payment",
    "pay",
    "contact",
    "support",
    "help",
    "courses",
    "classes",
    "portal",
]

FILLER_PATTERN = re.compile(r"click here|read more|learn more", re.IGNORECASE)


def score_candidate(candidate: Candidate, query: str) -> int:
    q = (query or "").lower().strip()
    if not q:
        return 0
    raw_text = candidate.text or ""
    text = raw_text.lower()
    href = (candidate.href or "").lower()
    words = q.split()

    score = 0

    if text == q:
        score += EXACT_MATCH_POINTS
    if q in text:
        score += SUBSTRING_POINTS

    for word in words:
        if text == word:
            score += WORD_EXACT_POINTS
        elif word in text:
            score += WORD_SUBSTRING_POINTS
        if word in href:
            score += WORD_HREF_POINTS

    if q in href:
        score += HREF_QUERY_POINTS

    for keyword in NAV_KEYWORDS:
        matches = keyword in text or keyword in href
        if matches:
            score += KEYWORD_POINTS
            if keyword in q:
                score += KEYWORD_QUERY_POINTS

    score += REGION_POINTS.get(candidate.region, 0)

    if candidate.type == "heading":
        score += HEADING_POINTS

    length = len(raw_text)
    if 0 < length <= 30:
        score += CONCISE_LABEL_POINTS
    elif length > 70:
        score -= LONG_LABEL_PENALTY

    if FILLER_PATTERN.search(raw_text):
        score -= FILLER_PENALTY

    return score


def rank_candidates(
    candidates: Iterable[Candidate],
    query: str,
    max_results: int = DEFAULT_MAX_RESULTS,
    min_score: int = DEFAULT_MIN_ACCEPT_SCORE,
) -> List[ScoredCandidate]:
    """Score, order and threshold candidates.

    Scores <= 0 are dropped. Ordering is by descending score; equal scores keep
    extraction order (``sorted`` is stable). Only scores >= ``min_score`` are
    accepted, and at most ``max_results`` are returned.
    """

    scored = []
    for cand in candidates:
        value = score_candidate(cand, query)
        if value > 0:
            scored.append(ScoredCandidate(candidate=cand, score=value))

    scored = sorted(scored, key=lambda s: s.score, reverse=True)
    accepted = [s for s in scored if s.score >= min_score]
    return accepted[:max_results]


@dataclass
class LocalSearchResponse:
    found: bool
    results: List[ScoredCandidate] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {"found": self.found, "results": [r.to_payload() for r in self.results]}


def search_locally(
    candidates: Sequence[Candidate],
    query: str,
    max_results: int = DEFAULT_MAX_RESULTS,
    min_score: int = DEFAULT_MIN_ACCEPT_SCORE,
) -> LocalSearchResponse:
    if not (query or "").strip():
        return LocalSearchResponse(found=False)
    results = rank_candidates(candidates, query, max_results=max_results, min_score=min_score)
    return LocalSearchResponse(found=bool(results), results=results)
