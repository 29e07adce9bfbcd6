from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

CandidateType = Literal["link", "button", "heading"]
Region = Literal["nav", "header", "footer", "upper", "body"]

MAX_TEXT_CHARS = 240
DEDUPE_TEXT_CHARS = 60


@dataclass
class Candidate:
    type: CandidateType
    text: str
    href: Optional[str]
    region: Region = "body"
    tag_name: Optional[str] = None
    # Live handle into the page; may be detached by the time it is used.
    element: Any = field(default=None, compare=False, repr=False)

    @property
    def dedupe_key(self) -> tuple[str, str, str]:
        return (self.type, self.href or "", (self.text or "")[:DEDUPE_TEXT_CHARS])

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "text": self.text,
            "href": self.href,
            "region": self.region,
            "tagName": self.tag_name,
        }


@dataclass
class ScoredCandidate:
    candidate: Candidate
    score: int

    @property
    def confidence_percent(self) -> int:
        return min(100, max(0, round(self.score / 35 * 100)))

    def to_payload(self, snippet_chars: int = 120) -> dict[str, Any]:
        payload = self.candidate.to_payload()
        payload["text"] = short_snippet(self.candidate.text, snippet_chars)
        payload["score"] = self.score
        payload["confidence"] = self.confidence_percent
        return payload


@dataclass
class SearchRequest:
    query: str
    candidates: list[Candidate] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.query = (self.query or "").strip()
        if not self.query:
            raise ValueError("query must not be blank")


@dataclass(frozen=True)
class RemoteJudgment:
    index: int
    reason: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {"index": self.index, "reason": self.reason}


def short_snippet(text: Optional[str], max_chars: int = 80) -> str:
    if not text:
        return ""
    return text if len(text) <= max_chars else text[: max_chars - 1] + "…"
