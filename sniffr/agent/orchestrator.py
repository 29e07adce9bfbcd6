from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from ..config import Settings, settings as default_settings
from ..errors import HighlightError
from ..models import Candidate, ScoredCandidate, SearchRequest
from .browser import BrowserSession
from .dom_scanner import is_attached, resolve_by_href, scan_candidates
from .highlight import highlight_element
from .relay import RelayClient
from .scoring import search_locally

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = (
    "I sniffed around but couldn't find anything matching \"{query}\" on this page. "
    "Try rephrasing or being more specific."
)
UNREACHABLE_MESSAGE = "I couldn't search this page. Some pages block automated access."
EMPTY_QUERY_MESSAGE = "Tell me what you're trying to find on this page (e.g. portal, login, contact)."


class SearchState(str, Enum):
    COLLECTING_CANDIDATES = "collecting_candidates"
    REMOTE_RANKING = "remote_ranking"
    LOCAL_FALLBACK = "local_fallback"
    RESOLVED = "resolved"


class MissReason(str, Enum):
    COLLECTION_FAILED = "collection_failed"
    NO_CANDIDATES = "no_candidates"
    UNREACHABLE = "unreachable"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    NO_JUDGMENT = "no_judgment"
    NO_MATCH = "no_match"
    OUT_OF_BOUNDS = "out_of_bounds"
    REMOTE_DISABLED = "remote_disabled"


@dataclass(frozen=True)
class RemoteWinner:
    index: int
    candidate: Candidate
    reason: str
    cached: bool = False


@dataclass(frozen=True)
class RemoteMiss:
    reason: MissReason
    detail: str = ""


RemoteStageResult = Union[RemoteWinner, RemoteMiss]


@dataclass
class SearchResult:
    query_id: str
    query: str
    source: str = "none"
    winner: Optional[Candidate] = None
    rationale: Optional[str] = None
    results: List[ScoredCandidate] = field(default_factory=list)
    highlighted: bool = False
    page_unreachable: bool = False
    miss: Optional[RemoteMiss] = None
    trace: List[SearchState] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.winner is not None

    @property
    def message(self) -> str:
        return format_reply(self)

    def to_payload(self) -> dict[str, Any]:
        return {
            "query_id": self.query_id,
            "query": self.query,
            "found": self.found,
            "source": self.source,
            "winner": self.winner.to_payload() if self.winner else None,
            "reason": self.rationale,
            "results": [r.to_payload() for r in self.results],
            "highlighted": self.highlighted,
            "message": self.message,
        }


def format_reply(result: SearchResult) -> str:
    """User-facing text for a finished search; never exposes raw errors."""

    if not result.query:
        return EMPTY_QUERY_MESSAGE
    if result.page_unreachable:
        return UNREACHABLE_MESSAGE
    if not result.found:
        return NOT_FOUND_MESSAGE.format(query=result.query)

    if result.source == "remote" and result.winner is not None:
        label = result.winner.text or result.winner.href or "(no label)"
        lines = [f"I found a match: \"{label}\"."]
        if result.rationale:
            lines.append(result.rationale)
        if result.winner.href:
            lines.append(f"Link: {result.winner.href}")
        return "\n".join(lines)

    count = len(result.results)
    lines = [f"I found {count} match{'es' if count > 1 else ''}."]
    for i, scored in enumerate(result.results, start=1):
        cand = scored.candidate
        label = cand.text or cand.href or "(no label)"
        line = f"{i}. {label} ({scored.confidence_percent}%)"
        if cand.href:
            line += f" {cand.href}"
        lines.append(line)
    return "\n".join(lines)


Scanner = Callable[..., Awaitable[List[Candidate]]]
Highlighter = Callable[[Any, int], Awaitable[bool]]


class SearchController:
    """Runs one query at a time against a page: remote ranking first, local scoring as fallback.

    Queries are not cancelled when a new one starts; callers check
    ``is_current(result)`` and drop results of superseded queries.
    """

    def __init__(
        self,
        page: Any,
        relay: RelayClient | None = None,
        config: Settings | None = None,
        scanner: Scanner = scan_candidates,
        highlighter: Highlighter = highlight_element,
        use_remote: bool = True,
    ) -> None:
        self.page = page
        self.relay = relay or RelayClient()
        self.config = config or default_settings
        self.scanner = scanner
        self.highlighter = highlighter
        self.use_remote = use_remote
        self._latest_query_id: str | None = None

    def is_current(self, result: SearchResult) -> bool:
        return result.query_id == self._latest_query_id

    async def search(self, query: str) -> SearchResult:
        result = SearchResult(query_id=uuid.uuid4().hex, query=(query or "").strip())
        self._latest_query_id = result.query_id
        try:
            request = SearchRequest(query=result.query)
        except ValueError:
            result.trace.append(SearchState.RESOLVED)
            return result

        result.trace.append(SearchState.COLLECTING_CANDIDATES)
        candidates = await self._collect_candidates()
        request.candidates = candidates or []

        if candidates is None:
            stage: RemoteStageResult = RemoteMiss(MissReason.COLLECTION_FAILED)
        elif not candidates:
            stage = RemoteMiss(MissReason.NO_CANDIDATES)
        elif not self.use_remote:
            stage = RemoteMiss(MissReason.REMOTE_DISABLED)
        else:
            result.trace.append(SearchState.REMOTE_RANKING)
            stage = await self._rank_remote(request.query, request.candidates)

        if isinstance(stage, RemoteWinner):
            result.source = "remote"
            result.winner = stage.candidate
            result.rationale = stage.reason
            logger.info(
                "search_resolved_remote query_id=%s index=%d cached=%s", result.query_id, stage.index, stage.cached
            )
        else:
            result.miss = stage
            result.trace.append(SearchState.LOCAL_FALLBACK)
            logger.info(
                "search_local_fallback query_id=%s reason=%s detail=%s",
                result.query_id,
                stage.reason.value,
                stage.detail,
            )
            await self._fallback(result, candidates)

        result.trace.append(SearchState.RESOLVED)
        if result.winner is not None:
            result.highlighted = await self._highlight(result.winner)
        return result

    async def highlight_result(self, result: SearchResult, position: int) -> bool:
        """Outline one listed result again, for example the third local match.

        Uses the stored element when it is still attached and otherwise looks it
        up by href. Failure is reported as ``False``, never raised.
        """
        listed = [scored.candidate for scored in result.results]
        if not listed and result.winner is not None:
            listed = [result.winner]
        if not 0 <= position < len(listed):
            logger.info(
                "highlight_result_skipped query_id=%s position=%d listed=%d", result.query_id, position, len(listed)
            )
            return False
        return await self._highlight(listed[position])

    async def _collect_candidates(self) -> Optional[List[Candidate]]:
        try:
            return await self.scanner(self.page, max_candidates=self.config.max_candidates)
        except Exception as exc:  # noqa: BLE001
            logger.warning("collect_candidates_failed reason=%r", exc)
            return None

    async def _rank_remote(self, query: str, candidates: Sequence[Candidate]) -> RemoteStageResult:
        # The remote index refers to this truncated list and nothing else.
        shown = list(candidates[: self.config.remote_max_candidates])
        try:
            response = await self.relay.rank(query, shown)
        except Exception as exc:  # noqa: BLE001
            logger.warning("remote_rank_failed reason=%r", exc)
            return RemoteMiss(MissReason.UNREACHABLE, str(exc))

        if not response.ok:
            if response.rate_limited:
                return RemoteMiss(MissReason.RATE_LIMITED, f"retry_after={response.retry_after}")
            if response.status_code is None:
                return RemoteMiss(MissReason.UNREACHABLE, response.error or "")
            return RemoteMiss(MissReason.UPSTREAM_ERROR, response.error or "")

        judgment = response.server.parsed if response.server else None
        if judgment is None:
            return RemoteMiss(MissReason.NO_JUDGMENT)
        if judgment.index == -1:
            return RemoteMiss(MissReason.NO_MATCH, judgment.reason)
        if not 0 <= judgment.index < len(shown):
            return RemoteMiss(MissReason.OUT_OF_BOUNDS, f"index={judgment.index} shown={len(shown)}")
        return RemoteWinner(
            index=judgment.index,
            candidate=shown[judgment.index],
            reason=judgment.reason,
            cached=response.server.cached,
        )

    async def _fallback(self, result: SearchResult, candidates: Optional[List[Candidate]]) -> None:
        if candidates is None:
            # The first scan failed; rescan once in local-scoring mode.
            candidates = await self._collect_candidates()
            if candidates is None:
                result.page_unreachable = True
                return

        local = search_locally(
            candidates,
            result.query,
            max_results=self.config.max_results,
            min_score=self.config.min_accept_score,
        )
        result.source = "local"
        result.results = local.results
        if local.results:
            result.winner = local.results[0].candidate

    async def _highlight(self, candidate: Candidate) -> bool:
        handle = candidate.element
        if not await is_attached(handle):
            handle = await resolve_by_href(self.page, candidate.href)
        if handle is None:
            logger.info("highlight_skipped reason=stale_reference href=%s", candidate.href)
            return False
        try:
            return bool(await self.highlighter(handle, self.config.highlight_ms))
        except HighlightError as exc:
            logger.info("highlight_failed reason=%s", exc)
            return False


async def run_search_async(
    url: str,
    query: str,
    gateway_url: str | None = None,
    use_remote: bool = True,
    hold_ms: int | None = None,
) -> SearchResult:
    """Open ``url`` in a fresh browser, run one search and keep the page up while the highlight shows."""

    async with BrowserSession() as browser:
        await browser.goto(url)
        controller = SearchController(
            browser.page,
            relay=RelayClient(gateway_url=gateway_url),
            use_remote=use_remote,
        )
        result = await controller.search(query)
        if result.highlighted:
            await asyncio.sleep((hold_ms if hold_ms is not None else controller.config.highlight_ms) / 1000)
        return result


def run_search_blocking(url: str, query: str, **kwargs: Any) -> SearchResult:
    """Synchronous wrapper for CLI usage."""

    return asyncio.run(run_search_async(url, query, **kwargs))
