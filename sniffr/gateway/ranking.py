"""Remote ranking service: rate limiting, a short-lived response cache and the LLM call.

All state is in-memory and owned by one ``RankingGateway`` instance. It exists
only to cut latency and abuse; nothing depends on it surviving a restart.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

from ..agent.llm_client import (
    RankingLLMClient,
    build_ranking_prompt,
    create_ranking_llm_client,
    parse_judgment,
)
from ..config import Settings, settings as default_settings
from ..errors import UpstreamError
from ..models import RemoteJudgment

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class RateWindow:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: int = 0


class RateLimiter:
    """Fixed-window request counter per client identifier."""

    def __init__(
        self,
        max_per_window: int = 120,
        window_seconds: float = 60.0,
        clock: Clock = time.monotonic,
        prune_above: int = 1024,
    ) -> None:
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self.clock = clock
        self.prune_above = prune_above
        self.windows: Dict[str, RateWindow] = {}

    def check(self, client_id: str) -> RateDecision:
        # Read and update happen without yielding to the event loop.
        now = self.clock()
        if len(self.windows) >= self.prune_above:
            for stale in [k for k, w in self.windows.items() if w.reset_at < now]:
                del self.windows[stale]
        window = self.windows.get(client_id)
        if window is None or window.reset_at < now:
            window = RateWindow(count=1, reset_at=now + self.window_seconds)
            self.windows[client_id] = window
            return RateDecision(True, self.max_per_window - 1, window.reset_at)

        window.count += 1
        if window.count > self.max_per_window:
            retry_after = max(0, math.ceil(window.reset_at - now))
            return RateDecision(False, 0, window.reset_at, retry_after)
        return RateDecision(True, self.max_per_window - window.count, window.reset_at)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class ResponseCache:
    def __init__(self, ttl_seconds: float = 30.0, clock: Clock = time.monotonic, prune_above: int = 1024) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.prune_above = prune_above
        self.entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any:
        entry = self.entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self.clock():
            del self.entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        now = self.clock()
        if len(self.entries) >= self.prune_above:
            for stale in [k for k, e in self.entries.items() if e.expires_at <= now]:
                del self.entries[stale]
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self.entries[key] = CacheEntry(value=value, expires_at=now + ttl)

    def __len__(self) -> int:
        return len(self.entries)


def cache_key(query: str, candidates: Sequence[Mapping[str, Any]], limit: int = 60) -> str:
    projection = [
        {"t": (c or {}).get("text") or "", "h": (c or {}).get("href") or ""} for c in candidates[:limit]
    ]
    canonical = json.dumps({"q": query, "c": projection}, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CachedJudgment:
    raw: str
    judgment: Optional[RemoteJudgment]


@dataclass(frozen=True)
class Ranked:
    raw: str
    judgment: Optional[RemoteJudgment]
    cached: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "ok": True,
            "cached": self.cached,
            "raw": self.raw,
            "parsed": self.judgment.to_payload() if self.judgment else None,
        }


@dataclass(frozen=True)
class RateLimited:
    retry_after: int


@dataclass(frozen=True)
class UpstreamUnavailable:
    error: str


RankOutcome = Union[Ranked, RateLimited, UpstreamUnavailable]


class RankingGateway:
    def __init__(
        self,
        config: Settings | None = None,
        llm_client: RankingLLMClient | None = None,
        llm_client_factory: Callable[[Settings], RankingLLMClient] = create_ranking_llm_client,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config or default_settings
        self.rate_limiter = RateLimiter(self.config.rate_limit_max, self.config.rate_window_seconds, clock)
        self.cache = ResponseCache(self.config.cache_ttl_seconds, clock)
        self._llm_client = llm_client
        self._llm_client_factory = llm_client_factory

    def _get_llm_client(self) -> RankingLLMClient:
        # ConfigurationError propagates; it is an operator problem, not a request failure.
        if self._llm_client is None:
            self._llm_client = self._llm_client_factory(self.config)
        return self._llm_client

    async def rank(self, client_id: str, query: str, candidates: Sequence[Mapping[str, Any]]) -> RankOutcome:
        decision = self.rate_limiter.check(client_id)
        if not decision.allowed:
            logger.info("rank_rate_limited client=%s retry_after=%d", client_id, decision.retry_after)
            return RateLimited(retry_after=decision.retry_after)

        key = cache_key(query, candidates, self.config.cache_key_candidates)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("rank_cache_hit client=%s", client_id)
            return Ranked(raw=cached.raw, judgment=cached.judgment, cached=True)

        prompt = build_ranking_prompt(query, candidates, limit=self.config.remote_max_candidates)
        llm = self._get_llm_client()
        try:
            raw = await llm.generate_text(prompt)
        except UpstreamError as exc:
            logger.warning("rank_upstream_failed client=%s reason=%s", client_id, exc)
            return UpstreamUnavailable(error=str(exc))

        judgment = parse_judgment(raw)
        if judgment is None:
            logger.info("rank_no_judgment client=%s head=%s", client_id, (raw or "")[:120].replace("\n", " "))
        self.cache.set(key, CachedJudgment(raw=raw or "", judgment=judgment))
        return Ranked(raw=raw or "", judgment=judgment, cached=False)
