from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from ..config import settings
from ..models import Candidate, RemoteJudgment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerReply:
    raw: str
    parsed: Optional[RemoteJudgment]
    cached: bool


@dataclass(frozen=True)
class RelayResponse:
    ok: bool
    server: Optional[ServerReply] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    retry_after: Optional[int] = None

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


def _parse_server_judgment(parsed: Any) -> Optional[RemoteJudgment]:
    if not isinstance(parsed, dict):
        return None
    index = parsed.get("index")
    if isinstance(index, bool) or not isinstance(index, int):
        return None
    reason = parsed.get("reason")
    return RemoteJudgment(index=index, reason="" if reason is None else str(reason))


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class RelayClient:
    """Forwards ``{query, candidates}`` to the ranking gateway over HTTP."""

    def __init__(
        self,
        gateway_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.gateway_url = gateway_url or settings.gateway_url
        self.timeout = timeout if timeout is not None else settings.relay_timeout
        self.transport = transport

    async def rank(self, query: str, candidates: Sequence[Candidate]) -> RelayResponse:
        body = {
            "query": query,
            "candidates": [{"type": c.type, "text": c.text, "href": c.href} for c in candidates],
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.gateway_url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("relay_unreachable url=%s reason=%r", self.gateway_url, exc)
            return RelayResponse(ok=False, error=str(exc) or exc.__class__.__name__)

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code != 200 or not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error") if isinstance(data, dict) else None
            logger.info("relay_gateway_error status=%d error=%s", response.status_code, error)
            return RelayResponse(
                ok=False,
                error=error or f"gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )

        return RelayResponse(
            ok=True,
            server=ServerReply(
                raw=str(data.get("raw") or ""),
                parsed=_parse_server_judgment(data.get("parsed")),
                cached=bool(data.get("cached")),
            ),
            status_code=response.status_code,
        )
