from __future__ import annotations

import logging
from typing import Any, List

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import ConfigurationError
from ..gateway.ranking import Ranked, RankingGateway, RateLimited, UpstreamUnavailable

logger = logging.getLogger(__name__)

BAD_REQUEST_MESSAGE = "Bad request: expected JSON { query, candidates[] }"
CANDIDATE_FIELDS = ("text", "href", "type")


def normalize_candidate(item: Any) -> dict[str, str | None]:
    """Keep only the wire fields of one item; anything that is not an object counts as empty."""
    if not isinstance(item, dict):
        item = {}
    return {name: str(item[name]) if item.get(name) else None for name in CANDIDATE_FIELDS}


class RankRequest(BaseModel):
    query: str
    candidates: List[Any]

    @field_validator("candidates")
    @classmethod
    def _normalize_candidates(cls, value: List[Any]) -> List[dict[str, str | None]]:
        return [normalize_candidate(item) for item in value]


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_gateway(request: Request) -> RankingGateway:
    return request.app.state.gateway


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message}, headers=headers)


def create_app(gateway: RankingGateway | None = None) -> FastAPI:
    app = FastAPI(title="sniffr ranking gateway")
    app.state.gateway = gateway or RankingGateway()

    @app.exception_handler(RequestValidationError)
    async def _bad_request(_request: Request, _exc: RequestValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, BAD_REQUEST_MESSAGE)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        return {"ok": True}

    @app.post("/api/sniffr-proxy")
    async def rank_candidates(
        payload: RankRequest,
        request: Request,
        ranking: RankingGateway = Depends(get_gateway),
    ):
        """
        Pick the candidate that best answers ``query``. Input is validated
        before the rate limiter so malformed requests leave no trace.
        """
        if not payload.query.strip():
            return _error(status.HTTP_400_BAD_REQUEST, BAD_REQUEST_MESSAGE)

        client_id = client_identifier(request)
        candidates = payload.candidates
        try:
            outcome = await ranking.rank(client_id, payload.query, candidates)
        except ConfigurationError as exc:
            logger.error("gateway_misconfigured reason=%s", exc)
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("gateway_unexpected_error client=%s", client_id)
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

        if isinstance(outcome, RateLimited):
            return _error(
                status.HTTP_429_TOO_MANY_REQUESTS,
                "Rate limit exceeded",
                headers={"Retry-After": str(outcome.retry_after)},
            )
        if isinstance(outcome, UpstreamUnavailable):
            return _error(status.HTTP_502_BAD_GATEWAY, outcome.error)
        if isinstance(outcome, Ranked):
            return outcome.to_payload()
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"unexpected outcome {type(outcome).__name__}")

    return app


app = create_app()
