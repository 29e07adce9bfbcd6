from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional, Sequence

import openai
from openai import OpenAI

from ..config import Settings, settings as default_settings
from ..errors import ConfigurationError, UpstreamError
from ..models import MAX_TEXT_CHARS, RemoteJudgment

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_CANDIDATES = 80

SYSTEM_PROMPT = """
You are "Sniffr", a tiny assistant whose job is to pick which candidate (from a short enumerated list) best matches the user's short query.
Be extremely terse and always return ONLY a JSON object (no surrounding text). The JSON MUST be parseable.
Return this shape exactly:
{"index": <best_index_or_-1>, "reason": "<one-sentence reason, 1-2 sentences max>"}

If there is no good match return index:-1 and a short reason.
"""


class OpenAIChatPipeline:
    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None,
        max_new_tokens: int,
        timeout: float | None = None,
        max_retries: int = 1,
    ):
        self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=max_retries)
        self.model = model
        self.max_new_tokens = max_new_tokens

    def __call__(self, prompt: str, system_prompt: str | None = None, max_new_tokens: int | None = None) -> str:
        max_tokens = max_new_tokens or self.max_new_tokens
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt.strip()})
        messages.append({"role": "user", "content": prompt})
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0,
                max_tokens=max_tokens,
            )
        except openai.APIStatusError as exc:
            raise UpstreamError(f"OpenAI error {exc.status_code}: {exc.message}", exc.status_code) from exc
        except openai.APIError as exc:
            raise UpstreamError(f"OpenAI request failed: {exc}") from exc
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""


class RankingLLMClient:
    """Async wrapper that runs a blocking chat pipeline off the event loop."""

    def __init__(self, pipeline: Any) -> None:
        self.pipeline = pipeline

    async def generate_text(self, prompt: str) -> str:
        return await asyncio.to_thread(self.pipeline, prompt, SYSTEM_PROMPT)


def create_ranking_pipeline(config: Settings | None = None) -> OpenAIChatPipeline:
    config = config or default_settings
    if not config.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY environment variable is not set on server.")
    return OpenAIChatPipeline(
        model=config.openai_model,
        api_key=config.openai_api_key,
        base_url=config.openai_base_url,
        max_new_tokens=config.remote_max_tokens,
        timeout=config.openai_timeout,
        max_retries=config.openai_max_retries,
    )


def create_ranking_llm_client(config: Settings | None = None) -> RankingLLMClient:
    return RankingLLMClient(create_ranking_pipeline(config))


def _one_line(value: Any) -> str:
    return str(value if value is not None else "").replace("\r", " ").replace("\n", " ")


def build_ranking_prompt(
    query: str,
    candidates: Sequence[Mapping[str, Any]],
    limit: int = DEFAULT_PROMPT_CANDIDATES,
) -> str:
    lines: list[str] = [
        f'User query: "{_one_line(query)}"',
        "Candidates (index | type | label | href):",
    ]
    for i, cand in enumerate(candidates[:limit]):
        cand = cand or {}
        label = _one_line(cand.get("text") or "")[:MAX_TEXT_CHARS]
        href = cand.get("href") or "(no href)"
        lines.append(f'{i} | {cand.get("type") or ""} | "{label}" | {href}')
    lines.append('Return JSON ONLY: {"index": <best_index_or_-1>, "reason":"brief 1-2 sentence reason"}')
    return "\n".join(lines)


def parse_judgment(raw_text: Optional[str]) -> Optional[RemoteJudgment]:
    """Decode the reply between the first ``{`` and the last ``}``.

    Anything that does not decode to an object with an integer ``index`` means
    the remote ranker had no opinion; this never raises.
    """

    text = raw_text or ""
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        return None
    try:
        obj = json.loads(text[start : end + 1])
    except (ValueError, RecursionError):
        return None
    if not isinstance(obj, dict):
        return None

    index = obj.get("index")
    if isinstance(index, bool):
        return None
    if isinstance(index, float) and index.is_integer():
        index = int(index)
    if not isinstance(index, int):
        return None
    reason = obj.get("reason")
    return RemoteJudgment(index=index, reason="" if reason is None else str(reason))
