import asyncio

import httpx
import openai
import pytest

from sniffr.agent.llm_client import (
    SYSTEM_PROMPT,
    OpenAIChatPipeline,
    RankingLLMClient,
    build_ranking_prompt,
    create_ranking_pipeline,
    parse_judgment,
)
from sniffr.config import Settings
from sniffr.errors import ConfigurationError, UpstreamError
from sniffr.models import RemoteJudgment


def test_prompt_lists_candidates_compactly():
    prompt = build_ranking_prompt(
        "student\nportal",
        [
            {"type": "link", "text": "Student Portal", "href": "https://x.edu/portal"},
            {"type": "button", "text": "Sign\nin", "href": None},
            {},
        ],
    )
    lines = prompt.split("\n")

    assert lines[0] == 'User query: "student portal"'
    assert lines[1] == "Candidates (index | type | label | href):"
    assert lines[2] == '0 | link | "Student Portal" | https://x.edu/portal'
    assert lines[3] == '1 | button | "Sign in" | (no href)'
    assert lines[4] == '2 |  | "" | (no href)'
    assert lines[-1].startswith("Return JSON ONLY")


def test_prompt_truncates_labels_and_candidate_count():
    candidates = [{"type": "link", "text": "x" * 500, "href": f"/{i}"} for i in range(100)]
    prompt = build_ranking_prompt("anything", candidates)
    candidate_lines = [line for line in prompt.split("\n") if " | link | " in line]

    assert len(candidate_lines) == 80
    assert candidate_lines[-1].startswith("79 | ")
    assert f'"{"x" * 240}"' in candidate_lines[0]
    assert "x" * 241 not in prompt


def test_parse_judgment_variants():
    assert parse_judgment('{"index": 2, "reason": "Matches billing"}') == RemoteJudgment(2, "Matches billing")
    assert parse_judgment('Sure! {"index": -1, "reason": "nothing fits"} hope that helps') == RemoteJudgment(
        -1, "nothing fits"
    )
    assert parse_judgment('```json\n{"index": 0}\n```') == RemoteJudgment(0, "")
    assert parse_judgment('{"index": 3.0, "reason": 7}') == RemoteJudgment(3, "7")


def test_parse_judgment_treats_garbage_as_no_opinion():
    assert parse_judgment(None) is None
    assert parse_judgment("") is None
    assert parse_judgment("I think it is the second one") is None
    assert parse_judgment("} backwards {") is None
    assert parse_judgment('{"index": 1} and also {"index": 2}') is None
    assert parse_judgment('{"reason": "no index"}') is None
    assert parse_judgment('{"index": "2"}') is None
    assert parse_judgment('{"index": true}') is None
    assert parse_judgment('{"index": 1.5}') is None


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        create_ranking_pipeline(Settings(openai_api_key=None))


def test_pipeline_is_built_from_settings():
    pipeline = create_ranking_pipeline(
        Settings(openai_api_key="sk-test", openai_model="gpt-test", remote_max_tokens=64)
    )
    assert pipeline.model == "gpt-test"
    assert pipeline.max_new_tokens == 64


class FakeCompletions:
    def __init__(self, content=None, exc=None):
        self.content = content
        self.exc = exc
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc:
            raise self.exc
        message = type("Message", (), {"content": self.content})()
        choice = type("Choice", (), {"message": message})()
        return type("Response", (), {"choices": [choice]})()


def make_pipeline(completions):
    pipeline = OpenAIChatPipeline(model="gpt-test", api_key="sk-test", base_url=None, max_new_tokens=200)
    pipeline.client = type("Client", (), {})()
    pipeline.client.chat = type("Chat", (), {})()
    pipeline.client.chat.completions = completions
    return pipeline


def test_pipeline_sends_deterministic_bounded_request():
    completions = FakeCompletions(content='{"index": 0, "reason": "ok"}')
    client = RankingLLMClient(make_pipeline(completions))

    raw = asyncio.run(client.generate_text("prompt body"))

    assert raw == '{"index": 0, "reason": "ok"}'
    call = completions.calls[0]
    assert call["temperature"] == 0
    assert call["max_tokens"] == 200
    assert call["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT.strip()}
    assert call["messages"][1] == {"role": "user", "content": "prompt body"}


def test_pipeline_maps_transport_and_status_errors_to_upstream_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

    conn_error = openai.APIConnectionError(request=request)
    with pytest.raises(UpstreamError):
        make_pipeline(FakeCompletions(exc=conn_error))("prompt")

    status_error = openai.APIStatusError(
        "server exploded", response=httpx.Response(503, request=request), body=None
    )
    with pytest.raises(UpstreamError) as excinfo:
        make_pipeline(FakeCompletions(exc=status_error))("prompt")
    assert excinfo.value.status_code == 503


def test_parse_judgment_survives_pathologically_nested_reply():
    assert parse_judgment('{"index": ' + "[" * 100000 + "]" * 100000 + "}") is None
