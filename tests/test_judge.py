import base64
import json

import httpx
import pytest

from config import Config
from models import EnEvidence
from services.grading import GradingService
from services.judge import GeminiJudge, OpenAIJudge, audio_format_for_mime, build_evidence, completion_content, get_judge
from services.recognition import RecognitionService
from services.upstream import MissingCredentialsError, ProviderError


def test_evidence_document():
    evidence = build_evidence("en-US", "seven", "openai", ["7"], None, EnEvidence(input="7", homophones=["seven"]))
    assert evidence == {
        "language": "en-US",
        "expected": "seven",
        "asr": {
            "provider": "openai",
            "candidates": ["7"],
            "zhAugment": None,
            "enHomophones": {"input": "7", "homophones": ["seven"]},
        },
    }


def test_audio_format_for_mime():
    assert audio_format_for_mime("audio/webm") == "webm"
    assert audio_format_for_mime("audio/mpeg") == "mp3"
    assert audio_format_for_mime("application/octet-stream") == "wav"


def test_completion_content_missing_parts():
    assert completion_content({"choices": []}) == ""
    assert completion_content({"message": "oops"}) == ""
    assert completion_content(None) == ""


@pytest.mark.asyncio
async def test_text_judge_request(credentials, make_transport, chat_completion):
    transport = make_transport(lambda request: chat_completion({"pass": True, "score": 0.9}))
    content = await OpenAIJudge(transport=transport).judge({"language": "en-US", "expected": "seven"})

    assert json.loads(content) == {"pass": True, "score": 0.9}
    payload = json.loads(transport.requests[0].content)
    assert payload["model"] == Config.OPENAI_JUDGE_MODEL
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["temperature"] == 0.2
    assert payload["messages"][0]["role"] == "system"
    assert json.loads(payload["messages"][1]["content"])["expected"] == "seven"


@pytest.mark.asyncio
async def test_audio_judge_request(credentials, make_transport, chat_completion):
    transport = make_transport(lambda request: chat_completion({"pass": False}))
    await OpenAIJudge(transport=transport).judge_audio(b"OggS", "audio/ogg", "zh-CN", "马")

    payload = json.loads(transport.requests[0].content)
    assert payload["model"] == Config.OPENAI_AUDIO_JUDGE_MODEL
    parts = payload["messages"][1]["content"]
    assert json.loads(parts[0]["text"]) == {"language": "zh-CN", "expected": "马"}
    assert parts[1]["input_audio"] == {"data": base64.b64encode(b"OggS").decode(), "format": "ogg"}


@pytest.mark.asyncio
async def test_judge_error_surfaces(credentials, make_transport):
    transport = make_transport(lambda request: httpx.Response(400, json={"error": {"message": "bad request"}}))
    with pytest.raises(ProviderError) as err:
        await OpenAIJudge(transport=transport).judge({})
    assert err.value.status == 400
    assert err.value.message == "bad request"


def test_judge_backend_selection(credentials, monkeypatch):
    assert isinstance(get_judge(), OpenAIJudge)
    monkeypatch.setattr(Config, "GEMINI_API_KEY", None)
    with pytest.raises(MissingCredentialsError):
        get_judge("gemini")
    monkeypatch.setattr(Config, "GEMINI_API_KEY", "gemini-test")
    assert isinstance(get_judge("gemini"), GeminiJudge)


def test_openai_judge_requires_key(monkeypatch):
    monkeypatch.setattr(Config, "OPENAI_API_KEY", "")
    with pytest.raises(MissingCredentialsError):
        OpenAIJudge()


class FakeGeminiResponse:
    def __init__(self, text):
        self.text = text


@pytest.fixture
def gemini_judge(credentials, monkeypatch):
    monkeypatch.setattr(Config, "GEMINI_API_KEY", "gemini-test")
    return GeminiJudge()


@pytest.mark.asyncio
async def test_gemini_judge_requests_json(gemini_judge, monkeypatch):
    calls = []

    async def generate(contents, **kwargs):
        calls.append((contents, kwargs))
        return FakeGeminiResponse('{"pass": true, "score": 0.8}')

    monkeypatch.setattr(gemini_judge.model, "generate_content_async", generate)
    content = await gemini_judge.judge({"language": "en-US", "expected": "seven"})

    assert json.loads(content) == {"pass": True, "score": 0.8}
    contents, kwargs = calls[0]
    assert json.loads(contents)["expected"] == "seven"
    assert kwargs["generation_config"].response_mime_type == "application/json"
    assert kwargs["request_options"] == {"timeout": Config.JUDGE_TIMEOUT}


@pytest.mark.asyncio
async def test_gemini_judge_in_grade_pipeline(gemini_judge, monkeypatch, make_transport):
    async def generate(contents, **kwargs):
        return FakeGeminiResponse('{"pass": 1, "score": 1.7, "tone": null, "hint": "Nice"}')

    monkeypatch.setattr(gemini_judge.model, "generate_content_async", generate)
    transport = make_transport(lambda request: httpx.Response(200, json={"text": "hello world"}))
    service = GradingService(recognition=RecognitionService(transport=transport), judge_factory=lambda: gemini_judge)
    outcome = await service.grade(b"x", "audio/wav", "hello world", "en-US")

    result = outcome.value.model_dump(by_alias=True)
    assert result["pass"] is True
    assert result["score"] == 1.0
    assert result["hint"] == "Nice"


@pytest.mark.asyncio
async def test_gemini_sdk_failure_becomes_provider_error(gemini_judge, monkeypatch):
    async def generate(contents, **kwargs):
        raise RuntimeError("quota exceeded")

    monkeypatch.setattr(gemini_judge.model, "generate_content_async", generate)
    with pytest.raises(ProviderError) as err:
        await gemini_judge.judge({})
    assert err.value.message == "Gemini judge error: quota exceeded"
