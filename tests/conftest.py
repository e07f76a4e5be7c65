import json

import httpx
import pytest

from config import Config


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(Config, "AZURE_SPEECH_KEY", "azure-test")
    monkeypatch.setattr(Config, "AZURE_REGION", "eastus")
    monkeypatch.setattr(Config, "JUDGE_BACKEND", "openai")


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def paths(self):
        return [r.url.path for r in self.requests]


@pytest.fixture
def make_transport():
    return RecordingTransport


def _chat_completion(verdict) -> httpx.Response:
    content = verdict if isinstance(verdict, str) else json.dumps(verdict)
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.fixture
def chat_completion():
    return _chat_completion
