import base64
import httpx
import json
import logging
from typing import Any, Dict, List, Optional

import google.generativeai as genai

from config import Config
from models import EnEvidence, ZhEvidence
from services.upstream import MissingCredentialsError, ProviderError, extract_error_message, read_body

JUDGE_PROMPT = """You are a strict but kind pronunciation judge for a language learning app.
Return STRICT JSON with keys: pass (boolean), score (0..1), tone (object or null), hint (string or null).
Rules:
- Consider the target "expected" and language.
- Use ASR candidates and helper lists as evidence.
- If language starts with zh, judge by Mandarin pronunciation (pinyin + tone). Be tone-aware if a single Hanzi is expected.
- If unsure, prefer pass=false and give a short, kind, actionable hint (<=80 chars).
- score: 1.0 = perfect match; 0.0 = unrelated.
- tone: { expected: '1|2|3|4|5|null', heard: '1|2|3|4|5|null', match: boolean } or null for non-tonal languages."""

AUDIO_JUDGE_PROMPT = """You are a strict but kind pronunciation judge.
Return STRICT JSON: { "pass": boolean, "score": number, "tone": object|null, "hint": string|null }.
Scoring (continuous):
- 0.95-1.00: clear correct pronunciation of the intended target.
- 0.85-0.94: minor deviation but clearly correct target.
- 0.70-0.84: close but uncertain; likely minor mispronunciation.
- 0.40-0.69: somewhat related but likely wrong.
- 0.00-0.39: unrelated.
Chinese tone policy:
- If language starts with zh and target is a single Hanzi: base pinyin match = pass=true.
- Wrong tone => tone.match=false and deduct ~0.10 from score.
- tone object: {"expected":"1|2|3|4|5|null","heard":"1|2|3|4|5|null","match":boolean}.
Hints: <= 80 chars, actionable."""


def build_evidence(
    language: str,
    expected: str,
    provider: str,
    candidates: List[str],
    zh_augment: Optional[ZhEvidence],
    en_homophones: Optional[EnEvidence],
) -> Dict[str, Any]:
    return {
        "language": language,
        "expected": expected,
        "asr": {
            "provider": provider,
            "candidates": candidates,
            "zhAugment": zh_augment.model_dump() if zh_augment else None,
            "enHomophones": en_homophones.model_dump() if en_homophones else None,
        },
    }


def audio_format_for_mime(mime_type: str) -> str:
    t = (mime_type or "").lower()
    for fmt in ("wav", "ogg", "webm", "mp3"):
        if fmt in t:
            return fmt
    if "mpeg" in t:
        return "mp3"
    return "wav"


def completion_content(body: Any) -> str:
    """choices[0].message.content of a chat completion, or "" when absent."""
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""


class OpenAIJudge:
    name = "openai"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not Config.OPENAI_API_KEY:
            raise MissingCredentialsError("OPENAI_API_KEY")
        self.api_key = Config.OPENAI_API_KEY
        self.transport = transport
        self.timeout = httpx.Timeout(Config.JUDGE_TIMEOUT)

    async def _complete(self, payload: Dict[str, Any], label: str) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{Config.OPENAI_BASE_URL}/chat/completions", headers=headers, json=payload)
        except httpx.TimeoutException:
            raise ProviderError(f"{label} timeout")
        except httpx.RequestError as e:
            raise ProviderError(f"{label} request failed: {e}")

        body = read_body(response)
        if not response.is_success:
            logging.error(f"{label} failed: {response.status_code}")
            raise ProviderError(extract_error_message(body, label), status=response.status_code)
        return completion_content(body)

    async def judge(self, evidence: Dict[str, Any]) -> str:
        """Raw JSON text of the verdict for transcript evidence."""
        payload = {
            "model": Config.OPENAI_JUDGE_MODEL,
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": JUDGE_PROMPT},
                {"role": "user", "content": json.dumps(evidence, ensure_ascii=False)},
            ],
        }
        return await self._complete(payload, "OpenAI judge error")

    async def judge_audio(self, audio: bytes, mime_type: str, language: str, expected: str) -> str:
        """Raw JSON text of the verdict, judged directly from the recording."""
        payload = {
            "model": Config.OPENAI_AUDIO_JUDGE_MODEL,
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": AUDIO_JUDGE_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": json.dumps({"language": language, "expected": expected}, ensure_ascii=False)},
                        {
                            "type": "input_audio",
                            "input_audio": {
                                "data": base64.b64encode(audio).decode("ascii"),
                                "format": audio_format_for_mime(mime_type),
                            },
                        },
                    ],
                },
            ],
        }
        return await self._complete(payload, "OpenAI audio judge error")


class GeminiJudge:
    name = "gemini"

    def __init__(self):
        if not Config.GEMINI_API_KEY:
            raise MissingCredentialsError("GEMINI_API_KEY")
        # Configure the Gemini API with your key
        genai.configure(api_key=Config.GEMINI_API_KEY)
        self.model = genai.GenerativeModel(Config.GEMINI_MODEL, system_instruction=JUDGE_PROMPT)

    async def judge(self, evidence: Dict[str, Any]) -> str:
        try:
            response = await self.model.generate_content_async(
                json.dumps(evidence, ensure_ascii=False),
                generation_config=genai.GenerationConfig(
                    response_mime_type="application/json",
                    temperature=0.2,
                ),
                request_options={"timeout": Config.JUDGE_TIMEOUT},
            )
            return response.text
        except Exception as e:
            logging.error(f"Gemini judge failed: {e}")
            raise ProviderError(f"Gemini judge error: {e}")


def get_judge(backend: Optional[str] = None):
    backend = (backend or Config.JUDGE_BACKEND).lower()
    if backend == GeminiJudge.name:
        return GeminiJudge()
    return OpenAIJudge()
