import httpx
import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from config import Config
from models import RecognitionResult
from services.candidates import language_filter, normalize_candidates, primary_subtag
from services.upstream import MissingCredentialsError, ProviderError, extract_error_message, read_body

WHISPER_LANGUAGE_OVERRIDES = {
    "zh-CN": "zh",
    "zh-TW": "zh",
    "ja-JP": "ja",
    "ko-KR": "ko",
    "en-US": "en",
    "es-ES": "es",
}

AZURE_RECOGNITION_MODES = ["conversation", "interactive", "dictation"]

AZURE_NBEST_FIELDS = ["lexical", "display", "itn", "maskedITN", "transcript", "NormalizedText", "Display"]


class Provider(str, Enum):
    PRIMARY = "openai"
    SECONDARY = "azure"

    @classmethod
    def parse(cls, name: Optional[str]) -> "Provider":
        """Unknown or empty names fall back to the primary provider."""
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            return cls.PRIMARY


def to_whisper_lang(language: str) -> str:
    return WHISPER_LANGUAGE_OVERRIDES.get(language) or primary_subtag(language)


def filename_for_mime(mime_type: str) -> str:
    """A filename whose extension helps the backend detect the format."""
    t = (mime_type or "").lower()
    if "wav" in t:
        return "speech.wav"
    if "ogg" in t:
        return "speech.ogg"
    if "webm" in t:
        return "speech.webm"
    if "mpeg" in t or "mp3" in t:
        return "speech.mp3"
    return "audio.bin"


def azure_content_type(mime_type: str) -> str:
    t = (mime_type or "").lower()
    if "ogg" in t:
        return "audio/ogg; codecs=opus"
    if "webm" in t:
        return "audio/webm; codecs=opus"
    if "wav" in t:
        return "audio/wav; codecs=audio/pcm; samplerate=16000"
    return "application/octet-stream"


def azure_nbest(body: Any) -> List[Dict[str, Any]]:
    """NBest list from either the flat or the results[0] response layout."""
    if not isinstance(body, dict):
        return []
    if isinstance(body.get("NBest"), list):
        return body["NBest"]
    results = body.get("results")
    if isinstance(results, list) and results and isinstance(results[0], dict):
        nbest = results[0].get("NBest")
        if isinstance(nbest, list):
            return nbest
    return []


def extract_azure_candidates(body: Any, limit: int = Config.MAX_CANDIDATES) -> List[str]:
    out = []
    for item in azure_nbest(body):
        if not isinstance(item, dict):
            continue
        for field in AZURE_NBEST_FIELDS:
            value = str(item.get(field) or "").strip()
            if value:
                out.append(value)
                break
    return out[:limit]


class RecognitionService:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.timeout = httpx.Timeout(Config.RECOGNITION_TIMEOUT)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def recognize(self, audio: bytes, mime_type: str, language: str, provider: Provider) -> RecognitionResult:
        if provider == Provider.SECONDARY:
            return await self.recognize_secondary(audio, mime_type, language)
        return await self.recognize_primary(audio, mime_type, language)

    async def recognize_primary(self, audio: bytes, mime_type: str, language: str) -> RecognitionResult:
        """Single transcription call; any failure raises ProviderError."""
        if not Config.OPENAI_API_KEY:
            raise MissingCredentialsError("OPENAI_API_KEY")

        headers = {"Authorization": f"Bearer {Config.OPENAI_API_KEY}"}
        files = {"file": (filename_for_mime(mime_type), audio, mime_type or "application/octet-stream")}
        data = {"language": to_whisper_lang(language), "model": Config.OPENAI_TRANSCRIBE_MODEL}

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{Config.OPENAI_BASE_URL}/audio/transcriptions",
                    headers=headers,
                    files=files,
                    data=data,
                )
        except httpx.TimeoutException:
            raise ProviderError("OpenAI ASR timeout")
        except httpx.RequestError as e:
            raise ProviderError(f"OpenAI ASR request failed: {e}")

        body = read_body(response)
        if not response.is_success:
            logging.error(f"OpenAI ASR failed: {response.status_code}")
            raise ProviderError(extract_error_message(body, "OpenAI ASR error"), status=response.status_code)

        text = body.get("text") if isinstance(body, dict) else None
        text = (text or "").strip() if isinstance(text, str) else ""
        candidates = normalize_candidates([text] if text else [])
        return RecognitionResult(candidates=candidates, provider_used=Provider.PRIMARY.value)

    async def recognize_secondary(self, audio: bytes, mime_type: str, language: str) -> RecognitionResult:
        """
        Try each recognition mode in order until one yields a usable candidate.
        Exhausting the list is a recoverable "no speech recognized" outcome.
        """
        if not Config.AZURE_SPEECH_KEY:
            raise MissingCredentialsError("AZURE_SPEECH_KEY")

        headers = {
            "Ocp-Apim-Subscription-Key": Config.AZURE_SPEECH_KEY,
            "Content-Type": azure_content_type(mime_type),
            "Accept": "application/json",
        }
        base = f"https://{Config.AZURE_REGION}.stt.speech.microsoft.com/speech/recognition"
        last_error: Optional[str] = None

        async with self._client() as client:
            for mode in AZURE_RECOGNITION_MODES:
                url = (
                    f"{base}/{mode}/cognitiveservices/v1"
                    f"?language={quote(language, safe='')}&format=detailed&profanity=raw"
                )
                try:
                    response = await client.post(url, headers=headers, content=audio)
                except httpx.HTTPError as e:
                    last_error = f"Azure ASR request failed: {e}"
                    logging.warning(f"Azure {mode} endpoint failed: {e}")
                    continue

                body = read_body(response)
                if not response.is_success:
                    last_error = extract_error_message(body, "Azure ASR error")
                    logging.warning(f"Azure {mode} endpoint returned {response.status_code}, trying next")
                    continue

                candidates = extract_azure_candidates(body)
                candidates = language_filter(candidates, language)
                candidates = normalize_candidates(candidates)
                if candidates:
                    return RecognitionResult(candidates=candidates, provider_used=Provider.SECONDARY.value)
                logging.info(f"Azure {mode} endpoint yielded no usable candidates")

        return RecognitionResult(
            candidates=[],
            provider_used=Provider.SECONDARY.value,
            error=last_error or "No speech recognized",
        )
