import base64
import httpx
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from config import Config
from services.upstream import MissingCredentialsError, Outcome, read_body
from services.verdict import parse_assessment

ASSESSMENT_MODES = ["conversation", "interactive"]


def assessment_content_type(mime_type: str) -> str:
    t = (mime_type or "").lower()
    if "wav" in t:
        return "audio/wav"
    if "ogg" in t:
        return "audio/ogg; codecs=opus"
    if "webm" in t:
        return "audio/webm; codecs=opus"
    if "mp3" in t or "mpeg" in t:
        return "audio/mpeg"
    return "application/octet-stream"


def assessment_header(reference_text: str) -> str:
    """Base64 JSON for the Pronunciation-Assessment request header."""
    params = {
        "ReferenceText": reference_text,
        "GradingSystem": "HundredMark",
        "Granularity": "Phoneme",
        "Dimension": "Comprehensive",
        "EnableProsodyAssessment": "True",
    }
    return base64.b64encode(json.dumps(params, ensure_ascii=False).encode("utf-8")).decode("ascii")


class AssessmentService:
    """Scores a recording against reference text on the 0-100 scale."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.timeout = httpx.Timeout(Config.RECOGNITION_TIMEOUT)

    async def assess(self, audio: bytes, mime_type: str, expected: str, language: str) -> Outcome:
        """
        Try each assessment endpoint until one returns a parsable result.
        The successful Outcome holds the parse_assessment dict; a failed one
        carries the last upstream status/body as diagnostics.
        """
        if not Config.AZURE_SPEECH_KEY:
            raise MissingCredentialsError("AZURE_SPEECH_KEY")

        headers = {
            "Ocp-Apim-Subscription-Key": Config.AZURE_SPEECH_KEY,
            "Content-Type": assessment_content_type(mime_type),
            "Accept": "application/json",
            "Pronunciation-Assessment": assessment_header(expected),
        }
        base = f"https://{Config.AZURE_REGION}.stt.speech.microsoft.com/speech/recognition"
        last_error: Optional[Dict[str, Any]] = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for mode in ASSESSMENT_MODES:
                url = (
                    f"{base}/{mode}/cognitiveservices/v1"
                    f"?language={quote(language, safe='')}&format=detailed&profanity=raw"
                )
                try:
                    response = await client.post(url, headers=headers, content=audio)
                except httpx.HTTPError as e:
                    logging.warning(f"Assessment {mode} endpoint failed: {e}")
                    last_error = {"status": None, "body": {"message": str(e)}}
                    continue

                body = read_body(response)
                if response.is_success:
                    parsed = parse_assessment(body)
                    if parsed:
                        return Outcome.success(parsed)
                logging.warning(f"Assessment {mode} endpoint gave no result ({response.status_code})")
                last_error = {"status": response.status_code, "body": body}

        return Outcome.failure("Azure assessment error", diagnostics=last_error)
