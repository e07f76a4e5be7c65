import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx


class ProviderError(Exception):
    """An upstream provider failed: non-2xx, malformed body, timeout or network error."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class MissingCredentialsError(Exception):
    def __init__(self, name: str):
        super().__init__(f"{name} missing")
        self.name = name


@dataclass
class Outcome:
    status: str  # "ok" | "error"
    value: Any = None
    message: Optional[str] = None
    diagnostics: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(status="ok", value=value)

    @classmethod
    def failure(cls, message: str, diagnostics: Optional[Dict[str, Any]] = None) -> "Outcome":
        return cls(status="error", message=message, diagnostics=diagnostics)


def read_body(response: httpx.Response) -> Any:
    """Parsed JSON when the response says so, else {"message": text}."""
    content_type = response.headers.get("content-type", "").lower()
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            logging.warning(f"Malformed JSON body from {response.request.url}")
    return {"message": response.text}


def extract_error_message(body: Any, fallback: str = "Unknown error") -> str:
    """Try the known error fields in order, else stringify the body."""
    if not body:
        return fallback
    if isinstance(body, str):
        return body
    if isinstance(body, dict):
        error = body.get("error")
        candidates = [
            error.get("message") if isinstance(error, dict) else None,
            body.get("message"),
            body.get("Message"),
            body.get("RecognitionStatus"),
        ]
        for message in candidates:
            if isinstance(message, str):
                return message
    try:
        return json.dumps(body, ensure_ascii=False)
    except (TypeError, ValueError):
        return fallback
