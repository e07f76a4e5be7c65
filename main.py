import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Config
from models import ErrorResponse
from services.grading import GradingService
from services.upstream import MissingCredentialsError

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

app = FastAPI(title="Pronunciation Grading Relay", version="1.0.0")

grading_service = GradingService()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def json_response(content: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers={**CORS_HEADERS, **(headers or {})})


def error_response(message: str, status_code: int = 200, diagnostics: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = ErrorResponse(error=message, diagnostics=diagnostics).model_dump(exclude_none=True)
    return json_response(jsonable_encoder(body), status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = "POST only" if exc.status_code == 405 else str(exc.detail)
    body = ErrorResponse(error=message).model_dump(exclude_none=True)
    return json_response(body, exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return error_response("Invalid form data", 400, diagnostics={"errors": errors})


@app.exception_handler(MissingCredentialsError)
async def missing_credentials_handler(request: Request, exc: MissingCredentialsError):
    logging.error(f"Missing server credential: {exc.name}")
    return error_response(str(exc), 500)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return error_response(str(exc) or exc.__class__.__name__, 500)


async def read_submission(audio: Optional[UploadFile], expected: Optional[str]):
    """Audio bytes and MIME type, or an error response for a malformed request."""
    if audio is None or not hasattr(audio, "read"):
        return None, None, error_response("No audio uploaded", 400)
    content = await audio.read()
    if len(content) == 0:
        return None, None, error_response("No audio uploaded", 400)
    if len(content) > Config.MAX_FILE_SIZE:
        return None, None, error_response("File too large", 400)
    if not (expected or "").strip():
        return None, None, error_response("Missing expected", 400)
    return content, (audio.content_type or ""), None


@app.options("/api/grade")
@app.options("/api/grade_direct")
@app.options("/api/assess")
async def preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@app.post("/api/grade")
async def grade(
    audio: Optional[UploadFile] = File(None),
    expected: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
    provider: Optional[str] = Form(None),
):
    """
    Recognize the recording, gather helper evidence and let the LLM judge
    grade it against the expected word.
    """
    request_id = str(uuid.uuid4())[:8]
    content, mime_type, error = await read_submission(audio, expected)
    if error:
        return error
    language = language or "en-US"
    logging.info(f"[{request_id}] Grading {expected!r} ({language}, provider={provider or 'openai'})")

    outcome = await grading_service.grade(content, mime_type, expected, language, provider, request_id=request_id)
    if not outcome.ok:
        return error_response(outcome.message, diagnostics=outcome.diagnostics)
    return json_response(outcome.value.model_dump(by_alias=True))


@app.post("/api/grade_direct")
async def grade_direct(
    audio: Optional[UploadFile] = File(None),
    expected: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
):
    """Grade the recording with an audio-capable judge, skipping recognition."""
    request_id = str(uuid.uuid4())[:8]
    content, mime_type, error = await read_submission(audio, expected)
    if error:
        return error
    language = language or "en-US"
    logging.info(f"[{request_id}] Direct grading {expected!r} ({language})")

    outcome = await grading_service.grade_direct(content, mime_type, expected, language, request_id=request_id)
    if not outcome.ok:
        return error_response(outcome.message, diagnostics=outcome.diagnostics)
    return json_response(outcome.value.model_dump(by_alias=True))


@app.post("/api/assess")
async def assess(
    audio: Optional[UploadFile] = File(None),
    expected: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
):
    """Score the recording with structured pronunciation assessment."""
    request_id = str(uuid.uuid4())[:8]
    content, mime_type, error = await read_submission(audio, expected)
    if error:
        return error
    language = language or "en-US"
    logging.info(f"[{request_id}] Assessing {expected!r} ({language})")

    outcome = await grading_service.assess(content, mime_type, expected, language, request_id=request_id)
    if not outcome.ok:
        return error_response(outcome.message, diagnostics=outcome.diagnostics)
    return json_response(outcome.value.model_dump(by_alias=True))


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "Pronunciation Grading Relay is running"}


@app.get("/health/providers")
async def providers_health_check():
    """Which upstream credentials are configured"""
    return {
        "openai": bool(Config.OPENAI_API_KEY),
        "azure": bool(Config.AZURE_SPEECH_KEY),
        "gemini": bool(Config.GEMINI_API_KEY),
        "judge_backend": Config.JUDGE_BACKEND,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
