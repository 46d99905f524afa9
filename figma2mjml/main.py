from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from figma2mjml import __version__
from figma2mjml import ratelimit as _rl_mod
from figma2mjml.auth import extract_client_key, require_api_key
from figma2mjml.compiler import CompileOptions, compile_mjml
from figma2mjml.config import Settings
from figma2mjml.figma import (
    FigmaClient,
    FigmaError,
    email_suitable_frames,
    extract_layouts,
    to_layout_description,
)
from figma2mjml.imaging import ImageInputError, layout_from_image, validate_image_for_email
from figma2mjml.models import ConversionResult, Issue
from figma2mjml.orchestrator import FallbackOrchestrator
from figma2mjml.pipeline import convert
from figma2mjml.providers import available_providers
from figma2mjml.validator import validate_and_correct

settings = Settings.from_env()

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

app = FastAPI(title="figma2mjml", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConvertOptions(_CamelModel):
    providers: Optional[List[str]] = None


class ConvertFigmaRequest(_CamelModel):
    file_id: Optional[str] = None
    options: ConvertOptions = Field(default_factory=ConvertOptions)


class ValidateRequest(_CamelModel):
    mjml: str


class CompileRequest(_CamelModel):
    mjml: str
    validation_level: str = "soft"


def build_orchestrator() -> FallbackOrchestrator:
    return FallbackOrchestrator.from_settings(settings)


def build_figma_client() -> FigmaClient:
    return FigmaClient(settings.figma_token or "", timeout=settings.figma_timeout_secs)


def _rate_limit_headers(remaining: int, reset_ts: int, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_ts),
    }
    if limited:
        headers["Retry-After"] = str(max(0, reset_ts - int(time.time())))
    return headers


def _rate_limited(request: Request, api_key: Optional[str]) -> Optional[JSONResponse]:
    client_key = extract_client_key(api_key, request.client.host if request.client else None)
    allowed, remaining, reset_ts = _rl_mod.check_and_increment("convert", client_key)
    if allowed:
        return None
    wait_seconds = max(0, reset_ts - int(time.time()))
    log.info("rate_limit denied client=%s reset_in=%ss", client_key, wait_seconds)
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "rate limit exceeded",
            "message": f"Rate limit exceeded. Try again in {wait_seconds} seconds.",
        },
        headers=_rate_limit_headers(remaining, reset_ts, limited=True),
    )


def _issues(issues: List[Issue]) -> List[Dict[str, Any]]:
    return [i.model_dump(by_alias=True, exclude_none=True) for i in issues]


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _conversion_response(result: ConversionResult, metadata: Dict[str, Any]) -> JSONResponse:
    if not result.success:
        return _error(
            500,
            "MJML compilation failed",
            details=_issues(result.errors),
            processingTimeMs=result.processing_time_ms,
        )
    meta = dict(metadata)
    meta.update(
        processingTimeMs=result.processing_time_ms,
        aiUsed=not result.used_fallback,
        providerUsed=result.provider_used,
        attemptErrors=[a.model_dump(by_alias=True) for a in result.attempt_errors],
        stats=result.stats,
    )
    return JSONResponse(
        content={
            "success": True,
            "mjml": result.mjml,
            "html": result.html,
            "usedFallback": result.used_fallback,
            "providerUsed": result.provider_used,
            "metadata": meta,
            "validation": {
                "errors": _issues(result.errors),
                "warnings": _issues(result.warnings),
            },
        }
    )


@app.get("/health")
def health() -> Dict[str, Any]:
    creds = settings.credentials()
    providers = {name: bool(key) for name, key in creds.items()}
    return {
        "status": "ok",
        "version": __version__,
        "services": {
            "figma": bool(settings.figma_token),
            "providers": providers,
            "mjml": True,
        },
        "features": {
            "figmaConversion": bool(settings.figma_token),
            "imageConversion": True,
            "aiGeneration": any(providers.values()),
            "templateFallback": True,
        },
    }


@app.get("/providers")
def providers_endpoint() -> List[Dict[str, Any]]:
    return available_providers(settings.credentials(), settings.provider_models)


@app.post("/convert-figma")
def convert_figma(req: ConvertFigmaRequest, request: Request, api_key: Optional[str] = Depends(require_api_key)):
    limited = _rate_limited(request, api_key)
    if limited is not None:
        return limited

    file_id = (req.file_id or "").strip()
    if not file_id:
        return _error(400, "Missing fileId parameter")
    if not settings.figma_token:
        return _error(500, "Figma token not configured")

    log.info("Starting Figma conversion for file %s", file_id)
    try:
        data = build_figma_client().fetch_file(file_id)
    except FigmaError as e:
        log.warning("Figma fetch failed for %s: %s", file_id, e.message)
        if e.status_code in (401, 403):
            return _error(403, "Invalid Figma token or no access to file")
        if e.status_code == 404:
            return _error(404, "Figma file not found")
        return _error(502, e.message)

    figma_file = extract_layouts(data)
    if not figma_file.layouts:
        return _error(
            400,
            "No suitable layouts found in Figma file",
            metadata={"fileName": figma_file.file_name, "totalFrames": 0},
        )
    frames = email_suitable_frames(figma_file.layouts)
    if not frames:
        return _error(
            400,
            "No email-suitable frames found. Try frames with width up to 800px and height > 100px.",
            metadata={
                "fileName": figma_file.file_name,
                "totalFrames": len(figma_file.layouts),
                "availableFrames": [{"name": f.name, "size": f"{f.width}x{f.height}"} for f in figma_file.layouts],
            },
        )

    description = to_layout_description(figma_file.file_name, frames)
    result = convert(description, build_orchestrator(), req.options.providers)
    primary = frames[0]
    return _conversion_response(
        result,
        {
            "fileName": figma_file.file_name,
            "lastModified": figma_file.last_modified,
            "frameCount": len(frames),
            "primaryFrame": {"name": primary.name, "width": primary.width, "height": primary.height},
        },
    )


@app.post("/convert-image")
def convert_image(
    request: Request,
    image: Optional[UploadFile] = File(default=None),
    api_key: Optional[str] = Depends(require_api_key),
):
    limited = _rate_limited(request, api_key)
    if limited is not None:
        return limited
    if image is None:
        return _error(400, "No image file provided")

    data = image.file.read(settings.max_upload_bytes + 1)
    try:
        meta, image_warnings = validate_image_for_email(data, settings.max_upload_bytes)
    except ImageInputError as e:
        return _error(e.status_code, "Image validation failed", details=[e.message])

    log.info("Processing image %s (%s, %sx%s)", image.filename, meta.format, meta.width, meta.height)
    description = layout_from_image(meta, image.filename)
    result = convert(description, build_orchestrator(), extra_warnings=image_warnings)
    return _conversion_response(
        result,
        {
            "filename": image.filename,
            "size": meta.size,
            "format": meta.format,
            "dimensions": {"width": meta.width, "height": meta.height},
        },
    )


@app.post("/validate")
def validate_endpoint(req: ValidateRequest) -> Dict[str, Any]:
    return validate_and_correct(req.mjml).model_dump(by_alias=True, exclude_none=True)


@app.post("/compile")
def compile_endpoint(req: CompileRequest):
    try:
        options = CompileOptions(validation_level=req.validation_level)
    except ValidationError as e:
        return _error(400, "Invalid validation level", details=[err["msg"] for err in e.errors()])
    result = compile_mjml(req.mjml, options)
    payload = {
        "success": result.success,
        "html": result.output,
        "errors": _issues(result.errors),
        "warnings": _issues(result.warnings),
    }
    if not result.success:
        payload["error"] = "MJML compilation failed"
        return JSONResponse(status_code=422, content=payload)
    return payload


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "figma2mjml.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000") or 8000),
    )
