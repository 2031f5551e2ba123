#!/usr/bin/env python3
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from config.settings import load_settings
from engine.builder import build_pipeline
from engine.models import (
    STATUS_CLIENT_ERROR,
    STATUS_TIMEOUT,
    ErrorKind,
    MediaKind,
    PipelineResult,
    SourceReference,
)
from engine.paths import build_engine_paths, ensure_dir
from engine.runtime import get_runtime_info
from input.source_url import detect_source_url

APP_NAME = "Previewr API"
LOG_FILENAME = "previewr.log"

_STATUS_CODES = {
    STATUS_CLIENT_ERROR: 400,
    STATUS_TIMEOUT: 504,
}
_TIMEOUT_RETRY_HINT = "Retry with a shorter source rather than repeating the same request."
_TRUST_PROXY = os.environ.get("PREVIEWR_TRUST_PROXY", "").strip().lower() in {"1", "true", "yes", "on"}


class DownloadResponse(BaseModel):
    success: bool
    message: str
    video_url: str
    aws_url: str
    audio_url: str
    externalId: str
    songId: str
    metadata_recorded: bool


def _setup_logging(log_dir):
    ensure_dir(log_dir)
    root = logging.getLogger("")
    log_path = os.path.join(log_dir, LOG_FILENAME)
    root.setLevel(logging.INFO)
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == os.path.abspath(log_path):
                return
    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    file_handler.setLevel(logging.INFO)
    root.addHandler(file_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    paths = build_engine_paths(settings.pipeline.staging_dir)
    _setup_logging(paths.log_dir)
    app.state.settings = settings
    app.state.pipeline = build_pipeline(settings)
    logging.info("%s started staging_dir=%s", APP_NAME, paths.staging_dir)
    yield


app = FastAPI(title=APP_NAME, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
if _TRUST_PROXY:
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


def _get_pipeline():
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline(getattr(app.state, "settings", None))
        app.state.pipeline = pipeline
    return pipeline


def _client_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "kind": ErrorKind.INVALID_INPUT.value},
    )


def _failure_message(result: PipelineResult) -> str:
    failure = result.failure
    if failure.kind == ErrorKind.INVALID_INPUT:
        return "Invalid request"
    if failure.kind == ErrorKind.SOURCE_UNRESOLVABLE:
        return "Could not resolve the requested video"
    if failure.kind == ErrorKind.TIMEOUT:
        return "Timed out while downloading video and audio"
    if failure.kind == ErrorKind.FETCH_FAILED:
        return "Failed to download audio" if failure.media_kind == MediaKind.AUDIO else "Failed to download video"
    if failure.kind == ErrorKind.UPLOAD_FAILED:
        return "Failed to upload to S3"
    return "An error occurred while processing the request"


def result_response(result: PipelineResult) -> JSONResponse:
    """Map a pipeline result onto the HTTP surface."""
    if result.success:
        body = DownloadResponse(
            success=True,
            message="Video and audio uploaded successfully",
            video_url=result.video.public_url,
            aws_url=result.video.public_url,
            audio_url=result.audio.public_url,
            externalId=result.external_id,
            songId=result.external_id,
            metadata_recorded=result.metadata_recorded,
        )
        return JSONResponse(status_code=200, content=body.model_dump())

    failure = result.failure
    content = {
        "success": False,
        "error": _failure_message(result),
        "kind": failure.kind.value,
        "details": failure.detail,
        "externalId": result.external_id,
    }
    if failure.media_kind is not None:
        content["media_kind"] = failure.media_kind.value
    if failure.also_failed:
        content["also_failed"] = [kind.value for kind in failure.also_failed]
    if failure.status_class == STATUS_TIMEOUT:
        content["retry_hint"] = _TIMEOUT_RETRY_HINT
    return JSONResponse(status_code=_STATUS_CODES.get(failure.status_class, 500), content=content)


@app.get("/", response_class=PlainTextResponse)
async def index():
    return "Previewr is running."


@app.get("/api/runtime")
async def runtime_info():
    return get_runtime_info()


@app.get("/download")
async def download(
    url: Optional[str] = Query(default=None),
    song_id: Optional[str] = Query(default=None),
):
    source_url = detect_source_url(url or "")
    if source_url is None:
        return _client_error("Invalid or missing YouTube URL")
    external_id = (song_id or "").strip()
    if not external_id:
        return _client_error("Missing song_id parameter")

    logging.info("download requested url=%s song_id=%s", source_url.url, external_id)
    result = await _get_pipeline().run(SourceReference(source_id=source_url.url, external_id=external_id))
    return result_response(result)


def _env_or_default(name: str, default: str) -> str:
    value = os.environ.get(name)
    return value.strip() if value and value.strip() else default


if __name__ == "__main__":
    import uvicorn

    host = _env_or_default("PREVIEWR_HOST", "127.0.0.1")
    port = int(_env_or_default("PREVIEWR_PORT", "8000"))
    uvicorn.run("api.main:app", host=host, port=port, reload=False)
