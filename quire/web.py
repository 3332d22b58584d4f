from __future__ import annotations

import json
import logging
from pathlib import Path
import time
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from .config import configure_logging, load_settings
from .errors import ArchiveReadError, ArchiveWriteError, InvalidPath, MergeError
from .merge import inspect_archive, merge_job
from .models import JobOptionsError, job_config_from_dict
from .packager import write_archive
from .paths import split_path
from .storage import (
    cleanup_finished,
    cleanup_job,
    finished_path,
    is_valid_job_id,
    new_job_id,
    reset_work_dirs,
    safe_upload_name,
    upload_path,
)

EPUB_EXT = ".epub"
EPUB_MEDIA_TYPE = "application/epub+zip"
NO_FILES_DETAIL = "No files uploaded"
NO_EPUB_DETAIL = "No files uploaded. None of the received files were of type epub"

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[load_settings().frontend],
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger("quire.web")


@app.on_event("startup")
async def startup() -> None:
    configure_logging()
    reset_work_dirs()
    logger.info("work directories ready under %s", load_settings().work_dir)


def _is_epub_upload(upload: UploadFile) -> bool:
    try:
        return split_path(upload.filename or "").ext.lower() == EPUB_EXT
    except InvalidPath:
        return False


async def _stream_upload_to_path(upload_file: UploadFile, destination: Path, *, chunk_size: int = 1024 * 1024) -> int:
    destination.parent.mkdir(parents=True, exist_ok=True)
    total = 0
    with destination.open("wb") as out:
        while True:
            chunk = await upload_file.read(chunk_size)
            if not chunk:
                break
            out.write(chunk)
            total += len(chunk)
    return total


def _merge_saved_uploads(job_id: str, paths: list[Path], options: dict) -> bytes:
    config = job_config_from_dict(options)
    archives = [path.read_bytes() for path in paths]
    data = merge_job(job_id, archives, config)
    try:
        write_archive(finished_path(job_id), data)
    except ArchiveWriteError as exc:
        raise MergeError("pack", exc) from exc
    return data


def _parse_options(raw: str) -> dict:
    try:
        options = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"fileOptions is not valid JSON: {exc}") from exc
    try:
        # Validate before any upload is written to disk.
        job_config_from_dict(options)
    except JobOptionsError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return options


@app.post("/uploads", response_class=PlainTextResponse)
async def uploads(
    files: Optional[list[UploadFile]] = File(None, alias="myFiles"),
    file_options: str = Form("{}", alias="fileOptions"),
) -> PlainTextResponse:
    if not files:
        raise HTTPException(status_code=400, detail=NO_FILES_DETAIL)
    settings = load_settings()
    if len(files) > settings.max_uploads:
        raise HTTPException(status_code=400, detail=f"At most {settings.max_uploads} files can be merged at once")
    epubs = [upload for upload in files if _is_epub_upload(upload)]
    if not epubs:
        raise HTTPException(status_code=400, detail=NO_EPUB_DETAIL)
    options = _parse_options(file_options)

    stamp = int(time.time() * 1000)
    job_id = new_job_id(epubs[0].filename or "", stamp)
    saved: list[Path] = []
    try:
        for index, upload in enumerate(epubs):
            destination = upload_path(f"{stamp}-{index}-{safe_upload_name(upload.filename or '')}", settings)
            saved.append(destination)
            await _stream_upload_to_path(upload, destination)
        await run_in_threadpool(_merge_saved_uploads, job_id, saved, options)
    except MergeError as exc:
        status = 422 if exc.is_content_error else 500
        logger.warning("merge %s failed at %s: %s", job_id, exc.stage, exc.detail)
        raise HTTPException(status_code=status, detail=f"Merge failed during {exc.stage}: {exc.detail}") from exc
    except OSError as exc:
        logger.exception("merge %s failed while handling uploads", job_id)
        raise HTTPException(status_code=500, detail="Failed to store uploaded files") from exc
    finally:
        cleanup_job(job_id, saved, settings)
    return PlainTextResponse(job_id)


def _cleanup_delivered(job_id: str) -> None:
    try:
        cleanup_finished(job_id)
    except Exception:
        logger.exception("failed to remove delivered EPUB %s", job_id)


@app.get("/getEpub/{job_id}")
async def get_epub(job_id: str) -> FileResponse:
    if not is_valid_job_id(job_id):
        raise HTTPException(status_code=404, detail="EPUB not found")
    path = finished_path(job_id)
    if not path.is_file():
        raise HTTPException(status_code=404, detail="EPUB not found")
    download_name = job_id if job_id.lower().endswith(EPUB_EXT) else f"{job_id}{EPUB_EXT}"
    return FileResponse(
        path=path,
        filename=download_name,
        media_type=EPUB_MEDIA_TYPE,
        background=BackgroundTask(_cleanup_delivered, job_id),
    )


@app.get("/getDemoEpubs")
async def get_demo_epubs() -> FileResponse:
    demo = load_settings().demo_archive
    if not demo.is_file():
        logger.error("demo archive missing at %s", demo)
        raise HTTPException(status_code=500, detail="Error sending demo files")
    return FileResponse(path=demo, filename=demo.name, media_type="application/zip")


@app.post("/calculateDiagnostics")
async def calculate_diagnostics(files: Optional[list[UploadFile]] = File(None, alias="myFile")) -> JSONResponse:
    if not files:
        raise HTTPException(status_code=400, detail=NO_FILES_DETAIL)
    epubs = [upload for upload in files if _is_epub_upload(upload)]
    if not epubs:
        raise HTTPException(status_code=400, detail=NO_EPUB_DETAIL)
    data = await epubs[0].read()
    try:
        names = await run_in_threadpool(inspect_archive, data)
    except ArchiveReadError as exc:
        logger.warning("diagnostics failed for %s: %s", epubs[0].filename, exc)
        raise HTTPException(status_code=400, detail="Error reading file") from exc
    return JSONResponse(names)


@app.get("/", response_class=PlainTextResponse)
async def index() -> PlainTextResponse:
    return PlainTextResponse(f"Hello world, expecting requests from {load_settings().frontend}")
