from __future__ import annotations

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from dotenv import load_dotenv
from fastapi import APIRouter, Body, FastAPI, HTTPException, Path as PathParam, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from doujin_api.logging_conf import setup_logging
from doujin_api.settings import Settings
from doujin_api.api.schemas import DoujinIn, DoujinOut, StatsOut
from doujin_api.db.repo import RECORD_ID_LENGTH, Repo
from doujin_api.errors import DoujinApiError, NotFoundError, SourceUnavailableError
from doujin_api.jobs.dedup import KeyedLocks
from doujin_api.jobs.pipeline import DoujinPipeline, FetchResult
from doujin_api.jobs.zip_doujin import Downloader
from doujin_api.sources.exhentai import ExhentaiSource
from doujin_api.telegraph.client import TelegraphAPI

log = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def _load_env() -> None:
    """Load .env for local development.

    Set ENV_FILE to override the default.
    """
    env_file = os.getenv("ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file)


def _parse_cors_origins(raw: str) -> List[str]:
    raw = (raw or "").strip()
    if not raw:
        return []

    # Accept JSON list first, fallback to comma-separated.
    try:
        v = json.loads(raw)
        if isinstance(v, list):
            return [str(x) for x in v if str(x).strip()]
    except ValueError:
        pass

    return [x.strip() for x in raw.split(",") if x.strip()]


def _status_for_error(exc: DoujinApiError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, SourceUnavailableError):
        return 503
    return 502


def _pipeline(request: Request, repo: Repo) -> DoujinPipeline:
    state = request.app.state
    return DoujinPipeline(
        repo=repo,
        source=state.source,
        telegraph=state.telegraph,
        settings=state.settings,
        locks=state.locks,
        download=state.download,
    )


def _fetch_response(result: FetchResult) -> JSONResponse:
    body = jsonable_encoder(DoujinOut.from_doujin(result.doujin))
    if result.created:
        return JSONResponse(
            status_code=201,
            content=body,
            headers={"Location": f"{API_PREFIX}/doujins/{result.doujin.id}"},
        )
    # already published: hand back the stored record
    return JSONResponse(status_code=200, content=body)


def create_app(
    settings: Optional[Settings] = None,
    *,
    source: Optional[ExhentaiSource] = None,
    telegraph: Optional[TelegraphAPI] = None,
    download: Optional[Downloader] = None,
) -> FastAPI:
    if settings is None:
        _load_env()
        setup_logging()
        settings = Settings.from_env()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.work_dir.mkdir(parents=True, exist_ok=True)

    # Ensure schema on startup.
    repo = Repo(settings=settings)
    repo.ensure_schema()
    repo.close()

    app = FastAPI(title="Doujin API", version="0.1")

    # Store shared objects
    app.state.settings = settings
    app.state.source = source or ExhentaiSource(settings)
    app.state.telegraph = telegraph or TelegraphAPI(
        api_url=settings.telegraph_api_url,
        access_token=settings.telegraph_access_token,
        timeout=settings.request_timeout,
    )
    app.state.locks = KeyedLocks()
    app.state.download = download

    # CORS
    cors_origins = _parse_cors_origins(os.getenv("CORS_ORIGINS", ""))
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(DoujinApiError)
    async def doujin_api_error(request: Request, exc: DoujinApiError) -> JSONResponse:
        status = _status_for_error(exc)
        if status >= 500:
            log.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # --- basic ---
    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    router = APIRouter(prefix=f"{API_PREFIX}/doujins")

    # ------------------------
    # Records
    # ------------------------

    @router.get("", response_model=List[DoujinOut])
    def list_doujins(request: Request) -> List[DoujinOut]:
        repo = Repo(settings=request.app.state.settings)
        try:
            return [DoujinOut.from_doujin(d) for d in repo.list_doujins()]
        finally:
            repo.close()

    @router.get("/count")
    def get_count(request: Request) -> int:
        repo = Repo(settings=request.app.state.settings)
        try:
            return repo.count()
        finally:
            repo.close()

    @router.get("/doujinId/{doujin_id}", response_model=DoujinOut)
    def get_by_doujin_id(request: Request, doujin_id: str) -> DoujinOut:
        repo = Repo(settings=request.app.state.settings)
        try:
            doujin = repo.find_by_source_id(doujin_id)
        finally:
            repo.close()
        if doujin is None:
            raise HTTPException(status_code=404, detail=f"Doujin not found: doujin_id={doujin_id}")
        return DoujinOut.from_doujin(doujin)

    @router.get("/{record_id}", response_model=DoujinOut)
    def get_doujin(
        request: Request,
        record_id: str = PathParam(..., min_length=RECORD_ID_LENGTH, max_length=RECORD_ID_LENGTH),
    ) -> DoujinOut:
        repo = Repo(settings=request.app.state.settings)
        try:
            doujin = repo.find_by_record_id(record_id)
        finally:
            repo.close()
        if doujin is None:
            raise HTTPException(status_code=404, detail=f"Doujin not found: id={record_id}")
        return DoujinOut.from_doujin(doujin)

    @router.post("", status_code=201, response_model=DoujinOut)
    def create_doujin(request: Request, payload: DoujinIn) -> DoujinOut:
        repo = Repo(settings=request.app.state.settings)
        try:
            doujin = repo.create(payload.to_doujin())
        except sqlite3.IntegrityError:
            raise HTTPException(status_code=409, detail=f"Doujin already exists: doujin_id={payload.doujin_id}")
        finally:
            repo.close()
        return DoujinOut.from_doujin(doujin)

    @router.delete("/{record_id}", status_code=204)
    def delete_doujin(
        request: Request,
        record_id: str = PathParam(..., min_length=RECORD_ID_LENGTH, max_length=RECORD_ID_LENGTH),
    ) -> Response:
        repo = Repo(settings=request.app.state.settings)
        try:
            repo.delete(record_id)
        finally:
            repo.close()
        return Response(status_code=204)

    @router.put("/{record_id}")
    def update_doujin(
        request: Request,
        payload: DoujinIn,
        record_id: str = PathParam(..., min_length=RECORD_ID_LENGTH, max_length=RECORD_ID_LENGTH),
    ) -> Dict[str, Any]:
        repo = Repo(settings=request.app.state.settings)
        try:
            existing = repo.find_by_record_id(record_id)
            if existing is None:
                raise HTTPException(status_code=404, detail=f"Doujin not found: id={record_id}")
            updated = payload.to_doujin(record_id)
            # origin url and source id are fixed at creation
            updated.url = existing.url
            updated.doujin_id = existing.doujin_id
            repo.update(updated)
        finally:
            repo.close()
        return {"ok": True, "id": record_id}

    # ------------------------
    # Pipeline
    # ------------------------

    @router.post("/fetch/")
    async def fetch_doujin(request: Request, url: str = Body(...)) -> JSONResponse:
        repo = Repo(settings=request.app.state.settings)
        try:
            result = await _pipeline(request, repo).fetch_or_reuse(unquote(url))
        finally:
            repo.close()
        return _fetch_response(result)

    @router.post("/random/")
    async def random_doujin(request: Request, tags: Optional[str] = Body(default=None)) -> JSONResponse:
        repo = Repo(settings=request.app.state.settings)
        try:
            result = await _pipeline(request, repo).random_or_reuse(tags or "")
        finally:
            repo.close()
        return _fetch_response(result)

    @router.get("/zip/{record_id}")
    async def zip_doujin(
        request: Request,
        record_id: str = PathParam(..., min_length=RECORD_ID_LENGTH, max_length=RECORD_ID_LENGTH),
    ) -> Response:
        repo = Repo(settings=request.app.state.settings)
        try:
            archive = await _pipeline(request, repo).build_archive(record_id)
        finally:
            repo.close()
        return Response(
            content=archive.data,
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{archive.filename}"'},
        )

    @router.get("/views/{url:path}")
    async def get_views(request: Request, url: str) -> int:
        repo = Repo(settings=request.app.state.settings)
        try:
            return await _pipeline(request, repo).get_view_count(unquote(url))
        finally:
            repo.close()

    app.include_router(router)

    @app.get(f"{API_PREFIX}/stats", response_model=StatsOut)
    def get_stats(request: Request) -> StatsOut:
        repo = Repo(settings=request.app.state.settings)
        try:
            return StatsOut.from_stats(repo.load_stats())
        finally:
            repo.close()

    return app
