"""HTTP surface for clipmerge.

Routes:
  POST   /upload?sessionId=...        multipart field `video`, stores + validates one clip
  POST   /merge                       {"sessionId": ..., "subscriberId": ...}
  DELETE /cleanup                     on-demand TTL expiry pass
  GET    /health
  GET    /videos/<name>               merged outputs (static)
  WS     /ws/progress/{subscriber_id} merge progress push channel

All mutating routes require the `X-API-Key` header. Merges run in the
threadpool (sync route) so the event loop stays free to push progress.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from clipmerge.config.models import AppConfig
from clipmerge.domain.errors import MergeError, ProbeError, RunError, RunSpawnError
from clipmerge.infrastructure.progress_hub import ProgressHub
from clipmerge.infrastructure.session_registry import validate_session_id
from clipmerge.pipeline.services import Services, build_services

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_BYTES = 1024 * 1024


class MergeRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    subscriber_id: Optional[str] = Field(default=None, alias="subscriberId")


class UploadTooLarge(Exception):
    pass


class _LimitedReader:
    """File-like wrapper that stops an upload once it grows past `limit` bytes."""

    def __init__(self, fileobj, limit: int):
        self._fileobj = fileobj
        self._limit = limit
        self._received = 0

    def read(self, size: int = UPLOAD_CHUNK_BYTES) -> bytes:
        chunk = self._fileobj.read(size)
        self._received += len(chunk)
        if self._received > self._limit:
            raise UploadTooLarge()
        return chunk


def create_app(config: AppConfig, services: Optional[Services] = None, start_scheduler: bool = True) -> FastAPI:
    services = services or build_services(config)
    hub = ProgressHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub.attach(services.event_bus, asyncio.get_running_loop())
        if start_scheduler:
            services.scheduler.start()
        logger.info(f"Server ready: videos_dir={services.registry.videos_dir} ffmpeg={config.ffmpeg.ffmpeg_path}")
        try:
            yield
        finally:
            if start_scheduler:
                services.scheduler.stop()
            hub.detach(services.event_bus)

    app = FastAPI(title="clipmerge", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.state.progress_hub = hub
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.mount("/videos", StaticFiles(directory=str(services.registry.videos_dir)), name="videos")

    def require_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
        if x_api_key != config.server.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "OK"}

    @app.post("/upload", dependencies=[Depends(require_api_key)])
    def upload(
        session_id: Optional[str] = Query(None, alias="sessionId"),
        video: Optional[UploadFile] = File(None),
    ) -> dict[str, Any]:
        try:
            session_id = validate_session_id(session_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        if video is None or not video.filename:
            raise HTTPException(status_code=400, detail="No file uploaded")

        ext = Path(video.filename).suffix
        try:
            stored = services.registry.put_clip(
                session_id,
                _LimitedReader(video.file, config.storage.max_upload_bytes),
                ext,
            )
        except UploadTooLarge:
            raise HTTPException(status_code=400, detail="Upload exceeds size limit")
        except MergeError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.reason)

        try:
            descriptor = services.ffprobe.probe(stored)
        except (ProbeError, RunError) as exc:
            stored.unlink(missing_ok=True)
            services.registry.forget(stored)
            logger.warning(f"UPLOAD_REJECTED: session={session_id} file={stored.name} ({exc.reason})")
            status_code = 500 if isinstance(exc, RunSpawnError) else 400
            raise HTTPException(status_code=status_code, detail=exc.reason)

        logger.info(
            f"UPLOAD_OK: session={session_id} file={stored.name} "
            f"({descriptor.duration:.2f}s, {descriptor.resolution})"
        )
        return {
            "message": "Upload OK",
            "filename": stored.name,
            "metadata": descriptor.model_dump(mode="json", exclude={"source_path"}),
        }

    @app.post("/merge", dependencies=[Depends(require_api_key)])
    def merge(
        body: Optional[MergeRequest] = None,
        session_query: Optional[str] = Query(None, alias="sessionId"),
        subscriber_query: Optional[str] = Query(None, alias="subscriberId"),
    ) -> Any:
        session_id = (body.session_id if body else None) or session_query
        subscriber_id = (body.subscriber_id if body else None) or subscriber_query
        try:
            session_id = validate_session_id(session_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        try:
            result = services.orchestrator.merge(session_id, subscriber_id=subscriber_id)
        except MergeError as exc:
            return JSONResponse(status_code=exc.status_code, content={"error": exc.reason})
        return {
            "message": "Merge OK",
            "output": result.output_relative_path,
            "duration": result.duration_seconds,
            "size": result.size_bytes,
            "durationMismatch": result.duration_mismatch,
        }

    @app.delete("/cleanup", dependencies=[Depends(require_api_key)])
    def cleanup() -> dict[str, Any]:
        removed = services.housekeeper.cleanup_expired()
        return {"message": "Cleanup OK", "removed": len(removed)}

    @app.websocket("/ws/progress/{subscriber_id}")
    async def ws_progress(websocket: WebSocket, subscriber_id: str) -> None:
        await websocket.accept()
        q = await hub.subscribe(subscriber_id)
        logger.debug("[progress_ws] subscribed subscriber_id=%r", subscriber_id)
        try:
            while True:
                payload = await q.get()
                await websocket.send_json(payload)
        except WebSocketDisconnect:
            return
        finally:
            await hub.unsubscribe(subscriber_id, q)

    return app
