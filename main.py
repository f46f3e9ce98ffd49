import dataclasses
import logging
import os
import time
from http import HTTPStatus

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, Response
from starlette.concurrency import run_in_threadpool

from variants.classes import (
    HealthCheckResponse,
    SavingsReport,
    StatusResponse,
    UploadAcceptedResponse,
    UploadEventBody,
)
from variants.context import AppContext
from variants.logs import setup_logging
from variants.settings import ENV_PREFIX, Settings

version = os.getenv("APP_VERSION", "local-dev")

tags_metadata = [
    {
        "name": "hooks",
        "description": "Upload, deletion and rendering hooks called by the content system.",
    },
    {
        "name": "api",
        "description": "Catalog lookups and service status. Always returns `application/json`.",
    },
]


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def create_app(context: AppContext) -> FastAPI:
    app = FastAPI(
        title="Picture variants",
        version=version,
        license_info={"name": "GPL-2.0"},
        openapi_tags=tags_metadata,
    )
    app.state.context = context

    api_router = APIRouter(tags=["api"])
    hooks_router = APIRouter(tags=["hooks"])

    @hooks_router.post(
        "/attachments/{source_id}",
        summary="Generates the format variants of an uploaded image in the background",
        status_code=HTTPStatus.ACCEPTED,
    )
    async def hook_upload(
        source_id: str,
        upload: UploadEventBody,
        background_tasks: BackgroundTasks,
        context: AppContext = Depends(get_context),
    ) -> UploadAcceptedResponse:
        try:
            source = await run_in_threadpool(
                context.source_image_from_upload, source_id, upload
            )
        except (OSError, ValueError) as e:
            raise HTTPException(
                status_code=HTTPStatus.BAD_REQUEST,
                detail=f"Can't read image '{upload.file}': {e}",
            )

        background_tasks.add_task(
            context.handle_upload, source, dataclasses.asdict(upload)
        )
        return UploadAcceptedResponse(
            source_id=source_id, planned_formats=context.planned_formats(source)
        )

    @hooks_router.delete(
        "/attachments/{source_id}",
        summary="Drops the catalog record of a deleted image",
        status_code=HTTPStatus.NO_CONTENT,
    )
    def hook_delete(source_id: str, context: AppContext = Depends(get_context)):
        if not context.handle_delete(source_id):
            raise HTTPException(
                status_code=HTTPStatus.NOT_FOUND,
                detail=f"No catalog record for id='{source_id}'!",
            )
        return Response(status_code=HTTPStatus.NO_CONTENT)

    @hooks_router.post(
        "/render",
        summary="Rewrites the images of an HTML fragment to <picture> elements",
        response_class=HTMLResponse,
    )
    async def hook_render(request: Request, context: AppContext = Depends(get_context)):
        html = (await request.body()).decode("utf-8", errors="replace")
        return HTMLResponse(await run_in_threadpool(context.render, html))

    @api_router.get(
        "/catalog/{source_id}",
        summary="Returns the recorded sizes and formats of an image",
    )
    def api_get_catalog_record(
        source_id: str, context: AppContext = Depends(get_context)
    ) -> dict:
        try:
            record = context.catalog.get(source_id)
        except ValueError as e:
            raise HTTPException(
                status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(e)
            )

        if record is None:
            raise HTTPException(
                status_code=HTTPStatus.NOT_FOUND,
                detail=f"No catalog record for id='{source_id}'!",
            )
        return {"source_id": record.source_id, **record.to_dict()}

    @api_router.get(
        "/catalog/{source_id}/savings",
        summary="Returns the size savings of the best variant per size",
    )
    def api_get_savings(
        source_id: str, context: AppContext = Depends(get_context)
    ) -> SavingsReport:
        report = context.savings_report(source_id)
        if report is None:
            raise HTTPException(
                status_code=HTTPStatus.NOT_FOUND,
                detail=f"No catalog record for id='{source_id}'!",
            )
        return report

    @api_router.get("/status", summary="Returns service status")
    async def api_get_status() -> StatusResponse:
        return StatusResponse(version=version, timestamp=int(time.time()))

    @api_router.get("/health", summary="Returns service health")
    async def api_get_health() -> HealthCheckResponse:
        return HealthCheckResponse()

    app.include_router(api_router, prefix="/api/v1")
    app.include_router(hooks_router, prefix="/api/v1")

    return app


def default_db_file(uploads_dir: str) -> str:
    """The catalog file lives next to the uploads directory, outside the watched tree."""
    parent = os.path.dirname(os.path.abspath(uploads_dir))
    return os.path.join(parent, ".variants.db")


def create_app_from_env() -> FastAPI:
    uploads_dir = os.getenv(f"{ENV_PREFIX}_UPLOADS_DIR", "uploads")
    uploads_url = os.getenv(f"{ENV_PREFIX}_UPLOADS_URL", "/uploads")
    db_file = os.getenv(f"{ENV_PREFIX}_DB_FILE", default_db_file(uploads_dir))
    enable_inotify = os.getenv(f"{ENV_PREFIX}_ENABLE_INOTIFY", "1") in ("1", "true", "yes")
    max_workers = int(os.getenv(f"{ENV_PREFIX}_MAX_WORKERS", 4))
    loglevel = os.getenv(
        f"{ENV_PREFIX}_LOG_LEVEL", os.getenv("UVICORN_LOG_LEVEL", logging.INFO)
    )

    setup_logging(loglevel=loglevel)

    os.makedirs(uploads_dir, exist_ok=True)
    context = AppContext.create(
        Settings.from_env(),
        connection_string=f"sqlite:///{db_file}",
        uploads_dir=uploads_dir,
        uploads_url=uploads_url,
        max_workers=max_workers,
    )

    if enable_inotify:
        # imported here, inotify only exists on linux
        from variants.watcher import UploadWatcher

        UploadWatcher(context).dispatch()

    return create_app(context)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app_from_env, factory=True)
