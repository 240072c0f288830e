from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from photoflow_runner import __version__
from photoflow_runner.catalog import Stage, StageCatalog
from photoflow_runner.errors import NotFoundError, PipelineError, ValidationError
from photoflow_runner.pipeline import normalization_summary, run_normalization_batch, validate_file
from photoflow_runner.utils import format_file_size

from .catalog_routes import router as catalog_router
from .comfy_client import ComfyClient
from .generation_routes import router as generation_router
from .input_utils import check_image_content_type, save_upload, temp_directory, unique_upload_name
from .rembg_client import BackgroundRemovalClient
from .stages import remove_background_batch
from .state import GatewayConfig, GatewayState, get_state
from .webhook_client import WebhookClient

logger = logging.getLogger(__name__)

SERVICES = ("webhook", "rembg", "comfyui")


class ProcessRequest(BaseModel):
    upload_id: Optional[str] = None
    filenames: Optional[List[str]] = None


class BackgroundRemovalRequest(BaseModel):
    filenames: Optional[List[str]] = None


def _build_state(
    config: GatewayConfig,
    webhook_client: Optional[WebhookClient],
    rembg_client: Optional[BackgroundRemovalClient],
    comfy_client: Optional[ComfyClient],
) -> GatewayState:
    catalog = StageCatalog(config.resolved_root())
    catalog.ensure_layout()
    return GatewayState(
        config=config,
        catalog=catalog,
        webhook_client=webhook_client or WebhookClient(
            base_url=config.webhook_url,
            health_path=config.webhook_health_path,
            notify_path=config.webhook_notify_path,
            timeout=config.webhook_timeout,
        ),
        rembg_client=rembg_client or BackgroundRemovalClient(
            base_url=config.rembg_url,
            timeout=config.rembg_timeout,
        ),
        comfy_client=comfy_client or ComfyClient(
            base_url=config.comfyui_url,
            timeout=config.request_timeout,
            poll_interval=config.generation_poll_interval,
            max_wait=config.generation_max_wait,
            default_checkpoint=config.comfy_checkpoint,
        ),
    )


async def _probe(state: GatewayState, service: str) -> Dict[str, Any]:
    if service == "webhook":
        return await state.webhook_client.probe()
    if service == "rembg":
        return await state.rembg_client.probe()
    if service == "comfyui":
        return await state.comfy_client.probe()
    raise NotFoundError(f"Unknown service: {service}", details={"services": list(SERVICES)})


def create_app(
    config: Optional[GatewayConfig] = None,
    *,
    webhook_client: Optional[WebhookClient] = None,
    rembg_client: Optional[BackgroundRemovalClient] = None,
    comfy_client: Optional[ComfyClient] = None,
) -> FastAPI:
    cfg = config or GatewayConfig()
    state = _build_state(cfg, webhook_client, rembg_client, comfy_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        state.catalog.ensure_layout()
        logger.info(f"Photoflow gateway storage root: {state.catalog.root}")
        try:
            yield
        finally:
            await state.rembg_client.close()
            await state.comfy_client.close()

    app = FastAPI(title="Photoflow Gateway", version=__version__, lifespan=lifespan)
    app.state.gateway = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"success": False, **exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Invalid request",
                "code": ValidationError.code,
                "details": jsonable_encoder(exc.errors()),
            },
        )

    # Include routers
    app.include_router(generation_router)
    app.include_router(catalog_router)

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        return {
            "status": "ok",
            "service": "photoflow-gateway",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/v1/status")
    async def system_status(state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
        services = {name: await _probe(state, name) for name in SERVICES}

        queue: Optional[Dict[str, Any]] = None
        if services["comfyui"]["status"] == "connected":
            try:
                counts = await state.comfy_client.get_queue()
                queue = {"running": counts["running"], "pending": counts["pending"]}
            except PipelineError as e:
                queue = {"error": e.message}

        return {
            "success": True,
            "services": services,
            "comfyui_queue": queue,
            "storage": {stage.value: state.catalog.count(stage) for stage in Stage},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/v1/status/{service}")
    async def service_status(service: str, state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
        report = await _probe(state, service)
        return {"success": report["status"] == "connected", "service": service, **report}

    @app.post("/v1/uploads")
    async def upload_images(
        request: Request,
        images: List[UploadFile] = File(...),
        state: GatewayState = Depends(get_state),
    ) -> Dict[str, Any]:
        config = state.config
        if len(images) > config.max_upload_files:
            raise ValidationError(f"Too many files. Maximum is {config.max_upload_files} per upload")
        for image in images:
            check_image_content_type(image)

        upload_id = uuid.uuid4().hex
        saved: List[Dict[str, Any]] = []
        try:
            for image in images:
                filename = unique_upload_name(image.filename)
                dest = state.catalog.path(Stage.UPLOADS, filename)
                size = await save_upload(image, dest, config.max_upload_bytes)
                saved.append({
                    "original_name": image.filename,
                    "filename": filename,
                    "size": size,
                    "mimetype": image.content_type,
                    "path": str(dest),
                    "uploaded_at": datetime.now(timezone.utc).isoformat(),
                })
        except PipelineError:
            # Upload is all-or-nothing
            for entry in saved:
                state.catalog.path(Stage.UPLOADS, entry["filename"]).unlink(missing_ok=True)
            raise

        logger.info(f"Upload {upload_id}: stored {len(saved)} files")

        notify_payload = {
            "uploadId": upload_id,
            "totalFiles": len(saved),
            "files": [
                {
                    "originalName": entry["original_name"],
                    "filename": entry["filename"],
                    "size": entry["size"],
                    "mimetype": entry["mimetype"],
                    "path": entry["path"],
                    "uploadedAt": entry["uploaded_at"],
                }
                for entry in saved
            ],
            "metadata": {
                "uploadTime": datetime.now(timezone.utc).isoformat(),
                "userAgent": request.headers.get("user-agent"),
                "ip": request.client.host if request.client else None,
            },
        }
        outcome = await state.webhook_client.notify_upload(notify_payload)

        response: Dict[str, Any] = {
            "success": True,
            "message": f"{len(saved)} files uploaded successfully",
            "upload_id": upload_id,
            "files_uploaded": len(saved),
            "files": [dict(entry, size_formatted=format_file_size(entry["size"])) for entry in saved],
            "webhook_processing": "Started" if outcome.delivered else "Failed",
            "webhook_response": outcome.response,
        }
        if outcome.warnings:
            response["warnings"] = outcome.warnings
        return response

    @app.post("/v1/process")
    async def process_uploads(
        payload: Optional[ProcessRequest] = Body(None),
        state: GatewayState = Depends(get_state),
    ) -> Dict[str, Any]:
        upload_id = payload.upload_id if payload else None
        filenames = payload.filenames if payload else None
        if filenames is None:
            filenames = state.catalog.filenames(Stage.UPLOADS)
        if not filenames:
            raise ValidationError("No files to process. Upload images first.")

        batch = await asyncio.to_thread(
            run_normalization_batch,
            state.catalog,
            filenames,
            upload_id=upload_id,
            config=state.config.normalizer_config(),
        )
        return normalization_summary(batch, upload_id)

    @app.post("/v1/validate")
    async def validate_image(
        image: UploadFile = File(...),
        state: GatewayState = Depends(get_state),
    ) -> Dict[str, Any]:
        check_image_content_type(image)
        async with temp_directory(state.catalog.root, ".validate") as temp_dir:
            path = temp_dir / unique_upload_name(image.filename, "image")
            await save_upload(image, path, state.config.max_upload_bytes)
            result = await asyncio.to_thread(validate_file, path, state.config.normalizer_config())

        if not result["valid"]:
            raise ValidationError(result["error"], details={"valid": False})
        return {"success": True, "filename": image.filename, **result}

    @app.post("/v1/remove-background")
    async def remove_background(
        payload: Optional[BackgroundRemovalRequest] = Body(None),
        state: GatewayState = Depends(get_state),
    ) -> Dict[str, Any]:
        filenames = payload.filenames if payload else None
        batch = await remove_background_batch(state.catalog, state.rembg_client, filenames)
        return batch.summary()

    return app
