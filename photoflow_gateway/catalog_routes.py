"""Catalog routes: list, download and delete stage artifacts."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from photoflow_runner.catalog import IMAGE_SUFFIXES, Stage

from .state import GatewayState, get_state

router = APIRouter(prefix="/v1/catalog", tags=["catalog"])


@router.get("/{stage}")
async def list_stage(stage: Stage, state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
    catalog = state.catalog
    items = []
    for info in catalog.list(stage, IMAGE_SUFFIXES):
        entry = info.to_dict()
        if stage is Stage.NO_BACKGROUND:
            record = catalog.load_record(info.filename)
            entry["metadata"] = record.model_dump(mode="json") if record else None
        items.append(entry)
    return {"success": True, "stage": stage.value, "count": len(items), "items": items}


@router.get("/{stage}/{filename}")
async def download_artifact(stage: Stage, filename: str, state: GatewayState = Depends(get_state)) -> FileResponse:
    info = state.catalog.get(stage, filename)
    return FileResponse(info.path, filename=info.filename)


@router.delete("/{stage}/{filename}")
async def delete_artifact(stage: Stage, filename: str, state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
    state.catalog.delete(stage, filename)
    return {"success": True, "stage": stage.value, "deleted": filename}
