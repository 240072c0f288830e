"""
Generation routes backed by ComfyUI.

Provides endpoints for:
- Text-to-image generation
- Image-to-image variations of catalog artifacts
- Queue and checkpoint introspection
- Prompt templates per product category
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from photoflow_runner.workflows import DEFAULT_PRODUCT_TYPE, MAX_SEED, fashion_prompts

from .stages import generate_text_batch, generate_variation_batch
from .state import GatewayState, get_state

router = APIRouter(prefix="/v1", tags=["generation"])

MAX_IMAGES_PER_REQUEST = 10


class GenerateRequest(BaseModel):
    """Text-to-image request. Without a prompt the product/style template is used."""
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    seed: int = Field(-1, ge=-1, le=MAX_SEED)
    count: int = Field(1, ge=1, le=MAX_IMAGES_PER_REQUEST)
    width: int = Field(512, ge=64, le=2048)
    height: int = Field(512, ge=64, le=2048)
    product_type: str = DEFAULT_PRODUCT_TYPE
    style: str = "studio"


class VariationRequest(BaseModel):
    filename: str
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    style: str = "studio"
    product_type: str = DEFAULT_PRODUCT_TYPE
    strength: float = Field(0.75, ge=0.0, le=1.0)
    count: int = Field(1, ge=1, le=MAX_IMAGES_PER_REQUEST)
    seed: int = Field(-1, ge=-1, le=MAX_SEED)


@router.post("/generate")
async def generate(payload: GenerateRequest, state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
    return await generate_text_batch(
        state.catalog,
        state.comfy_client,
        prompt=payload.prompt,
        negative_prompt=payload.negative_prompt,
        seed=payload.seed,
        count=payload.count,
        width=payload.width,
        height=payload.height,
        product_type=payload.product_type,
        style=payload.style,
        checkpoint=state.config.comfy_checkpoint,
    )


@router.post("/variations")
async def generate_variations(payload: VariationRequest, state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
    return await generate_variation_batch(
        state.catalog,
        state.comfy_client,
        payload.filename,
        prompt=payload.prompt,
        negative_prompt=payload.negative_prompt,
        strength=payload.strength,
        seed=payload.seed,
        count=payload.count,
        product_type=payload.product_type,
        style=payload.style,
        checkpoint=state.config.comfy_checkpoint,
    )


@router.get("/comfy/queue")
async def comfy_queue(state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
    queue = await state.comfy_client.get_queue()
    return {"success": True, **queue}


@router.get("/comfy/models")
async def comfy_models(state: GatewayState = Depends(get_state)) -> Dict[str, Any]:
    models = await state.comfy_client.available_models()
    return {"success": True, "models": models}


@router.get("/prompts")
async def prompt_templates(product_type: str = DEFAULT_PRODUCT_TYPE) -> Dict[str, Any]:
    return {"success": True, "product_type": product_type, "prompts": fashion_prompts(product_type)}
