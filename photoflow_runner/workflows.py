"""
ComfyUI workflow graphs, prompt templates and seed planning.

A workflow is a mapping of node id -> ``{"class_type", "inputs"}``; inputs
that come from another node are wired as ``[node_id, output_slot]``.
"""

from __future__ import annotations

import random
from typing import Any, Dict, List, Optional

DEFAULT_CHECKPOINT = "v1-5-pruned-emaonly.ckpt"
DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, distorted, watermark"
RANDOM_SEED = -1
MAX_SEED = 2**32 - 1

SAVE_NODE_ID = "9"

Workflow = Dict[str, Dict[str, Any]]

FASHION_PROMPTS: Dict[str, Dict[str, str]] = {
    "clothing": {
        "studio": "professional product photography, clean white background, studio lighting, high quality",
        "lifestyle": "lifestyle product photo, natural lighting, casual setting, aesthetic composition",
        "elegant": "elegant fashion photography, luxury presentation, sophisticated lighting, premium quality",
    },
    "shoes": {
        "studio": "professional shoe photography, clean white background, dramatic lighting, high detail",
        "lifestyle": "casual shoe photo, outdoor setting, natural light, lifestyle composition",
        "elegant": "luxury shoe photography, premium presentation, elegant lighting, high-end quality",
    },
    "accessories": {
        "studio": "professional accessory photography, minimal background, studio setup, sharp focus",
        "lifestyle": "lifestyle accessory shot, natural environment, soft lighting, aesthetic style",
        "elegant": "luxury accessory photography, premium presentation, sophisticated composition",
    },
}
DEFAULT_PRODUCT_TYPE = "clothing"
DEFAULT_STYLE = "studio"


def fashion_prompts(product_type: Optional[str] = None) -> Dict[str, str]:
    """Style -> prompt table for a product category, falling back to clothing."""
    key = (product_type or DEFAULT_PRODUCT_TYPE).lower()
    return dict(FASHION_PROMPTS.get(key, FASHION_PROMPTS[DEFAULT_PRODUCT_TYPE]))


def resolve_prompt(
    prompt: Optional[str],
    product_type: Optional[str] = None,
    style: Optional[str] = None,
) -> str:
    """Caller prompt if given, else the template for ``style`` (studio fallback)."""
    if prompt and prompt.strip():
        return prompt.strip()
    table = fashion_prompts(product_type)
    return table.get((style or DEFAULT_STYLE).lower(), table[DEFAULT_STYLE])


def plan_seeds(seed: int, count: int, rng: Optional[random.Random] = None) -> List[int]:
    """
    Seeds for ``count`` images.

    A pinned seed is offset by the image index and wraps within
    ``[0, MAX_SEED]``; ``-1`` draws an independent random seed for every image.
    """
    if count < 1:
        return []
    if seed == RANDOM_SEED:
        source = rng or random.SystemRandom()
        return [source.randint(0, MAX_SEED) for _ in range(count)]
    return [(seed + index) % (MAX_SEED + 1) for index in range(count)]


def _checkpoint_node(checkpoint: str) -> Dict[str, Any]:
    return {
        "inputs": {"ckpt_name": checkpoint},
        "class_type": "CheckpointLoaderSimple",
    }


def _text_node(text: str) -> Dict[str, Any]:
    return {
        "inputs": {"text": text, "clip": ["4", 1]},
        "class_type": "CLIPTextEncode",
    }


def _decode_and_save(prefix: str) -> Workflow:
    return {
        "8": {
            "inputs": {"samples": ["3", 0], "vae": ["4", 2]},
            "class_type": "VAEDecode",
        },
        SAVE_NODE_ID: {
            "inputs": {"filename_prefix": prefix, "images": ["8", 0]},
            "class_type": "SaveImage",
        },
    }


def text_to_image_workflow(
    prompt: str,
    negative_prompt: str = "",
    seed: int = 0,
    *,
    width: int = 512,
    height: int = 512,
    batch_size: int = 1,
    steps: int = 20,
    cfg: float = 7,
    sampler_name: str = "euler",
    scheduler: str = "normal",
    checkpoint: str = DEFAULT_CHECKPOINT,
    filename_prefix: str = "ComfyUI",
) -> Workflow:
    workflow: Workflow = {
        "3": {
            "inputs": {
                "seed": seed,
                "steps": steps,
                "cfg": cfg,
                "sampler_name": sampler_name,
                "scheduler": scheduler,
                "denoise": 1,
                "model": ["4", 0],
                "positive": ["6", 0],
                "negative": ["7", 0],
                "latent_image": ["5", 0],
            },
            "class_type": "KSampler",
        },
        "4": _checkpoint_node(checkpoint),
        "5": {
            "inputs": {"width": width, "height": height, "batch_size": batch_size},
            "class_type": "EmptyLatentImage",
        },
        "6": _text_node(prompt),
        "7": _text_node(negative_prompt),
    }
    workflow.update(_decode_and_save(filename_prefix))
    return workflow


def image_to_image_workflow(
    uploaded_filename: str,
    prompt: str,
    negative_prompt: str = "",
    strength: float = 0.75,
    seed: int = 0,
    *,
    steps: int = 25,
    cfg: float = 7.5,
    sampler_name: str = "euler_ancestral",
    scheduler: str = "normal",
    checkpoint: str = DEFAULT_CHECKPOINT,
    filename_prefix: str = "variation",
) -> Workflow:
    """Variation graph: the reference image is VAE-encoded and partially denoised."""
    if not 0.0 <= strength <= 1.0:
        raise ValueError("strength must be between 0.0 and 1.0")
    workflow: Workflow = {
        "1": {
            "inputs": {"image": uploaded_filename, "upload": "image"},
            "class_type": "LoadImage",
        },
        "2": {
            "inputs": {"pixels": ["1", 0], "vae": ["4", 2]},
            "class_type": "VAEEncode",
        },
        "3": {
            "inputs": {
                "seed": seed,
                "steps": steps,
                "cfg": cfg,
                "sampler_name": sampler_name,
                "scheduler": scheduler,
                "denoise": strength,
                "model": ["4", 0],
                "positive": ["6", 0],
                "negative": ["7", 0],
                "latent_image": ["2", 0],
            },
            "class_type": "KSampler",
        },
        "4": _checkpoint_node(checkpoint),
        "6": _text_node(prompt),
        "7": _text_node(negative_prompt),
    }
    workflow.update(_decode_and_save(filename_prefix))
    return workflow


def find_output_image(history_entry: Dict[str, Any], save_node_id: str = SAVE_NODE_ID) -> Optional[Dict[str, Any]]:
    """
    Image reference (``filename``, ``subfolder``, ``type``) emitted by a job.

    The save node is preferred; any other node that produced images is the fallback.
    """
    outputs = history_entry.get("outputs") or {}
    preferred = outputs.get(save_node_id) or {}
    images = preferred.get("images") or []
    if images:
        return images[0]
    for node_output in outputs.values():
        images = (node_output or {}).get("images") or []
        if images:
            return images[0]
    return None
