"""Configuration loader for the photoflow gateway - loads from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from photoflow_runner.workflows import DEFAULT_CHECKPOINT

from .state import GatewayConfig


def load_config_from_env() -> GatewayConfig:
    """
    Load GatewayConfig from environment variables.

    Loads .env file if present and reads configuration values.

    Environment Variables:
        HOST: Server host (default: 127.0.0.1)
        PORT: Server port (default: 8000)
        STORAGE_ROOT: Root directory for all pipeline stages (default: data)
        REQUEST_TIMEOUT: Outbound request timeout in seconds (default: 30)
        WEBHOOK_URL: Workflow webhook base URL (default: http://localhost:5678)
        WEBHOOK_HEALTH_PATH: Webhook reachability path (default: /webhook/from-backend)
        WEBHOOK_NOTIFY_PATH: Upload notification path (default: /webhook/process-upload)
        REMBG_URL: Background removal service URL (default: http://localhost:5000)
        COMFYUI_URL: ComfyUI server URL (default: http://localhost:8188)
        COMFY_CHECKPOINT: Checkpoint used in generation workflows
        GENERATION_POLL_INTERVAL: Seconds between job polls (default: 2)
        GENERATION_MAX_WAIT: Seconds to wait for one job (default: 120)
        MAX_UPLOAD_BYTES: Per-file upload limit (default: 10485760 = 10MB)
        MAX_UPLOAD_FILES: Files per upload request (default: 10)
        TARGET_MAX_DIMENSION: Longest side after normalization (default: 2048)
        MIN_ACCEPTABLE_DIMENSION: Smallest accepted longest side (default: 512)
        OUTPUT_QUALITY: JPEG quality of normalized images (default: 90)

    Returns:
        GatewayConfig object with values from environment
    """
    # Load .env file if it exists
    load_dotenv()

    return GatewayConfig(
        storage_root=Path(os.getenv("STORAGE_ROOT", "data")),
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30.0")),
        # Webhook settings
        webhook_url=os.getenv("WEBHOOK_URL", "http://localhost:5678"),
        webhook_health_path=os.getenv("WEBHOOK_HEALTH_PATH", "/webhook/from-backend"),
        webhook_notify_path=os.getenv("WEBHOOK_NOTIFY_PATH", "/webhook/process-upload"),
        # Service settings
        rembg_url=os.getenv("REMBG_URL", "http://localhost:5000"),
        comfyui_url=os.getenv("COMFYUI_URL", "http://localhost:8188"),
        comfy_checkpoint=os.getenv("COMFY_CHECKPOINT", DEFAULT_CHECKPOINT),
        generation_poll_interval=float(os.getenv("GENERATION_POLL_INTERVAL", "2.0")),
        generation_max_wait=float(os.getenv("GENERATION_MAX_WAIT", "120.0")),
        # Upload limits
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
        max_upload_files=int(os.getenv("MAX_UPLOAD_FILES", "10")),
        # Normalizer settings
        target_max_dimension=int(os.getenv("TARGET_MAX_DIMENSION", "2048")),
        min_acceptable_dimension=int(os.getenv("MIN_ACCEPTABLE_DIMENSION", "512")),
        output_quality=int(os.getenv("OUTPUT_QUALITY", "90")),
    )
