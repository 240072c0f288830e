from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from fastapi import Request

from photoflow_runner.catalog import StageCatalog
from photoflow_runner.normalizer import NormalizerConfig
from photoflow_runner.workflows import DEFAULT_CHECKPOINT

from .comfy_client import ComfyClient
from .rembg_client import BackgroundRemovalClient
from .webhook_client import WebhookClient


@dataclass
class GatewayConfig:
    storage_root: Path = Path("data")
    host: str = "127.0.0.1"
    port: int = 8000
    request_timeout: float = 30.0
    # Workflow webhook (n8n)
    webhook_url: str = "http://localhost:5678"
    webhook_health_path: str = "/webhook/from-backend"
    webhook_notify_path: str = "/webhook/process-upload"
    webhook_timeout: float = 10.0
    # Background removal (rembg)
    rembg_url: str = "http://localhost:5000"
    rembg_timeout: float = 120.0
    # Generative engine (ComfyUI)
    comfyui_url: str = "http://localhost:8188"
    comfy_checkpoint: str = DEFAULT_CHECKPOINT
    generation_poll_interval: float = 2.0
    generation_max_wait: float = 120.0
    # Upload limits
    max_upload_bytes: int = 10 * 1024 * 1024
    max_upload_files: int = 10
    # Normalizer settings
    target_max_dimension: int = 2048
    min_acceptable_dimension: int = 512
    output_quality: int = 90

    def resolved_root(self) -> Path:
        path = Path(self.storage_root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def normalizer_config(self) -> NormalizerConfig:
        return NormalizerConfig(
            target_max_dimension=self.target_max_dimension,
            min_acceptable_dimension=self.min_acceptable_dimension,
            output_quality=self.output_quality,
        )


@dataclass
class GatewayState:
    config: GatewayConfig
    catalog: StageCatalog
    webhook_client: WebhookClient
    rembg_client: BackgroundRemovalClient
    comfy_client: ComfyClient


def get_state(request: Request) -> GatewayState:
    return request.app.state.gateway
