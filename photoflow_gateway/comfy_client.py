"""
ComfyUI HTTP client.

Jobs are submitted as workflow graphs to ``POST /prompt`` and then polled via
``GET /history/{prompt_id}`` until they complete, fail, or the wait budget
runs out. ComfyUI's own scheduler runs the work; this side only waits.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiofiles
import httpx

from photoflow_runner.errors import DependencyError, DependencyUnavailable, GenerationTimeout
from photoflow_runner.workflows import DEFAULT_CHECKPOINT, Workflow

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def job_state(history_entry: Optional[Dict[str, Any]]) -> JobState:
    """Classify a ``/history`` entry. No entry means the job has not run yet."""
    if not history_entry:
        return JobState.PENDING
    status = history_entry.get("status") or {}
    if status.get("status_str") == "error":
        return JobState.FAILED
    if status.get("completed") or history_entry.get("outputs"):
        return JobState.COMPLETED
    return JobState.RUNNING


class ComfyClient:
    """HTTP client for a ComfyUI server."""

    def __init__(
        self,
        base_url: str = "http://localhost:8188",
        timeout: float = 30.0,
        poll_interval: float = 2.0,
        max_wait: float = 120.0,
        default_checkpoint: str = DEFAULT_CHECKPOINT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize ComfyUI client.

        Args:
            base_url: ComfyUI server base URL
            timeout: Per-request timeout in seconds
            poll_interval: Seconds between history polls
            max_wait: Default wait budget for one job in seconds
            default_checkpoint: Checkpoint reported when the model list is unavailable
            transport: Optional httpx transport override
            clock: Monotonic clock used for the wait budget
            sleep: Coroutine used between polls
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.default_checkpoint = default_checkpoint
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            client = await self._get_client()
            return await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise DependencyUnavailable(f"ComfyUI unreachable: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if not response.is_success:
            body = response.text
            raise DependencyError(
                f"ComfyUI {action} failed: {response.status_code} - {body}",
                details={"status_code": response.status_code},
            )

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise DependencyError(f"ComfyUI {action} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise DependencyError(f"ComfyUI {action} returned unexpected JSON")
        return data

    # Health and introspection

    async def health_check(self) -> bool:
        try:
            client = await self._get_client()
            response = await client.get("/system_stats")
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"ComfyUI health check failed: {e}")
            return False

    async def system_stats(self) -> Dict[str, Any]:
        response = await self._request("GET", "/system_stats")
        self._raise_for_status(response, "system_stats")
        return self._json(response, "system_stats")

    async def probe(self) -> Dict[str, Any]:
        """Connection report used by the status endpoints."""
        try:
            stats = await self.system_stats()
        except (DependencyUnavailable, DependencyError) as e:
            return {"status": "disconnected", "url": self.base_url, "error": e.message}
        return {"status": "connected", "url": self.base_url, "system_stats": stats}

    async def get_queue(self) -> Dict[str, Any]:
        """Running and pending job counts."""
        response = await self._request("GET", "/queue")
        self._raise_for_status(response, "queue")
        data = self._json(response, "queue")
        running = data.get("queue_running") or []
        pending = data.get("queue_pending") or []
        return {
            "running": len(running),
            "pending": len(pending),
            "queue_running": running,
            "queue_pending": pending,
        }

    async def available_models(self) -> List[str]:
        """Checkpoint names known to the server, or the default checkpoint on failure."""
        try:
            response = await self._request("GET", "/object_info/CheckpointLoaderSimple")
            self._raise_for_status(response, "object_info")
            info = self._json(response, "object_info")
            names = info["CheckpointLoaderSimple"]["input"]["required"]["ckpt_name"][0]
            if names:
                return list(names)
        except (DependencyUnavailable, DependencyError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Could not list ComfyUI checkpoints: {e}")
        return [self.default_checkpoint]

    # Jobs

    async def queue_prompt(self, workflow: Workflow) -> str:
        """
        Submit a workflow graph.

        Returns:
            The prompt id assigned by ComfyUI

        Raises:
            DependencyUnavailable: Server unreachable
            DependencyError: Server rejected the graph
        """
        response = await self._request("POST", "/prompt", json={"prompt": workflow})
        self._raise_for_status(response, "queue prompt")
        prompt_id = self._json(response, "queue prompt").get("prompt_id")
        if not prompt_id:
            raise DependencyError("ComfyUI did not return a prompt_id")
        logger.info(f"Queued ComfyUI prompt {prompt_id}")
        return prompt_id

    async def get_history(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        """History entry for one job, or None when it is not recorded yet."""
        response = await self._request("GET", f"/history/{prompt_id}")
        self._raise_for_status(response, "history")
        entry = self._json(response, "history").get(prompt_id)
        if entry is not None and not isinstance(entry, dict):
            raise DependencyError("ComfyUI history returned unexpected JSON")
        return entry

    async def wait_for_completion(self, prompt_id: str, max_wait: Optional[float] = None) -> Dict[str, Any]:
        """
        Poll until the job reaches a terminal state.

        Transient polling errors are logged and retried until the budget ends.

        Returns:
            The completed history entry

        Raises:
            DependencyError: Job finished with an error status
            GenerationTimeout: Budget exhausted before a terminal state
        """
        budget = self.max_wait if max_wait is None else max_wait
        started = self._clock()
        while self._clock() - started < budget:
            try:
                entry = await self.get_history(prompt_id)
            except (DependencyUnavailable, DependencyError) as e:
                logger.warning(f"Polling {prompt_id} failed: {e.message}")
                entry = None

            state = job_state(entry)
            if state is JobState.COMPLETED:
                return entry
            if state is JobState.FAILED:
                raise DependencyError(
                    "Generation failed",
                    details={"prompt_id": prompt_id, "status": entry.get("status")},
                )
            await self._sleep(self.poll_interval)

        raise GenerationTimeout(
            f"Generation timeout after {budget:g}s",
            details={"prompt_id": prompt_id},
        )

    async def download_output(self, image_ref: Dict[str, Any]) -> bytes:
        params = {
            "filename": image_ref["filename"],
            "subfolder": image_ref.get("subfolder", ""),
            "type": image_ref.get("type", "output"),
        }
        response = await self._request("GET", "/view", params=params)
        self._raise_for_status(response, "view")
        return response.content

    async def upload_image(self, path: Path) -> str:
        """
        Upload a reference image for image-to-image workflows.

        Returns:
            The filename ComfyUI assigned, to be used in LoadImage nodes
        """
        path = Path(path)
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        response = await self._request(
            "POST",
            "/upload/image",
            files={"image": (path.name, data, "application/octet-stream")},
            data={"overwrite": "true"},
        )
        self._raise_for_status(response, "upload")
        name = self._json(response, "upload").get("name")
        if not name:
            raise DependencyError("ComfyUI upload did not return a filename")
        logger.info(f"Uploaded {path.name} to ComfyUI as {name}")
        return name
