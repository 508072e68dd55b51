"""Test doubles for the task store, storage gateway and generative backend."""

import base64
import uuid
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Optional

from api.task_store import TaskNotFoundError, TaskStoreError, TaskTransitionError
from models.generation import GenerationOutput, GenerationTask, TaskStatus
from services.storage_gateway import StorageGateway, UploadResult
from utils.config import ConfigurationError

# Smallest valid PNG header, enough to look like an image
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24


# =============================================================================
# Response chunks shaped like google.genai GenerateContentResponse
# =============================================================================


def _chunk(part: Any, text: Optional[str] = None) -> SimpleNamespace:
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))],
        text=text,
    )


def image_chunk(data: bytes = PNG_BYTES, mime_type: str = "image/png") -> SimpleNamespace:
    return _chunk(SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type)))


def url_chunk(uri: str, mime_type: Optional[str] = "image/png") -> SimpleNamespace:
    return _chunk(SimpleNamespace(file_data=SimpleNamespace(file_uri=uri, mime_type=mime_type)))


def text_chunk(text: str) -> SimpleNamespace:
    return _chunk(SimpleNamespace(text=text), text=text)


def json_image_chunk(data: bytes = PNG_BYTES, mime_type: str = "image/png") -> dict:
    """Raw REST payload shape: camelCase keys and base64 text."""
    return {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode()}}
                    ]
                }
            }
        ]
    }


# =============================================================================
# Task store
# =============================================================================


class InMemoryTaskStore:
    """Test-only store double with the TaskStore interface and invariants."""

    def __init__(self) -> None:
        self.tasks: dict[str, GenerationTask] = {}
        self.outputs: list[GenerationOutput] = []
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise TaskStoreError("store unavailable")

    async def insert_task(
        self,
        status: TaskStatus = TaskStatus.RUNNING,
        prompt: str = "",
        params: dict | None = None,
        style_id: str | None = None,
        prompt_id: str | None = None,
    ) -> GenerationTask:
        self._check()
        task = GenerationTask(
            id=str(uuid.uuid4()),
            status=status,
            prompt=prompt,
            params=dict(params or {}),
            style_id=style_id,
            prompt_id=prompt_id,
        )
        self.tasks[task.id] = task
        return task

    async def get_task(self, task_id: str) -> GenerationTask | None:
        self._check()
        return self.tasks.get(task_id)

    async def update_task(self, task_id: str, params: dict | None = None, prompt: str | None = None):
        self._check()
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if params:
            task.params.update(params)
        if prompt is not None:
            task.prompt = prompt
        return task

    async def finalize_task(
        self,
        task_id: str,
        status: TaskStatus,
        output_text: str | None = None,
        error: str | None = None,
    ) -> GenerationTask:
        self._check()
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.status.is_terminal or not status.is_terminal:
            raise TaskTransitionError(f"{task.status.value} -> {status.value}")
        task.status = status
        if status == TaskStatus.SUCCEEDED:
            task.output_text = output_text
        else:
            task.error = error
        task.completed_at = datetime.now()
        return task

    async def insert_output(self, task_id: str, index: int, storage_bucket: str, storage_path: str, **fields):
        self._check()
        if any(o.task_id == task_id and o.index == index for o in self.outputs):
            raise TaskStoreError(f"duplicate output index {index} for {task_id}")
        output = GenerationOutput(
            id=str(uuid.uuid4()),
            task_id=task_id,
            index=index,
            storage_bucket=storage_bucket,
            storage_path=storage_path,
            mime=fields.get("mime"),
            size=fields.get("size"),
            width=fields.get("width"),
            height=fields.get("height"),
            metadata=dict(fields.get("metadata") or {}),
        )
        self.outputs.append(output)
        return output

    async def list_outputs(self, task_id: str) -> list[GenerationOutput]:
        return sorted((o for o in self.outputs if o.task_id == task_id), key=lambda o: o.index)

    async def get_primary_output(self, task_id: str) -> GenerationOutput | None:
        outputs = await self.list_outputs(task_id)
        return outputs[0] if outputs else None


# =============================================================================
# Storage
# =============================================================================


class FakeStorage(StorageGateway):
    """Keeps uploads in memory; URLs point at a fake host."""

    name = "fake"

    def __init__(self, http_client=None, fail_uploads: bool = False):
        super().__init__(http_client)
        self.objects: dict[tuple[str, str], bytes] = {}
        self.uploads: list[dict] = []
        self.fail_uploads = fail_uploads

    async def upload(self, bucket, path, data, content_type=None, upsert=False) -> UploadResult:
        if self.fail_uploads:
            raise ConfigurationError("storage down")
        self.objects[(bucket, path)] = data
        self.uploads.append(
            {"bucket": bucket, "path": path, "size": len(data), "content_type": content_type, "upsert": upsert}
        )
        return UploadResult(path=path, public_url=self._public_url(bucket, path))

    def _public_url(self, bucket, path) -> str:
        return f"https://storage.test/{bucket}/{path}"

    async def _resolve_url(self, bucket, path, expires_in) -> str:
        return f"https://storage.test/{bucket}/{path}?expires={expires_in}"

    async def _fetch_bytes(self, bucket, path) -> bytes:
        return self.objects[(bucket, path)]


# =============================================================================
# Generative backend
# =============================================================================


class FakeBackend:
    """Yields scripted chunks; an Exception in the script is raised at that point."""

    def __init__(self, script: Optional[list] = None, configured: bool = True):
        self.script = list(script or [])
        self.configured = configured
        self.calls: list[list] = []

    def is_configured(self) -> bool:
        return self.configured

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("GEMINI_API_KEY not configured")

    async def stream(self, parts):
        self.ensure_configured()
        self.calls.append(list(parts))
        for item in self.script:
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeCatalog:
    """Catalog double keyed by style slug and preset id."""

    def __init__(self, styles: Optional[dict] = None, presets: Optional[dict] = None):
        self.styles = styles or {}
        self.presets = presets or {}

    async def lookup_style_and_prompt(self, style_slug, prompt_id):
        from api.catalog_store import CatalogLookup

        result = CatalogLookup()
        style = self.styles.get(style_slug) if style_slug else None
        if style:
            result.style_id, result.base_prompt = style["id"], style["base_prompt"]
        preset = self.presets.get(prompt_id) if prompt_id else None
        if preset:
            result.prompt_id, result.base_prompt = preset["id"], preset["prompt_template"]
        return result
