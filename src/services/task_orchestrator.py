"""Generation task orchestration.

Owns the task lifecycle: create the task record, drive the generative
backend, hand the response stream to the stream consumer, and move the
task to exactly one terminal state.

Two entry points share the stream consumer:

- ``run_immediate_generation`` creates, runs and finalizes a task within
  the caller's request.
- ``run_edit_generation`` only runs; the task is created up front by the
  HTTP handler (so it can answer with a job id right away) and finalized
  by ``complete_edit_task`` in a detached background task.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

import httpx

from models.generation import (
    ContentPart,
    GenerationOptions,
    GenerationTask,
    ImmediateResult,
    PromptFilter,
    StreamResult,
    TaskStatus,
)
from services.stream_consumer import consume_generation_stream
from utils.config import load_config
from utils.logging import task_context

logger = logging.getLogger(__name__)

MASK_INSTRUCTION = "Apply edits only to regions marked in the provided mask: white=edit, black=keep."

DEFAULT_IMAGE_MIME = "image/jpeg"
MASK_MIME = "image/png"

# Keep references to background tasks to prevent garbage collection
_background_tasks: set = set()


class GenerationInputError(Exception):
    """A required input is missing or could not be retrieved."""

    pass


def compile_prompt(
    base: Optional[str] = None,
    quality: Optional[str] = None,
    filters: Optional[list[PromptFilter]] = None,
    prompt_text: Optional[str] = None,
) -> str:
    """Build the final instruction, one non-empty segment per line.

    Order: base instruction, quality, filters, free-form prompt text.
    """
    segments = []
    if base:
        segments.append(base)
    if quality:
        segments.append(f"Quality: {quality}")
    if filters:
        segments.append("Filters: " + ", ".join(f.render() for f in filters))
    if prompt_text:
        segments.append(prompt_text)
    return "\n".join(segment for segment in segments if segment)


def edit_instruction(prompt: str, has_mask: bool) -> str:
    """Edit prompt, with mask guidance appended when a mask is sent."""
    if has_mask:
        return f"{prompt}\n\n{MASK_INSTRUCTION}"
    return prompt


def error_message(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


def spawn_background(coro: Coroutine) -> asyncio.Task:
    """Run a coroutine detached from the current request.

    Its outcome is only observable through the task store.
    """
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


class TaskOrchestrator:
    """Runs generation and edit requests against the generative backend."""

    def __init__(
        self,
        task_store,
        storage,
        backend,
        catalog=None,
        config: Optional[dict] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the orchestrator.

        Args:
            task_store: TaskStore for task and output records
            storage: StorageGateway for uploads
            backend: GenAIBackend producing response streams
            catalog: Optional CatalogStore for style/preset lookups
            config: Configuration dict (defaults to ``load_config()``)
            http_client: Client for downloading remote edit inputs
        """
        self.task_store = task_store
        self.storage = storage
        self.backend = backend
        self.catalog = catalog
        self.config = config or load_config()
        self.bucket = self.config.get("image_bucket", "gen-images")
        self.provider = self.config.get("provider", "gemini")
        self.client = http_client or httpx.AsyncClient(timeout=60.0, follow_redirects=True)

    # =========================================================================
    # Finalization
    # =========================================================================

    async def finalize_succeeded(self, task_id: str, text: str) -> GenerationTask:
        return await self.task_store.finalize_task(
            task_id, TaskStatus.SUCCEEDED, output_text=text or None
        )

    async def finalize_failed(self, task_id: str, error: BaseException) -> None:
        """Record a failure; a store error here is logged, not raised."""
        try:
            await self.task_store.finalize_task(
                task_id, TaskStatus.FAILED, error=error_message(error)
            )
        except Exception as e:
            logger.error(f"Could not mark task {task_id} failed: {e}", exc_info=True)

    # =========================================================================
    # Immediate flow
    # =========================================================================

    async def run_immediate_generation(self, options: GenerationOptions) -> ImmediateResult:
        """Create a task, generate, and finalize it before returning.

        Args:
            options: Prompt, catalog references and optional input images

        Returns:
            ImmediateResult with the task id, outputs and text

        Raises:
            ConfigurationError: If the backend is not configured (no task is created)
            Exception: Any generation error, after the task is marked failed
        """
        self.backend.ensure_configured()

        base_prompt = style_id = prompt_id = None
        if self.catalog is not None and (options.style_slug or options.prompt_id):
            lookup = await self.catalog.lookup_style_and_prompt(
                options.style_slug, options.prompt_id
            )
            base_prompt, style_id, prompt_id = lookup.base_prompt, lookup.style_id, lookup.prompt_id

        final_prompt = compile_prompt(
            base_prompt, options.quality, options.filters, options.prompt_text
        )

        logger.info(
            f"Starting immediate generation (style={options.style_slug}, "
            f"preset={options.prompt_id}, has_image={bool(options.image)}, "
            f"variations={options.variations})"
        )

        task = await self.task_store.insert_task(
            status=TaskStatus.RUNNING,
            prompt=final_prompt,
            params={
                "quality": options.quality,
                "filters": [f.to_dict() for f in options.filters],
                "variations": options.variations,
                "styleSlug": options.style_slug,
                "userId": options.user_id,
            },
            style_id=style_id,
            prompt_id=prompt_id,
        )

        parts = []
        if options.image:
            parts.append(ContentPart.from_bytes(options.image, options.image_mime or DEFAULT_IMAGE_MIME))
        if options.mask:
            parts.append(ContentPart.from_bytes(options.mask, options.mask_mime or MASK_MIME))
        if final_prompt:
            parts.append(ContentPart.from_text(final_prompt))

        try:
            result = await consume_generation_stream(
                self.backend.stream(parts), task.id, self.storage, self.task_store, self.bucket
            )
            await self.finalize_succeeded(task.id, result.text)
        except Exception as e:
            await self.finalize_failed(task.id, e)
            logger.error(f"Task {task.id} failed: {error_message(e)}")
            raise

        logger.info(f"Task {task.id} succeeded with {len(result.outputs)} output(s)")
        return ImmediateResult(task_id=task.id, outputs=result.outputs, text=result.text)

    # =========================================================================
    # Edit flow
    # =========================================================================

    async def create_edit_task(self, prompt: str, params: dict[str, Any]) -> GenerationTask:
        """Create the running task an edit will complete later."""
        return await self.task_store.insert_task(
            status=TaskStatus.RUNNING, prompt=prompt, params=params
        )

    async def record_edit_inputs(
        self,
        task: GenerationTask,
        user_id: str,
        image: bytes,
        image_mime: str,
        mask: Optional[bytes] = None,
    ) -> GenerationTask:
        """Store the original image and mask next to the task for record-keeping.

        Records ``originalPath`` and ``maskPath`` in the task params. If an
        upload fails the task is marked failed and the error propagates.
        """
        ext = (image_mime.split("/")[-1] or "jpg").split("+")[0]
        original_path = f"uploads/{user_id}/{task.id}.{ext}"
        mask_path = f"uploads/{user_id}/{task.id}.mask.png" if mask else None

        uploads = [
            self.storage.upload(self.bucket, original_path, image, content_type=image_mime, upsert=True)
        ]
        if mask:
            uploads.append(
                self.storage.upload(self.bucket, mask_path, mask, content_type=MASK_MIME, upsert=True)
            )

        try:
            await asyncio.gather(*uploads)
            logger.info(f"Stored edit inputs for task {task.id} at {original_path}")
            return await self.task_store.update_task(
                task.id, params={"originalPath": original_path, "maskPath": mask_path}
            )
        except Exception as e:
            await self.finalize_failed(task.id, e)
            raise

    async def run_edit_generation(
        self,
        task_id: str,
        prompt: str,
        image: bytes,
        image_mime: str,
        mask: Optional[bytes] = None,
    ) -> StreamResult:
        """Run an edit into an existing task without finalizing it.

        Args:
            task_id: Existing task that will own the outputs
            prompt: Caller's edit instruction
            image: Image to edit
            image_mime: MIME type of ``image``
            mask: Optional PNG mask (white=edit, black=keep)

        Returns:
            StreamResult; the caller finalizes the task from it
        """
        self.backend.ensure_configured()

        parts = [
            ContentPart.from_text(edit_instruction(prompt, has_mask=bool(mask))),
            ContentPart.from_bytes(image, image_mime),
        ]
        if mask:
            parts.append(ContentPart.from_bytes(mask, MASK_MIME))

        try:
            return await consume_generation_stream(
                self.backend.stream(parts), task_id, self.storage, self.task_store, self.bucket
            )
        except Exception as e:
            logger.error(f"Edit generation failed for task {task_id}: {error_message(e)}")
            raise

    async def complete_edit_task(
        self,
        task_id: str,
        prompt: str,
        image: bytes,
        image_mime: str,
        mask: Optional[bytes] = None,
    ) -> None:
        """Background body of an accepted edit: run it and finalize the task."""
        with task_context(task_id):
            try:
                logger.info(f"Starting background edit generation for task {task_id}")
                result = await self.run_edit_generation(task_id, prompt, image, image_mime, mask)
                await self.finalize_succeeded(task_id, result.text)
                logger.info(f"Edit task {task_id} done with {len(result.outputs)} output(s)")
            except Exception as e:
                await self.finalize_failed(task_id, e)

    async def fetch_remote_inputs(
        self, image_url: str, mask_url: Optional[str] = None
    ) -> tuple[bytes, str, Optional[bytes]]:
        """Download an edit's image (required) and mask (best effort).

        Returns:
            (image bytes, image MIME type, mask bytes or None)

        Raises:
            GenerationInputError: If the image cannot be downloaded
        """

        async def fetch_optional(url: str) -> Optional[httpx.Response]:
            # InvalidURL is raised while building the request and is not an HTTPError
            try:
                return await self.client.get(url)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                logger.warning(f"Download of {url} failed: {e}")
                return None

        image_response, mask_response = await asyncio.gather(
            fetch_optional(image_url),
            fetch_optional(mask_url) if mask_url else asyncio.sleep(0),
        )

        if image_response is None or not image_response.is_success:
            status = image_response.status_code if image_response is not None else "no response"
            raise GenerationInputError(f"Failed to fetch imageUrl ({status})")

        image_mime = (
            image_response.headers.get("content-type") or DEFAULT_IMAGE_MIME
        ).split(";")[0].strip()

        mask = None
        if mask_response is not None and mask_response.is_success:
            mask = mask_response.content
        elif mask_url:
            logger.warning(f"Ignoring unavailable mask {mask_url}")

        return image_response.content, image_mime, mask

    async def complete_remote_edit_task(
        self,
        task_id: str,
        prompt: str,
        image_url: str,
        mask_url: Optional[str] = None,
    ) -> None:
        """Background body of a URL-based edit: download inputs, run, finalize."""
        with task_context(task_id):
            try:
                image, image_mime, mask = await self.fetch_remote_inputs(image_url, mask_url)
                logger.info(
                    f"Downloaded inputs for task {task_id} "
                    f"({len(image)} bytes, mask={'yes' if mask else 'no'})"
                )
                result = await self.run_edit_generation(task_id, prompt, image, image_mime, mask)
                await self.finalize_succeeded(task_id, result.text)
                logger.info(f"Edit task {task_id} done with {len(result.outputs)} output(s)")
            except Exception as e:
                await self.finalize_failed(task_id, e)

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        return spawn_background(coro)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
