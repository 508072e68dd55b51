"""Synchronous generation routes: generate-image, task detail, health and a mock backend."""

import base64
import json
import logging

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from api.dependencies import get_orchestrator
from api.schemas import GenerateImageResponse, HealthResponse, TaskDetailResponse
from models.generation import GenerationOptions, PromptFilter
from utils.config import load_config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Generation"])

UPLOAD_CHUNK_BYTES = 1024 * 1024


def parse_filters(raw: str | None) -> list[PromptFilter]:
    """Parse the ``filters`` form field (JSON list); anything malformed yields no filters."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring malformed filters field: {raw[:80]}")
        return []
    if not isinstance(data, list):
        return []
    return [PromptFilter.from_dict(item) for item in data if isinstance(item, dict) and item.get("slug")]


def parse_variations(raw: str | None) -> int:
    try:
        variations = int(raw) if raw else 1
    except ValueError:
        return 1
    return variations if variations > 0 else 1


async def read_upload(upload: UploadFile | None, max_bytes: int) -> tuple[bytes | None, str | None]:
    """Read an optional upload in chunks, stopping once it passes the size limit."""
    if upload is None:
        return None, None

    too_large = HTTPException(
        status_code=413, detail=f"{upload.filename or 'upload'} exceeds {max_bytes} bytes"
    )
    if upload.size is not None and upload.size > max_bytes:
        raise too_large

    chunks = []
    total = 0
    while True:
        chunk = await upload.read(UPLOAD_CHUNK_BYTES)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise too_large
        chunks.append(chunk)

    data = b"".join(chunks)
    return (data or None), upload.content_type


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health() -> dict:
    """Health check endpoint."""
    return {"ok": True}


@router.post(
    "/generate-image",
    response_model=GenerateImageResponse,
    summary="Generate image",
    description="Generate (or restyle) an image and wait for the result.",
    responses={400: {"description": "Nothing to generate from"}, 413: {"description": "Upload too large"}},
)
async def generate_image(
    image: UploadFile | None = File(None),
    mask: UploadFile | None = File(None),
    styleSlug: str | None = Form(None),
    style: str | None = Form(None),
    promptId: str | None = Form(None),
    promptText: str | None = Form(None),
    prompt: str | None = Form(None),
    quality: str | None = Form(None),
    variations: str | None = Form(None),
    filters: str | None = Form(None),
) -> dict:
    """Run the immediate generation flow."""
    max_bytes = load_config()["max_upload_bytes"]
    image_data, image_mime = await read_upload(image, max_bytes)
    mask_data, mask_mime = await read_upload(mask, max_bytes)

    options = GenerationOptions(
        style_slug=styleSlug or style or None,
        prompt_id=promptId or None,
        prompt_text=promptText or prompt or None,
        quality=quality or None,
        filters=parse_filters(filters),
        variations=parse_variations(variations),
        image=image_data,
        image_mime=image_mime,
        mask=mask_data,
        mask_mime=mask_mime,
    )

    if not options.has_input():
        raise HTTPException(
            status_code=400, detail="Provide a prompt, a style, a prompt preset or an image"
        )

    logger.info(
        f"/generate-image received (style={options.style_slug}, preset={options.prompt_id}, "
        f"has_image={image_data is not None}, filters={len(options.filters)})"
    )

    orchestrator = await get_orchestrator()
    try:
        result = await orchestrator.run_immediate_generation(options)
    except Exception as e:
        logger.error(f"/generate-image failed: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Unknown error")

    return result.to_dict()


@router.get(
    "/tasks/{task_id}",
    response_model=TaskDetailResponse,
    summary="Task detail",
    description="Task record with its outputs and their public URLs.",
    responses={404: {"description": "Task not found"}},
)
async def get_task_detail(task_id: str) -> dict:
    """Task detail with outputs."""
    orchestrator = await get_orchestrator()
    task = await orchestrator.task_store.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Not found")

    outputs = []
    for output in await orchestrator.task_store.list_outputs(task_id):
        entry = output.to_dict()
        entry["public_url"] = orchestrator.storage.public_url(
            output.storage_bucket, output.storage_path
        )
        outputs.append(entry)

    return {"task": task.to_dict(), "outputs": outputs}


@router.post(
    "/mock/gemini",
    summary="Mock Gemini response",
    description="Echo the upload back in Gemini's response shape, for client debugging.",
)
async def mock_gemini(
    file: UploadFile | None = File(None),
    mask: UploadFile | None = File(None),
    prompt: str = Form(""),
) -> dict:
    """Debug endpoint with no external dependencies."""
    if file is None:
        raise HTTPException(status_code=400, detail="file required")
    data = await file.read()
    return {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": prompt},
                        {
                            "inlineData": {
                                "mimeType": file.content_type or "image/png",
                                "data": base64.b64encode(data).decode("ascii"),
                            }
                        },
                    ]
                }
            }
        ]
    }
