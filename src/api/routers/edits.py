"""Edit job routes: accept an edit, complete it in the background, poll and fetch the result.

Two shapes are served. ``/api/v1/edit`` takes multipart uploads;
``/v1/edits`` and ``/v1/jobs`` keep the URL-based contract of the
mobile client. All routes require the bearer dev token.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import RedirectResponse

from api.auth import require_user
from api.dependencies import get_orchestrator
from api.routers.generation import read_upload
from api.schemas import (
    CompatEditRequest,
    CompatJobResponse,
    EditAcceptedResponse,
    EditResultResponse,
    EditStatusResponse,
)
from models.generation import GenerationTask, TaskStatus
from services.result_delivery import (
    InlineResult,
    compat_job_status,
    deliver_result,
    estimate_cost_cents,
    public_job_status,
)
from services.task_orchestrator import TaskOrchestrator
from utils.config import load_config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Edit Jobs"])


async def get_owned_task(
    orchestrator: TaskOrchestrator, task_id: str, user_id: str
) -> GenerationTask:
    """Load a task the caller may see; other users' tasks look missing."""
    task = await orchestrator.task_store.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Not found")
    if task.user_id and task.user_id != user_id:
        raise HTTPException(status_code=404, detail="Not found")
    return task


async def primary_output_url(orchestrator: TaskOrchestrator, task: GenerationTask) -> str | None:
    if task.status != TaskStatus.SUCCEEDED:
        return None
    output = await orchestrator.task_store.get_primary_output(task.id)
    if output is None:
        return None
    return orchestrator.storage.public_url(output.storage_bucket, output.storage_path)


# =============================================================================
# Multipart edit jobs
# =============================================================================


@router.post(
    "/api/v1/edit",
    response_model=EditAcceptedResponse,
    status_code=202,
    summary="Submit edit job",
    description="Upload an image (and optional mask) with an edit prompt. Returns 202 with job_id.",
    responses={
        400: {"description": "Missing file or prompt"},
        401: {"description": "Unauthorized"},
        413: {"description": "Upload too large"},
    },
)
async def submit_edit(
    file: UploadFile | None = File(None),
    mask: UploadFile | None = File(None),
    prompt: str = Form(""),
    client_request_id: str | None = Form(None),
    user_id: str = Depends(require_user),
) -> dict:
    """Create the task, store the inputs, and complete the edit in the background."""
    config = load_config()
    image, image_mime = await read_upload(file, config["max_upload_bytes"])
    mask_data, _ = await read_upload(mask, config["max_upload_bytes"])

    if not image:
        raise HTTPException(status_code=400, detail="file is required")
    if not prompt:
        raise HTTPException(status_code=400, detail="prompt is required")
    image_mime = image_mime or "image/jpeg"

    logger.info(
        f"/api/v1/edit received (user={user_id}, mask={mask_data is not None}, "
        f"size_kb={round(len(image) / 1024)}, mime={image_mime})"
    )

    orchestrator = await get_orchestrator()
    try:
        task = await orchestrator.create_edit_task(
            prompt,
            params={
                "userId": user_id,
                "clientRequestId": client_request_id,
                "provider": orchestrator.provider,
            },
        )
        await orchestrator.record_edit_inputs(task, user_id, image, image_mime, mask_data)
    except Exception as e:
        logger.error(f"/api/v1/edit failed: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Unknown error")

    orchestrator.spawn(
        orchestrator.complete_edit_task(task.id, prompt, image, image_mime, mask_data)
    )

    return {
        "job_id": task.id,
        "status": "accepted",
        "estimated_cost_cents": estimate_cost_cents(len(image)),
    }


@router.get(
    "/api/v1/edit/{job_id}",
    response_model=EditStatusResponse,
    summary="Edit job status",
    responses={401: {"description": "Unauthorized"}, 404: {"description": "Job not found"}},
)
async def get_edit_status(job_id: str, user_id: str = Depends(require_user)) -> dict:
    """Poll an edit job."""
    orchestrator = await get_orchestrator()
    task = await get_owned_task(orchestrator, job_id, user_id)
    return {
        "job_id": task.id,
        "status": public_job_status(task.status),
        "result_url": await primary_output_url(orchestrator, task),
    }


@router.get(
    "/api/v1/edit/{job_id}/result",
    response_model=EditResultResponse,
    summary="Edit job result",
    description="Small results come back inline as base64; larger ones redirect to a short-lived URL.",
    responses={
        302: {"description": "Redirect to the result"},
        400: {"description": "Result not available"},
        401: {"description": "Unauthorized"},
        404: {"description": "Job or output not found"},
    },
)
async def get_edit_result(job_id: str, user_id: str = Depends(require_user)):
    """Fetch the primary output of a finished edit."""
    orchestrator = await get_orchestrator()
    task = await get_owned_task(orchestrator, job_id, user_id)
    if task.status != TaskStatus.SUCCEEDED:
        raise HTTPException(status_code=400, detail="Result not available")

    output = await orchestrator.task_store.get_primary_output(task.id)
    if output is None:
        raise HTTPException(status_code=404, detail="Not found")

    config = orchestrator.config
    try:
        delivered = await deliver_result(
            output,
            orchestrator.storage,
            inline_max_bytes=config.get("result_inline_max_bytes", 800_000),
            url_expiry_seconds=config.get("result_url_expiry_seconds", 300),
        )
    except Exception as e:
        logger.error(f"Result delivery failed for {job_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Unknown error")

    if isinstance(delivered, InlineResult):
        return delivered.to_dict()
    return RedirectResponse(delivered.url, status_code=302)


# =============================================================================
# Mobile client compatibility
# =============================================================================


@router.post(
    "/v1/edits",
    response_model=CompatJobResponse,
    summary="Submit edit by URL",
    description="Download the image (and optional mask) from URLs and edit it in the background.",
    responses={400: {"description": "Missing prompt or imageUrl"}, 401: {"description": "Unauthorized"}},
)
async def submit_compat_edit(
    request: CompatEditRequest, user_id: str = Depends(require_user)
) -> dict:
    """URL-based edit for the mobile client."""
    if not request.prompt or not request.prompt.strip():
        raise HTTPException(status_code=400, detail="prompt is required")
    if not request.imageUrl:
        raise HTTPException(status_code=400, detail="imageUrl is required")

    orchestrator = await get_orchestrator()
    try:
        task = await orchestrator.create_edit_task(
            request.prompt,
            params={
                "userId": user_id,
                "provider": orchestrator.provider,
                "compat": "v1/edits",
                "imageUrl": request.imageUrl,
                "maskUrl": request.maskUrl,
            },
        )
    except Exception as e:
        logger.error(f"/v1/edits failed: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Unknown error")

    orchestrator.spawn(
        orchestrator.complete_remote_edit_task(
            task.id, request.prompt, request.imageUrl, request.maskUrl
        )
    )

    return {"id": task.id, "status": "running", "resultUrl": None}


@router.get(
    "/v1/jobs/{job_id}",
    response_model=CompatJobResponse,
    summary="Job status (mobile client)",
    responses={401: {"description": "Unauthorized"}, 404: {"description": "Job not found"}},
)
async def get_compat_job(job_id: str, user_id: str = Depends(require_user)) -> dict:
    """Poll a job in the compatibility shape."""
    orchestrator = await get_orchestrator()
    task = await get_owned_task(orchestrator, job_id, user_id)
    return {
        "id": task.id,
        "status": compat_job_status(task.status),
        "resultUrl": await primary_output_url(orchestrator, task),
    }
