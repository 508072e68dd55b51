"""Pydantic request/response models for the generation API."""

from typing import Any

from pydantic import BaseModel, Field

# =============================================================================
# Core
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool

    model_config = {"json_schema_extra": {"examples": [{"ok": True}]}}


# =============================================================================
# Immediate generation
# =============================================================================


class OutputDescriptorResponse(BaseModel):
    """Where a produced output was stored."""

    url: str | None = None
    path: str
    bucket: str
    mime: str | None = None


class GenerateImageResponse(BaseModel):
    """Result of a synchronous generation."""

    taskId: str
    outputs: list[OutputDescriptorResponse]
    text: str

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "taskId": "6f1c2a8e-0a4e-4d8b-9a51-3c7f0e2b1d44",
                    "outputs": [
                        {
                            "url": "https://gateway.pinata.cloud/ipfs/bafy...?filename=0.png",
                            "path": "bafy.../0.png",
                            "bucket": "gen-images",
                            "mime": "image/png",
                        }
                    ],
                    "text": "",
                }
            ]
        }
    }


class TaskOutputResponse(BaseModel):
    """Stored output with its resolved public URL."""

    id: str
    index: int
    storage_bucket: str
    storage_path: str
    mime: str | None = None
    size: int | None = None
    width: int | None = None
    height: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    public_url: str | None = None


class TaskDetailResponse(BaseModel):
    """Task record plus its outputs in index order."""

    task: dict[str, Any]
    outputs: list[TaskOutputResponse]


# =============================================================================
# Edit jobs
# =============================================================================


class EditAcceptedResponse(BaseModel):
    """Response when an edit job is accepted."""

    job_id: str
    status: str = "accepted"
    estimated_cost_cents: int

    model_config = {
        "json_schema_extra": {
            "examples": [{"job_id": "6f1c2a8e-...", "status": "accepted", "estimated_cost_cents": 12}]
        }
    }


class EditStatusResponse(BaseModel):
    """Polling response for an edit job."""

    job_id: str
    status: str = Field(description="queued, processing, done or error")
    result_url: str | None = None


class EditResultResponse(BaseModel):
    """Inline result of a small edit output."""

    result_base64: str


# =============================================================================
# Compatibility (mobile client) endpoints
# =============================================================================


class CompatEditRequest(BaseModel):
    """URL-based edit request; fields are checked in the handler."""

    imageUrl: str | None = None
    maskUrl: str | None = None
    prompt: str | None = None


class CompatJobResponse(BaseModel):
    """Job state in the compatibility shape."""

    id: str
    status: str
    resultUrl: str | None = None
