"""Result delivery policy and client-facing status mapping."""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

from models.generation import GenerationOutput, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_INLINE_MAX_BYTES = 800_000
DEFAULT_URL_EXPIRY_SECONDS = 300

# Rough pricing used for the estimate returned when an edit is accepted
COST_CENTS_PER_MIB = 35

PUBLIC_STATUS = {
    TaskStatus.QUEUED: "queued",
    TaskStatus.RUNNING: "processing",
    TaskStatus.SUCCEEDED: "done",
    TaskStatus.FAILED: "error",
}

# Older mobile clients only know "done" as a rename
COMPAT_STATUS = {
    TaskStatus.QUEUED: "queued",
    TaskStatus.RUNNING: "running",
    TaskStatus.SUCCEEDED: "done",
    TaskStatus.FAILED: "failed",
}


@dataclass
class InlineResult:
    """Small output returned directly in the response body."""

    result_base64: str

    def to_dict(self) -> dict:
        return {"result_base64": self.result_base64}


@dataclass
class RedirectResult:
    """Large or unsized output served from a short-lived URL."""

    url: str


DeliveredResult = Union[InlineResult, RedirectResult]


def public_job_status(status: TaskStatus) -> str:
    return PUBLIC_STATUS[status]


def compat_job_status(status: TaskStatus) -> str:
    return COMPAT_STATUS[status]


def estimate_cost_cents(num_bytes: int) -> int:
    """Estimate the cost of an edit from the input size, rounded half up."""
    return int(math.floor(num_bytes / (1024 * 1024) * COST_CENTS_PER_MIB + 0.5))


def should_inline(size: Optional[int], max_bytes: int = DEFAULT_INLINE_MAX_BYTES) -> bool:
    """Inline only outputs with a known, non-zero size under the threshold."""
    return size is not None and 0 < size < max_bytes


async def deliver_result(
    output: GenerationOutput,
    storage,
    inline_max_bytes: int = DEFAULT_INLINE_MAX_BYTES,
    url_expiry_seconds: int = DEFAULT_URL_EXPIRY_SECONDS,
) -> DeliveredResult:
    """Decide how to hand a task's primary output to the client.

    Args:
        output: The task's primary (index 0) output
        storage: StorageGateway holding the output
        inline_max_bytes: Outputs strictly smaller than this are inlined
        url_expiry_seconds: Lifetime of the redirect URL

    Returns:
        InlineResult with base64 content, or RedirectResult with an access URL
    """
    if should_inline(output.size, inline_max_bytes):
        content = await storage.fetch_as_base64(output.storage_bucket, output.storage_path)
        logger.debug(f"Inlining output {output.id} ({output.size} bytes)")
        return InlineResult(result_base64=content)

    url = await storage.resolve_url(
        output.storage_bucket, output.storage_path, expires_in=url_expiry_seconds
    )
    logger.debug(f"Redirecting output {output.id} (size={output.size})")
    return RedirectResult(url=url)
