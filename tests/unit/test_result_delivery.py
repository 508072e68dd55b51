"""Tests for result delivery policy, status mapping and cost estimates."""

import base64

import pytest

from models.generation import GenerationOutput, TaskStatus
from services.result_delivery import (
    InlineResult,
    RedirectResult,
    compat_job_status,
    deliver_result,
    estimate_cost_cents,
    public_job_status,
    should_inline,
)
from utils.config import EXTERNAL_URL_BUCKET


def make_output(size, bucket="gen-images", path="task-1/0.png"):
    return GenerationOutput(
        id="out-1", task_id="task-1", index=0, storage_bucket=bucket, storage_path=path, size=size
    )


class TestShouldInline:
    @pytest.mark.parametrize(
        "size,expected",
        [(1, True), (799_999, True), (800_000, False), (5_000_000, False), (0, False), (None, False)],
    )
    def test_threshold(self, size, expected):
        assert should_inline(size) is expected

    def test_custom_threshold(self):
        assert should_inline(100, max_bytes=101) is True
        assert should_inline(101, max_bytes=101) is False


class TestStatusMapping:
    def test_public_status(self):
        assert public_job_status(TaskStatus.QUEUED) == "queued"
        assert public_job_status(TaskStatus.RUNNING) == "processing"
        assert public_job_status(TaskStatus.SUCCEEDED) == "done"
        assert public_job_status(TaskStatus.FAILED) == "error"

    def test_compat_status(self):
        assert compat_job_status(TaskStatus.RUNNING) == "running"
        assert compat_job_status(TaskStatus.SUCCEEDED) == "done"
        assert compat_job_status(TaskStatus.FAILED) == "failed"


class TestEstimateCost:
    def test_one_mib(self):
        assert estimate_cost_cents(1024 * 1024) == 35

    def test_rounds_half_up(self):
        # 0.5 MiB -> 17.5 cents -> 18
        assert estimate_cost_cents(512 * 1024) == 18

    def test_small_input(self):
        assert estimate_cost_cents(1000) == 0


class TestDeliverResult:
    """Tests for deliver_result."""

    @pytest.mark.asyncio
    async def test_small_output_is_inlined(self, storage):
        storage.objects[("gen-images", "task-1/0.png")] = b"tiny image"

        result = await deliver_result(make_output(10), storage)

        assert result == InlineResult(result_base64=base64.b64encode(b"tiny image").decode())
        assert result.to_dict() == {"result_base64": base64.b64encode(b"tiny image").decode()}

    @pytest.mark.asyncio
    async def test_large_output_redirects(self, storage):
        result = await deliver_result(make_output(800_000), storage)
        assert result == RedirectResult(url="https://storage.test/gen-images/task-1/0.png?expires=300")

    @pytest.mark.asyncio
    async def test_unknown_size_redirects(self, storage):
        result = await deliver_result(make_output(None), storage, url_expiry_seconds=60)
        assert result.url.endswith("?expires=60")

    @pytest.mark.asyncio
    async def test_external_url_redirects_to_itself(self, storage):
        output = make_output(None, bucket=EXTERNAL_URL_BUCKET, path="https://cdn.example.com/x.png")
        result = await deliver_result(output, storage)
        assert result == RedirectResult(url="https://cdn.example.com/x.png")
