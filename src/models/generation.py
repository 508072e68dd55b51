"""Models for generation tasks, their outputs, and generative backend inputs."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class TaskStatus(str, Enum):
    """Lifecycle state of a generation task.

    QUEUED is part of the schema but no creation path assigns it; tasks
    start in RUNNING.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


@dataclass
class GenerationTask:
    """Durable record of one generation or edit request."""

    id: str
    status: TaskStatus
    prompt: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    style_id: Optional[str] = None
    prompt_id: Optional[str] = None
    output_text: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def user_id(self) -> Optional[str]:
        """User recorded at creation, if any."""
        return self.params.get("userId")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "status": self.status.value,
            "prompt": self.prompt,
            "params": self.params,
            "style_id": self.style_id,
            "prompt_id": self.prompt_id,
            "output_text": self.output_text,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class GenerationOutput:
    """One produced image (or hosted image reference) of a task."""

    id: str
    task_id: str
    index: int
    storage_bucket: str
    storage_path: str
    mime: Optional[str] = None
    size: Optional[int] = None  # None for externally hosted URLs
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "index": self.index,
            "storage_bucket": self.storage_bucket,
            "storage_path": self.storage_path,
            "mime": self.mime,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class OutputDescriptor:
    """Where a freshly produced output ended up."""

    url: Optional[str]
    path: str
    bucket: str
    mime: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"url": self.url, "path": self.path, "bucket": self.bucket}
        if self.mime:
            result["mime"] = self.mime
        return result


@dataclass
class PromptFilter:
    """A named filter applied to the compiled prompt, with optional strength."""

    slug: str
    value: Optional[Any] = None

    def render(self) -> str:
        if self.value is None:
            return self.slug
        return f"{self.slug}={self.value}"

    @classmethod
    def from_dict(cls, data: dict) -> "PromptFilter":
        return cls(slug=str(data["slug"]), value=data.get("value"))

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"slug": self.slug}
        if self.value is not None:
            result["value"] = self.value
        return result


@dataclass
class ContentPart:
    """One input part sent to the generative backend: inline bytes or text."""

    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "ContentPart":
        return cls(text=text)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "ContentPart":
        return cls(data=data, mime_type=mime_type)

    @property
    def is_text(self) -> bool:
        return self.text is not None


@dataclass
class GenerationOptions:
    """Input of the immediate generation flow."""

    style_slug: Optional[str] = None
    prompt_id: Optional[str] = None
    prompt_text: Optional[str] = None
    quality: Optional[str] = None
    filters: list[PromptFilter] = field(default_factory=list)
    variations: int = 1
    image: Optional[bytes] = None
    image_mime: Optional[str] = None
    mask: Optional[bytes] = None
    mask_mime: Optional[str] = None
    user_id: Optional[str] = None

    def has_input(self) -> bool:
        """True if there is anything to build a request from."""
        return bool(
            (self.prompt_text and self.prompt_text.strip())
            or self.style_slug
            or self.prompt_id
            or self.image
        )


@dataclass
class StreamResult:
    """Outputs and accumulated text from one consumed generation stream."""

    outputs: list[OutputDescriptor] = field(default_factory=list)
    text: str = ""


@dataclass
class ImmediateResult:
    """Result of the immediate generation flow."""

    task_id: str
    outputs: list[OutputDescriptor]
    text: str

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "taskId": self.task_id,
            "outputs": [output.to_dict() for output in self.outputs],
            "text": self.text,
        }
