# Data models for the image generation backend
from .generation import (
    ContentPart,
    GenerationOptions,
    GenerationOutput,
    GenerationTask,
    ImmediateResult,
    OutputDescriptor,
    PromptFilter,
    StreamResult,
    TaskStatus,
)

__all__ = [
    "ContentPart",
    "GenerationOptions",
    "GenerationOutput",
    "GenerationTask",
    "ImmediateResult",
    "OutputDescriptor",
    "PromptFilter",
    "StreamResult",
    "TaskStatus",
]
