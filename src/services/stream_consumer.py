"""Consume a streamed generation response into stored outputs and text.

Each chunk is classified once by ``classify_chunk`` into one of four
kinds, looking only at the first part of the first candidate:

1. InlineImage - embedded image bytes plus MIME type
2. ExternalRef - a hosted URI for the image, no bytes
3. TextChunk   - the chunk's own text
4. Ignored     - anything else

Inline images are uploaded through the storage gateway and recorded as
task outputs; external references are recorded without upload. Output
indices count up from 0 in emission order.
"""

import base64
import logging
import mimetypes
from dataclasses import dataclass
from typing import Any, AsyncIterable, Optional, Union

from models.generation import OutputDescriptor, StreamResult
from utils.config import EXTERNAL_URL_BUCKET

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/png"
DEFAULT_EXTENSION = "png"

# mimetypes gives platform-dependent answers for some of these
PREFERRED_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
    "image/avif": "avif",
}

EXTERNAL_URL_METADATA = {"provider": "google", "kind": "url"}


@dataclass
class InlineImage:
    data: bytes
    mime_type: str


@dataclass
class ExternalRef:
    uri: str
    mime_type: Optional[str] = None


@dataclass
class TextChunk:
    text: str


@dataclass
class Ignored:
    pass


ChunkKind = Union[InlineImage, ExternalRef, TextChunk, Ignored]


def _field(obj: Any, *names: str) -> Any:
    """First non-None attribute (or dict key) among ``names``."""
    if obj is None:
        return None
    for name in names:
        if isinstance(obj, dict):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return None


def _first(items: Any) -> Any:
    if not items:
        return None
    try:
        return items[0]
    except (IndexError, KeyError, TypeError):
        return None


def _first_part(chunk: Any) -> Any:
    candidate = _first(_field(chunk, "candidates"))
    content = _field(candidate, "content")
    return _first(_field(content, "parts"))


def _decode_inline_data(data: Any) -> bytes:
    # The SDK hands over decoded bytes; raw JSON payloads carry base64 text
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    return base64.b64decode(data)


def _external_uri(part: Any) -> Optional[str]:
    file_data = _field(part, "file_data", "fileData")
    media = _field(part, "media")
    candidates = (
        _field(file_data, "file_uri", "fileUri"),
        _field(file_data, "uri"),
        _field(media, "url"),
        _field(part, "url"),
    )
    for uri in candidates:
        if isinstance(uri, str) and uri:
            return uri
    return None


def classify_chunk(chunk: Any) -> ChunkKind:
    """Classify a response chunk.

    Inline data is checked before hosted URIs, so a chunk is never
    counted twice. Chunks without parts are ignored even if they carry
    text.
    """
    part = _first_part(chunk)
    if part is None:
        return Ignored()

    inline = _field(part, "inline_data", "inlineData")
    if inline is not None:
        return InlineImage(
            data=_decode_inline_data(_field(inline, "data")),
            mime_type=_field(inline, "mime_type", "mimeType") or DEFAULT_IMAGE_MIME,
        )

    uri = _external_uri(part)
    if uri:
        file_data = _field(part, "file_data", "fileData")
        mime_type = _field(file_data, "mime_type", "mimeType") or _field(
            part, "mime_type", "mimeType"
        )
        return ExternalRef(uri=uri, mime_type=mime_type)

    text = _field(chunk, "text")
    if isinstance(text, str):
        return TextChunk(text=text)

    return Ignored()


def extension_for_mime(mime_type: Optional[str]) -> str:
    """File extension (without dot) for a MIME type, ``png`` if unknown."""
    if not mime_type:
        return DEFAULT_EXTENSION
    mime_type = mime_type.split(";")[0].strip().lower()
    if mime_type in PREFERRED_EXTENSIONS:
        return PREFERRED_EXTENSIONS[mime_type]
    guessed = mimetypes.guess_extension(mime_type)
    return guessed.lstrip(".") if guessed else DEFAULT_EXTENSION


def output_path(task_id: str, index: int, mime_type: Optional[str]) -> str:
    return f"{task_id}/{index}.{extension_for_mime(mime_type)}"


async def consume_generation_stream(
    stream: AsyncIterable[Any],
    task_id: str,
    storage,
    task_store,
    bucket: str,
) -> StreamResult:
    """Drain a response stream, storing images and collecting text.

    Args:
        stream: Async iterable of response chunks (consumed once)
        task_id: Task that owns the outputs
        storage: StorageGateway to upload inline images to
        task_store: TaskStore to record outputs in
        bucket: Bucket for inline uploads

    Returns:
        StreamResult with output descriptors in index order and the
        accumulated text

    Any error (stream, decode, upload, insert) propagates immediately.
    Outputs recorded before the error stay recorded.
    """
    result = StreamResult()
    index = 0

    async for chunk in stream:
        kind = classify_chunk(chunk)

        if isinstance(kind, InlineImage):
            path = output_path(task_id, index, kind.mime_type)
            uploaded = await storage.upload(
                bucket, path, kind.data, content_type=kind.mime_type, upsert=True
            )
            stored_path = uploaded.path or path
            await task_store.insert_output(
                task_id=task_id,
                index=index,
                storage_bucket=bucket,
                storage_path=stored_path,
                mime=kind.mime_type,
                size=len(kind.data),
                metadata={},
            )
            result.outputs.append(
                OutputDescriptor(
                    url=uploaded.public_url, path=stored_path, bucket=bucket, mime=kind.mime_type
                )
            )
            logger.info(
                f"Saved output {index} for task {task_id} "
                f"({kind.mime_type}, {len(kind.data)} bytes) at {stored_path}"
            )
            index += 1

        elif isinstance(kind, ExternalRef):
            await task_store.insert_output(
                task_id=task_id,
                index=index,
                storage_bucket=EXTERNAL_URL_BUCKET,
                storage_path=kind.uri,
                mime=kind.mime_type,
                size=None,
                metadata=dict(EXTERNAL_URL_METADATA),
            )
            result.outputs.append(
                OutputDescriptor(
                    url=kind.uri, path=kind.uri, bucket=EXTERNAL_URL_BUCKET, mime=kind.mime_type
                )
            )
            logger.info(f"Recorded external url output {index} for task {task_id}: {kind.uri}")
            index += 1

        elif isinstance(kind, TextChunk):
            result.text += kind.text

    return result
