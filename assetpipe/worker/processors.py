"""
Processing function registry and built-in processors.

Processors must be idempotent - they may be invoked more than once for the
same job when a lease expires mid-flight. Each one classifies its own
failures by returning a ProcessResult instead of raising.
"""

import asyncio
import hashlib
import io
import json
import logging
from typing import Awaitable, Callable

from PIL import Image

from assetpipe.constants import INPUT_KEY_PREFIX, OUTPUT_KEY_PREFIX
from assetpipe.exceptions import ObjectNotFoundError
from assetpipe.types.job import ProcessingContext
from assetpipe.types.result import ProcessResult

logger = logging.getLogger(__name__)

# Type alias for processing functions
ProcessFn = Callable[[ProcessingContext], Awaitable[ProcessResult]]

# Processor registry
_processors: dict[str, ProcessFn] = {}

DEFAULT_PROCESSOR = "copy"
DEFAULT_THUMBNAIL_SIZE = 128


def register_processor(name: str) -> Callable[[ProcessFn], ProcessFn]:
    """
    Decorator to register a processor.

    Args:
        name: The name jobs use in ``payload["processor"]``.

    Returns:
        Decorator function.

    Example:
        @register_processor("resize")
        async def process_resize(context: ProcessingContext) -> ProcessResult:
            ...
    """
    def decorator(processor: ProcessFn) -> ProcessFn:
        _processors[name] = processor
        logger.debug(f"Registered processor: {name}")
        return processor
    return decorator


def get_processor(name: str) -> ProcessFn | None:
    """Get the processor registered under ``name``, if any."""
    return _processors.get(name)


def list_processors() -> list[str]:
    """List all registered processor names."""
    return list(_processors.keys())


def result_key_for(object_key: str, suffix: str = "") -> str:
    """
    Derive the output key for an input key.

    ``in/a1.png`` becomes ``out/a1.png``; keys without the input prefix are
    placed under the output prefix unchanged.
    """
    name = object_key
    if name.startswith(INPUT_KEY_PREFIX):
        name = name[len(INPUT_KEY_PREFIX):]
    return f"{OUTPUT_KEY_PREFIX}{name}{suffix}"


async def _read_input(context: ProcessingContext) -> bytes | ProcessResult:
    try:
        return await context.store.get(context.job.object_key)
    except ObjectNotFoundError as e:
        # Producers write the object before enqueueing, so it is never coming
        return ProcessResult.permanent(f"Input object missing: {e.key}")
    except OSError as e:
        return ProcessResult.transient(f"Could not read input: {e}")


# ============================================================================
# Built-in processors
# ============================================================================


@register_processor("copy")
async def process_copy(context: ProcessingContext) -> ProcessResult:
    """Copy the input object to its output key unchanged."""
    data = await _read_input(context)
    if isinstance(data, ProcessResult):
        return data

    return ProcessResult.success(
        result_key=result_key_for(context.job.object_key),
        output=data,
    )


@register_processor("checksum")
async def process_checksum(context: ProcessingContext) -> ProcessResult:
    """Write a JSON manifest with the input's size and sha256 digest."""
    data = await _read_input(context)
    if isinstance(data, ProcessResult):
        return data

    manifest = {
        "object_key": context.job.object_key,
        "size": len(data),
        "sha256": hashlib.sha256(data).hexdigest(),
    }
    return ProcessResult.success(
        result_key=result_key_for(context.job.object_key, ".sha256.json"),
        output=json.dumps(manifest, sort_keys=True).encode("utf-8"),
    )


def _make_thumbnail(data: bytes, size: int) -> bytes:
    with Image.open(io.BytesIO(data)) as image:
        image_format = image.format or "PNG"
        image.thumbnail((size, size))
        buffer = io.BytesIO()
        image.save(buffer, format=image_format)
    return buffer.getvalue()


@register_processor("thumbnail")
async def process_thumbnail(context: ProcessingContext) -> ProcessResult:
    """
    Downscale an image so it fits in a square box, keeping aspect ratio.

    Payload may contain:
    - size: Edge of the bounding box in pixels (default 128)
    """
    size = context.job.payload.get("size", DEFAULT_THUMBNAIL_SIZE)
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        return ProcessResult.permanent(f"Invalid thumbnail size: {size!r}")

    data = await _read_input(context)
    if isinstance(data, ProcessResult):
        return data

    try:
        thumbnail = await asyncio.to_thread(_make_thumbnail, data, size)
    # Pillow reports corrupt or truncated data lazily, from load and save
    except (OSError, ValueError, KeyError, Image.DecompressionBombError) as e:
        return ProcessResult.permanent(f"Input is not a usable image: {e}")

    logger.info(
        "Thumbnail generated",
        extra={"job_id": context.job.id, "bytes": len(thumbnail)},
    )
    return ProcessResult.success(
        result_key=result_key_for(context.job.object_key),
        output=thumbnail,
    )


def build_process_fn(default: str = DEFAULT_PROCESSOR) -> ProcessFn:
    """
    Build a processing function that dispatches on ``payload["processor"]``.

    Args:
        default: Processor used when the payload names none.

    Returns:
        A processing function suitable for WorkerPool.start.
    """
    async def dispatch(context: ProcessingContext) -> ProcessResult:
        name = context.job.payload.get("processor", default)
        processor = get_processor(name) if isinstance(name, str) else None

        if processor is None:
            logger.error(
                f"No processor registered: {name}",
                extra={"job_id": context.job.id},
            )
            return ProcessResult.permanent(f"No processor registered: {name}")

        return await processor(context)

    return dispatch
