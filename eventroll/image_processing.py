from __future__ import annotations

import io

from PIL import Image, ImageOps

from .media import MB, Blob

MAX_DIMENSION = 2000
HEAVY_COMPRESSION_THRESHOLD = 5 * MB
HEAVY_QUALITY = 0.5
DEFAULT_QUALITY = 0.7

# Pillow formats that accept a quality setting; anything else is re-encoded as JPEG.
_QUALITY_FORMATS = {"JPEG": "image/jpeg", "WEBP": "image/webp"}


class CompressionFailed(RuntimeError):
    pass


def quality_for(size: int) -> float:
    return HEAVY_QUALITY if size > HEAVY_COMPRESSION_THRESHOLD else DEFAULT_QUALITY


def target_dimensions(width: int, height: int, *, max_dimension: int = MAX_DIMENSION) -> tuple[int, int]:
    """Scale so the longer side equals ``max_dimension``; only shrink, never enlarge."""
    long_edge = max(width, height)
    if long_edge <= max_dimension:
        return width, height
    scale = max_dimension / float(long_edge)
    if width >= height:
        return max_dimension, max(1, round(height * scale))
    return max(1, round(width * scale)), max_dimension


def compress(blob: Blob, size_ceiling: int) -> Blob:
    """
    Shrink an oversized image so it has a chance of fitting under ``size_ceiling``.

    - Blobs at or under the ceiling are returned unchanged (same object)
    - Quality 0.5 above 5 MB, otherwise 0.7
    - Longer side capped at 2000px, aspect ratio preserved
    - JPEG/WEBP keep their format; other formats are re-encoded as JPEG

    Raises:
        CompressionFailed: If the image cannot be decoded or re-encoded
    """
    if blob.size <= size_ceiling:
        return blob

    quality = quality_for(blob.size)
    try:
        with Image.open(io.BytesIO(blob.data)) as src:
            fmt = src.format if src.format in _QUALITY_FORMATS else "JPEG"
            im = ImageOps.exif_transpose(src)

            if fmt == "JPEG" and im.mode != "RGB":
                im = im.convert("RGB")

            size = target_dimensions(*im.size)
            if size != im.size:
                im = im.resize(size, Image.Resampling.LANCZOS)

            out = io.BytesIO()
            im.save(out, format=fmt, quality=int(round(quality * 100)), optimize=True)
    except Exception as e:  # noqa: BLE001 - we want a clean error surface
        error_msg = str(e)
        if "cannot identify image file" in error_msg.lower():
            guidance = "  This file may not be a valid image, or the file is corrupted."
        else:
            guidance = f"  Error type: {type(e).__name__}"
        raise CompressionFailed(
            f"Failed to compress image: {blob.name}\n"
            f"{guidance}\n"
            f"  Original error: {error_msg}"
        ) from e

    return Blob(name=blob.name, data=out.getvalue(), content_type=_QUALITY_FORMATS[fmt])
