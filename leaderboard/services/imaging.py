"""
Photo ingestion: decode an upload, cap its width, and re-encode it as JPEG
under a byte budget.

Quality is searched greedily from high to low in fixed steps and the first
encoding that fits wins. Nothing is cached between calls, so an ImageIngestor
can be shared across request threads.
"""
from __future__ import annotations

import enum
import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..config import Settings

logger = logging.getLogger(__name__)

OUTPUT_CONTENT_TYPE = "image/jpeg"
# MPO is what Pillow calls a JPEG carrying an MPF (multi-picture) marker;
# only its first frame is used
ACCEPTED_FORMATS = frozenset({"JPEG", "MPO", "PNG", "GIF", "BMP", "WEBP"})


class IngestStatus(str, enum.Enum):
    OK = "ok"
    TOO_LARGE = "too_large"
    DECODE_FAILED = "decode_failed"
    CANNOT_FIT = "cannot_fit"


@dataclass(frozen=True)
class ImagePolicy:
    max_input_bytes: int = 1 * 1024 * 1024
    max_input_pixels: int = 40_000_000
    max_width: int = 1024
    max_output_bytes: int = 500 * 1024
    quality_start: int = 80
    quality_floor: int = 40
    quality_step: int = 5
    quality_min: int = 35

    def __post_init__(self) -> None:
        if self.max_width < 1 or self.max_output_bytes < 1:
            raise ValueError("max_width and max_output_bytes must be positive")
        if self.max_input_pixels < 1:
            raise ValueError("max_input_pixels must be positive")
        if self.quality_step < 1:
            raise ValueError("quality_step must be positive")
        if not 1 <= self.quality_min <= self.quality_floor <= self.quality_start <= 95:
            raise ValueError("expected 1 <= quality_min <= quality_floor <= quality_start <= 95")

    @classmethod
    def from_settings(cls, s: Settings) -> "ImagePolicy":
        return cls(
            max_input_bytes=s.MAX_UPLOAD_BYTES,
            max_input_pixels=s.MAX_UPLOAD_PIXELS,
            max_width=s.MAX_PHOTO_WIDTH,
            max_output_bytes=s.MAX_PHOTO_BYTES,
            quality_start=s.JPEG_QUALITY_START,
            quality_floor=s.JPEG_QUALITY_FLOOR,
            quality_step=s.JPEG_QUALITY_STEP,
            quality_min=s.JPEG_QUALITY_MIN,
        )

    def qualities(self) -> list[int]:
        """Primary search range, highest first."""
        return list(range(self.quality_start, self.quality_floor - 1, -self.quality_step))


@dataclass(frozen=True)
class IngestResult:
    status: IngestStatus
    data: bytes | None = None
    content_type: str | None = None
    width: int | None = None
    height: int | None = None
    quality: int | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is IngestStatus.OK


def _fail(status: IngestStatus, detail: str) -> IngestResult:
    return IngestResult(status=status, detail=detail)


class TooManyPixels(Exception):
    def __init__(self, width: int, height: int):
        super().__init__(f"{width}x{height}")
        self.width = width
        self.height = height


def decode(raw: bytes, max_pixels: int | None = None) -> Image.Image | None:
    """
    Return a fully loaded image, or None when the bytes are not a supported raster.

    The header is checked against ``max_pixels`` before any pixel data is
    decoded; a larger frame raises TooManyPixels.
    """
    try:
        img = Image.open(io.BytesIO(raw))
        if img.format not in ACCEPTED_FORMATS:
            logger.debug("rejecting image format %s", img.format)
            return None
        if max_pixels is not None and img.width * img.height > max_pixels:
            raise TooManyPixels(img.width, img.height)
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        logger.debug("image decode failed: %s", exc)
        return None
    return img


def normalize_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "L"):
        return img
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA", "PA") or "A" in img.getbands():
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")


def scaled_height(width: int, height: int, max_width: int) -> int:
    return max(1, round(height * max_width / width))


def resize_nearest(img: Image.Image, dst_w: int, dst_h: int) -> Image.Image:
    """
    Destination (x, y) copies source (x * src_w // dst_w, y * src_h // dst_h).
    No interpolation.
    """
    src_w, src_h = img.size
    pixels = np.asarray(img)
    xs = (np.arange(dst_w, dtype=np.int64) * src_w) // dst_w
    ys = (np.arange(dst_h, dtype=np.int64) * src_h) // dst_h
    return Image.fromarray(np.ascontiguousarray(pixels[ys[:, None], xs]))


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


class ImageIngestor:
    def __init__(self, policy: ImagePolicy):
        self.policy = policy

    def ingest(self, raw: bytes) -> IngestResult:
        p = self.policy
        if len(raw) > p.max_input_bytes:
            return _fail(IngestStatus.TOO_LARGE, f"upload exceeds {p.max_input_bytes} bytes")
        if not raw:
            return _fail(IngestStatus.DECODE_FAILED, "empty upload")

        try:
            img = decode(raw, max_pixels=p.max_input_pixels)
        except TooManyPixels as exc:
            logger.info("image %dx%d exceeds %d pixels", exc.width, exc.height, p.max_input_pixels)
            return _fail(IngestStatus.TOO_LARGE, f"image exceeds {p.max_input_pixels} pixels")
        if img is None:
            return _fail(IngestStatus.DECODE_FAILED, "unrecognized or corrupt image")
        img = normalize_mode(img)

        width, height = img.size
        if width > p.max_width:
            new_h = scaled_height(width, height, p.max_width)
            logger.debug("resizing %dx%d -> %dx%d", width, height, p.max_width, new_h)
            img = resize_nearest(img, p.max_width, new_h)

        steps = p.qualities()
        if p.quality_min < steps[-1]:
            steps.append(p.quality_min)
        for quality in steps:
            data = encode_jpeg(img, quality)
            logger.debug("jpeg q=%d -> %d bytes (budget %d)", quality, len(data), p.max_output_bytes)
            if len(data) <= p.max_output_bytes:
                return IngestResult(
                    status=IngestStatus.OK,
                    data=data,
                    content_type=OUTPUT_CONTENT_TYPE,
                    width=img.width,
                    height=img.height,
                    quality=quality,
                )

        logger.info("image %dx%d cannot fit in %d bytes", img.width, img.height, p.max_output_bytes)
        return _fail(IngestStatus.CANNOT_FIT, f"cannot fit image under {p.max_output_bytes} bytes")


def ingest(raw: bytes, max_width: int, max_output_bytes: int, **policy) -> IngestResult:
    return ImageIngestor(ImagePolicy(max_width=max_width, max_output_bytes=max_output_bytes, **policy)).ingest(raw)
