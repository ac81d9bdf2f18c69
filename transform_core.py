"""Core image transform logic. Used by the Flask service in app.py.

One call = one uploaded image + one prompt → one edited PNG on disk.
Nothing is kept between calls; the products directory is append-only.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from PIL import Image, UnidentifiedImageError

from prompts import DEFAULT_PROMPT

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Limits and model settings
# ---------------------------------------------------------------------------

MAX_FILE_SIZE = 5 * 1024 * 1024  # 5 MiB
ALLOWED_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")

DEFAULT_MODEL = "gemini-2.0-flash-exp"
RESPONSE_MODALITIES = ["TEXT", "IMAGE"]

PUBLIC_PREFIX = "/products"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TransformError(Exception):
    """Base for every failure the service reports to the client."""

    status = 500
    code = "transform_failed"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(TransformError):
    """Server is missing something it needs; the client cannot fix it."""

    status = 503
    code = "configuration_error"


class ValidationError(TransformError):
    status = 400
    code = "invalid_request"


class UpstreamError(TransformError):
    """The model call failed or its reply had no usable image."""

    status = 502
    code = "upstream_error"


class PersistenceError(TransformError):
    status = 500
    code = "storage_failed"


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------

def require_api_key() -> str:
    api_key = os.environ.get("GEMINI_API_KEY", "")
    if not api_key:
        raise ConfigurationError(
            "GEMINI_API_KEY is not configured on the server", code="missing_api_key"
        )
    return api_key


def validate_image(mime_type: str, size: int) -> None:
    """Check the declared MIME type, then the byte size. Raises ValidationError."""
    if mime_type not in ALLOWED_TYPES:
        raise ValidationError(
            f"File type not allowed. Allowed types: {', '.join(ALLOWED_TYPES)}",
            code="unsupported_type",
            details=f"received {mime_type or 'no type'}",
        )
    if size > MAX_FILE_SIZE:
        raise ValidationError(
            f"File is too large. Maximum size: {MAX_FILE_SIZE // (1024 * 1024)}MB",
            code="file_too_large",
            details=f"received {size} bytes",
        )


def effective_prompt(prompt: Optional[str]) -> str:
    """The prompt actually sent to the model; blank falls back to DEFAULT_PROMPT.

    A non-blank prompt is passed through untouched so appliedPrompt echoes it.
    """
    if not prompt or not prompt.strip():
        return DEFAULT_PROMPT
    return prompt


# ---------------------------------------------------------------------------
# Model call
# ---------------------------------------------------------------------------

def model_name() -> str:
    return os.environ.get("GEMINI_IMAGE_MODEL") or DEFAULT_MODEL


def call_model(
    api_key: str,
    prompt: str,
    image_bytes: bytes,
    mime_type: str,
    model: Optional[str] = None,
) -> Any:
    """Send one user turn (prompt + inline image) and return the raw SDK response.

    The SDK base64-encodes the inline image on the wire.
    """
    from google import genai
    from google.genai import errors, types

    model = model or model_name()
    client = genai.Client(api_key=api_key)
    contents = [
        types.Content(
            role="user",
            parts=[
                types.Part.from_text(text=prompt),
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            ],
        )
    ]
    config = types.GenerateContentConfig(response_modalities=RESPONSE_MODALITIES)

    t0 = time.time()
    try:
        response = client.models.generate_content(
            model=model, contents=contents, config=config
        )
    except errors.APIError as exc:
        log.error("Gemini error after %.1fs: model=%s  %s", time.time() - t0, model, exc)
        raise UpstreamError(
            "Image model request failed", code="model_request_failed", details=str(exc)
        ) from exc

    log.info(
        "Gemini call: model=%s  %d bytes in (%s)  %.1fs",
        model, len(image_bytes), mime_type, time.time() - t0,
    )
    return response


# ---------------------------------------------------------------------------
# Response extraction
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImagePart:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class NoCandidates:
    pass


@dataclass(frozen=True)
class NoParts:
    pass


@dataclass(frozen=True)
class NoImagePart:
    part_count: int = 0


Extraction = Union[ImagePart, NoCandidates, NoParts, NoImagePart]


def _inline_bytes(data: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str):
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UpstreamError(
                "Image model returned data that is not a readable image",
                code="undecodable_image",
                details=str(exc),
            ) from exc
    raise TypeError(f"Unsupported inline data type: {type(data).__name__}")


def extract_image(response: Any) -> Extraction:
    """Find the first image part of the first candidate.

    Text parts the model sends alongside the image are ignored.
    """
    candidates = getattr(response, "candidates", None)
    if not candidates:
        return NoCandidates()

    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) if content is not None else None
    if not parts:
        return NoParts()

    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is None:
            continue
        mime_type = getattr(inline, "mime_type", None) or ""
        data = getattr(inline, "data", None)
        if mime_type.startswith("image/") and data:
            return ImagePart(data=_inline_bytes(data), mime_type=mime_type)

    return NoImagePart(part_count=len(parts))


def require_image(extraction: Extraction) -> ImagePart:
    """Turn a failed extraction into the matching UpstreamError."""
    if isinstance(extraction, ImagePart):
        return extraction
    if isinstance(extraction, NoCandidates):
        raise UpstreamError(
            "Image model did not return a valid response", code="no_candidates"
        )
    if isinstance(extraction, NoParts):
        raise UpstreamError("Image model response has no content", code="no_parts")
    if isinstance(extraction, NoImagePart):
        raise UpstreamError(
            "Image model did not return a transformed image",
            code="no_image_part",
            details=f"{extraction.part_count} part(s) without image data",
        )
    raise TypeError(f"Unknown extraction result: {extraction!r}")


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def as_png(data: bytes, mime_type: str = "") -> bytes:
    """Return PNG bytes, transcoding with Pillow when the model sent another format."""
    if data.startswith(PNG_SIGNATURE):
        return data
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode not in ("1", "L", "LA", "I", "P", "RGB", "RGBA"):
                img = img.convert("RGBA")
            buf = io.BytesIO()
            img.save(buf, format="PNG")
    except (UnidentifiedImageError, OSError) as exc:
        raise UpstreamError(
            "Image model returned data that is not a readable image",
            code="undecodable_image",
            details=str(exc),
        ) from exc
    log.info("Transcoded model output %s → image/png", mime_type or "unknown")
    return buf.getvalue()


def save_image(data: bytes, products_dir: Union[str, Path]) -> str:
    """Write PNG bytes under a fresh random name and return that filename."""
    directory = Path(products_dir)
    filename = f"{uuid.uuid4().hex}.png"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        with open(directory / filename, "xb") as fh:
            fh.write(data)
    except OSError as exc:
        log.error("Could not store %s in %s: %s", filename, directory, exc)
        raise PersistenceError(
            "Could not store the transformed image", details=str(exc)
        ) from exc
    log.debug("Stored %s (%d bytes)", directory / filename, len(data))
    return filename


# ---------------------------------------------------------------------------
# Full transform
# ---------------------------------------------------------------------------

def transform_image(
    image_bytes: bytes,
    mime_type: str,
    prompt: str,
    products_dir: Union[str, Path],
    api_key: str,
) -> Dict[str, Any]:
    """Run model call → extraction → PNG storage. Returns the success body."""
    response = call_model(api_key, prompt, image_bytes, mime_type)

    extraction = extract_image(response)
    if not isinstance(extraction, ImagePart):
        log.warning("Model reply unusable: %s", type(extraction).__name__)
    image = require_image(extraction)

    filename = save_image(as_png(image.data, image.mime_type), products_dir)
    return {
        "success": True,
        "path": f"{PUBLIC_PREFIX}/{filename}",
        "filename": filename,
        "appliedPrompt": prompt,
    }
