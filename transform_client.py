"""Client side of the product image flow.

ProductImageController owns the selected file, the edit prompt and the
transform result for one product form session. StoreApi is the HTTP layer
it talks through.
"""

from __future__ import annotations

import base64
import enum
import io
import logging
import mimetypes
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests
from PIL import Image, UnidentifiedImageError

import prompts

log = logging.getLogger(__name__)

mimetypes.add_type("image/webp", ".webp")

TRANSFORM_ENDPOINT = "/api/admin/transform-image"
UPLOAD_ENDPOINT = "/api/admin/upload-image"
PRODUCTS_ENDPOINT = "/api/admin/products"


class FormError(Exception):
    """A failure shown to the operator, local or from the server."""

    def __init__(self, error: str, details: Optional[str] = None) -> None:
        self.error = error
        self.details = details
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return f"{self.error}: {self.details}" if self.details else self.error


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

def _sniff_mime_type(content: bytes) -> Optional[str]:
    """MIME type from the image header, for files with a missing or unknown extension."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            return Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        return None


@dataclass(frozen=True)
class SelectedImage:
    content: bytes
    mime_type: str
    filename: str = "image"

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "SelectedImage":
        path = Path(path)
        content = path.read_bytes()
        mime_type, _ = mimetypes.guess_type(str(path))
        return cls(
            content=content,
            mime_type=mime_type or _sniff_mime_type(content) or "application/octet-stream",
            filename=path.name,
        )

    def preview(self) -> str:
        """Data URL for local display, no server round-trip."""
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class TransformResult:
    path: str
    filename: str
    applied_prompt: str


@dataclass
class ProductDraft:
    name: str
    description: str
    price: float
    stock: int = 0
    is_digital: bool = False


class TransformState(str, enum.Enum):
    IDLE = "idle"
    READY = "ready"
    TRANSFORMING = "transforming"
    TRANSFORMED_READY = "transformed_ready"


# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------

class StoreApi:
    """Thin requests wrapper for the admin endpoints."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 120.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def transform_image(self, image: SelectedImage, prompt: str) -> Dict[str, Any]:
        return self._post(
            TRANSFORM_ENDPOINT,
            "Failed to transform image",
            files={"image": (image.filename, image.content, image.mime_type)},
            data={"prompt": prompt},
        )

    def upload_image(self, image: SelectedImage) -> Dict[str, Any]:
        return self._post(
            UPLOAD_ENDPOINT,
            "Failed to upload image",
            files={"image": (image.filename, image.content, image.mime_type)},
        )

    def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(PRODUCTS_ENDPOINT, "Failed to create product", json=payload)

    def fetch_presets(self) -> Dict[str, Any]:
        try:
            resp = self.session.get(
                f"{self.base_url}/api/admin/transform-presets", timeout=self.timeout
            )
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise FormError("Could not load prompt presets", str(exc)) from exc

    def _post(self, endpoint: str, fallback_error: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            log.error("POST %s failed: %s", url, exc)
            raise FormError("Network error", str(exc)) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise FormError(
                "Unexpected response from server",
                f"HTTP {resp.status_code}: {resp.text[:200]}",
            )

        if not resp.ok:
            log.debug("POST %s → %d %s", url, resp.status_code, body.get("code", ""))
            raise FormError(body.get("error") or fallback_error, body.get("details"))
        return body


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

def _transform_result(body: Any, prompt: str) -> TransformResult:
    if not isinstance(body, dict) or not body.get("path"):
        raise FormError("Failed to transform image", "response had no image path")
    return TransformResult(
        path=body["path"],
        filename=body.get("filename", ""),
        applied_prompt=body.get("appliedPrompt") or prompt,
    )


class ProductImageController:
    """State machine for the optional AI enhancement of a product image.

    select_image always clears any transform result before returning, and
    each transform request is stamped with the selection it was made for,
    so a reply that arrives after the operator picked another file is
    dropped instead of being attached to the wrong image.
    """

    def __init__(self, api: StoreApi, prompt: str = prompts.DEFAULT_PROMPT) -> None:
        self.api = api
        self.prompt = prompt

        self.state = TransformState.IDLE
        self.image: Optional[SelectedImage] = None
        self.preview: Optional[str] = None
        self.result: Optional[TransformResult] = None
        self.transform_error: Optional[str] = None
        self.submit_error: Optional[str] = None

        self._generation = 0
        self._in_flight = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Selection and prompt
    # ------------------------------------------------------------------

    def select_image(self, image: SelectedImage) -> None:
        preview = image.preview()
        with self._lock:
            self._generation += 1
            self.image = image
            self.preview = preview
            self.result = None
            self.transform_error = None
            self.state = TransformState.READY
        log.debug(
            "Selected %s (%s, %d bytes) generation=%d",
            image.filename, image.mime_type, image.size, self._generation,
        )

    def set_prompt(self, text: str) -> None:
        self.prompt = text

    def apply_preset(self, label: str) -> None:
        prompt = prompts.preset_prompt(label)
        if prompt is None:
            raise FormError("Unknown preset", label)
        self.set_prompt(prompt)

    def use_default_prompt(self) -> None:
        self.set_prompt(prompts.DEFAULT_PROMPT)

    @property
    def busy(self) -> bool:
        return self._in_flight

    @property
    def can_transform(self) -> bool:
        return self.image is not None and bool(self.prompt.strip()) and not self._in_flight

    # ------------------------------------------------------------------
    # Transform
    # ------------------------------------------------------------------

    def request_transform(self) -> Optional[TransformResult]:
        """Run one transform for the current image and prompt.

        Returns the new result, or None when the call was skipped, failed,
        or finished for a selection that has since been replaced.
        """
        with self._lock:
            if self._in_flight:
                log.debug("Transform already in flight; ignoring request")
                return None
            if self.image is None:
                self.transform_error = FormError("No image selected").message
                return None
            prompt = self.prompt
            if not prompt.strip():
                self.transform_error = FormError("Prompt is empty").message
                return None

            image = self.image
            generation = self._generation
            self._in_flight = True
            self.transform_error = None
            self.state = TransformState.TRANSFORMING

        try:
            result = _transform_result(self.api.transform_image(image, prompt), prompt)
        except FormError as err:
            with self._lock:
                self._in_flight = False
                if generation != self._generation:
                    log.info("Dropping failed transform for a replaced image")
                    return None
                self.transform_error = err.message
                self.state = (
                    TransformState.TRANSFORMED_READY if self.result else TransformState.READY
                )
            log.warning("Transform failed: %s", err.message)
            return None
        except Exception as exc:
            with self._lock:
                self._in_flight = False
                if generation == self._generation:
                    self.transform_error = FormError("Failed to transform image", str(exc)).message
                    self.state = (
                        TransformState.TRANSFORMED_READY if self.result else TransformState.READY
                    )
            log.error("Transform crashed: %s", exc, exc_info=True)
            raise

        with self._lock:
            self._in_flight = False
            if generation != self._generation:
                log.info("Dropping transform %s; image was replaced", result.filename)
                return None
            self.result = result
            self.state = TransformState.TRANSFORMED_READY
        log.info("Transform ready: %s", result.path)
        return result

    def start_transform(self) -> threading.Thread:
        """Fire request_transform on a daemon thread and return it."""
        t = threading.Thread(target=self.request_transform, daemon=True)
        t.start()
        return t

    def discard_transform(self) -> None:
        with self._lock:
            self.result = None
            if self.state == TransformState.TRANSFORMED_READY:
                self.state = TransformState.READY

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def resolve_submission_image(self) -> Optional[str]:
        """Path to attach to the product: transformed, else uploaded original, else None."""
        with self._lock:
            result = self.result
            image = self.image

        if result is not None:
            return result.path
        if image is None:
            return None

        body = self.api.upload_image(image)
        path = body.get("path")
        if not path:
            raise FormError("Image was uploaded but no path was returned")
        log.info("Uploaded original image: %s", path)
        return path

    def submit_product(self, draft: ProductDraft) -> Dict[str, Any]:
        self.submit_error = None
        try:
            if self._in_flight:
                raise FormError("Wait for the image transform to finish")
            image_path = self.resolve_submission_image()
            payload = {
                "name": draft.name,
                "description": draft.description,
                "price": draft.price,
                "stock": 0 if draft.is_digital else draft.stock,
                "isDigital": draft.is_digital,
                "image": image_path,
            }
            created = self.api.create_product(payload)
        except FormError as exc:
            self.submit_error = exc.message
            log.warning("Product submit failed: %s", exc.message)
            raise
        log.info("Product created: %r  image=%s", draft.name, image_path)
        return created
