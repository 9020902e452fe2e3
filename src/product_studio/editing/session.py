from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterator

from product_studio.config import settings
from product_studio.editing.adjust import apply_adjustments
from product_studio.editing.crop import centered_aspect_crop, clamp_percent
from product_studio.editing.export import bake_adjustments, export_image_state
from product_studio.editing.history import History
from product_studio.editing.mask import MaskCanvas
from product_studio.editing.models import (
    DEFAULT_ADJUSTMENTS,
    FULL_CROP,
    Adjustments,
    ImageState,
    PercentCrop,
    SourceFile,
    image_dimensions,
    open_image,
    to_png_bytes,
)
from product_studio.errors import NotFoundError, SessionBusyError, StudioError
from product_studio.presets import ASPECT_RATIOS, AspectRatio
from product_studio.providers.base import ImageEditProvider

logger = logging.getLogger(__name__)

Snapshot = tuple[ImageState, ...]

# Masks are drawn at display size; the limit grows with larger images.
MAX_MASK_CANVAS_SIDE = 4096


class Tool(str, Enum):
    crop = "crop"
    brush = "brush"
    adjust = "adjust"
    enhance = "enhance"


@dataclass(frozen=True)
class Upload:
    filename: str
    mime_type: str
    content: bytes


def _new_image_id() -> str:
    return uuid.uuid4().hex[:12]


def _build_state(upload: Upload, crop: PercentCrop | None) -> ImageState:
    width, height = image_dimensions(upload.content)
    return ImageState(
        image_id=_new_image_id(),
        source=SourceFile(filename=upload.filename, mime_type=upload.mime_type or "image/png"),
        original=upload.content,
        natural_width=width,
        natural_height=height,
        crop=crop,
        adjustments=DEFAULT_ADJUSTMENTS,
    )


class EditorSession:
    """
    Multi-image editing session.

    Every change to `images` is either committed (pushed to history, so it can
    be undone) or ephemeral (in-progress crop, slider, mask strokes) until a
    confirm/cancel resolves it against the current history entry.
    """

    def __init__(
        self,
        provider: ImageEditProvider | None = None,
        session_id: str | None = None,
        product_id: str | None = None,
        export_width: int | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.product_id = product_id
        self.provider = provider
        self.export_width = export_width or settings.export_width

        self.images: Snapshot = ()
        self.selected_id: str | None = None
        self.history: History[Snapshot] = History()

        self.active_tool: Tool | None = None
        self.aspect_ratio: AspectRatio = ASPECT_RATIOS[0]
        self.temp_adjustments: Adjustments | None = None
        self.brush_size: int = settings.default_brush_size

        self.pending_enhancement: bytes | None = None
        self.pending_image_id: str | None = None

        self.busy = False
        self.error: str | None = None

    # --- state helpers ---

    @property
    def selected(self) -> ImageState | None:
        return self._find(self.selected_id) if self.selected_id else None

    def _find(self, image_id: str) -> ImageState | None:
        return next((img for img in self.images if img.image_id == image_id), None)

    def _require(self, image_id: str | None) -> ImageState:
        img = self._find(image_id) if image_id else None
        if img is None:
            raise NotFoundError("Image not found.")
        return img

    def _require_selected(self) -> ImageState:
        img = self.selected
        if img is None:
            raise StudioError("Please select an image first.")
        return img

    def _update(self, image_id: str, **changes: Any) -> Snapshot:
        return tuple(replace(img, **changes) if img.image_id == image_id else img for img in self.images)

    def _set(self, images: Snapshot, commit: bool = False) -> None:
        self.images = images
        if commit:
            self.history.push(images)

    def _committed(self, image_id: str) -> ImageState | None:
        snapshot = self.history.current or ()
        return next((img for img in snapshot if img.image_id == image_id), None)

    def _ensure_idle(self) -> None:
        if self.busy:
            raise SessionBusyError("Another edit is still in progress.")

    def _fix_selection(self) -> None:
        if self.selected_id is None or self._find(self.selected_id) is None:
            self.selected_id = self.images[0].image_id if self.images else None

    def _reseed_adjustments(self) -> None:
        selected = self.selected
        if self.active_tool == Tool.adjust and selected is not None:
            self.temp_adjustments = selected.adjustments
        else:
            self.temp_adjustments = None

    @contextmanager
    def _surface_errors(self) -> Iterator[None]:
        self.error = None
        try:
            yield
        except StudioError as exc:
            self.error = exc.message
            raise

    # --- images ---

    def load_initial(self, uploads: list[Upload]) -> None:
        """Start a fresh session from saved images; history restarts at this state."""
        with self._surface_errors():
            self._ensure_idle()
            states = tuple(_build_state(u, FULL_CROP) for u in uploads if u.content)
            self.images = states
            if states:
                self.history.reset(states)
            else:
                self.history = History()
            self.selected_id = states[0].image_id if states else None
            self.pending_enhancement = None
            self.pending_image_id = None
            self.active_tool = None
            self.temp_adjustments = None

    def add_images(self, uploads: list[Upload]) -> list[ImageState]:
        with self._surface_errors():
            self._ensure_idle()
            # Crop stays unset (whole image) until the user sets one.
            new_states = [_build_state(u, None) for u in uploads if u.content]
            if not new_states:
                return []
            images = self.images + tuple(new_states)
            if len(self.history) == 0:
                # The first upload becomes the first history entry.
                self.images = images
                self.history.reset(images)
            else:
                self._set(images, commit=True)
            if self.selected_id is None:
                self.selected_id = new_states[0].image_id
            logger.info("session %s: added %d image(s)", self.session_id, len(new_states))
            return new_states

    def remove_image(self, image_id: str) -> None:
        with self._surface_errors():
            self._ensure_idle()
            self._require(image_id)
            self._set(tuple(img for img in self.images if img.image_id != image_id), commit=True)
            if self.pending_image_id == image_id:
                self.cancel_enhancement()
            if self.selected_id == image_id:
                self.selected_id = self.images[0].image_id if self.images else None

    def select(self, image_id: str) -> None:
        with self._surface_errors():
            self._require(image_id)
            self.selected_id = image_id
            self._reseed_adjustments()

    def select_tool(self, tool: Tool | None) -> Tool | None:
        """Toggle a tool; selecting the active tool again closes it."""
        new_tool = None if tool == self.active_tool else tool
        self.active_tool = new_tool
        self._reseed_adjustments()
        return new_tool

    # --- crop ---

    def set_crop(self, crop: PercentCrop) -> PercentCrop:
        with self._surface_errors():
            self._ensure_idle()
            img = self._require_selected()
            crop = clamp_percent(crop)
            self._set(self._update(img.image_id, crop=crop))
            return crop

    def apply_aspect_ratio(self, aspect: AspectRatio) -> PercentCrop:
        with self._surface_errors():
            self._ensure_idle()
            self.aspect_ratio = aspect
            img = self._require_selected()
            crop = centered_aspect_crop(aspect.ratio, img.natural_width, img.natural_height)
            self._set(self._update(img.image_id, crop=crop))
            return crop

    def confirm_crop(self) -> None:
        with self._surface_errors():
            self._ensure_idle()
            self._set(self.images, commit=True)
            self.active_tool = None

    def cancel_crop(self) -> None:
        img = self.selected
        if img is not None:
            committed = self._committed(img.image_id)
            self._set(self._update(img.image_id, crop=committed.crop if committed else None))
        self.active_tool = None

    # --- adjustments ---

    def begin_adjust(self) -> Adjustments:
        with self._surface_errors():
            img = self._require_selected()
            self.active_tool = Tool.adjust
            self.temp_adjustments = img.adjustments
            return img.adjustments

    def set_adjustment(self, name: str, value: float) -> Adjustments:
        with self._surface_errors():
            self._ensure_idle()
            img = self._require_selected()
            try:
                adjusted = img.adjustments.with_value(name, value)
            except ValueError as exc:
                raise StudioError(str(exc)) from exc
            self.temp_adjustments = adjusted
            self._set(self._update(img.image_id, adjustments=adjusted))
            return adjusted

    def reset_adjustment(self, name: str) -> Adjustments:
        default = getattr(DEFAULT_ADJUSTMENTS, name, None)
        if default is None:
            raise StudioError(f"unknown adjustment '{name}'")
        return self.set_adjustment(name, default)

    def confirm_adjustments(self) -> None:
        with self._surface_errors():
            self._ensure_idle()
            self._set(self.images, commit=True)
            self.active_tool = None
            self.temp_adjustments = None

    def cancel_adjustments(self) -> None:
        img = self.selected
        if img is not None:
            committed = self._committed(img.image_id)
            original = committed.adjustments if committed else DEFAULT_ADJUSTMENTS
            self._set(self._update(img.image_id, adjustments=original))
        self.active_tool = None
        self.temp_adjustments = None

    # --- mask ---

    def apply_mask_stroke(
        self,
        points: list[tuple[float, float]],
        canvas_size: tuple[int, int],
        brush_size: int | None = None,
        erase: bool = False,
    ) -> bool:
        """
        Draw one stroke (in canvas pixels) onto the selected image's mask.
        The mask is not recorded in history.
        """
        with self._surface_errors():
            self._ensure_idle()
            img = self._require_selected()
            width, height = canvas_size
            if width <= 0 or height <= 0:
                raise StudioError("The mask canvas size must be positive.")
            limit = max(img.natural_width, img.natural_height, MAX_MASK_CANVAS_SIDE)
            if width > limit or height > limit:
                raise StudioError(f"The mask canvas cannot be larger than {limit} pixels per side.")
            if brush_size is not None:
                self.brush_size = brush_size
            kwargs = {"brush_size": self.brush_size, "erasing": erase}
            if img.mask:
                canvas = MaskCanvas.from_png(img.mask, canvas_size, **kwargs)
            else:
                canvas = MaskCanvas(canvas_size, **kwargs)
            self.brush_size = canvas.brush_size
            if not canvas.draw_stroke(points):
                return False
            self._set(self._update(img.image_id, mask=canvas.to_png()))
            return True

    def clear_mask(self) -> None:
        with self._surface_errors():
            self._ensure_idle()
            img = self._require_selected()
            self._set(self._update(img.image_id, mask=None))

    # --- AI edits ---

    def _require_provider(self) -> ImageEditProvider:
        if self.provider is None:
            raise StudioError("No AI provider is configured.")
        return self.provider

    def _with_result(self, image_id: str, result: bytes, filename: str) -> Snapshot:
        width, height = image_dimensions(result)
        return self._update(
            image_id,
            generated=result,
            source=SourceFile(filename=filename, mime_type="image/png"),
            mask=None,
            natural_width=width,
            natural_height=height,
            crop=FULL_CROP,
            adjustments=DEFAULT_ADJUSTMENTS,
        )

    async def generate(self, prompt: str) -> ImageState:
        """Apply a prompt (and the mask, if any) to the selected image."""
        with self._surface_errors():
            self._ensure_idle()
            img = self.selected
            if img is None or not (prompt or "").strip():
                raise StudioError("Please select an image and describe the edit.")
            provider = self._require_provider()

            self.busy = True
            try:
                source, mime_type = bake_adjustments(img)
                result = await provider.edit_image(source, mime_type, prompt.strip(), img.mask)
                self._set(self._with_result(img.image_id, result, "generated-image.png"), commit=True)
                logger.info("session %s: generated edit for image %s", self.session_id, img.image_id)
            finally:
                self.busy = False
                self.active_tool = None
            return self._require(img.image_id)

    async def enhance(self, prompt: str) -> bytes:
        """Run an unmasked enhancement; the result waits for confirm/cancel."""
        with self._surface_errors():
            self._ensure_idle()
            img = self.selected
            if img is None:
                raise StudioError("Please select an image to enhance.")
            if not (prompt or "").strip():
                raise StudioError("No enhancement action was selected.")
            provider = self._require_provider()

            self.busy = True
            try:
                source, mime_type = bake_adjustments(img)
                result = await provider.edit_image(source, mime_type, prompt.strip(), None)
                # Validate now so a broken result never reaches the confirm step.
                image_dimensions(result)
                self.pending_enhancement = result
                self.pending_image_id = img.image_id
            finally:
                self.busy = False
                self.active_tool = None
            return result

    def confirm_enhancement(self) -> ImageState | None:
        if self.pending_enhancement is None or self.pending_image_id is None:
            return None
        with self._surface_errors():
            self._ensure_idle()
            image_id = self.pending_image_id
            pending = self.pending_enhancement
            try:
                self._require(image_id)
                self._set(self._with_result(image_id, pending, "enhanced-image.png"), commit=True)
            except StudioError as exc:
                raise StudioError("Failed to confirm the enhancement.") from exc
            finally:
                self.pending_enhancement = None
                self.pending_image_id = None
            return self._require(image_id)

    def cancel_enhancement(self) -> None:
        self.pending_enhancement = None
        self.pending_image_id = None

    # --- history ---

    def _restore(self, snapshot: Snapshot | None) -> bool:
        if snapshot is None:
            return False
        self.images = snapshot
        self._fix_selection()
        self._reseed_adjustments()
        return True

    def undo(self) -> bool:
        self._ensure_idle()
        return self._restore(self.history.undo())

    def redo(self) -> bool:
        self._ensure_idle()
        return self._restore(self.history.redo())

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    # --- output ---

    def preview_png(self, image_id: str, compare: bool = False) -> bytes:
        """
        What the editor shows for an image: the pending enhancement when one
        exists (unless comparing), otherwise the current image with its
        adjustments applied.
        """
        img = self._require(image_id)
        if self.pending_enhancement is not None and self.pending_image_id == image_id and not compare:
            return self.pending_enhancement
        source = open_image(img.current_bytes)
        if source.mode not in ("RGB", "RGBA"):
            source = source.convert("RGBA")
        return to_png_bytes(apply_adjustments(source, img.adjustments))

    def export(self, output_width: int | None = None) -> list[bytes]:
        width = output_width or self.export_width
        with self._surface_errors():
            self._ensure_idle()
            try:
                return [export_image_state(img, output_width=width) for img in self.images]
            except StudioError as exc:
                raise StudioError(f"Failed to save: {exc.message}") from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "product_id": self.product_id,
            "images": [img.to_dict() for img in self.images],
            "selected_id": self.selected_id,
            "active_tool": self.active_tool.value if self.active_tool else None,
            "aspect_ratio": self.aspect_ratio.name,
            "brush_size": self.brush_size,
            "temp_adjustments": self.temp_adjustments.to_dict() if self.temp_adjustments else None,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
            "history_length": len(self.history),
            "busy": self.busy,
            "error": self.error,
            "pending_enhancement": self.pending_image_id,
        }


class SessionRegistry:
    """In-memory editor sessions, keyed by id."""

    def __init__(self) -> None:
        self._sessions: dict[str, EditorSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self, session: EditorSession) -> EditorSession:
        self._sessions[session.session_id] = session
        logger.info("opened editor session %s (product=%s)", session.session_id, session.product_id)
        return session

    def get(self, session_id: str) -> EditorSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Editor session not found.")
        return session

    def close(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("closed editor session %s", session_id)
