from __future__ import annotations

from PIL import Image

from product_studio.editing.adjust import apply_adjustments
from product_studio.editing.crop import crop_box
from product_studio.editing.models import Adjustments, ImageState, PercentCrop, open_image, to_png_bytes


def render_export(
    img: Image.Image,
    crop: PercentCrop | None = None,
    output_width: int = 1080,
    adjustments: Adjustments | None = None,
) -> Image.Image:
    """
    Cut the crop region out of the natural-size image, apply adjustments and
    scale it to `output_width`, keeping the crop's aspect ratio.
    """
    if output_width <= 0:
        raise ValueError("output_width must be positive")
    w, h = img.size
    region = img.crop(crop_box(crop, w, h))
    region = apply_adjustments(region, adjustments)
    rw, rh = region.size
    out_h = max(1, int(round(rh * output_width / rw)))
    return region.resize((output_width, out_h), Image.Resampling.LANCZOS)


def export_image_state(state: ImageState, output_width: int = 1080) -> bytes:
    img = open_image(state.current_bytes)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    rendered = render_export(img, state.crop, output_width=output_width, adjustments=state.adjustments)
    return to_png_bytes(rendered)


def bake_adjustments(state: ImageState) -> tuple[bytes, str]:
    """
    Encode the current image with its adjustments applied at natural size, as
    sent to the image model. Returns (bytes, mime type).
    """
    if state.adjustments.is_default:
        return state.current_bytes, _current_mime(state)
    img = open_image(state.current_bytes)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    return to_png_bytes(apply_adjustments(img, state.adjustments)), "image/png"


def _current_mime(state: ImageState) -> str:
    return state.source.mime_type or "image/png"
