from __future__ import annotations

from PIL import Image, ImageEnhance

from product_studio.editing.models import Adjustments


def _rotate_hue(img: Image.Image, degrees: float) -> Image.Image:
    shift = int(round((degrees % 360) / 360 * 256)) % 256
    if shift == 0:
        return img
    h, s, v = img.convert("HSV").split()
    h = h.point(lambda p: (p + shift) % 256)
    return Image.merge("HSV", (h, s, v)).convert("RGB")


def apply_adjustments(img: Image.Image, adjustments: Adjustments | None) -> Image.Image:
    """
    Apply brightness / contrast / saturation (percent, 100 = unchanged) and a
    hue rotation in degrees. Alpha is carried through untouched.
    """
    if adjustments is None or adjustments.is_default:
        return img

    has_alpha = img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info
    alpha = img.convert("RGBA").getchannel("A") if has_alpha else None
    out = img.convert("RGB")

    if adjustments.brightness != 100:
        out = ImageEnhance.Brightness(out).enhance(adjustments.brightness / 100)
    if adjustments.contrast != 100:
        out = ImageEnhance.Contrast(out).enhance(adjustments.contrast / 100)
    if adjustments.saturate != 100:
        out = ImageEnhance.Color(out).enhance(adjustments.saturate / 100)
    if adjustments.hue:
        out = _rotate_hue(out, adjustments.hue)

    if alpha is not None:
        out = out.convert("RGBA")
        out.putalpha(alpha)
    return out
