from __future__ import annotations

from product_studio.editing.models import FULL_CROP, PercentCrop, PixelCrop


def to_percent(crop: PixelCrop, width: float, height: float) -> PercentCrop:
    if width <= 0 or height <= 0:
        raise ValueError("image dimensions must be positive")
    return PercentCrop(
        x=crop.x / width * 100,
        y=crop.y / height * 100,
        width=crop.width / width * 100,
        height=crop.height / height * 100,
    )


def to_pixels(crop: PercentCrop, width: float, height: float) -> PixelCrop:
    return PixelCrop(
        x=crop.x / 100 * width,
        y=crop.y / 100 * height,
        width=crop.width / 100 * width,
        height=crop.height / 100 * height,
    )


def clamp_percent(crop: PercentCrop) -> PercentCrop:
    x = max(0.0, min(100.0, crop.x))
    y = max(0.0, min(100.0, crop.y))
    w = max(0.0, min(100.0 - x, crop.width))
    h = max(0.0, min(100.0 - y, crop.height))
    return PercentCrop(x=x, y=y, width=w, height=h)


def make_aspect_crop(aspect: float, width: float, height: float) -> PixelCrop:
    """
    Largest crop of the given aspect (w/h) anchored at the origin: start from
    the full width and shrink to fit the height when needed.
    """
    if aspect <= 0:
        raise ValueError("aspect must be positive")
    cw = float(width)
    ch = cw / aspect
    if ch > height:
        ch = float(height)
        cw = ch * aspect
    if cw > width:
        cw = float(width)
        ch = cw / aspect
    return PixelCrop(x=0, y=0, width=cw, height=ch)


def center_crop(crop: PixelCrop, width: float, height: float) -> PixelCrop:
    return PixelCrop(
        x=(width - crop.width) / 2,
        y=(height - crop.height) / 2,
        width=crop.width,
        height=crop.height,
    )


def centered_aspect_crop(aspect: float, width: int, height: int) -> PercentCrop:
    pixel = center_crop(make_aspect_crop(aspect, width, height), width, height)
    return to_percent(pixel, width, height)


def crop_box(crop: PercentCrop | None, width: int, height: int) -> tuple[int, int, int, int]:
    """Pillow box (left, upper, right, lower); a missing or empty crop means the whole image."""
    crop = clamp_percent(crop) if crop is not None else FULL_CROP
    if crop.is_empty:
        crop = FULL_CROP
    px = to_pixels(crop, width, height)
    left = min(width - 1, int(round(px.x)))
    top = min(height - 1, int(round(px.y)))
    right = max(left + 1, min(width, int(round(px.x + px.width))))
    bottom = max(top + 1, min(height, int(round(px.y + px.height))))
    return left, top, right, bottom
