from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from io import BytesIO
from typing import Any

from PIL import Image, UnidentifiedImageError

from product_studio.errors import ImageDecodeError

ADJUSTMENT_BOUNDS: dict[str, tuple[float, float]] = {
    "brightness": (0, 200),
    "contrast": (0, 200),
    "saturate": (0, 200),
    "hue": (-180, 180),
}


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class Adjustments:
    # Percentages, except hue which is a rotation in degrees.
    brightness: float = 100
    contrast: float = 100
    saturate: float = 100
    hue: float = 0

    def __post_init__(self) -> None:
        for name, (lo, hi) in ADJUSTMENT_BOUNDS.items():
            object.__setattr__(self, name, _clamp(float(getattr(self, name)), lo, hi))

    def with_value(self, name: str, value: float) -> Adjustments:
        if name not in ADJUSTMENT_BOUNDS:
            raise ValueError(f"unknown adjustment '{name}'")
        return replace(self, **{name: value})

    def reset(self, name: str) -> Adjustments:
        return self.with_value(name, getattr(DEFAULT_ADJUSTMENTS, name))

    @property
    def is_default(self) -> bool:
        return self == DEFAULT_ADJUSTMENTS

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


DEFAULT_ADJUSTMENTS = Adjustments()


@dataclass(frozen=True)
class PercentCrop:
    x: float
    y: float
    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class PixelCrop:
    x: float
    y: float
    width: float
    height: float


FULL_CROP = PercentCrop(x=0, y=0, width=100, height=100)


@dataclass(frozen=True)
class SourceFile:
    filename: str
    mime_type: str


@dataclass(frozen=True)
class ImageState:
    image_id: str
    source: SourceFile
    original: bytes
    natural_width: int
    natural_height: int
    generated: bytes | None = None
    mask: bytes | None = None
    crop: PercentCrop | None = None
    adjustments: Adjustments = field(default_factory=Adjustments)

    @property
    def current_bytes(self) -> bytes:
        return self.generated if self.generated is not None else self.original

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_id": self.image_id,
            "filename": self.source.filename,
            "mime_type": self.source.mime_type,
            "natural_width": self.natural_width,
            "natural_height": self.natural_height,
            "has_generated": self.generated is not None,
            "has_mask": self.mask is not None,
            "crop": self.crop.to_dict() if self.crop else None,
            "adjustments": self.adjustments.to_dict(),
        }


def open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError(f"Could not read the image: {exc}") from exc
    return img


def image_dimensions(data: bytes) -> tuple[int, int]:
    return open_image(data).size


def to_png_bytes(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
