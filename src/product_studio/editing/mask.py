from __future__ import annotations

from dataclasses import dataclass

from PIL import Image, ImageDraw

from product_studio.editing.models import open_image, to_png_bytes

BRUSH_COLOR = (139, 92, 246, 255)
TRANSPARENT = (0, 0, 0, 0)
MIN_BRUSH_SIZE = 5
MAX_BRUSH_SIZE = 100


@dataclass(frozen=True)
class DisplayRect:
    left: float
    top: float
    width: float
    height: float


def client_to_canvas(client_x: float, client_y: float, rect: DisplayRect, size: tuple[int, int]) -> tuple[float, float]:
    """Map a pointer position on the displayed element to canvas pixels."""
    cw, ch = size
    scale_x = cw / rect.width if rect.width else 1.0
    scale_y = ch / rect.height if rect.height else 1.0
    return (client_x - rect.left) * scale_x, (client_y - rect.top) * scale_y


class MaskCanvas:
    """
    Freehand mask drawn over the displayed image.

    Brush strokes paint an opaque colour; the eraser clears alpha under the
    stroke (the "destination-out" composite). Stroke ends are round.
    """

    def __init__(self, size: tuple[int, int], brush_size: int = 30, erasing: bool = False) -> None:
        w, h = size
        if w <= 0 or h <= 0:
            raise ValueError("mask canvas size must be positive")
        self.image = Image.new("RGBA", (int(w), int(h)), TRANSPARENT)
        self.brush_size = brush_size
        self.erasing = erasing
        self._drawing = False
        self._has_drawn = False
        self._last: tuple[float, float] | None = None

    @classmethod
    def from_png(cls, data: bytes, size: tuple[int, int], **kwargs) -> MaskCanvas:
        canvas = cls(size, **kwargs)
        stored = open_image(data).convert("RGBA")
        if stored.size != canvas.image.size:
            stored = stored.resize(canvas.image.size, Image.Resampling.NEAREST)
        canvas.image = stored
        return canvas

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def brush_size(self) -> int:
        return self._brush_size

    @brush_size.setter
    def brush_size(self, value: int) -> None:
        self._brush_size = int(max(MIN_BRUSH_SIZE, min(MAX_BRUSH_SIZE, value)))

    def _fill(self) -> tuple[int, int, int, int]:
        return TRANSPARENT if self.erasing else BRUSH_COLOR

    def _dot(self, draw: ImageDraw.ImageDraw, x: float, y: float) -> None:
        r = self.brush_size / 2
        draw.ellipse((x - r, y - r, x + r, y + r), fill=self._fill())

    def begin_stroke(self, x: float, y: float) -> None:
        self._drawing = True
        self._has_drawn = False
        self._last = (x, y)
        # A single click still leaves a dot.
        self._dot(ImageDraw.Draw(self.image), x, y)
        self._has_drawn = True

    def stroke_to(self, x: float, y: float) -> None:
        if not self._drawing or self._last is None:
            return
        draw = ImageDraw.Draw(self.image)
        draw.line([self._last, (x, y)], fill=self._fill(), width=self.brush_size)
        self._dot(draw, x, y)
        self._has_drawn = True
        self._last = (x, y)

    def end_stroke(self) -> bool:
        """Finish the stroke; True when it changed the canvas."""
        if not self._drawing:
            return False
        drawn = self._has_drawn
        self._drawing = False
        self._has_drawn = False
        self._last = None
        return drawn

    def draw_stroke(self, points: list[tuple[float, float]]) -> bool:
        if not points:
            return False
        self.begin_stroke(*points[0])
        for x, y in points[1:]:
            self.stroke_to(x, y)
        return self.end_stroke()

    def clear(self) -> None:
        self.image = Image.new("RGBA", self.image.size, TRANSPARENT)

    def is_empty(self) -> bool:
        return self.image.getchannel("A").getbbox() is None

    def to_png(self) -> bytes:
        return to_png_bytes(self.image)
