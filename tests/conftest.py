"""
Shared fixtures: in-memory sample images and a fake image/text provider so
no test ever reaches the real AI API.
"""

from io import BytesIO

import pytest
from PIL import Image

from product_studio.editing.session import EditorSession, Upload


def make_png(size=(200, 100), color=(100, 100, 100, 255), mode="RGBA"):
    img = Image.new(mode, size, color if mode == "RGBA" else color[:3])
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def make_jpeg(size=(120, 80), color=(200, 30, 30)):
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


class FakeProvider:
    """Stands in for GeminiProvider; records every call."""

    name = "fake"

    def __init__(self, result=None, error=None, description="A great product."):
        self.result = result if result is not None else make_png((40, 30), (0, 200, 0, 255))
        self.error = error
        self.description = description
        self.edit_calls = []
        self.description_calls = []
        self.enhance_calls = []

    async def edit_image(self, image, mime_type, prompt, mask_png=None):
        self.edit_calls.append({"image": image, "mime_type": mime_type, "prompt": prompt, "mask": mask_png})
        if self.error is not None:
            raise self.error
        return self.result

    async def generate_description(self, image, mime_type, product_info, tone):
        self.description_calls.append({"image": image, "product_info": product_info, "tone": tone})
        if self.error is not None:
            raise self.error
        return self.description

    async def enhance_description(self, description):
        self.enhance_calls.append(description)
        if self.error is not None:
            raise self.error
        return f"{description} Now even better."


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def session(fake_provider):
    """A session pre-loaded with a 200x100 PNG and a 120x80 JPEG."""
    s = EditorSession(provider=fake_provider, export_width=1080)
    s.load_initial(
        [
            Upload(filename="a.png", mime_type="image/png", content=make_png()),
            Upload(filename="b.jpg", mime_type="image/jpeg", content=make_jpeg()),
        ]
    )
    return s
