from __future__ import annotations

from typing import Protocol


class ImageEditProvider(Protocol):
    name: str

    async def edit_image(
        self,
        image: bytes,
        mime_type: str,
        prompt: str,
        mask_png: bytes | None = None,
    ) -> bytes: ...


class DescriptionProvider(Protocol):
    name: str

    async def generate_description(
        self,
        image: bytes,
        mime_type: str,
        product_info: str,
        tone: str,
    ) -> str: ...

    async def enhance_description(self, description: str) -> str: ...
