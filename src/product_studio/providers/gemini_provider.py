from __future__ import annotations

import logging
from typing import Any

from product_studio.config import settings
from product_studio.errors import ProviderError, SafetyBlockedError
from product_studio.presets import tone_instruction

logger = logging.getLogger(__name__)


class GeminiProvider:
    name = "gemini"

    def __init__(self, api_key: str | None = None, client: Any = None) -> None:
        if client is not None:
            self.client = client
            return
        # Imported lazily so the app can start without the dependency installed.
        from google import genai  # type: ignore

        self.client = genai.Client(api_key=api_key)

    async def edit_image(
        self,
        image: bytes,
        mime_type: str,
        prompt: str,
        mask_png: bytes | None = None,
    ) -> bytes:
        """
        Single-shot image edit. Parts go out as [image, mask?, prompt]; the
        model reads the mask as the region to change.

        Returns the raw bytes of the first image in the response. Blocked or
        empty responses raise ProviderError with a message for the user.
        """
        from google.genai import types  # type: ignore

        parts: list[Any] = [types.Part.from_bytes(data=image, mime_type=mime_type or "image/png")]
        if mask_png:
            # PNG keeps the transparency that marks the unpainted region.
            parts.append(types.Part.from_bytes(data=mask_png, mime_type="image/png"))
        parts.append(build_edit_prompt(prompt, has_mask=bool(mask_png)))

        model = settings.gemini_image_model
        try:
            resp = await self.client.aio.models.generate_content(
                model=model,
                contents=parts,
                config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
            )
        except Exception as exc:
            logger.exception("gemini image edit failed (model=%s)", model)
            raise ProviderError(f"Error calling the AI API: {exc}") from exc

        return extract_edited_image(resp)

    async def generate_description(
        self,
        image: bytes,
        mime_type: str,
        product_info: str,
        tone: str,
    ) -> str:
        from google.genai import types  # type: ignore

        contents: list[Any] = [
            types.Part.from_bytes(data=image, mime_type=mime_type or "image/png"),
            build_description_prompt(product_info, tone),
        ]
        try:
            resp = await self.client.aio.models.generate_content(
                model=settings.gemini_text_model,
                contents=contents,
            )
        except Exception as exc:
            logger.exception("gemini description generation failed")
            raise ProviderError("Failed to generate the product description.") from exc
        return (getattr(resp, "text", "") or "").strip()

    async def enhance_description(self, description: str) -> str:
        prompt = (
            "Improve the following product description for a marketplace.\n"
            "Make it more persuasive, professional and SEO-friendly, highlighting the benefits.\n"
            "Keep the original tone but improve clarity and impact. Do not add information that "
            "cannot be inferred. The description must have at most two paragraphs.\n"
            f"\nOriginal description:\n\"{description}\""
        )
        try:
            resp = await self.client.aio.models.generate_content(
                model=settings.gemini_text_model,
                contents=prompt,
            )
        except Exception as exc:
            logger.exception("gemini description enhancement failed")
            raise ProviderError("Failed to enhance the product description.") from exc
        return (getattr(resp, "text", "") or "").strip()


def build_edit_prompt(prompt: str, has_mask: bool) -> str:
    # Masked edits work best with the user's words as-is; unmasked edits get
    # e-commerce framing so they are less likely to trip safety filters.
    if has_mask:
        return prompt
    return (
        f"Edit this product image for an e-commerce store. The task is: '{prompt}'. "
        "The edit must be professional and suitable for a sales website."
    )


def build_description_prompt(product_info: str, tone: str) -> str:
    instruction = tone_instruction(tone)
    info = (product_info or "").strip()
    if info:
        return (
            "Based on the image and the description provided by the user, write a product description "
            "optimized for a marketplace.\n"
            f"\nUser description: \"{info}\"\n"
            f"\nTone instruction: {instruction}\n"
            "\nYour task is to expand the user's description, incorporating visual details from the image "
            "and using persuasive, professional language. The final description must have at most two "
            "paragraphs and highlight the product's main benefits and features."
        )
    return (
        "Analyze the image of this product and write a concise, attractive description for a marketplace.\n"
        f"\nTone instruction: {instruction}\n"
        "\nThe description must have at most two paragraphs and focus on the main attributes and "
        "benefits of the product visible in the image."
    )


def _finish_reason_name(reason: Any) -> str | None:
    if reason is None:
        return None
    name = getattr(reason, "name", None)
    if isinstance(name, str):
        return name
    text = str(reason)
    return text.rsplit(".", 1)[-1] if text else None


def extract_edited_image(resp: Any) -> bytes:
    candidates = getattr(resp, "candidates", None) or []
    first = candidates[0] if candidates else None
    content = getattr(first, "content", None)
    parts = getattr(content, "parts", None) or []

    if first is None or not parts:
        reason = _finish_reason_name(getattr(first, "finish_reason", None))
        if reason == "SAFETY":
            raise SafetyBlockedError(
                "Image generation was blocked for safety reasons. Please adjust your prompt."
            )
        if reason and reason not in ("STOP", "FINISH_REASON_UNSPECIFIED"):
            raise ProviderError(f"Image generation failed. Reason: {reason}.")
        raise ProviderError("The AI response contained no content. The request may have been blocked.")

    for part in parts:
        inline = getattr(part, "inline_data", None)
        data = getattr(inline, "data", None) if inline else None
        if data:
            return data

    text = next((getattr(p, "text", None) for p in parts if getattr(p, "text", None)), None)
    if text:
        raise ProviderError(f'The AI returned text instead of an image: "{text}"')
    raise ProviderError("No image data found in the AI response.")
