from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AspectRatio:
    name: str
    ratio: float


ASPECT_RATIOS: list[AspectRatio] = [
    AspectRatio(name="square", ratio=1 / 1),
    AspectRatio(name="portrait", ratio=4 / 5),
    AspectRatio(name="story", ratio=9 / 16),
    AspectRatio(name="landscape", ratio=16 / 9),
    AspectRatio(name="classic", ratio=4 / 3),
]


def aspect_ratio_by_name(name: str) -> AspectRatio | None:
    key = (name or "").strip().lower()
    return next((a for a in ASPECT_RATIOS if a.name == key), None)


@dataclass(frozen=True)
class EnhancementPreset:
    name: str
    prompt: str


ENHANCEMENT_PRESETS: list[EnhancementPreset] = [
    EnhancementPreset(
        name="general",
        prompt=(
            "Enhance this image so it looks professional and realistic. Improve the balance of contrast "
            "and brightness, the sharpness and the vividness of the colors, while keeping it natural."
        ),
    ),
    EnhancementPreset(
        name="remove_background",
        prompt=(
            "Remove the background of this image precisely, leaving only the main object "
            "on a transparent background."
        ),
    ),
    EnhancementPreset(
        name="white_background",
        prompt=(
            "Remove the background of the image and replace it with a pure white studio background, "
            "ideal for marketplaces."
        ),
    ),
    EnhancementPreset(
        name="realistic_shadow",
        prompt=(
            "Add a soft, realistic shadow to the main object to give depth and make it stand out from the "
            "background. The shadow must look natural, as if the object were resting on a surface."
        ),
    ),
    EnhancementPreset(
        name="vibrant_colors",
        prompt=(
            "Adjust the colors of the image to make them more vibrant and attractive, without looking "
            "oversaturated or artificial. The goal is to make the product look more appealing."
        ),
    ),
]


def enhancement_preset_by_name(name: str) -> EnhancementPreset | None:
    key = (name or "").strip().lower()
    return next((p for p in ENHANCEMENT_PRESETS if p.name == key), None)


# Tone selector for product descriptions.
TONES: dict[str, str] = {
    "casual": "Use a cheerful, relaxed tone of voice, ideal for social media.",
    "professional": "Use a professional, sales-oriented tone of voice, balanced and direct.",
    "formal": "Use a formal, technical tone of voice, focused on specifications.",
}
DEFAULT_TONE = "professional"


def tone_instruction(tone: str | None) -> str:
    return TONES.get((tone or "").strip().lower(), TONES[DEFAULT_TONE])


def normalize_tone(tone: str | None) -> str:
    key = (tone or "").strip().lower()
    return key if key in TONES else DEFAULT_TONE
