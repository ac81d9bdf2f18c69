"""Editing prompts offered to the operator and used as the service fallback."""

from __future__ import annotations

from typing import Dict, List, Optional

DEFAULT_PROMPT = (
    "Edit this product photo for e-commerce. Keep the main product intact "
    "(same shape, proportions, texture, base colour, logo and brand details). "
    "Only improve secondary elements: lighting, soft shadows, a clean neutral "
    "background, controlled reflections and overall sharpness. Do not change "
    "the product design, do not add or remove parts, do not change the main "
    "framing. Deliver a realistic, commercial image ready for a catalog."
)

# Shortcuts only; any free text is accepted as a prompt.
PRESET_PROMPTS: List[Dict[str, str]] = [
    {
        "label": "Neutral premium background",
        "prompt": (
            "Edit this product photo for e-commerce. Keep the main product intact. "
            "Replace the background with a premium neutral light-grey gradient and "
            "soft studio lighting. Add subtle natural shadows under the product. "
            "The image must look professional and ready for a catalog."
        ),
    },
    {
        "label": "Studio look",
        "prompt": (
            "Edit this product photo for e-commerce. Keep the main product intact. "
            "Apply professional photo-studio lighting with key and fill lights. "
            "Add controlled reflections, soft shadows and a pure white background. "
            "The image must look like it was shot in a professional studio."
        ),
    },
    {
        "label": "Soft minimalist context",
        "prompt": (
            "Edit this product photo for e-commerce. Keep the main product intact. "
            "Place the product in a soft minimalist setting with a light surface and "
            "a blurred background in neutral tones. Add diffuse natural light and "
            "delicate shadows. The image must convey elegance and simplicity."
        ),
    },
]


def preset_prompt(label: str) -> Optional[str]:
    """Return the prompt text for a preset label (case-insensitive), or None."""
    wanted = label.strip().lower()
    for preset in PRESET_PROMPTS:
        if preset["label"].lower() == wanted:
            return preset["prompt"]
    return None
