# aimuse/processors/metadata_generator.py
"""
Placeholder "AI" image + metadata generator.

The image is a seeded placeholder URL; swap generate_image() for a real
text-to-image backend without touching callers.

Functions:
- generate_image(prompt) -> image URL
- build_metadata(prompt, image) -> {"name", "description", "image", "attributes"}
"""

import datetime
import random
from typing import Any, Dict

IMAGE_SIZE = 512
PLACEHOLDER_HOST = "https://picsum.photos"
COLLECTION_NAME = "AI-Muse"


def generate_image(prompt: str) -> str:
    if not isinstance(prompt, str) or not prompt:
        raise ValueError("prompt must be a non-empty string")
    seed = random.randint(0, 999999)
    return f"{PLACEHOLDER_HOST}/seed/{seed}/{IMAGE_SIZE}"


def build_metadata(prompt: str, image: str) -> Dict[str, Any]:
    """Metadata document in the ERC-721 JSON shape; description is the prompt verbatim."""
    return {
        "name": f"{COLLECTION_NAME} #{random.randint(0, 999)}",
        "description": prompt,
        "image": image,
        "attributes": [
            {"trait_type": "Created with", "value": COLLECTION_NAME},
            {"trait_type": "Prompt", "value": prompt},
            {"trait_type": "Timestamp", "value": datetime.datetime.utcnow().isoformat() + "Z"},
        ],
    }
