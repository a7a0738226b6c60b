# aimuse/connectors/content_store.py
import random
from typing import Any, Dict

# base58 alphabet (no 0, O, I, l)
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
HASH_BODY_LENGTH = 44


def upload_metadata(metadata: Dict[str, Any]) -> str:
    """
    Simulated IPFS pin of a metadata document.

    Returns an ipfs:// URI with a CIDv0-shaped hash ("Qm" + 44 base58 chars).
    Raises ValueError when given something that is not a metadata document.
    """
    if not isinstance(metadata, dict) or "image" not in metadata:
        raise ValueError("metadata document must be a dict with an image")
    body = "".join(random.choice(BASE58_ALPHABET) for _ in range(HASH_BODY_LENGTH))
    return f"ipfs://Qm{body}"
