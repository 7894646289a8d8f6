"""Base64 PNG/JPEG <-> numpy conversions for the HTTP layer."""

import base64
import io

import numpy as np
from PIL import Image, UnidentifiedImageError

from slab_geometry2d.errors import InputError


def decode_image(data: str) -> np.ndarray:
    """Decode a base64 (optionally data-URL prefixed) image into a BGR uint8 array."""
    if not data:
        raise InputError("Empty image payload")
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        raw = base64.b64decode(data, validate=False)
        with Image.open(io.BytesIO(raw)) as img:
            rgb = np.array(img.convert("RGB"))
    except (ValueError, UnidentifiedImageError, OSError) as exc:
        raise InputError(f"Could not decode image: {exc}") from exc
    # OpenCV channel order
    return np.ascontiguousarray(rgb[:, :, ::-1])


def encode_image(image: np.ndarray) -> str:
    """Encode a BGR, grey or bool array as base64 PNG."""
    if image.dtype == bool:
        image = image.astype(np.uint8) * 255
    if image.ndim == 3:
        pil_image = Image.fromarray(np.ascontiguousarray(image[:, :, ::-1]))
    else:
        pil_image = Image.fromarray(np.ascontiguousarray(image))

    buffer = io.BytesIO()
    pil_image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")
