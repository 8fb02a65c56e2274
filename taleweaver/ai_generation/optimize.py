"""
Web optimisation for rendered illustrations.
"""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError

from taleweaver.common import UpstreamGenerationError

WEB_MAX_WIDTH = 1200
WEB_JPEG_QUALITY = 90
WEB_BACKGROUND = (255, 255, 255)
OPTIMIZED_SUFFIX = ".jpg"


def optimize_image_for_web(
    image_bytes: bytes,
    *,
    max_width: int = WEB_MAX_WIDTH,
    quality: int = WEB_JPEG_QUALITY,
) -> bytes:
    """
    Re-encode model output as a JPEG no wider than ``max_width``.

    Smaller images are never enlarged. Transparent areas are flattened onto
    white, since JPEG has no alpha channel.

    Raises
    ------
    UpstreamGenerationError
        When ``image_bytes`` is not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as loaded:
            loaded.load()
            image = _flatten(loaded)
    except (UnidentifiedImageError, OSError) as exc:
        raise UpstreamGenerationError(f"Image model returned unreadable image data: {exc}") from exc

    width, height = image.size
    if width > max_width:
        scaled_height = max(1, round(height * max_width / width))
        image = image.resize((max_width, scaled_height), Image.Resampling.LANCZOS)

    output = io.BytesIO()
    image.save(output, format="JPEG", quality=quality, optimize=True)
    return output.getvalue()


def _flatten(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, WEB_BACKGROUND)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")
