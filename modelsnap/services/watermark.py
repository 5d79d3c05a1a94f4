"""
Watermark rendering for free-tier deliveries.

The stored render is never modified; the watermarked copy is produced per
download request.
"""

import io
import logging

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)


def apply_watermark(image_bytes: bytes, text: str) -> bytes:
    """
    Stamp ``text`` in a semi-transparent box at the bottom-right corner.

    Returns:
        JPEG bytes (quality 90)

    Raises:
        OSError / PIL.UnidentifiedImageError if the input is not an image.
        Callers must not fall back to serving the unmarked original.
    """
    with Image.open(io.BytesIO(image_bytes)) as source:
        base = source.convert("RGBA")

    width, height = base.size
    font_size = max(12, width // 25)
    try:
        font = ImageFont.load_default(size=font_size)
    except TypeError:
        # Pillow < 10.1 has no sized default font
        font = ImageFont.load_default()

    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    text_w, text_h = right - left, bottom - top
    padding = max(4, font_size // 3)
    margin = max(8, width // 50)

    box_x1 = width - margin
    box_y1 = height - margin
    box_x0 = box_x1 - text_w - 2 * padding
    box_y0 = box_y1 - text_h - 2 * padding

    draw.rectangle((box_x0, box_y0, box_x1, box_y1), fill=(0, 0, 0, 110))
    draw.text((box_x0 + padding - left, box_y0 + padding - top), text, font=font, fill=(255, 255, 255, 200))

    marked = Image.alpha_composite(base, overlay).convert("RGB")
    out = io.BytesIO()
    marked.save(out, format="JPEG", quality=90)
    logger.debug(f"[Watermark] Applied to {width}x{height} image")
    return out.getvalue()
