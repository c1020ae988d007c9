"""
Image resizing with Pillow.
"""

import io

from PIL import Image, ImageOps

# JPEG quality of resized renditions
JPEG_QUALITY = 85


def resize_to_width(image_bytes: bytes, width: int) -> bytes:
    """
    Resize an image to a target width, keeping the aspect ratio.

    Images narrower than `width` are never upscaled. EXIF orientation is
    applied before resizing and the result is always JPEG.

    Args:
        image_bytes: Source image
        width: Target width in pixels

    Returns:
        JPEG bytes
    """
    img = Image.open(io.BytesIO(image_bytes))
    img = ImageOps.exif_transpose(img).convert("RGB")

    if img.width > width:
        height = max(1, round(img.height * width / img.width))
        img = img.resize((width, height), Image.Resampling.LANCZOS)

    out = io.BytesIO()
    img.save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()
