from io import BytesIO
from typing import Tuple
from PIL import Image, UnidentifiedImageError
from loguru import logger

_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}


class ImageProcessor:
    @staticmethod
    def validate_image(data: bytes) -> bool:
        """Checks if the payload decodes as an image."""
        try:
            with Image.open(BytesIO(data)) as img:
                img.verify()
            return True
        except (UnidentifiedImageError, OSError) as e:
            logger.error(f"Image validation failed: {e}")
            return False

    @staticmethod
    def optimize_for_api(data: bytes, max_size=(4096, 4096)) -> Tuple[bytes, str]:
        """Downscales the image if too large while maintaining aspect ratio.

        Returns the (possibly re-encoded) bytes and their MIME type.
        """
        with Image.open(BytesIO(data)) as img:
            mime_type = _MIME_TYPES.get(img.format, "image/jpeg")
            if img.width <= max_size[0] and img.height <= max_size[1]:
                return data, mime_type

            img.thumbnail(max_size, Image.Resampling.LANCZOS)
            buffer = BytesIO()
            if img.mode in ("RGBA", "LA", "P"):
                img.save(buffer, format="PNG")
                mime_type = "image/png"
            else:
                img.save(buffer, format="JPEG", quality=95)
                mime_type = "image/jpeg"

            logger.info(f"Reference image downscaled to {img.width}x{img.height}")
            return buffer.getvalue(), mime_type
