"""Image transcoder — shrink and re-encode fetched images as progressive JPEG."""

import logging
from io import BytesIO

from PIL import Image

logger = logging.getLogger(__name__)


class ImageTranscoder:
    def __init__(
        self,
        max_width: int = 500,
        max_height: int = 750,
        quality: int = 85,
        enabled: bool = True,
    ):
        self.max_width = max_width
        self.max_height = max_height
        self.quality = quality
        self.enabled = enabled

    def transcode(self, data: bytes, content_type: str) -> tuple[bytes, str]:
        """
        Fit the image inside the bounding box and re-encode it.

        Smaller images are never upscaled. Anything Pillow cannot decode or
        encode is returned untouched together with its original content type.
        """
        if not self.enabled or "image" not in content_type.lower():
            return data, content_type
        try:
            return self._to_jpeg(data), "image/jpeg"
        except Exception as e:
            logger.debug("Transcode failed, serving original (%s): %s", content_type, e)
            return data, content_type

    def _to_jpeg(self, data: bytes) -> bytes:
        with Image.open(BytesIO(data)) as img:
            img.load()
            # JPEG has no alpha channel; flatten onto white
            if img.mode in ("RGBA", "LA", "P", "PA"):
                rgba = img.convert("RGBA")
                flat = Image.new("RGB", rgba.size, (255, 255, 255))
                flat.paste(rgba, mask=rgba.split()[-1])
                img = flat
            elif img.mode not in ("RGB", "L"):
                img = img.convert("RGB")

            img.thumbnail((self.max_width, self.max_height))

            out = BytesIO()
            img.save(out, format="JPEG", quality=self.quality, progressive=True, optimize=True)
            return out.getvalue()
