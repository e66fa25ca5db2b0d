"""Image transform: bound dimensions, strip metadata, re-encode as JPEG.

The output never carries the source's EXIF block (GPS coordinates live
there). Orientation from EXIF is applied to the pixels first, so dropping
the metadata does not rotate the picture.
"""

import io
import warnings

from PIL import Image, ImageOps

# Decoded pixel ceiling (decompression bomb guard)
MAX_SOURCE_PIXELS = 12_000 * 12_000


class ImageTransformError(Exception):
    """Raised when source bytes cannot be decoded or re-encoded."""

    pass


def transform_image(data: bytes, max_width: int, max_height: int, quality: int) -> bytes:
    """Resize to fit within max_width x max_height and re-encode as progressive JPEG.

    Images already within bounds are never upscaled. Aspect ratio is kept.

    Args:
        data: Source image bytes (any format Pillow decodes).
        max_width: Maximum output width in pixels.
        max_height: Maximum output height in pixels.
        quality: JPEG quality 1-100.

    Returns:
        JPEG bytes without EXIF/XMP/ICC metadata.

    Raises:
        ImageTransformError: If the image cannot be decoded, is too large, or fails to encode.
    """
    Image.MAX_IMAGE_PIXELS = MAX_SOURCE_PIXELS

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                img = ImageOps.exif_transpose(img)

                if img.mode not in ("RGB", "L"):
                    # Flatten transparency onto white; JPEG has no alpha
                    if img.mode in ("RGBA", "LA", "P"):
                        rgba = img.convert("RGBA")
                        background = Image.new("RGB", rgba.size, (255, 255, 255))
                        background.paste(rgba, mask=rgba.getchannel("A"))
                        img = background
                    else:
                        img = img.convert("RGB")

                img.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)

                # A fresh image drops every info-dict entry (exif, icc_profile, xmp)
                clean = Image.new(img.mode, img.size)
                clean.paste(img)

                out = io.BytesIO()
                clean.save(out, format="JPEG", quality=quality, optimize=True, progressive=True)
                return out.getvalue()
    except (Image.DecompressionBombWarning, Image.DecompressionBombError) as e:
        raise ImageTransformError("Image exceeds dimension limits") from e
    except (OSError, ValueError, SyntaxError) as e:
        # Pillow raises UnidentifiedImageError (an OSError) for non-images
        raise ImageTransformError(f"Image could not be processed: {e}") from e
