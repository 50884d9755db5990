from dataclasses import dataclass
from media_ingest.errors import DecodeError
from media_ingest.interfaces import IVariantGenerator
from PIL import Image
from PIL import ImageFilter
from PIL import ImageOps
from PIL import UnidentifiedImageError
from zope.interface import implementer

import base64
import io
import logging


logger = logging.getLogger(__name__)

DEFAULT_VARIANTS = (("sm", 400), ("md", 800), ("lg", 1600))

_ALPHA_MODES = ("RGBA", "LA", "PA", "RGBa", "La")


@dataclass(frozen=True)
class Variant:
    name: str
    data: bytes
    width: int
    height: int


@dataclass(frozen=True)
class RenderedImage:
    """All encoded outputs derived from one source image."""

    variants: tuple
    blur_data: str
    width: int
    height: int


def _check_variants(variants):
    variants = tuple((str(name), int(width)) for name, width in variants)
    if not variants:
        raise ValueError("At least one variant size is required")
    names = [name for name, _width in variants]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate variant names: {names}")
    for name, width in variants:
        if width <= 0:
            raise ValueError(f"Variant {name!r} must have a positive width")
    return variants


def _normalize_mode(img):
    """Convert to a mode WebP can encode, keeping transparency."""
    if img.mode == "P" and "transparency" in img.info:
        return img.convert("RGBA")
    if img.mode in _ALPHA_MODES:
        return img if img.mode == "RGBA" else img.convert("RGBA")
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


@implementer(IVariantGenerator)
class VariantGenerator:
    """Pillow based WebP variant and blur placeholder generator.

    Variants keep the aspect ratio and are never wider than the source.
    """

    content_type = "image/webp"
    extension = "webp"

    def __init__(
        self,
        variants=DEFAULT_VARIANTS,
        quality=85,
        blur_size=16,
        blur_quality=20,
        blur_radius=1,
    ):
        self.variants = _check_variants(variants)
        if not 1 <= quality <= 100:
            raise ValueError(f"quality must be between 1 and 100, got {quality}")
        self.quality = quality
        self.blur_size = blur_size
        self.blur_quality = blur_quality
        self.blur_radius = blur_radius

    def _open(self, data):
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                img = ImageOps.exif_transpose(img)
                return _normalize_mode(img)
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            ValueError,
        ) as e:
            logger.debug("Image decode failed: %s", e)
            raise DecodeError(f"Cannot decode image: {e}") from e

    def _encode(self, img, quality):
        out = io.BytesIO()
        img.save(out, format="WEBP", quality=quality)
        return out.getvalue()

    def _resize(self, img, target_width):
        width, height = img.size
        if width <= target_width:
            return img
        target_height = max(1, round(height * target_width / width))
        return img.resize((target_width, target_height), Image.Resampling.LANCZOS)

    def _blur(self, img):
        size = (self.blur_size, self.blur_size)
        tiny = ImageOps.fit(img, size, Image.Resampling.LANCZOS)
        tiny = tiny.filter(ImageFilter.GaussianBlur(self.blur_radius))
        encoded = base64.b64encode(self._encode(tiny, self.blur_quality))
        return f"data:{self.content_type};base64,{encoded.decode('ascii')}"

    def generate(self, data):
        img = self._open(data)
        variants = []
        for name, target_width in self.variants:
            resized = self._resize(img, target_width)
            variants.append(
                Variant(
                    name=name,
                    data=self._encode(resized, self.quality),
                    width=resized.width,
                    height=resized.height,
                )
            )
        return RenderedImage(
            variants=tuple(variants),
            blur_data=self._blur(img),
            width=img.width,
            height=img.height,
        )

    def blur_placeholder(self, data):
        return self._blur(self._open(data))
