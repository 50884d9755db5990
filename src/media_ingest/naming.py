from media_ingest.errors import InvalidKeyError

import hashlib
import re


SLUG_MAX_LENGTH = 50

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
_SLUG_RE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
_HASH_RE = re.compile(r"^[0-9a-f]{8}$")
_SEGMENT_RE = re.compile(r"^[a-z0-9._-]+(/[a-z0-9._-]+)*$")

IMAGE = "image"
VIDEO = "video"


def content_hash(data):
    """Return the first 8 hex characters of the MD5 digest of data.

    A cache-busting token, not a dedup or security key.
    """
    return hashlib.md5(data).hexdigest()[:8]


def sanitize_slug(value):
    """Normalize a human name into a lowercase, hyphen-separated token.

    >>> sanitize_slug("Kitchen Remodel #3")
    'kitchen-remodel-3'
    """
    slug = _NON_SLUG_RE.sub("-", value.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].rstrip("-")


class KeyBuilder:
    """Maps (slug, hash, size, kind) to object store keys.

    Images: {image_prefix}/{category}/{slug}-{hash}-{size}.{image_ext}
    Videos: {video_prefix}/{category}/{slug}-{hash}.{ext}

    Stored objects are addressed by these keys, so the layout must not
    change without migrating existing objects.
    """

    def __init__(
        self,
        image_prefix="images",
        video_prefix="videos",
        category="gallery",
        image_ext="webp",
    ):
        for name, value in (
            ("image_prefix", image_prefix),
            ("video_prefix", video_prefix),
            ("category", category),
        ):
            if not _SEGMENT_RE.match(value) or ".." in value.split("/"):
                raise ValueError(f"{name} is not a valid key segment: {value!r}")
        self.image_prefix = image_prefix
        self.video_prefix = video_prefix
        self.category = category
        self.image_ext = image_ext

    def build(self, slug, digest, size=None, kind=IMAGE, ext=None):
        if not slug:
            raise InvalidKeyError("Cannot build a storage key from an empty slug")
        if not _SLUG_RE.match(slug):
            raise InvalidKeyError(f"Slug is not key-safe: {slug!r}")
        if not _HASH_RE.match(digest or ""):
            raise InvalidKeyError(f"Content hash must be 8 hex characters: {digest!r}")

        if kind == IMAGE:
            if not size:
                raise InvalidKeyError("Image keys require a variant size")
            return (
                f"{self.image_prefix}/{self.category}/"
                f"{slug}-{digest}-{size}.{ext or self.image_ext}"
            )
        if kind == VIDEO:
            stem = f"{slug}-{digest}-{size}" if size else f"{slug}-{digest}"
            return f"{self.video_prefix}/{self.category}/{stem}.{ext or 'mp4'}"
        raise InvalidKeyError(f"Unknown media kind: {kind!r}")

    def image_key(self, slug, digest, size):
        return self.build(slug, digest, size=size, kind=IMAGE)

    def video_key(self, slug, digest, ext="mp4"):
        return self.build(slug, digest, kind=VIDEO, ext=ext)
