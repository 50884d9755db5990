from dataclasses import dataclass
from media_ingest.errors import InvalidKeyError
from media_ingest.errors import MediaIngestError
from media_ingest.errors import StoreError
from media_ingest.errors import UploadFailed
from media_ingest.interfaces import IMediaIngestor
from media_ingest.naming import content_hash
from media_ingest.naming import IMAGE
from media_ingest.naming import KeyBuilder
from media_ingest.naming import sanitize_slug
from media_ingest.naming import VIDEO
from media_ingest.store import check_ttl
from media_ingest.store import DeleteFailure
from media_ingest.store import DeleteReport
from media_ingest.store import MAX_SIGNED_URL_TTL
from media_ingest.uploads import check_upload
from media_ingest.uploads import discard
from media_ingest.uploads import video_content_type
from media_ingest.uploads import video_extension
from media_ingest.variants import VariantGenerator
from types import MappingProxyType
from typing import ClassVar
from zope.interface import implementer

import logging
import os


logger = logging.getLogger(__name__)

DEFAULT_SIGNED_URL_TTL = MAX_SIGNED_URL_TTL

# Used when a filename has no characters usable in a slug.
FALLBACK_SLUG = "untitled"
THUMBNAIL_SUFFIX = "-thumb"


@dataclass(frozen=True)
class StoredVariant:
    key: str
    width: int
    height: int


def _freeze(variants):
    return MappingProxyType(dict(variants))


@dataclass(frozen=True)
class ImageIngestResult:
    """Stored variants of one image. Every key exists in the store."""

    kind: ClassVar[str] = IMAGE

    filename: str
    content_hash: str
    variants: MappingProxyType
    blur_data: str

    def __post_init__(self):
        object.__setattr__(self, "variants", _freeze(self.variants))

    @property
    def keys(self):
        return {name: v.key for name, v in self.variants.items()}

    def all_keys(self):
        return [v.key for v in self.variants.values()]

    def to_record(self):
        """Flatten into the columns of a gallery row."""
        record = {
            "type": self.kind,
            "filename": self.filename,
            "content_hash": self.content_hash,
            "blur_data": self.blur_data,
        }
        for name, v in self.variants.items():
            record[f"key_{name}"] = v.key
            record[f"width_{name}"] = v.width
            record[f"height_{name}"] = v.height
        return record


@dataclass(frozen=True)
class VideoIngestResult:
    """A stored video and, when one was supplied, its thumbnail variants."""

    kind: ClassVar[str] = VIDEO

    filename: str
    content_hash: str
    video_key: str
    content_type: str
    thumbnails: MappingProxyType = None
    blur_data: str = None

    def __post_init__(self):
        if self.thumbnails is not None:
            object.__setattr__(self, "thumbnails", _freeze(self.thumbnails))

    @property
    def thumbnail_keys(self):
        if self.thumbnails is None:
            return None
        return {name: v.key for name, v in self.thumbnails.items()}

    def all_keys(self):
        keys = [self.video_key]
        if self.thumbnails:
            keys.extend(v.key for v in self.thumbnails.values())
        return keys

    def to_record(self):
        record = {
            "type": self.kind,
            "filename": self.filename,
            "content_hash": self.content_hash,
            "video_key": self.video_key,
            "content_type": self.content_type,
            "blur_data": self.blur_data,
        }
        for name, v in (self.thumbnails or {}).items():
            record[f"thumb_key_{name}"] = v.key
            record[f"thumb_width_{name}"] = v.width
            record[f"thumb_height_{name}"] = v.height
        return record


class UploadScope:
    """Compensating actions for the uploads of one ingestion call.

    Every key passed to put() is recorded before the upload is attempted.
    Leaving the scope with an exception deletes all recorded keys, so a
    failed call leaves nothing behind in the store.
    """

    def __init__(self, store):
        self._store = store
        self.keys = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.rollback()
        return False

    def put(self, key, data, content_type):
        self.keys.append(key)
        self._store.put(key, data, content_type)

    def rollback(self):
        keys, self.keys = self.keys, []
        if not keys:
            return
        try:
            report = self._store.delete_many(keys)
        except Exception:
            logger.warning(
                "Rollback of %d uploaded key(s) failed", len(keys), exc_info=True
            )
            return
        for failure in report.failed:
            logger.warning(
                "Failed to delete key %s during rollback: %s",
                failure.key,
                failure.error,
            )
        logger.info("Rolled back %d of %d key(s)", report.succeeded, len(keys))


def _read(path):
    with open(path, "rb") as f:
        return f.read()


def slug_for(filename):
    """Slug of a client filename, without directories and extension."""
    base = os.path.basename(filename.replace("\\", "/"))
    return sanitize_slug(os.path.splitext(base)[0]) or FALLBACK_SLUG


@implementer(IMediaIngestor)
class MediaIngestor:
    """Uploads images and videos to an object store, all or nothing.

    The input temp files are removed whatever the outcome.
    """

    def __init__(
        self,
        store,
        keys=None,
        generator=None,
        signed_url_ttl=DEFAULT_SIGNED_URL_TTL,
    ):
        self.store = store
        self.keys = keys if keys is not None else KeyBuilder()
        self.generator = generator if generator is not None else VariantGenerator()
        self.signed_url_ttl = check_ttl(signed_url_ttl)

    def _upload_variants(self, scope, slug, digest, rendered):
        stored = {}
        for variant in rendered.variants:
            key = self.keys.build(
                slug, digest, size=variant.name, ext=self.generator.extension
            )
            scope.put(key, variant.data, self.generator.content_type)
            stored[variant.name] = StoredVariant(key, variant.width, variant.height)
        return stored

    def ingest_image(self, file_path, original_filename):
        try:
            data = _read(file_path)
            digest = content_hash(data)
            slug = slug_for(original_filename)
            rendered = self.generator.generate(data)
            try:
                with UploadScope(self.store) as scope:
                    variants = self._upload_variants(scope, slug, digest, rendered)
            except (StoreError, InvalidKeyError, OSError) as e:
                raise UploadFailed(
                    f"Upload of image {original_filename!r} failed: {e}", e
                ) from e
        finally:
            discard(file_path)

        logger.info(
            "Stored image %r as %d variant(s) hash=%s",
            original_filename,
            len(variants),
            digest,
        )
        return ImageIngestResult(
            filename=original_filename,
            content_hash=digest,
            variants=variants,
            blur_data=rendered.blur_data,
        )

    def ingest_video(
        self, file_path, original_filename, thumbnail_path=None, content_type=None
    ):
        """Store a video as-is plus the variants of an optional thumbnail.

        With a thumbnail, all keys carry the thumbnail's content hash.
        """
        try:
            data = _read(file_path)
            slug = slug_for(original_filename)
            rendered = None
            if thumbnail_path:
                thumb_data = _read(thumbnail_path)
                digest = content_hash(thumb_data)
                rendered = self.generator.generate(thumb_data)
            else:
                digest = content_hash(data)
            ext = video_extension(original_filename, content_type)
            content_type = content_type or video_content_type(original_filename)

            with UploadScope(self.store) as scope:
                video_key = self.keys.video_key(slug, digest, ext=ext)
                scope.put(video_key, data, content_type)
                thumbnails = None
                if rendered is not None:
                    thumbnails = self._upload_variants(
                        scope, slug + THUMBNAIL_SUFFIX, digest, rendered
                    )
        except (MediaIngestError, OSError) as e:
            raise UploadFailed(
                f"Upload of video {original_filename!r} failed: {e}", e
            ) from e
        finally:
            discard(file_path)
            discard(thumbnail_path)

        logger.info(
            "Stored video %r as %s with %d thumbnail variant(s)",
            original_filename,
            video_key,
            len(thumbnails or ()),
        )
        return VideoIngestResult(
            filename=original_filename,
            content_hash=digest,
            video_key=video_key,
            content_type=content_type,
            thumbnails=thumbnails,
            blur_data=rendered.blur_data if rendered is not None else None,
        )

    def ingest(self, file_path, original_filename, mimetype, thumbnail_path=None):
        """Validate an upload and route it by its declared MIME type."""
        try:
            kind = check_upload(file_path, mimetype)
        except (MediaIngestError, OSError):
            discard(file_path)
            discard(thumbnail_path)
            raise
        if kind == VIDEO:
            return self.ingest_video(
                file_path,
                original_filename,
                thumbnail_path,
                content_type=mimetype.split(";")[0].strip().lower(),
            )
        discard(thumbnail_path)
        return self.ingest_image(file_path, original_filename)

    def delete_keys(self, keys):
        """Delete stored keys, best-effort. Never raises."""
        keys = [k for k in keys if k]
        if not keys:
            return DeleteReport()
        try:
            report = self.store.delete_many(keys)
        except Exception as e:
            logger.warning("Batch delete of %d key(s) failed", len(keys), exc_info=True)
            return DeleteReport(failed=[DeleteFailure(k, str(e)) for k in keys])
        for failure in report.failed:
            logger.warning("Failed to delete key %s: %s", failure.key, failure.error)
        logger.info("Deleted %d of %d key(s)", report.succeeded, len(keys))
        return report

    def delete_asset(self, result):
        return self.delete_keys(result.all_keys())

    def read_urls(self, result, ttl=None):
        """Signed read URLs for every stored object of a result."""
        ttl = self.signed_url_ttl if ttl is None else check_ttl(ttl)
        url = self.store.signed_read_url
        if result.kind == IMAGE:
            return {f"url_{name}": url(key, ttl) for name, key in result.keys.items()}
        urls = {"video_url": url(result.video_key, ttl)}
        for name, key in (result.thumbnail_keys or {}).items():
            urls[f"thumbnail_{name}"] = url(key, ttl)
        return urls
