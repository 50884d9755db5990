from zope.interface import Attribute
from zope.interface import Interface


class IObjectStore(Interface):
    """Minimal object storage used by the ingestion pipeline."""

    def put(key, data, content_type):
        """Store bytes under key, overwriting any existing object."""

    def delete(key):
        """Delete an object. Return True if it existed, False otherwise."""

    def delete_many(keys):
        """Delete every key, best-effort. Return a DeleteReport, never raise."""

    def exists(key):
        """Return True if an object is stored under key."""

    def signed_read_url(key, ttl):
        """Return a URL that can fetch key for at least ttl seconds."""


class IVariantGenerator(Interface):
    """Resizes and re-encodes source images into size tiers."""

    variants = Attribute("Ordered sequence of (name, width) tiers.")
    content_type = Attribute("MIME type of the generated variants.")
    extension = Attribute("File extension of the generated variants.")

    def generate(data):
        """Return a RenderedImage for the image bytes, or raise DecodeError."""

    def blur_placeholder(data):
        """Return a tiny inline data URI preview of the image bytes."""


class IMediaIngestor(Interface):
    """Uploads media with all-or-nothing semantics."""

    signed_url_ttl = Attribute("Default lifetime of read URLs in seconds.")

    def ingest_image(file_path, original_filename):
        """Upload all variants of an image temp file."""

    def ingest_video(
        file_path, original_filename, thumbnail_path=None, content_type=None
    ):
        """Upload a video temp file and the variants of its thumbnail."""

    def ingest(file_path, original_filename, mimetype, thumbnail_path=None):
        """Validate an upload and route it by its declared MIME type."""

    def delete_keys(keys):
        """Delete stored keys, best-effort. Return a DeleteReport."""

    def delete_asset(result):
        """Delete every key of an ingest result."""

    def read_urls(result, ttl=None):
        """Return read URLs for every stored object of a result."""
