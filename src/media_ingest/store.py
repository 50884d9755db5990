from dataclasses import dataclass
from dataclasses import field
from media_ingest.errors import InvalidKeyError
from media_ingest.errors import StoreRejected
from media_ingest.errors import StoreUnavailable
from media_ingest.interfaces import IObjectStore
from zope.interface import implementer

import contextlib
import errno
import logging
import os
import re
import tempfile


logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[a-zA-Z0-9._-]+(/[a-zA-Z0-9._-]+)*$")

# SigV4 presigned URLs are refused by S3 and R2 beyond seven days.
MAX_SIGNED_URL_TTL = 7 * 24 * 60 * 60

# Errors that need operator action rather than a retry.
_REJECTED_ERRNOS = {
    errno.EACCES,
    errno.EPERM,
    errno.ENOSPC,
    errno.EROFS,
    getattr(errno, "EDQUOT", errno.ENOSPC),
}


@dataclass(frozen=True)
class DeleteFailure:
    key: str
    error: str


@dataclass
class DeleteReport:
    """Outcome of a best-effort batch delete."""

    succeeded: int = 0
    failed: list = field(default_factory=list)

    @property
    def ok(self):
        return not self.failed

    def merge(self, other):
        self.succeeded += other.succeeded
        self.failed.extend(other.failed)
        return self


def check_key(key):
    """Reject keys that are not relative slash separated paths."""
    if not key or not _KEY_RE.match(key) or ".." in key.split("/"):
        raise InvalidKeyError(f"Invalid storage key: {key!r}")
    return key


def check_ttl(ttl):
    """Return ttl as int seconds, within what a presigned URL can carry."""
    ttl = int(ttl)
    if not 0 < ttl <= MAX_SIGNED_URL_TTL:
        raise ValueError(
            f"Signed URL ttl must be between 1 and {MAX_SIGNED_URL_TTL} seconds, "
            f"got {ttl}"
        )
    return ttl


class BaseObjectStore:
    """Shared behaviour for object stores.

    Subclasses implement put, delete, exists and signed_read_url.
    """

    def delete_many(self, keys):
        report = DeleteReport()
        for key in keys:
            if not key:
                continue
            try:
                self.delete(key)
            except Exception as e:
                logger.debug("Delete failed for key=%s: %s", key, e)
                report.failed.append(DeleteFailure(key, str(e)))
            else:
                report.succeeded += 1
        return report


@implementer(IObjectStore)
class LocalObjectStore(BaseObjectStore):
    """Object store backed by a local directory.

    Objects are stored as {root}/{key}. Read URLs are plain paths below
    url_prefix, served by the web server; ttl is ignored.
    """

    def __init__(self, root, url_prefix="/media"):
        self.root = os.path.abspath(root)
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def __repr__(self):
        return f"<LocalObjectStore at {self.root!r}>"

    def _path(self, key):
        check_key(key)
        return os.path.join(self.root, *key.split("/"))

    def _wrap_os_error(self, e, operation, key):
        logger.debug("Local %s failed for key=%s: %s", operation, key, e)
        if e.errno in _REJECTED_ERRNOS:
            raise StoreRejected(
                f"Local {operation} rejected for key={key}: {e.strerror}"
            ) from e
        raise StoreUnavailable(
            f"Local {operation} failed for key={key}: {e.strerror}"
        ) from e

    def put(self, key, data, content_type):
        path = self._path(key)
        target_dir = os.path.dirname(path)
        tmp_path = None
        try:
            os.makedirs(target_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=target_dir, suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            self._wrap_os_error(e, "put", key)

    def delete(self, key):
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            self._wrap_os_error(e, "delete", key)
        # Remove now-empty parent directories below root
        parent = os.path.dirname(path)
        while parent != self.root:
            try:
                os.rmdir(parent)
            except OSError:
                break
            parent = os.path.dirname(parent)
        return True

    def exists(self, key):
        return os.path.isfile(self._path(key))

    def signed_read_url(self, key, ttl=None):
        check_key(key)
        return f"{self.url_prefix}/{key}"

    def path_for(self, key):
        """Return the filesystem path for key. For serving and testing."""
        return self._path(key)
