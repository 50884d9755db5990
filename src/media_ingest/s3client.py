from botocore.config import Config
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError
from media_ingest.errors import StoreRejected
from media_ingest.errors import StoreUnavailable
from media_ingest.interfaces import IObjectStore
from media_ingest.store import BaseObjectStore
from media_ingest.store import check_key
from media_ingest.store import check_ttl
from media_ingest.store import DeleteFailure
from media_ingest.store import DeleteReport
from zope.interface import implementer

import boto3
import logging
import re


logger = logging.getLogger(__name__)

DEFAULT_CACHE_CONTROL = "public, max-age=31536000, immutable"

# DeleteObjects accepts at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}

# Error codes worth retrying: credentials, clock skew, throttling, outages.
_UNAVAILABLE_CODES = {
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
    "RequestTimeTooSkewed",
    "RequestTimeout",
    "SlowDown",
    "Throttling",
    "ServiceUnavailable",
    "InternalError",
}


@implementer(IObjectStore)
class S3ObjectStore(BaseObjectStore):
    """Thin boto3 wrapper for S3-compatible object storage.

    The boto3 client is created once here and shared by all callers;
    boto3 clients are safe to use from several threads.
    """

    def __init__(
        self,
        bucket_name,
        prefix="",
        endpoint_url=None,
        region_name=None,
        aws_access_key_id=None,
        aws_secret_access_key=None,
        use_ssl=True,
        addressing_style="auto",
        connect_timeout=60,
        read_timeout=60,
        cache_control=DEFAULT_CACHE_CONTROL,
    ):
        if not bucket_name:
            raise ValueError("bucket_name is required")
        self.bucket_name = bucket_name
        self.cache_control = cache_control
        self._prefix = prefix.strip("/") if prefix else ""

        if self._prefix:
            if not re.fullmatch(r"[a-zA-Z0-9._/-]*", self._prefix):
                raise ValueError(
                    f"prefix contains invalid characters: {self._prefix!r}. "
                    "Only alphanumeric characters, dots, hyphens, underscores, "
                    "and slashes are allowed."
                )
            if ".." in self._prefix:
                raise ValueError(f"prefix must not contain '..': {self._prefix!r}")

        config = Config(
            s3={"addressing_style": addressing_style},
            signature_version="s3v4",
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
        )

        kwargs = {"config": config}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        if region_name:
            kwargs["region_name"] = region_name
        if aws_access_key_id:
            kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        kwargs["use_ssl"] = use_ssl
        if not use_ssl:
            logger.warning(
                "S3 SSL is disabled, data and credentials are transmitted in cleartext"
            )

        self._client = boto3.client("s3", **kwargs)

    def __repr__(self):
        return f"<{self.__class__.__name__} bucket={self.bucket_name!r}>"

    def _full_key(self, key):
        check_key(key)
        if self._prefix:
            return f"{self._prefix}/{key}"
        return key

    def _logical_key(self, full_key):
        if self._prefix and full_key.startswith(self._prefix + "/"):
            return full_key[len(self._prefix) + 1 :]
        return full_key

    def _wrap_error(self, e, operation, key):
        """Translate a botocore error, logging the original at DEBUG."""
        logger.debug("S3 %s failed for key=%s: %s", operation, key, e)
        if isinstance(e, ClientError):
            code = e.response.get("Error", {}).get("Code", "Unknown")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            message = f"S3 {operation} failed for key={key}: {code}"
            if code in _UNAVAILABLE_CODES or status >= 500:
                raise StoreUnavailable(message) from e
            raise StoreRejected(message) from e
        raise StoreUnavailable(
            f"S3 {operation} failed for key={key}: {type(e).__name__}"
        ) from e

    def put(self, key, data, content_type):
        full_key = self._full_key(key)
        extra = {"CacheControl": self.cache_control} if self.cache_control else {}
        try:
            self._client.put_object(
                Bucket=self.bucket_name,
                Key=full_key,
                Body=data,
                ContentType=content_type,
                **extra,
            )
        except (ClientError, BotoCoreError) as e:
            self._wrap_error(e, "put", key)

    def head(self, key):
        """Return metadata dict for an object, or None if not found."""
        full_key = self._full_key(key)
        try:
            return self._client.head_object(Bucket=self.bucket_name, Key=full_key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return None
            self._wrap_error(e, "head", key)
        except BotoCoreError as e:
            self._wrap_error(e, "head", key)

    def exists(self, key):
        return self.head(key) is not None

    def delete(self, key):
        # S3 deletes succeed for missing keys, so look first.
        if self.head(key) is None:
            return False
        try:
            self._client.delete_object(
                Bucket=self.bucket_name, Key=self._full_key(key)
            )
        except (ClientError, BotoCoreError) as e:
            self._wrap_error(e, "delete", key)
        return True

    def delete_many(self, keys):
        report = DeleteReport()
        batch = []
        for key in keys:
            if not key:
                continue
            try:
                batch.append(self._full_key(key))
            except ValueError as e:
                report.failed.append(DeleteFailure(key, str(e)))
        for start in range(0, len(batch), DELETE_BATCH_SIZE):
            report.merge(self._delete_batch(batch[start : start + DELETE_BATCH_SIZE]))
        return report

    def _delete_batch(self, full_keys):
        report = DeleteReport()
        try:
            response = self._client.delete_objects(
                Bucket=self.bucket_name,
                Delete={
                    "Objects": [{"Key": k} for k in full_keys],
                    "Quiet": True,
                },
            )
        except (ClientError, BotoCoreError) as e:
            logger.debug("S3 batch delete of %d keys failed: %s", len(full_keys), e)
            report.failed.extend(
                DeleteFailure(self._logical_key(k), str(e)) for k in full_keys
            )
            return report

        errors = response.get("Errors", [])
        for error in errors:
            report.failed.append(
                DeleteFailure(
                    self._logical_key(error["Key"]),
                    f"{error.get('Code', 'Unknown')}: {error.get('Message', '')}",
                )
            )
        report.succeeded += len(full_keys) - len(errors)
        return report

    def signed_read_url(self, key, ttl):
        ttl = check_ttl(ttl)
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket_name, "Key": self._full_key(key)},
                ExpiresIn=ttl,
            )
        except (ClientError, BotoCoreError) as e:
            self._wrap_error(e, "presign", key)

    def list_keys(self, prefix=""):
        """Yield logical keys below prefix. For maintenance and testing."""
        full_prefix = f"{self._prefix}/{prefix}" if self._prefix else prefix
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=full_prefix):
                for obj in page.get("Contents", []):
                    yield self._logical_key(obj["Key"])
        except (ClientError, BotoCoreError) as e:
            self._wrap_error(e, "list", prefix)


class R2ObjectStore(S3ObjectStore):
    """Cloudflare R2 bucket.

    With a public_base_url (custom domain or r2.dev) read URLs point at the
    public bucket instead of being presigned.
    """

    def __init__(
        self,
        account_id,
        bucket_name,
        access_key_id,
        secret_access_key,
        public_base_url=None,
        **kwargs,
    ):
        if not account_id:
            raise ValueError("account_id is required for R2")
        self.account_id = account_id
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        super().__init__(
            bucket_name,
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            region_name="auto",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            **kwargs,
        )

    def signed_read_url(self, key, ttl):
        if self.public_base_url:
            return f"{self.public_base_url}/{self._full_key(key)}"
        return super().signed_read_url(key, ttl)


class RailwayObjectStore(S3ObjectStore):
    """Railway bucket. Requires path-style addressing."""

    def __init__(
        self,
        bucket_name,
        endpoint_url,
        access_key_id,
        secret_access_key,
        region_name="us-east-1",
        **kwargs,
    ):
        if not endpoint_url:
            raise ValueError("endpoint_url is required for Railway buckets")
        kwargs.setdefault("addressing_style", "path")
        super().__init__(
            bucket_name,
            endpoint_url=endpoint_url,
            region_name=region_name or "us-east-1",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            **kwargs,
        )
