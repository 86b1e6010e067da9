"""
S3 Document Storage — read-only access for the worker

The upload flow writes CV files to s3://<bucket>/<storage_path>; the worker
only ever downloads them. Error mapping:

  NoSuchKey / 404          → StorageNotFound      (fatal for the attempt)
  AccessDenied / 403       → StorageAccessDenied  (fatal for the attempt)
  anything else            → StorageError         (retryable)

SOC2 note: bytes are returned to the caller and never logged or cached.
"""

from __future__ import annotations

import logging

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from cv_worker.core.config import Settings
from cv_worker.core.errors import StorageAccessDenied, StorageError, StorageNotFound

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES     = frozenset({"NoSuchKey", "NoSuchBucket", "404", "NotFound"})
_ACCESS_DENIED_CODES = frozenset({"AccessDenied", "403", "Forbidden", "InvalidAccessKeyId"})


class DocumentStorage:
    """
    Async S3 downloads from a single bucket.

    One instance is shared by all jobs in a worker; each call opens its own
    scoped client so there is no cross-job state.
    """

    def __init__(self, bucket: str, region: str, session: aioboto3.Session | None = None) -> None:
        self._bucket  = bucket
        self._region  = region
        self._session = session or aioboto3.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentStorage":
        session = aioboto3.Session(
            # Empty strings fall back to the default credential chain
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
        )
        return cls(bucket=settings.s3_bucket, region=settings.aws_region, session=session)

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client("s3", region_name=self._region)

    async def download(self, storage_path: str) -> bytes:
        key = storage_path.lstrip("/")
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                body = await resp["Body"].read()
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code", "")
                if code in _NOT_FOUND_CODES:
                    raise StorageNotFound(f"Failed to download file: {key} not found") from exc
                if code in _ACCESS_DENIED_CODES:
                    raise StorageAccessDenied(f"Failed to download file: access denied to {key}") from exc
                logger.error("S3 download error | bucket=%s key=%s code=%s", self._bucket, key, code)
                raise StorageError(f"Failed to download file: {code or exc}") from exc
            except BotoCoreError as exc:
                logger.error("S3 download error | bucket=%s key=%s error=%s", self._bucket, key, exc)
                raise StorageError(f"Failed to download file: {exc}") from exc

        logger.info("S3 download ok | bucket=%s key=%s size=%d", self._bucket, key, len(body))
        return body
