"""
S3-Compatible Blob Backend
==========================

aioboto3 implementation of the BlobBackend protocol, for AWS S3, MinIO,
DigitalOcean Spaces, Cloudflare R2 and other S3-compatible services.

Design Principles:
------------------
1. **Lazy Connection**: The client is created on first use, so an
   unconfigured process never opens a connection pool
2. **Bounded Buffering**: Bodies are read in chunks under a timeout and
   a byte cap; an oversized body aborts instead of filling memory
3. **Typed Failures**: botocore ClientError codes are translated into the
   backend exceptions the object store branches on
4. **Conditional Create**: `IfNoneMatch="*"` on PutObject gives atomic
   create-if-absent on stores that support it

Error Translation:
------------------
| S3 signal                                   | Raised                     |
|---------------------------------------------|----------------------------|
| NoSuchKey / NotFound / HTTP 404             | ObjectNotFoundError        |
| PreconditionFailed / HTTP 412 / HTTP 409    | PreconditionFailedError    |
| AccessDenied / bad credentials / NoSuchBucket | BackendUnavailableError  |
| any BotoCoreError (DNS, connect, no creds)  | BackendUnavailableError    |
| anything else                               | BackendError               |
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from blobcoord.core import constants as C
from blobcoord.core.config import ObjectStoreConfig
from blobcoord.core.types import ByteRange, Err, Ok, Result
from blobcoord.storage.backends import (
    AccessPolicy,
    BackendError,
    BackendUnavailableError,
    BlobObject,
    ListPage,
    ObjectMetadata,
    ObjectNotFoundError,
    ObjectTooLargeError,
    PreconditionFailedError,
)

logger = logging.getLogger(__name__)

# Chunk size for buffering streamed bodies (1 MiB)
READ_CHUNK_BYTES: int = 1024 * 1024

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
_PRECONDITION_CODES = frozenset({"PreconditionFailed", "ConditionalRequestConflict", "412"})
_UNAVAILABLE_CODES = frozenset({
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "ExpiredToken",
})


def translate_client_error(key: str, error: ClientError) -> BackendError:
    """Map a botocore ClientError onto the backend exception hierarchy."""
    code = str(error.response.get("Error", {}).get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if code in _NOT_FOUND_CODES or status == 404:
        return ObjectNotFoundError(key)
    if code in _PRECONDITION_CODES or status in (409, 412):
        return PreconditionFailedError(key)
    if code in _UNAVAILABLE_CODES or status == 403:
        return BackendUnavailableError(key, f"S3 rejected request for {key}: {code}")
    return BackendError(key, f"S3 error for {key}: {code or status}: {error}")


class S3BlobBackend:
    """
    S3-compatible blob backend over aioboto3.

    Example:
        >>> config = ObjectStoreConfig.from_env()
        >>> async with S3BlobBackend(config) as backend:
        ...     page = await backend.list_page("locks/")
    """

    __slots__ = ("_config", "_session", "_client", "_connect_lock")

    def __init__(
        self,
        config: ObjectStoreConfig,
        session: Optional[aioboto3.Session] = None,
    ) -> None:
        """
        Args:
            config: Bucket, endpoint, credentials and timeouts.
            session: Pre-built aioboto3 session (defaults to a new one).
        """
        self._config = config
        self._session = session
        self._client: Any = None
        self._connect_lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return not self._config.missing_settings

    @property
    def bucket(self) -> str:
        if not self._config.bucket:
            raise BackendUnavailableError("", "S3 bucket is not configured")
        return self._config.bucket

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self, verify_bucket: bool = False) -> Result[None, str]:
        """
        Initialize the S3 client.

        Args:
            verify_bucket: Issue a HeadBucket to confirm access.

        Returns:
            Ok(None) on success, Err with message on failure.
        """
        try:
            client = await self._get_client()
            if verify_bucket:
                await client.head_bucket(Bucket=self.bucket)
            return Ok(None)
        except (BotoCoreError, ClientError, BackendError) as e:
            return Err(f"S3 connection failed: {e}")

    async def close(self) -> None:
        """
        Close S3 client and release resources.

        Safe to call multiple times.
        """
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None

    async def __aenter__(self) -> S3BlobBackend:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._connect_lock:
            if self._client is None:
                if self._session is None:
                    self._session = aioboto3.Session()
                client_config = Config(
                    connect_timeout=self._config.connect_timeout_seconds,
                    read_timeout=self._config.read_timeout_seconds,
                    retries={"max_attempts": C.BACKEND_MAX_ATTEMPTS, "mode": "standard"},
                )
                client_kwargs = self._config.get_boto_config()
                client_kwargs["config"] = client_config
                self._client = await self._session.client("s3", **client_kwargs).__aenter__()
                logger.debug(f"S3 client created for bucket {self._config.bucket}")
        return self._client

    # -------------------------------------------------------------------------
    # CORE OPERATIONS
    # -------------------------------------------------------------------------

    async def get_object(
        self,
        key: str,
        byte_range: Optional[ByteRange] = None,
    ) -> BlobObject:
        """
        Download an object, fully buffered.

        The body is read in chunks under stream_timeout_ms and aborted once
        it passes max_read_bytes.
        """
        get_kwargs: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if byte_range is not None:
            get_kwargs["Range"] = byte_range.to_http_header()

        try:
            client = await self._get_client()
            response = await client.get_object(**get_kwargs)

            declared = response.get("ContentLength")
            if declared is not None and declared > self._config.max_read_bytes:
                response["Body"].close()
                raise ObjectTooLargeError(key, declared, self._config.max_read_bytes)

            async with response["Body"] as stream:
                data = await asyncio.wait_for(
                    self._buffer(key, stream),
                    timeout=self._config.stream_timeout_ms / 1000,
                )
        except ClientError as e:
            raise translate_client_error(key, e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(key, f"S3 unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise BackendError(
                key, f"Buffering {key} exceeded {self._config.stream_timeout_ms}ms"
            ) from e

        return BlobObject(key=key, body=data, content_type=response.get("ContentType"))

    async def _buffer(self, key: str, stream: Any) -> bytes:
        limit = self._config.max_read_bytes
        chunks: list[bytes] = []
        total = 0
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            if total > limit:
                raise ObjectTooLargeError(key, total, limit)
            chunks.append(chunk)
        return b"".join(chunks)

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        access_policy: AccessPolicy = AccessPolicy.PRIVATE,
        if_none_match: Optional[str] = None,
    ) -> ObjectMetadata:
        """
        Upload an object in a single PutObject call.

        Raises:
            PreconditionFailedError: if_none_match="*" and the key exists.
        """
        put_kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
            "ACL": access_policy.value,
        }
        if if_none_match is not None:
            put_kwargs["IfNoneMatch"] = if_none_match

        try:
            client = await self._get_client()
            response = await client.put_object(**put_kwargs)
        except ClientError as e:
            raise translate_client_error(key, e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(key, f"S3 unreachable: {e}") from e

        return ObjectMetadata(
            key=key,
            size_bytes=len(body),
            content_type=content_type,
            etag=response.get("ETag", "").strip('"'),
        )

    async def head_object(self, key: str) -> ObjectMetadata:
        """Get object metadata without downloading content."""
        try:
            client = await self._get_client()
            response = await client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise translate_client_error(key, e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(key, f"S3 unreachable: {e}") from e

        return ObjectMetadata(
            key=key,
            size_bytes=response.get("ContentLength", 0),
            content_type=response.get("ContentType"),
            etag=response.get("ETag", "").strip('"'),
            last_modified=response.get("LastModified"),
        )

    async def delete_object(self, key: str) -> None:
        """Delete object; deleting a missing key succeeds."""
        try:
            client = await self._get_client()
            await client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise translate_client_error(key, e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(key, f"S3 unreachable: {e}") from e

    async def list_page(
        self,
        prefix: str,
        continuation_token: Optional[str] = None,
    ) -> ListPage:
        """List one page of keys under prefix (ListObjectsV2)."""
        list_kwargs: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        if continuation_token:
            list_kwargs["ContinuationToken"] = continuation_token

        try:
            client = await self._get_client()
            response = await client.list_objects_v2(**list_kwargs)
        except ClientError as e:
            raise translate_client_error(prefix, e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(prefix, f"S3 unreachable: {e}") from e

        keys = tuple(item["Key"] for item in response.get("Contents", []))
        next_token = (
            response.get("NextContinuationToken") if response.get("IsTruncated") else None
        )
        return ListPage(keys=keys, next_token=next_token)
