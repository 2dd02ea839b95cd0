from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlencode, urlparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import RelocationFailure
from .logging import get_logger


@dataclass(slots=True)
class PresignedURL:
    url: str
    expires_at: datetime
    method: str = "GET"


class ObjectStore(ABC):
    """Durable home for processed videos.

    ``upload`` returns the storage reference that gets persisted on the video
    record; ``presign`` turns a key back into a short-lived, credential-free
    URL. Presigning never checks that the object exists.
    """

    @abstractmethod
    def upload(self, local_path: Path, key: str, *, content_type: str) -> str: ...

    @abstractmethod
    def presign(self, key: str, *, ttl_s: int) -> PresignedURL: ...

    @abstractmethod
    def reference_for(self, key: str) -> str: ...

    @abstractmethod
    def key_from_reference(self, reference: str) -> str | None: ...

    def presign_reference(self, reference: str, *, ttl_s: int) -> PresignedURL | None:
        """Presign a persisted reference, or return ``None`` when this store cannot serve it."""
        key = self.key_from_reference(reference)
        if key is None:
            return None
        return self.presign(key, ttl_s=ttl_s)


@dataclass(slots=True, frozen=True)
class S3Location:
    bucket: str
    key: str
    region: str | None = None


# bucket.s3.region.amazonaws.com, bucket.s3-region.amazonaws.com, bucket.s3.amazonaws.com
_VIRTUAL_HOSTED = re.compile(r"^(?P<bucket>[a-z0-9][a-z0-9.-]*)\.s3(?:[.-](?P<region>[a-z0-9-]+))?\.amazonaws\.com$")
# s3.region.amazonaws.com/bucket/key
_PATH_STYLE = re.compile(r"^s3(?:[.-](?P<region>[a-z0-9-]+))?\.amazonaws\.com$")


def parse_s3_reference(reference: str) -> S3Location | None:
    """Split an ``s3://`` reference or an S3 object URL into bucket and key.

    Plain object URLs are what older records stored. Any query string (an
    expired signature, for instance) is discarded.
    """
    parsed = urlparse(reference)
    if parsed.scheme == "s3":
        key = unquote(parsed.path.lstrip("/"))
        return S3Location(parsed.netloc, key) if parsed.netloc and key else None
    if parsed.scheme not in ("https", "http") or not parsed.hostname:
        return None

    host = parsed.hostname.lower()
    path = unquote(parsed.path.lstrip("/"))
    match = _VIRTUAL_HOSTED.match(host)
    if match:
        return S3Location(match["bucket"], path, match["region"]) if path else None
    match = _PATH_STYLE.match(host)
    if match:
        bucket, _, key = path.partition("/")
        return S3Location(bucket, key, match["region"]) if bucket and key else None
    return None


def _expiry(ttl_s: int) -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0) + timedelta(seconds=ttl_s)


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store suitable for development."""

    def __init__(self, base_path: Path):
        self.base_path = base_path.resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(component="local_object_store")

    def _resolve(self, key: str) -> Path:
        target = (self.base_path / key).resolve()
        if not target.is_relative_to(self.base_path):
            raise ValueError(f"Key escapes the storage root: {key}")
        return target

    def upload(self, local_path: Path, key: str, *, content_type: str) -> str:
        target = self._resolve(key)
        partial = target.with_name(f".{target.name}.partial")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with local_path.open("rb") as source, partial.open("wb") as sink:
                while chunk := source.read(1024 * 1024):
                    sink.write(chunk)
            os.replace(partial, target)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise RelocationFailure(f"local upload failed for {key}", diagnostics=str(exc)) from exc
        self.logger.info("object_stored", key=key, content_type=content_type, size_bytes=target.stat().st_size)
        return self.reference_for(key)

    def presign(self, key: str, *, ttl_s: int) -> PresignedURL:
        expires_at = _expiry(ttl_s)
        query = urlencode({"expires": int(expires_at.timestamp())})
        return PresignedURL(url=f"{self._resolve(key).as_uri()}?{query}", expires_at=expires_at)

    def reference_for(self, key: str) -> str:
        return self._resolve(key).as_uri()

    def key_from_reference(self, reference: str) -> str | None:
        parsed = urlparse(reference)
        if parsed.scheme != "file":
            return None
        path = Path(unquote(parsed.path)).resolve()
        if not path.is_relative_to(self.base_path):
            return None
        return path.relative_to(self.base_path).as_posix()


class S3ObjectStore(ObjectStore):
    """S3 (or S3-compatible) object store.

    Relies on ``put_object`` being atomic: readers never observe a partially
    written object, so a failed upload leaves nothing behind.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client
        self._regional_clients: dict[str, Any] = {}
        self.logger = get_logger(component="s3_object_store", bucket=bucket)

    def _build_client(self, region: str) -> Any:
        client_kwargs: dict[str, Any] = {
            "region_name": region,
            "config": BotoConfig(signature_version="s3v4"),
        }
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
            client_kwargs["config"] = BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"})
        if self._access_key_id and self._secret_access_key:
            client_kwargs["aws_access_key_id"] = self._access_key_id
            client_kwargs["aws_secret_access_key"] = self._secret_access_key
        return boto3.client("s3", **client_kwargs)

    def _get_client(self, region: str | None = None) -> Any:
        # SigV4 signatures are region scoped; a custom endpoint has a single region
        if region is None or region == self.region or self.endpoint_url:
            if self._client is None:
                self._client = self._build_client(self.region)
            return self._client
        if region not in self._regional_clients:
            self._regional_clients[region] = self._build_client(region)
        return self._regional_clients[region]

    def upload(self, local_path: Path, key: str, *, content_type: str) -> str:
        try:
            client = self._get_client()
            with local_path.open("rb") as body:
                response = client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)
        except (BotoCoreError, ClientError, OSError) as exc:
            raise RelocationFailure(f"s3 upload failed for {key}", diagnostics=str(exc)) from exc
        etag = (response or {}).get("ETag", "").strip('"')
        self.logger.info("object_stored", key=key, content_type=content_type, etag=etag or None)
        return self.reference_for(key)

    def presign(
        self,
        key: str,
        *,
        ttl_s: int,
        bucket: str | None = None,
        region: str | None = None,
    ) -> PresignedURL:
        expires_at = _expiry(ttl_s)
        try:
            url = self._get_client(region).generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket or self.bucket, "Key": key},
                ExpiresIn=ttl_s,
            )
        except (BotoCoreError, ClientError) as exc:
            raise RelocationFailure(f"presign failed for {key}", diagnostics=str(exc)) from exc
        return PresignedURL(url=url, expires_at=expires_at)

    def presign_reference(self, reference: str, *, ttl_s: int) -> PresignedURL | None:
        """Presign any S3 reference, including ones written against another bucket."""
        location = parse_s3_reference(reference)
        if location is None:
            return None
        return self.presign(location.key, ttl_s=ttl_s, bucket=location.bucket, region=location.region)

    def reference_for(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def key_from_reference(self, reference: str) -> str | None:
        location = parse_s3_reference(reference)
        if location is None or location.bucket != self.bucket:
            return None
        return location.key


def get_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "local":
        return LocalObjectStore(base_path=Path(settings.local_storage_base_path))
    if settings.storage_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("s3 storage backend requires s3_bucket")
        return S3ObjectStore(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            access_key_id=settings.secrets.aws_access_key_id,
            secret_access_key=settings.secrets.aws_secret_access_key,
        )
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "PresignedURL",
    "S3Location",
    "parse_s3_reference",
    "get_object_store",
]
