"""
Object store adapters.

Stored objects are addressed by an opaque pointer of the form
scheme://bucket/key. Only this module parses pointers.
"""
import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigurationError, UpstreamServiceError, ValidationError

logger = logging.getLogger(__name__)

POINTER_RE = re.compile(r"^([a-z0-9]+)://([^/]+)/(.+)$")


def make_pointer(scheme: str, bucket: str, key: str) -> str:
    return f"{scheme}://{bucket}/{key}"


def parse_pointer(pointer: Optional[str]) -> Optional[Tuple[str, str, str]]:
    """Split a pointer into (scheme, bucket, key); None when malformed"""
    match = POINTER_RE.match(str(pointer or ""))
    if not match:
        return None
    return match.group(1), match.group(2), match.group(3)


def document_key(prefix: str, token: str) -> str:
    return f"{prefix}/{token}/document.jpg"


def selfie_key(prefix: str, token: str, slot: int) -> str:
    return f"{prefix}/{token}/selfie_{slot}.jpg"


class S3ObjectStore:
    scheme = "s3"

    def __init__(self, bucket: Optional[str], region: Optional[str] = None, timeout: float = 30):
        self.bucket = (bucket or "").strip()
        self.region = region
        self._client = None
        self._config = Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1})

    def _s3(self):
        if not self.bucket:
            raise ConfigurationError("STORAGE_BUCKET")
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.region, config=self._config)
        return self._client

    async def put(self, key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        s3 = self._s3()
        try:
            await asyncio.to_thread(
                s3.put_object, Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            raise UpstreamServiceError("object store", e)
        return make_pointer(self.scheme, self.bucket, key)

    async def get(self, pointer: str) -> bytes:
        parsed = parse_pointer(pointer)
        if not parsed or parsed[0] != self.scheme:
            raise UpstreamServiceError("object store", f"invalid pointer: {pointer}")
        _, bucket, key = parsed
        s3 = self._s3()

        def _read() -> bytes:
            obj = s3.get_object(Bucket=bucket, Key=key)
            return obj["Body"].read()

        try:
            return await asyncio.to_thread(_read)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamServiceError("object store", e)


class LocalObjectStore:
    """Filesystem store for development: <root>/<bucket>/<key>"""
    scheme = "file"

    def __init__(self, root: str, bucket: Optional[str] = None):
        self.root = Path(root)
        self.bucket = (bucket or "guest-verify").strip()

    def _path(self, bucket: str, key: str) -> Path:
        base = (self.root / bucket).resolve()
        path = (base / key).resolve()
        if base not in path.parents:
            raise ValidationError("Invalid storage key", details={"key": key})
        return path

    async def put(self, key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        path = self._path(self.bucket, key)

        def _write():
            os.makedirs(path.parent, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise UpstreamServiceError("object store", e)
        return make_pointer(self.scheme, self.bucket, key)

    async def get(self, pointer: str) -> bytes:
        parsed = parse_pointer(pointer)
        if not parsed or parsed[0] != self.scheme:
            raise UpstreamServiceError("object store", f"invalid pointer: {pointer}")
        _, bucket, key = parsed
        try:
            return await asyncio.to_thread(self._path(bucket, key).read_bytes)
        except OSError as e:
            raise UpstreamServiceError("object store", e)
