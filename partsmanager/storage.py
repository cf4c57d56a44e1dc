"""
Object storage for export snapshots: S3-compatible (boto3) and in-memory.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


class StorageClient(Protocol):
    """Operations the export endpoint needs from object storage."""

    def upload_json(self, key: str, payload: dict) -> int:
        ...

    def presign_get(self, key: str, expires_in: int = 3600) -> str:
        ...

    def read_json(self, key: str) -> dict:
        ...


def _encode(payload: dict) -> bytes:
    return json.dumps(payload, default=str, ensure_ascii=False).encode("utf-8")


@dataclass
class InMemoryStorageClient:
    """Test double that keeps uploaded bodies in a dict."""

    base_url: str = "https://storage.test/partsmanager"
    objects: dict = field(default_factory=dict)

    def upload_json(self, key: str, payload: dict) -> int:
        body = _encode(payload)
        self.objects[key] = body
        return len(body)

    def presign_get(self, key: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{key}?expires={expires_in}"

    def read_json(self, key: str) -> dict:
        body = self.objects.get(key)
        if body is None:
            raise FileNotFoundError(key)
        return json.loads(body)


@dataclass
class S3StorageClient:
    """
    S3-compatible bucket client (AWS S3, Tencent COS, MinIO).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        # COS only accepts virtual-hosted style addressing.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_json(self, key: str, payload: dict) -> int:
        body = _encode(payload)
        self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType="application/json",
        )
        return len(body)

    def presign_get(self, key: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    def read_json(self, key: str) -> dict:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(key) from exc
            raise
        return json.loads(response["Body"].read())
