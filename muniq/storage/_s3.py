from __future__ import annotations
import io
import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from ..errors import StorageFailure

log = logging.getLogger(__name__)


class ScreenshotStorage:
    """S3-compatible bucket (R2, MinIO, AWS) with a public read URL."""

    def __init__(self, endpoint_url, access_key_id, secret_access_key,
                 bucket, public_bucket_url) -> None:
        self.bucket = bucket
        self.public_bucket_url = (public_bucket_url or "").rstrip("/")
        self._config_ok = all([
            endpoint_url, access_key_id, secret_access_key, bucket,
            public_bucket_url,
        ])
        self.client = None
        if self._config_ok:
            self.client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name="auto",
            )

    @classmethod
    def from_env(cls) -> "ScreenshotStorage":
        return cls(
            endpoint_url=os.getenv("S3_ENDPOINT_URL"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            bucket=os.getenv("S3_BUCKET_NAME"),
            public_bucket_url=os.getenv("PUBLIC_BUCKET_URL"),
        )

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        if not self._config_ok:
            log.error("screenshot storage is not configured")
            raise StorageFailure()
        try:
            await run_in_threadpool(
                self.client.upload_fileobj,
                io.BytesIO(data), self.bucket, path,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            log.error("screenshot upload failed for %s: %s", path, e)
            raise StorageFailure()
        return f"{self.public_bucket_url}/{path}"
