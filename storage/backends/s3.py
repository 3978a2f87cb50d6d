"""
S3-compatible storage backend (AWS S3, MinIO, etc.)
"""
from typing import Any, AsyncIterator, Dict
import os

from botocore.config import Config
from botocore.exceptions import ClientError
import aioboto3

from storage.base import Content, StorageBackend, iter_content


class S3StorageBackend(StorageBackend):
    """Storage backend for S3-compatible services."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)

        self.endpoint = config.get("endpoint", "https://s3.amazonaws.com")
        self.region = config.get("region", "us-east-1")
        self.bucket = config.get("bucket")
        self.access_key = config.get("access_key") or os.getenv("AWS_ACCESS_KEY_ID")
        self.secret_key = config.get("secret_key") or os.getenv("AWS_SECRET_ACCESS_KEY")
        self.path_style = config.get("path_style", False)
        self.verify_ssl = config.get("verify_ssl", True)
        # Public buckets (or a CDN in front) serve plain URLs instead of presigned ones
        self.public_base_url = config.get("public_base_url")
        self.url_expires = int(config.get("url_expires", 7 * 24 * 3600))

        if not self.bucket:
            raise ValueError("S3 backend requires 'bucket' configuration")

        self.session = aioboto3.Session(
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            region_name=self.region,
        )

        self.s3_config = {
            "endpoint_url": self.endpoint if self.endpoint != "https://s3.amazonaws.com" else None,
            "use_ssl": self.endpoint.startswith("https"),
            "verify": self.verify_ssl,
            "region_name": self.region,
        }

        if self.path_style:
            self.s3_config["config"] = Config(
                s3={"addressing_style": "path"}
            )

    async def exists(self, path: str) -> bool:
        async with self.session.client("s3", **self.s3_config) as s3:
            try:
                await s3.head_object(Bucket=self.bucket, Key=path)
                return True
            except ClientError as e:
                if e.response["Error"]["Code"] in ("404", "NoSuchKey"):
                    return False
                raise

    async def read(self, path: str, chunk_size: int = 8192) -> AsyncIterator[bytes]:
        async with self.session.client("s3", **self.s3_config) as s3:
            try:
                response = await s3.get_object(Bucket=self.bucket, Key=path)
            except ClientError as e:
                if e.response["Error"]["Code"] == "NoSuchKey":
                    raise FileNotFoundError(f"Object not found: {path}")
                raise

            async with response["Body"] as stream:
                while True:
                    chunk = await stream.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk

    async def write(self, path: str, content: Content, content_type: str = "application/octet-stream") -> int:
        # Uploads here are single videos capped by MAX_UPLOAD_SIZE, so one put_object suffices
        chunks = []
        async for chunk in iter_content(content):
            chunks.append(chunk)
        data = b"".join(chunks)

        async with self.session.client("s3", **self.s3_config) as s3:
            await s3.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        return len(data)

    async def delete(self, path: str) -> bool:
        async with self.session.client("s3", **self.s3_config) as s3:
            try:
                await s3.delete_object(Bucket=self.bucket, Key=path)
                return True
            except ClientError:
                return False

    async def get_url(self, path: str, download: bool = False) -> str:
        if self.public_base_url and not download:
            return f"{self.public_base_url.rstrip('/')}/{path}"

        params = {"Bucket": self.bucket, "Key": path}
        if download:
            filename = path.rsplit("/", 1)[-1]
            params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'

        async with self.session.client("s3", **self.s3_config) as s3:
            return await s3.generate_presigned_url(
                "get_object",
                Params=params,
                ExpiresIn=self.url_expires,
            )
