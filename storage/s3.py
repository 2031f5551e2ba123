"""S3 durable store: public-read uploads of staged artifacts."""

from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import StorageSettings
from engine.errors import UploadFailedError
from engine.models import PublishedAsset, StagedArtifact
from storage.addressing import public_url_for_key

logger = logging.getLogger(__name__)

PUBLIC_READ_ACL = "public-read"


def build_s3_client(settings: StorageSettings) -> Any:
    client_config = Config(
        region_name=settings.region,
        connect_timeout=settings.connect_timeout_seconds,
        read_timeout=settings.read_timeout_seconds,
        retries={"max_attempts": settings.max_attempts, "mode": "standard"},
    )
    kwargs: dict[str, Any] = {"config": client_config}
    if settings.access_key_id and settings.secret_access_key:
        kwargs["aws_access_key_id"] = settings.access_key_id
        kwargs["aws_secret_access_key"] = settings.secret_access_key
    if settings.endpoint_url:
        kwargs["endpoint_url"] = settings.endpoint_url
    return boto3.client("s3", **kwargs)


class S3DurableStore:
    """Uploads staged artifacts and derives their public addresses."""

    def __init__(self, settings: StorageSettings, client: Optional[Any] = None) -> None:
        if not settings.bucket:
            raise ValueError("AWS bucket name is required for the S3 store")
        self._settings = settings
        self._client = client if client is not None else build_s3_client(settings)

    def public_url(self, key: str) -> str:
        return public_url_for_key(
            key,
            category=self._settings.category,
            bucket=self._settings.bucket,
            region=self._settings.region,
            cdn_base_url=self._settings.cdn_base_url,
        )

    def publish(self, artifact: StagedArtifact, key: str) -> PublishedAsset:
        """Upload the full staged file under ``key`` and return its address.

        Raises:
            UploadFailedError: the staged file is unreadable or the put failed.
        """
        try:
            with open(artifact.local_path, "rb") as body:
                self._client.put_object(
                    Bucket=self._settings.bucket,
                    Key=key,
                    Body=body,
                    ContentType=artifact.content_type,
                    ContentLength=artifact.size_bytes,
                    ACL=PUBLIC_READ_ACL,
                )
        except (BotoCoreError, ClientError) as exc:
            raise UploadFailedError(artifact.kind, f"upload of {key} failed: {exc}") from exc
        except OSError as exc:
            raise UploadFailedError(artifact.kind, f"staged file unreadable for {key}: {exc}") from exc

        public_url = self.public_url(key)
        logger.info("uploaded kind=%s key=%s bytes=%s", artifact.kind.value, key, artifact.size_bytes)
        return PublishedAsset(kind=artifact.kind, public_url=public_url, key=key)
