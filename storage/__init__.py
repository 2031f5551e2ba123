"""Durable object storage for published previews."""

from storage.addressing import build_object_key, public_url_for_key
from storage.s3 import S3DurableStore

__all__ = ["S3DurableStore", "build_object_key", "public_url_for_key"]
