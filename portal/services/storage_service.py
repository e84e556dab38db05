"""
S3 document storage.
Objects are encrypted server side; downloads are streamed through the API,
optionally as a byte range.
"""

import logging
import secrets
import time
from typing import Optional

import boto3
from botocore.config import Config

from .. import config
from ..domain.documents.validation import sanitize_file_name

logger = logging.getLogger(__name__)

_s3_client = None


class StorageConfigurationError(RuntimeError):
    """Raised when the bucket or credentials are not configured"""


def get_s3_client():
    """Create (once) and return the S3 client."""
    global _s3_client
    if _s3_client is None:
        endpoint = config.STORAGE_ENDPOINT
        addressing = "path" if endpoint and "localhost" in endpoint else "auto"
        _s3_client = boto3.client(
            "s3",
            region_name=config.STORAGE_REGION,
            endpoint_url=endpoint or None,
            aws_access_key_id=config.STORAGE_ACCESS_KEY,
            aws_secret_access_key=config.STORAGE_SECRET_KEY,
            config=Config(signature_version="s3v4", s3={"addressing_style": addressing}),
        )
    return _s3_client


def get_bucket() -> str:
    if not config.STORAGE_BUCKET:
        logger.error("❌ STORAGE_BUCKET not configured")
        raise StorageConfigurationError("Storage bucket not configured")
    return config.STORAGE_BUCKET


def generate_s3_key(booking_id: str, file_name: str, uploaded_by: str) -> str:
    """bookings/{booking}/{user}/{ms}-{rand}-{sanitized name}"""
    timestamp = int(time.time() * 1000)
    suffix = secrets.token_hex(4)
    return f"bookings/{booking_id}/{uploaded_by}/{timestamp}-{suffix}-{sanitize_file_name(file_name)}"


def upload_object(key: str, body: bytes, content_type: str, metadata: Optional[dict] = None) -> None:
    bucket = get_bucket()
    get_s3_client().put_object(
        Bucket=bucket,
        Key=key,
        Body=body,
        ContentType=content_type,
        ServerSideEncryption="AES256",
        Metadata={k: str(v) for k, v in (metadata or {}).items()},
    )
    logger.info(f"✅ Uploaded object to {bucket} ({len(body)} bytes)")


def download_object(key: str, byte_range: Optional[str] = None) -> dict:
    """Fetch an object, optionally a byte range ("bytes=0-99")"""
    params = {"Bucket": get_bucket(), "Key": key}
    if byte_range:
        params["Range"] = byte_range

    response = get_s3_client().get_object(**params)
    return {
        "body": response["Body"],
        "content_length": response.get("ContentLength"),
        "content_range": response.get("ContentRange"),
        "content_type": response.get("ContentType"),
        "accept_ranges": response.get("AcceptRanges", "bytes"),
    }


def delete_object(key: str) -> None:
    get_s3_client().delete_object(Bucket=get_bucket(), Key=key)
    logger.info("🗑️ Deleted object from storage")
