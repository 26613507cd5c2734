"""
S3-compatible blob storage for original import files (AWS S3, MinIO, B2, ...).
Uses boto3 for every provider.
"""
import logging
from typing import Any, Dict

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from gymdesk.core.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Raised when the storage client cannot be created."""
    pass


class StorageUploadError(StorageError):
    """Raised when file upload fails."""
    pass


class StorageDownloadError(StorageError):
    """Raised when file download fails."""
    pass


def get_storage_client():
    """
    Get an S3-compatible storage client.

    Raises:
        StorageConnectionError: If storage configuration is incomplete or the
            client cannot be created
    """
    if not all([settings.storage_access_key_id, settings.storage_secret_access_key, settings.storage_bucket_name]):
        raise StorageConnectionError(
            "Storage configuration is incomplete. Please set STORAGE_ACCESS_KEY_ID, "
            "STORAGE_SECRET_ACCESS_KEY, and STORAGE_BUCKET_NAME in your environment."
        )

    config = Config(
        signature_version="s3v4",
        retries={"max_attempts": 3, "mode": "standard"},
    )

    client_kwargs = {
        "service_name": "s3",
        "aws_access_key_id": settings.storage_access_key_id,
        "aws_secret_access_key": settings.storage_secret_access_key,
        "config": config,
    }
    if settings.storage_endpoint_url:
        client_kwargs["endpoint_url"] = settings.storage_endpoint_url
    if settings.storage_region:
        client_kwargs["region_name"] = settings.storage_region

    try:
        return boto3.client(**client_kwargs)
    except (BotoCoreError, ValueError) as e:
        logger.error("Failed to create storage client: %s", e)
        raise StorageConnectionError(f"Failed to connect to storage: {e}") from e


def upload_file(file_content: bytes, file_name: str, folder: str = "member-imports") -> Dict[str, Any]:
    """
    Upload bytes to the configured bucket.

    Returns:
        Dictionary with ``file_id`` (ETag), ``file_name``, ``file_path`` and ``size``.

    Raises:
        StorageUploadError: If upload fails
    """
    client = get_storage_client()
    file_path = f"{folder}/{file_name}"

    try:
        response = client.put_object(
            Bucket=settings.storage_bucket_name,
            Key=file_path,
            Body=file_content,
        )
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        logger.error("Storage upload failed: %s - %s", error_code, e)
        raise StorageUploadError(f"Upload failed: {e}") from e
    except BotoCoreError as e:
        logger.error("Unexpected error during upload: %s", e)
        raise StorageUploadError(f"Upload failed: {e}") from e

    return {
        "file_id": response["ETag"].strip('"'),
        "file_name": file_name,
        "file_path": file_path,
        "size": len(file_content),
    }


def download_file(file_path: str) -> bytes:
    """
    Download a stored file.

    Raises:
        StorageDownloadError: If the file is missing or the download fails
    """
    client = get_storage_client()

    try:
        response = client.get_object(Bucket=settings.storage_bucket_name, Key=file_path)
        return response["Body"].read()
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        if error_code == "NoSuchKey":
            raise StorageDownloadError(f"File not found: {file_path}") from e
        logger.error("Storage download failed: %s - %s", error_code, e)
        raise StorageDownloadError(f"Download failed: {e}") from e
    except BotoCoreError as e:
        logger.error("Unexpected error during download: %s", e)
        raise StorageDownloadError(f"Download failed: {e}") from e


def delete_file(file_path: str) -> bool:
    """Delete a stored file. Returns False (and logs) when deletion fails."""
    try:
        client = get_storage_client()
        client.delete_object(Bucket=settings.storage_bucket_name, Key=file_path)
        return True
    except (StorageError, ClientError, BotoCoreError) as e:
        logger.error("Error deleting file from storage: %s", e)
        return False


def get_file_url(file_path: str) -> str:
    """
    Return a fetchable URL for a stored file.

    Uses ``storage_public_base_url`` when configured, otherwise a presigned
    GET URL valid for ``storage_url_expiry_seconds``.
    """
    if settings.storage_public_base_url:
        return f"{settings.storage_public_base_url.rstrip('/')}/{file_path}"

    client = get_storage_client()
    try:
        return client.generate_presigned_url(
            "get_object",
            Params={"Bucket": settings.storage_bucket_name, "Key": file_path},
            ExpiresIn=settings.storage_url_expiry_seconds,
        )
    except (ClientError, BotoCoreError) as e:
        logger.error("Failed to generate file URL: %s", e)
        raise StorageError(f"Failed to generate URL for {file_path}: {e}") from e
