import uuid

import pytest

from gymdesk.core.config import settings
from gymdesk.integrations.storage import (
    StorageConnectionError,
    delete_file,
    download_file,
    get_file_url,
    get_storage_client,
    upload_file,
)


def _storage_configured():
    return all(
        [
            settings.storage_access_key_id,
            settings.storage_secret_access_key,
            settings.storage_bucket_name,
        ]
    )


def test_missing_credentials_raise_connection_error(monkeypatch):
    monkeypatch.setattr(settings, "storage_access_key_id", "")

    with pytest.raises(StorageConnectionError):
        get_storage_client()


def test_public_base_url_skips_presigning(monkeypatch):
    monkeypatch.setattr(settings, "storage_public_base_url", "https://cdn.example.test/imports/")

    assert get_file_url("member-imports/sub-a/1_members.csv") == (
        "https://cdn.example.test/imports/member-imports/sub-a/1_members.csv"
    )


@pytest.mark.integration
def test_storage_upload_and_download_roundtrip():
    """
    Upload an import file, fetch it back and remove it again.

    Skips automatically if storage credentials are not configured in the environment.
    """
    if not _storage_configured():
        pytest.skip("Storage credentials not configured; skipping live storage test")

    data = b"name,email\nJohn Doe,john@example.com\n"
    unique_name = f"test-{uuid.uuid4().hex}.csv"

    upload_result = upload_file(data, unique_name, folder="tests")
    file_path = upload_result["file_path"]

    try:
        assert upload_result["size"] == len(data)
        assert download_file(file_path) == data
        assert get_file_url(file_path)
    finally:
        assert delete_file(file_path) is True
