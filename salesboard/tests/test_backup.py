import datetime
import json
import os
from unittest.mock import patch, MagicMock

import pytest

from salesboard.backup import BackupStorage, backup_database, backup_filename
from salesboard.store import SqliteStore

NOW = datetime.datetime(2026, 1, 15, 9, 30, 5)


def test_backup_filename():
    assert backup_filename(NOW) == "backup_2026-01-15_09-30-05.db"
    assert backup_filename(NOW, "json") == "backup_2026-01-15_09-30-05.json"


class TestLocalStorage:
    def test_upload(self, tmp_path):
        storage = BackupStorage(None, None, local_dir=str(tmp_path))
        location = storage.upload(b"payload", "nested/backup.db")
        assert location == os.path.join(str(tmp_path), "nested/backup.db")
        with open(location, "rb") as backup_file:
            assert backup_file.read() == b"payload"

    def test_sqlite_file_copy(self, tmp_path, sqlite_store):
        sqlite_store.save_user("admin", "hash", "ADMIN")
        storage = BackupStorage(None, None, local_dir=str(tmp_path / "backups"))

        location = backup_database(sqlite_store, storage, now=NOW)

        assert location.endswith("backup_2026-01-15_09-30-05.db")
        with open(location, "rb") as backup_file, open(sqlite_store.path, "rb") as database_file:
            assert backup_file.read() == database_file.read()

    def test_missing_sqlite_file(self, tmp_path):
        store = SqliteStore({"path": str(tmp_path / "missing.db")})
        storage = BackupStorage(None, None, local_dir=str(tmp_path / "backups"))
        with pytest.raises(FileNotFoundError):
            backup_database(store, storage, now=NOW)

    def test_other_backends_exported_as_json(self, tmp_path):
        store = MagicMock()
        store.export_tables.return_value = {"users": [{"id": 1, "username": "admin"}]}
        storage = BackupStorage(None, None, local_dir=str(tmp_path))

        location = backup_database(store, storage, now=NOW)

        assert location.endswith("backup_2026-01-15_09-30-05.json")
        with open(location) as backup_file:
            assert json.load(backup_file) == {"users": [{"id": 1, "username": "admin"}]}


class TestObjectStorage:
    @patch('salesboard.backup.boto3')
    def test_s3_upload(self, mock_boto3):
        mock_client = MagicMock()
        mock_boto3.client.return_value = mock_client

        storage = BackupStorage("s3", "salesboard-backups")
        location = storage.upload(b"payload", "backup.db")

        mock_boto3.client.assert_called_once_with('s3')
        mock_client.put_object.assert_called_once_with(Body=b"payload", Bucket="salesboard-backups", Key="backup.db")
        assert location == "s3://salesboard-backups/backup.db"

    @patch.dict(os.environ, {"S3_STORAGE_KEY": "key", "S3_STORAGE_SECRET": "secret", "S3_REGION_NAME": "eu-west-1",
                             "S3_STORAGE_ENDPOINT": "http://minio:9000"})
    @patch('salesboard.backup.boto3')
    def test_s3_with_credentials(self, mock_boto3):
        BackupStorage("s3", "salesboard-backups")
        mock_boto3.client.assert_called_once_with(
            's3', region_name="eu-west-1", aws_access_key_id="key", aws_secret_access_key="secret",
            endpoint_url="http://minio:9000")

    @patch('salesboard.backup.storage')
    def test_gcp_upload(self, mock_storage):
        mock_bucket = mock_storage.Client.return_value.bucket.return_value

        location = BackupStorage("gcp", "salesboard-backups").upload(b"payload", "backup.json", "application/json")

        mock_storage.Client.return_value.bucket.assert_called_once_with("salesboard-backups")
        mock_bucket.blob.assert_called_once_with("backup.json")
        mock_bucket.blob.return_value.upload_from_string.assert_called_once_with(b"payload", content_type="application/json")
        assert location == "gs://salesboard-backups/backup.json"

    @patch.dict(os.environ, {"AZURE_CONNECTION_STRING": "UseDevelopmentStorage=true"})
    @patch('salesboard.backup.BlobServiceClient')
    def test_azure_upload(self, mock_blob_service):
        mock_client = mock_blob_service.from_connection_string.return_value

        location = BackupStorage("azure", "backups").upload(b"payload", "backup.db")

        mock_client.get_blob_client.assert_called_once_with(container="backups", blob="backup.db")
        mock_client.get_blob_client.return_value.upload_blob.assert_called_once_with(b"payload", overwrite=True)
        assert location == "azure://backups/backup.db"
