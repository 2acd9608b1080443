import datetime
import json
import logging
import os

import boto3
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient
from google.cloud import storage

from salesboard.store import SqliteStore

BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
DEFAULT_LOCAL_DIR = "backups"


class BackupStorage:
    """
    Class to handle uploading backups to various object storage services
    such as AWS S3, GCP, and Azure. If no storage option is provided, files are saved locally.

    Attributes:
        storage_option (str): The storage service to use ('s3', 'gcp', 'azure', or local).
        object_storage_bucket (str): The bucket or container name in the chosen storage service.
        local_dir (str): Directory used when no storage service is chosen.
    """

    def __init__(self, storage_option, object_storage_bucket, local_dir=DEFAULT_LOCAL_DIR):
        """
        Initializes the BackupStorage class based on the chosen storage option.

        Args:
           storage_option (str): The storage service to use ('s3', 'gcp', 'azure', or local).
           object_storage_bucket (str): The bucket or container name in the chosen storage service.
           local_dir (str): Directory for local backups.
        """
        self.s3_client = None
        self.gcp_client = None
        self.azure_client = None
        self.object_storage_bucket = object_storage_bucket
        self.storage_option = storage_option
        self.local_dir = local_dir

        if storage_option == "s3":
            aws_access_key_id = os.environ.get("S3_STORAGE_KEY") or None
            s3config = {
                "region_name": os.environ.get("S3_REGION_NAME") or "",
                "aws_access_key_id": aws_access_key_id,
                "aws_secret_access_key": os.environ.get("S3_STORAGE_SECRET") or ""
            }
            if os.environ.get("S3_STORAGE_ENDPOINT"):
                s3config["endpoint_url"] = os.environ.get("S3_STORAGE_ENDPOINT")
            self.s3_client = boto3.client('s3', **s3config) if aws_access_key_id else boto3.client('s3')

        elif storage_option == "gcp":
            gcp_service_account_json_file = os.getenv("GCP_SERVICE_ACCOUNT_PATH")
            self.gcp_client = storage.Client.from_service_account_json(gcp_service_account_json_file) \
                if gcp_service_account_json_file else storage.Client()

        elif storage_option == "azure":
            azure_connection_string = os.getenv("AZURE_CONNECTION_STRING")
            self.azure_client = BlobServiceClient.from_connection_string(azure_connection_string) \
                if azure_connection_string else get_azure_from_default_credentials()

        else:
            logging.warning("No OBJECT_STORAGE_OPTION is provided hence backups will be saved locally")

    def upload(self, data: bytes, destination_file_path: str, content_type="application/octet-stream"):
        """
        Uploads bytes to the selected object storage, or writes them under ``local_dir``.

        Args:
            data (bytes): The content to store.
            destination_file_path (str): The object key or relative file path.
            content_type (str): MIME type recorded by the storage service.

        Returns:
            str: Where the backup was written.
        """
        if self.storage_option == "s3":
            self.s3_client.put_object(Body=data, Bucket=self.object_storage_bucket, Key=destination_file_path)
            return f"s3://{self.object_storage_bucket}/{destination_file_path}"

        elif self.storage_option == "gcp":
            bucket = self.gcp_client.bucket(self.object_storage_bucket)
            blob = bucket.blob(destination_file_path)
            blob.upload_from_string(data, content_type=content_type)
            return f"gs://{self.object_storage_bucket}/{destination_file_path}"

        elif self.storage_option == "azure":
            blob_client = self.azure_client.get_blob_client(container=self.object_storage_bucket,
                                                            blob=destination_file_path)
            blob_client.upload_blob(data, overwrite=True)
            return f"azure://{self.object_storage_bucket}/{destination_file_path}"

        else:
            file_path = os.path.join(self.local_dir, destination_file_path)
            os.makedirs(os.path.dirname(os.path.abspath(file_path)), exist_ok=True)
            with open(file_path, 'wb') as backup_file:
                backup_file.write(data)
            return file_path


def get_azure_from_default_credentials():
    """
    Initializes an Azure BlobServiceClient using the DefaultAzureCredential for authentication.

    Returns:
        azure.storage.blob.BlobServiceClient: The Azure BlobServiceClient initialized with the default credentials.
    """
    default_credential = DefaultAzureCredential()
    account_url = os.getenv("AZURE_ACCOUNT_URL")
    return BlobServiceClient(account_url, credential=default_credential)


def backup_filename(now: datetime.datetime = None, extension: str = "db") -> str:
    now = now or datetime.datetime.now()
    return f"backup_{now.strftime(BACKUP_TIMESTAMP_FORMAT)}.{extension}"


def backup_database(store, backup_storage: BackupStorage, now: datetime.datetime = None) -> str:
    """
    Writes a timestamped backup of the database.

    A SQLite database is copied byte for byte; any other backend is exported
    table by table as JSON.

    Args:
        store (BaseStore): The database to back up.
        backup_storage (BackupStorage): Where to write the backup.
        now (datetime.datetime, optional): Timestamp used in the file name.

    Returns:
        str: The location of the written backup.
    """
    if isinstance(store, SqliteStore):
        if not os.path.exists(store.path):
            raise FileNotFoundError(f"Database file not found: {store.path}")
        with open(store.path, 'rb') as database_file:
            data = database_file.read()
        name = backup_filename(now, "db")
        content_type = "application/vnd.sqlite3"
    else:
        data = json.dumps(store.export_tables(), indent=2).encode('utf-8')
        name = backup_filename(now, "json")
        content_type = "application/json"

    location = backup_storage.upload(data, name, content_type)
    logging.info(f"Backup created: {location}")
    return location
