"""
Amazon S3 backend.

S3 has no real folders, so a container is a key prefix ending in `/`,
materialized by a zero-byte marker object so empty folders survive:

    DataVault/
    DataVault/backup_2024-01-15_12-00-00/
    DataVault/backup_2024-01-15_12-00-00/sub/
    DataVault/backup_2024-01-15_12-00-00/sub/b.txt
"""

import logging
import os
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..cancellation import CancellationToken
from .base import ROOT_FOLDER_NAME, RemoteEntry, RemoteStore, StorageError


logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class S3Backend(RemoteStore):
    """Uploads backups into an S3 bucket under a key-prefix hierarchy."""

    name = 's3'
    display_name = 'Amazon S3'

    def __init__(self, bucket_name: Optional[str], access_key: Optional[str] = None,
                 secret_key: Optional[str] = None, region: str = 'us-east-1',
                 endpoint_url: Optional[str] = None, root_folder_name: str = ROOT_FOLDER_NAME):
        """
        Initialize S3 backend.

        Args:
            bucket_name: S3 bucket name (empty means not configured)
            access_key: AWS access key ID (falls back to the default credential chain)
            secret_key: AWS secret access key
            region: AWS region (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services
            root_folder_name: Name of the well-known root folder
        """
        super().__init__(root_folder_name)
        self.bucket_name = bucket_name
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.endpoint_url = endpoint_url
        self.s3_client = None

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket_name)

    def _connect(self):
        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=self.access_key or None,
                aws_secret_access_key=self.secret_key or None,
                region_name=self.region,
                endpoint_url=self.endpoint_url or None
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

        self.test_connection()

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")

    def _list_root_children(self) -> List[RemoteEntry]:
        entries = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Delimiter='/'):
                for prefix in page.get('CommonPrefixes', []):
                    entries.append(RemoteEntry(prefix['Prefix'], prefix['Prefix'].rstrip('/'), True))
                for obj in page.get('Contents', []):
                    key = obj['Key']
                    entries.append(RemoteEntry(key, key.rstrip('/'), key.endswith('/')))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"S3 list failed: {e}")
        return entries

    def _create_root_folder(self, name: str) -> Any:
        return self._create_folder(name, '')

    def _create_folder(self, name: str, parent_id: Any) -> Any:
        key = f"{parent_id}{name}/"
        try:
            self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=b'')
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 folder creation failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 folder creation failed: {e}")
        return key

    def _upload_file(self, local_path: str, name: str, parent_id: Any,
                     cancel_token: CancellationToken):
        s3_key = f"{parent_id}{name}"
        file_size = os.path.getsize(local_path)

        try:
            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key, cancel_token)
            else:
                self._simple_upload(local_path, s3_key)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str, cancel_token: CancellationToken):
        """
        Upload a large file in chunks, checking for cancellation before each part.

        The multipart upload is aborted on any error, including cancellation.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    cancel_token.check()

                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload for {s3_key}: {abort_error}")
            raise
