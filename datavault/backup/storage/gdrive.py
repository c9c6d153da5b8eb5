"""
Google Drive backend.

Containers are Drive folders addressed by opaque string ids. Credentials are
read from a JSON file holding either an authorized-user token (client id,
client secret and refresh token) or a service-account key.
"""

import json
import logging
import mimetypes
import os
from typing import Any, List, Optional

from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from ..cancellation import CancellationToken
from .base import ROOT_FOLDER_NAME, RemoteEntry, RemoteStore, StorageError


logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/drive.file']
FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'

# Files above this size use a resumable upload so cancellation is honoured between chunks
RESUMABLE_THRESHOLD = 5 * 1024 * 1024
CHUNK_SIZE = 8 * 1024 * 1024  # must be a multiple of 256KB


def _escape_query_value(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


class GoogleDriveBackend(RemoteStore):
    """Uploads backups into a Google Drive folder hierarchy."""

    name = 'gdrive'
    display_name = 'Google Drive'

    def __init__(self, auth_file: Optional[str], root_folder_name: str = ROOT_FOLDER_NAME, service=None):
        """
        Initialize Google Drive backend.

        Args:
            auth_file: Path to the credentials JSON file (empty means not configured)
            root_folder_name: Name of the well-known root folder
            service: Prebuilt Drive v3 service (skips authentication)
        """
        super().__init__(root_folder_name)
        self.auth_file = auth_file
        self.service = service

    @property
    def is_configured(self) -> bool:
        return bool(self.auth_file) or self.service is not None

    def _connect(self):
        if self.service is not None:
            return

        try:
            with open(self.auth_file, 'r') as f:
                info = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"failed to read credentials file: {e}")

        try:
            if info.get('type') == 'service_account':
                creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
            else:
                creds = Credentials.from_authorized_user_info(info, SCOPES)
                if not creds.valid and creds.refresh_token:
                    logger.info("Refreshing Google Drive credentials...")
                    creds.refresh(Request())
        except Exception as e:
            raise StorageError(f"failed to parse credentials: {e}")

        try:
            self.service = build('drive', 'v3', credentials=creds, cache_discovery=False)
        except Exception as e:
            raise StorageError(f"failed to create Drive service: {e}")

        logger.info("Google Drive service initialized successfully")

    def _list_root_children(self) -> List[RemoteEntry]:
        query = (
            f"'root' in parents and name='{_escape_query_value(self.root_folder_name)}' "
            f"and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        try:
            results = self.service.files().list(
                q=query,
                spaces='drive',
                fields='files(id, name, mimeType)'
            ).execute()
        except HttpError as e:
            raise StorageError(f"Google Drive API error ({e.resp.status}): {e}")

        return [
            RemoteEntry(item['id'], item['name'], item.get('mimeType') == FOLDER_MIME_TYPE)
            for item in results.get('files', [])
        ]

    def _create_root_folder(self, name: str) -> Any:
        return self._create_folder(name, 'root')

    def _create_folder(self, name: str, parent_id: Any) -> Any:
        file_metadata = {
            'name': name,
            'mimeType': FOLDER_MIME_TYPE,
            'parents': [parent_id]
        }
        try:
            folder = self.service.files().create(body=file_metadata, fields='id').execute()
        except HttpError as e:
            raise StorageError(f"Google Drive API error ({e.resp.status}): {e}")
        return folder['id']

    def _upload_file(self, local_path: str, name: str, parent_id: Any,
                     cancel_token: CancellationToken):
        file_size = os.path.getsize(local_path)
        mime_type = mimetypes.guess_type(name)[0] or 'application/octet-stream'
        resumable = file_size > RESUMABLE_THRESHOLD

        if resumable:
            media = MediaFileUpload(local_path, mimetype=mime_type, resumable=True, chunksize=CHUNK_SIZE)
        else:
            media = MediaFileUpload(local_path, mimetype=mime_type, resumable=False)

        file_metadata = {
            'name': name,
            'parents': [parent_id]
        }

        try:
            request = self.service.files().create(body=file_metadata, media_body=media, fields='id')

            if not resumable:
                request.execute()
                return

            response = None
            while response is None:
                cancel_token.check()
                status, response = request.next_chunk()
                if status:
                    logger.debug(f"Upload progress for {name}: {int(status.progress() * 100)}%")
        except HttpError as e:
            raise StorageError(f"Google Drive upload failed ({e.resp.status}): {e}")
