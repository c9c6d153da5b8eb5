"""
pCloud backend.

Containers are pCloud folders addressed by integer `folderid`; the global
root is folder 0. Every API response carries `result`, where non-zero means
failure with a human-readable `error`.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..cancellation import CancellationToken
from .base import ROOT_FOLDER_NAME, RemoteEntry, RemoteStore, StorageError


logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'https://api.pcloud.com'
GLOBAL_ROOT_FOLDER_ID = 0


class PCloudBackend(RemoteStore):
    """Uploads backups into pCloud through its HTTP JSON API."""

    name = 'pcloud'
    display_name = 'pCloud'

    def __init__(self, auth_token: Optional[str], api_url: str = DEFAULT_API_URL,
                 timeout: int = 30, root_folder_name: str = ROOT_FOLDER_NAME,
                 session: Optional[requests.Session] = None):
        """
        Initialize pCloud backend.

        Args:
            auth_token: OAuth access token (empty means not configured)
            api_url: API host, e.g. https://eapi.pcloud.com for EU accounts
            timeout: Per-request timeout in seconds
            root_folder_name: Name of the well-known root folder
            session: Optional preconfigured requests session
        """
        super().__init__(root_folder_name)
        self.auth_token = auth_token
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self._session = session

    @property
    def is_configured(self) -> bool:
        return bool(self.auth_token)

    def _connect(self):
        if self._session is None:
            self._session = requests.Session()

    def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
                 method: str = 'GET', **kwargs) -> Dict[str, Any]:
        """
        Call a pCloud API method and return the decoded JSON body.

        Raises:
            StorageError: On transport errors, non-200 responses, or a non-zero `result`
        """
        query = dict(params or {})
        query['access_token'] = self.auth_token

        try:
            response = self._session.request(
                method,
                f"{self.api_url}/{endpoint}",
                params=query,
                timeout=self.timeout,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise StorageError(f"request failed: {e}")

        if response.status_code != 200:
            raise StorageError(f"HTTP error {response.status_code}: {response.text}")

        try:
            payload = response.json()
        except ValueError as e:
            raise StorageError(f"failed to parse {endpoint} response: {e}")

        if payload.get('result', 0) != 0:
            raise StorageError(f"pCloud API error ({payload.get('result')}): {payload.get('error', 'unknown error')}")

        return payload

    def _list_root_children(self) -> List[RemoteEntry]:
        payload = self._request('listfolder', {'folderid': GLOBAL_ROOT_FOLDER_ID})
        contents = payload.get('metadata', {}).get('contents', [])

        entries = []
        for item in contents:
            is_folder = bool(item.get('isfolder'))
            native_id = item.get('folderid') if is_folder else item.get('fileid')
            entries.append(RemoteEntry(native_id, item.get('name', ''), is_folder))
        return entries

    def _create_root_folder(self, name: str) -> Any:
        return self._create_folder(name, GLOBAL_ROOT_FOLDER_ID)

    def _create_folder(self, name: str, parent_id: Any) -> Any:
        payload = self._request('createfolder', {'folderid': parent_id, 'name': name})
        return int(payload['metadata']['folderid'])

    def _upload_file(self, local_path: str, name: str, parent_id: Any,
                     cancel_token: CancellationToken):
        with open(local_path, 'rb') as f:
            self._request(
                'uploadfile',
                {'folderid': parent_id, 'filename': name, 'nopartial': 1},
                method='POST',
                files={'file': (name, f)}
            )
