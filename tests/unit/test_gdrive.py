"""
Unit tests for the Google Drive backend (datavault/backup/storage/gdrive.py).

The Drive v3 service is replaced with a MagicMock; MediaFileUpload and the
credential classes are patched where they are used.
"""

import itertools
import json
from unittest.mock import ANY, MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from datavault.backup.cancellation import BackupCancelled, CancellationToken
from datavault.backup.storage import gdrive
from datavault.backup.storage.base import StorageError
from datavault.backup.storage.gdrive import FOLDER_MIME_TYPE, SCOPES, GoogleDriveBackend


def http_error(status=403):
    return HttpError(MagicMock(status=status, reason='Forbidden'), b'forbidden')


@pytest.fixture
def drive_service():
    """Drive service mock with no existing root folder and sequential ids for created files."""
    service = MagicMock()
    files = service.files.return_value
    files.list.return_value.execute.return_value = {'files': []}

    counter = itertools.count(1)
    files.create.return_value.execute.side_effect = lambda: {'id': f"id{next(counter)}"}
    return service


def created(service):
    """(name, parent, is_folder) for every files().create call, in order."""
    result = []
    for c in service.files.return_value.create.call_args_list:
        body = c.kwargs['body']
        result.append((body['name'], body['parents'][0], body.get('mimeType') == FOLDER_MIME_TYPE))
    return result


class TestGoogleDriveRoot:
    """Test root folder resolution."""

    def test_existing_root_folder_is_found(self, drive_service):
        drive_service.files.return_value.list.return_value.execute.return_value = {
            'files': [{'id': 'root123', 'name': 'DataVault', 'mimeType': FOLDER_MIME_TYPE}]
        }
        backend = GoogleDriveBackend(None, service=drive_service)

        assert backend.initialize() is True

        assert backend.root_folder_id == 'root123'
        drive_service.files.return_value.create.assert_not_called()

    def test_root_folder_is_created_under_drive_root(self, drive_service):
        backend = GoogleDriveBackend(None, service=drive_service)

        backend.initialize()

        assert backend.root_folder_id == 'id1'
        assert created(drive_service) == [('DataVault', 'root', True)]

    def test_search_query_targets_root_folders(self, drive_service):
        backend = GoogleDriveBackend(None, service=drive_service)

        backend.initialize()

        query = drive_service.files.return_value.list.call_args.kwargs['q']
        assert "'root' in parents" in query
        assert "name='DataVault'" in query
        assert 'trashed=false' in query

    def test_quote_in_root_name_is_escaped(self, drive_service):
        backend = GoogleDriveBackend(None, root_folder_name="Bob's", service=drive_service)

        backend.initialize()

        query = drive_service.files.return_value.list.call_args.kwargs['q']
        assert "name='Bob\\'s'" in query

    def test_api_error_leaves_backend_inert(self, drive_service):
        drive_service.files.return_value.list.return_value.execute.side_effect = http_error(403)
        backend = GoogleDriveBackend(None, service=drive_service)

        assert backend.initialize() is False
        assert 'failed to search for root folder' in backend.init_error
        assert not backend.is_ready


class TestGoogleDriveAuth:
    """Test credential loading."""

    def test_not_configured_without_auth_file(self):
        assert GoogleDriveBackend('').is_configured is False
        assert GoogleDriveBackend('auth.json').is_configured is True

    def test_missing_credentials_file(self, tmp_path):
        backend = GoogleDriveBackend(str(tmp_path / 'missing.json'))

        assert backend.initialize() is False
        assert 'failed to read credentials file' in backend.init_error

    @patch('datavault.backup.storage.gdrive.build')
    @patch('datavault.backup.storage.gdrive.Credentials')
    def test_authorized_user_credentials_are_refreshed(self, mock_credentials, mock_build, tmp_path, drive_service):
        auth_file = tmp_path / 'auth.json'
        auth_file.write_text(json.dumps({
            'type': 'authorized_user',
            'client_id': 'client',
            'client_secret': 'secret',
            'refresh_token': 'refresh'
        }))
        creds = mock_credentials.from_authorized_user_info.return_value
        creds.valid = False
        creds.refresh_token = 'refresh'
        mock_build.return_value = drive_service

        backend = GoogleDriveBackend(str(auth_file))

        assert backend.initialize() is True
        creds.refresh.assert_called_once()
        mock_build.assert_called_once_with('drive', 'v3', credentials=creds, cache_discovery=False)

    @patch('datavault.backup.storage.gdrive.build')
    @patch('datavault.backup.storage.gdrive.service_account')
    def test_service_account_credentials(self, mock_service_account, mock_build, tmp_path, drive_service):
        info = {'type': 'service_account', 'client_email': 'bot@example.com'}
        auth_file = tmp_path / 'sa.json'
        auth_file.write_text(json.dumps(info))
        mock_build.return_value = drive_service

        backend = GoogleDriveBackend(str(auth_file))

        assert backend.initialize() is True
        mock_service_account.Credentials.from_service_account_info.assert_called_once_with(info, scopes=SCOPES)

    def test_invalid_json(self, tmp_path):
        auth_file = tmp_path / 'auth.json'
        auth_file.write_text('{not json')

        backend = GoogleDriveBackend(str(auth_file))

        assert backend.initialize() is False
        assert 'failed to read credentials file' in backend.init_error


class TestGoogleDriveUpload:
    """Test folder mirroring and file upload."""

    @patch('datavault.backup.storage.gdrive.MediaFileUpload')
    def test_upload_folder_mirrors_tree(self, mock_media, drive_service, source_tree):
        backend = GoogleDriveBackend(None, service=drive_service)
        backend.initialize()

        stats = backend.upload_folder(str(source_tree), 'backup_x')

        assert created(drive_service) == [
            ('DataVault', 'root', True),
            ('backup_x', 'id1', True),
            ('a.txt', 'id2', False),
            ('empty', 'id2', True),
            ('sub', 'id2', True),
            ('b.txt', 'id5', False),
            ('deep', 'id5', True),
            ('c.bin', 'id7', False),
        ]
        assert stats.files == 3
        assert stats.folders == 3
        mock_media.assert_any_call(str(source_tree / 'a.txt'), mimetype='text/plain', resumable=False)

    @patch('datavault.backup.storage.gdrive.MediaFileUpload')
    def test_large_file_uses_resumable_upload(self, mock_media, drive_service, tmp_path, monkeypatch):
        monkeypatch.setattr(gdrive, 'RESUMABLE_THRESHOLD', 10)
        big = tmp_path / 'big.dat'
        big.write_bytes(b'x' * 100)

        request = MagicMock()
        status = MagicMock()
        status.progress.return_value = 0.5
        request.next_chunk.side_effect = [(status, None), (None, {'id': 'f1'})]
        drive_service.files.return_value.create.return_value = request

        backend = GoogleDriveBackend(None, service=drive_service)
        backend._upload_file(str(big), 'big.dat', 'parent1', CancellationToken())

        assert request.next_chunk.call_count == 2
        request.execute.assert_not_called()
        mock_media.assert_called_once_with(str(big), mimetype=ANY, resumable=True, chunksize=gdrive.CHUNK_SIZE)

    @patch('datavault.backup.storage.gdrive.MediaFileUpload')
    def test_resumable_upload_checks_cancellation(self, mock_media, drive_service, tmp_path, monkeypatch):
        monkeypatch.setattr(gdrive, 'RESUMABLE_THRESHOLD', 10)
        big = tmp_path / 'big.dat'
        big.write_bytes(b'x' * 100)
        token = CancellationToken()
        token.cancel()

        backend = GoogleDriveBackend(None, service=drive_service)

        with pytest.raises(BackupCancelled):
            backend._upload_file(str(big), 'big.dat', 'parent1', token)

        drive_service.files.return_value.create.return_value.next_chunk.assert_not_called()

    @patch('datavault.backup.storage.gdrive.MediaFileUpload')
    def test_upload_api_error_raises_storage_error(self, mock_media, drive_service, tmp_path):
        small = tmp_path / 'small.txt'
        small.write_bytes(b'data')
        drive_service.files.return_value.create.return_value.execute.side_effect = http_error(500)

        backend = GoogleDriveBackend(None, service=drive_service)

        with pytest.raises(StorageError, match='Google Drive upload failed'):
            backend._upload_file(str(small), 'small.txt', 'parent1', CancellationToken())
