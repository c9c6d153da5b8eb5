"""
Shared pytest fixtures for DataVault tests.

This module provides fixtures for:
- Source trees on disk
- An in-memory RemoteStore (MemoryStore) used in place of real providers
- Flask app and test client
- Mock fixtures for external services (S3, APScheduler)
"""

import logging
import os
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from datavault import create_app
from datavault.backup.storage.base import ROOT_FOLDER_NAME, RemoteEntry, RemoteStore, StorageError
from datavault.config import BackupSettings, TestingConfig


GLOBAL_ROOT = 0


class MemoryStore(RemoteStore):
    """
    RemoteStore keeping its folder hierarchy in a dict.

    Node 0 is the provider's global root. `fail_names` makes any folder
    creation or file upload with that name fail; `on_upload` is called with
    the file name before each upload.
    """

    def __init__(self, name='memory', display_name='Memory', configured=True,
                 fail_names=(), fail_connect=None, fail_list=False, on_upload=None,
                 root_folder_name=ROOT_FOLDER_NAME):
        super().__init__(root_folder_name)
        self.name = name
        self.display_name = display_name
        self.configured = configured
        self.fail_names = set(fail_names)
        self.fail_connect = fail_connect
        self.fail_list = fail_list
        self.on_upload = on_upload

        self.nodes = {GLOBAL_ROOT: {'name': '', 'parent': None, 'folder': True}}
        self.contents = {}
        self.calls = []
        self._next_id = 1

    @property
    def is_configured(self):
        return self.configured

    def add_node(self, name, parent_id, folder):
        node_id = self._next_id
        self._next_id += 1
        self.nodes[node_id] = {'name': name, 'parent': parent_id, 'folder': folder}
        return node_id

    def children(self, parent_id):
        return {node_id: node for node_id, node in self.nodes.items() if node['parent'] == parent_id}

    def tree(self, node_id=GLOBAL_ROOT):
        """Nested dict of the subtree: folders map to dicts, files to their bytes."""
        result = {}
        for child_id, node in self.children(node_id).items():
            result[node['name']] = self.tree(child_id) if node['folder'] else self.contents[child_id]
        return result

    def calls_of(self, kind):
        return [call for call in self.calls if call[0] == kind]

    def _connect(self):
        self.calls.append(('connect',))
        if self.fail_connect:
            raise StorageError(self.fail_connect)

    def _list_root_children(self):
        self.calls.append(('list',))
        if self.fail_list:
            raise StorageError("listing unavailable")
        return [
            RemoteEntry(node_id, node['name'], node['folder'])
            for node_id, node in self.children(GLOBAL_ROOT).items()
        ]

    def _create_root_folder(self, name):
        return self._create_folder(name, GLOBAL_ROOT)

    def _create_folder(self, name, parent_id):
        self.calls.append(('create_folder', name, parent_id))
        if name in self.fail_names:
            raise StorageError(f"cannot create folder {name}")
        return self.add_node(name, parent_id, True)

    def _upload_file(self, local_path, name, parent_id, cancel_token):
        self.calls.append(('upload', name, parent_id))
        if self.on_upload:
            self.on_upload(name)
        if name in self.fail_names:
            raise StorageError(f"cannot upload {name}")

        with open(local_path, 'rb') as f:
            data = f.read()

        node_id = self.add_node(name, parent_id, False)
        self.contents[node_id] = data


def read_tree(path):
    """Nested dict of a local directory: folders map to dicts, files to their bytes."""
    result = {}
    for entry in os.scandir(path):
        if entry.is_dir(follow_symlinks=False):
            result[entry.name] = read_tree(entry.path)
        else:
            with open(entry.path, 'rb') as f:
                result[entry.name] = f.read()
    return result


@pytest.fixture
def make_store():
    """Factory for MemoryStore instances; pass initialize=False to get an uninitialized one."""
    def factory(initialize=True, **kwargs):
        store = MemoryStore(**kwargs)
        if initialize:
            store.initialize()
        return store
    return factory


@pytest.fixture
def local_tree():
    return read_tree


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a source directory to back up.

    Creates:
    - a.txt
    - empty/ (empty directory)
    - sub/b.txt (empty file)
    - sub/deep/c.bin
    """
    source = tmp_path / 'src'
    source.mkdir()
    (source / 'a.txt').write_bytes(b'abc')
    (source / 'empty').mkdir()
    (source / 'sub').mkdir()
    (source / 'sub' / 'b.txt').write_bytes(b'')
    (source / 'sub' / 'deep').mkdir()
    (source / 'sub' / 'deep' / 'c.bin').write_bytes(bytes(range(256)) * 4)
    return source


@pytest.fixture
def staging_root(tmp_path):
    path = tmp_path / 'staging'
    path.mkdir()
    return path


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches for real ones."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture(scope='function')
def settings(source_tree):
    return BackupSettings(source_folder=str(source_tree), pcloud_auth='token123')


@pytest.fixture(scope='function')
def app(tmp_path, monkeypatch, settings, make_store):
    """
    Create Flask app with test configuration and in-memory backends.

    The scheduler is built but not started.
    """
    monkeypatch.setattr(TestingConfig, 'TEMP_DIR', str(tmp_path / 'temp'))

    backends = [make_store(name='primary', display_name='Primary')]
    app = create_app('testing', settings=settings, backends=backends)

    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('datavault.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance


@pytest.fixture(autouse=True)
def restore_root_logging():
    """configure_logging() replaces root handlers; put pytest's back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
