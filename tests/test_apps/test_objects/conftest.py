"""Shared fixtures for objects app tests."""

import boto3
import pytest
from moto import mock_aws

from server.apps.objects.exceptions import ObjectStoreError
from server.apps.objects.logic.types import FOLDER_SUFFIX, Container, ObjectRef
from server.apps.objects.models import Connection

_BUCKET = 'relocation-test'


class InMemoryStore:
    """ObjectStore double keeping keys in a dict.

    Failures are injected per key: ``copy_failures`` holds source keys
    whose copy raises, ``delete_failures`` maps keys to whether the
    delete still removed the key before raising, ``list_failures``
    holds prefixes whose listing raises and ``upload_failures`` holds keys
    whose upload raises. User metadata lives in ``metadata`` and follows
    copies the way S3 does.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.copy_failures = set()
        self.delete_failures = {}
        self.list_failures = set()
        self.upload_failures = set()
        self.metadata = {}

    def put(self, container, key, data=b'data'):
        self.objects[(container, key)] = data

    def keys(self, container):
        return sorted(key for owner, key in self.objects if owner == container)

    def list_objects(self, container, prefix, recursive=False):
        self.calls.append(('list', prefix))
        if prefix in self.list_failures:
            raise ObjectStoreError('list', prefix, 'listing failed')

        folders = set()
        files = []
        for key in self.keys(container):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            if recursive:
                files.append(self._ref(container, key))
            elif not rest:
                continue
            elif FOLDER_SUFFIX in rest:
                folders.add(prefix + rest.split(FOLDER_SUFFIX)[0] + FOLDER_SUFFIX)
            else:
                files.append(self._ref(container, key))
        return [ObjectRef.from_key(folder) for folder in sorted(folders)] + files

    def copy_object(
        self,
        src_container,
        src_key,
        dest_container,
        dest_key,
        on_progress=None,
        metadata=None,
    ):
        self.calls.append(('copy', src_key, dest_key))
        if src_key in self.copy_failures:
            raise ObjectStoreError('copy', src_key, 'copy rejected')

        if src_key.endswith(FOLDER_SUFFIX):
            members = [
                key for key in self.keys(src_container) if key.startswith(src_key)
            ]
        else:
            members = [src_key] if (src_container, src_key) in self.objects else []
        if not members:
            raise ObjectStoreError('copy', src_key, 'NoSuchKey')

        for key in members:
            data = self.objects[(src_container, key)]
            target = (dest_container, dest_key + key[len(src_key):])
            self.objects[target] = data
            if metadata is None:
                metadata_of_copy = self.metadata.get((src_container, key), {})
            else:
                metadata_of_copy = metadata
            self.metadata[target] = dict(metadata_of_copy)
            if on_progress is not None:
                on_progress(len(data))

    def delete_object(self, container, key):
        self.calls.append(('delete', key))
        removed_anyway = self.delete_failures.get(key)
        if removed_anyway is not None:
            if removed_anyway:
                self._remove(container, key)
            raise ObjectStoreError('delete', key, 'delete timed out')
        self._remove(container, key)

    def upload_object(self, container, key, content):
        self.calls.append(('upload', key))
        if key in self.upload_failures:
            raise ObjectStoreError('upload', key, 'upload rejected')
        data = content.read() if hasattr(content, 'read') else bytes(content)
        self.objects[(container, key)] = data
        return len(data)

    def create_folder(self, container, key):
        self.calls.append(('mkdir', key))
        if key in self.upload_failures:
            raise ObjectStoreError('create', key, 'create rejected')
        self.objects[(container, key)] = b''

    def get_metadata(self, container, key):
        self.calls.append(('head', key))
        if (container, key) not in self.objects:
            raise ObjectStoreError('head', key, 'NoSuchKey')
        return dict(self.metadata.get((container, key), {}))

    def _ref(self, container, key):
        return ObjectRef(
            key=key,
            size=len(self.objects[(container, key)]),
            is_folder=key.endswith(FOLDER_SUFFIX),
        )

    def _remove(self, container, key):
        for owner, stored in list(self.objects):
            if owner != container:
                continue
            in_folder = key.endswith(FOLDER_SUFFIX) and stored.startswith(key)
            if stored == key or in_folder:
                del self.objects[(owner, stored)]
                self.metadata.pop((owner, stored), None)


@pytest.fixture
def container():
    """Container used by in-memory store tests.

    Returns:
        Container on connection 1.
    """
    return Container(connection_id=1, bucket='photos')


@pytest.fixture
def other_container():
    """Second container for cross-container tests.

    Returns:
        Container on connection 2.
    """
    return Container(connection_id=2, bucket='archive')


@pytest.fixture
def store():
    """Empty in-memory object store.

    Returns:
        InMemoryStore instance.
    """
    return InMemoryStore()


@pytest.fixture
def activity_events():
    """Collected activity events.

    Returns:
        List the recorder fixture appends to.
    """
    return []


@pytest.fixture
def recorder(activity_events):
    """Activity recorder collecting events into a list.

    Returns:
        Callable accepting ActivityEvent instances.
    """
    return activity_events.append


@pytest.fixture
def mock_s3():
    """Mock S3 service with the relocation test bucket.

    Yields:
        boto3 S3 resource with the bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=_BUCKET)
        yield conn


@pytest.fixture
def connection(db):
    """Create a connection pointing at the mocked bucket.

    Returns:
        Connection instance with trash and activity log enabled.
    """
    return Connection.objects.create(
        name='Test connection',
        bucket_name=_BUCKET,
        region='us-east-1',
        access_key_id='testing',
        secret_access_key='testing',
        enable_trash=True,
        enable_activity_log=True,
    )
