"""Tests for the S3 object store adapter (moto)."""

import pytest
from django.core.files.base import ContentFile

from server.apps.objects.exceptions import ObjectStoreError
from server.apps.objects.infrastructure.storage import (
    S3ObjectStore,
    build_client_config,
    get_content_size,
)
from server.apps.objects.logic.relocation import RelocationEngine
from server.apps.objects.logic.types import Container, FailureReason, ObjectRef


@pytest.fixture
def s3_store(connection):
    """S3 store over the mocked bucket.

    Returns:
        S3ObjectStore for the test connection.
    """
    return S3ObjectStore([connection])


@pytest.fixture
def bucket_container(connection):
    """Container for the mocked bucket.

    Returns:
        Container of the test connection.
    """
    return Container(connection_id=connection.id, bucket=connection.bucket_name)


def _put(mock_s3, key, body=b'data'):
    mock_s3.Object('relocation-test', key).put(Body=body)


def _keys(mock_s3):
    bucket = mock_s3.Bucket('relocation-test')
    return sorted(obj.key for obj in bucket.objects.all())


def test_client_config_timeouts(settings):
    """Test timeouts and retries come from settings."""
    settings.OBJECT_STORE_CONNECT_TIMEOUT = 3
    settings.OBJECT_STORE_READ_TIMEOUT = 7
    settings.OBJECT_STORE_MAX_ATTEMPTS = 2

    config = build_client_config('http://minio:9000')

    assert config.connect_timeout == 3
    assert config.read_timeout == 7
    assert config.retries == {'max_attempts': 2, 'mode': 'standard'}
    assert config.s3 == {'addressing_style': 'path'}


def test_content_size():
    """Test size of file-like content."""
    assert get_content_size(ContentFile(b'12345')) == 5


@pytest.mark.django_db
class TestS3ObjectStore:
    """Tests for S3ObjectStore against moto."""

    def test_list_reports_folders_once(self, mock_s3, s3_store, bucket_container):
        """Test a shallow listing groups keys under folder refs."""
        _put(mock_s3, 'docs/a.txt')
        _put(mock_s3, 'docs/b/c.txt')
        _put(mock_s3, 'top.txt', b'12345')

        listing = s3_store.list_objects(bucket_container, '')

        assert [ref.key for ref in listing] == ['docs/', 'top.txt']
        assert listing[0].is_folder
        assert listing[1].size == 5

    def test_list_skips_folder_marker(self, mock_s3, s3_store, bucket_container):
        """Test a folder's own marker is not one of its children."""
        _put(mock_s3, 'docs/', b'')
        _put(mock_s3, 'docs/a.txt')

        listing = s3_store.list_objects(bucket_container, 'docs/')

        assert [ref.key for ref in listing] == ['docs/a.txt']

    def test_recursive_list(self, mock_s3, s3_store, bucket_container):
        """Test a recursive listing returns every key."""
        _put(mock_s3, 'docs/a.txt')
        _put(mock_s3, 'docs/b/c.txt')

        listing = s3_store.list_objects(bucket_container, 'docs/', recursive=True)

        assert [ref.key for ref in listing] == ['docs/a.txt', 'docs/b/c.txt']

    def test_copy_folder(self, mock_s3, s3_store, bucket_container):
        """Test copying a folder key copies the subtree."""
        _put(mock_s3, 'a/x.txt')
        _put(mock_s3, 'a/b/y.txt')

        s3_store.copy_object(bucket_container, 'a/', bucket_container, 'z/a/')

        assert _keys(mock_s3) == ['a/b/y.txt', 'a/x.txt', 'z/a/b/y.txt', 'z/a/x.txt']

    def test_copy_missing_key(self, mock_s3, s3_store, bucket_container):
        """Test copying a missing key raises ObjectStoreError."""
        with pytest.raises(ObjectStoreError):
            s3_store.copy_object(
                bucket_container,
                'missing.txt',
                bucket_container,
                'other.txt',
            )

    def test_copy_empty_folder(self, mock_s3, s3_store, bucket_container):
        """Test copying a folder with no keys raises ObjectStoreError."""
        with pytest.raises(ObjectStoreError, match='Folder does not exist'):
            s3_store.copy_object(bucket_container, 'nope/', bucket_container, 'x/')

    def test_delete_folder(self, mock_s3, s3_store, bucket_container):
        """Test deleting a folder key removes the subtree only."""
        _put(mock_s3, 'a/x.txt')
        _put(mock_s3, 'a/b/y.txt')
        _put(mock_s3, 'ab.txt')

        s3_store.delete_object(bucket_container, 'a/')

        assert _keys(mock_s3) == ['ab.txt']

    def test_upload(self, mock_s3, s3_store, bucket_container):
        """Test upload writes the key and reports its size."""
        size = s3_store.upload_object(
            bucket_container,
            'docs/new.txt',
            ContentFile(b'hello', name='new.txt'),
        )

        assert size == 5
        assert _keys(mock_s3) == ['docs/new.txt']

    def test_create_folder_marker(self, mock_s3, s3_store, bucket_container):
        """Test a folder marker is listed as a folder."""
        s3_store.create_folder(bucket_container, 'docs/')

        listing = s3_store.list_objects(bucket_container, '')

        assert _keys(mock_s3) == ['docs/']
        assert [(ref.key, ref.is_folder) for ref in listing] == [('docs/', True)]

    def test_copy_replaces_metadata(self, mock_s3, s3_store, bucket_container):
        """Test metadata given to a copy replaces the source's."""
        mock_s3.Object('relocation-test', 'a.txt').put(
            Body=b'data',
            Metadata={'owner': 'alice'},
        )

        s3_store.copy_object(
            bucket_container,
            'a.txt',
            bucket_container,
            '.trash/a.txt',
            metadata={'original-path': 'a.txt'},
        )

        metadata = s3_store.get_metadata(bucket_container, '.trash/a.txt')
        assert metadata == {'original-path': 'a.txt'}

    def test_copy_keeps_metadata(self, mock_s3, s3_store, bucket_container):
        """Test a plain copy keeps the source metadata."""
        mock_s3.Object('relocation-test', 'a.txt').put(
            Body=b'data',
            Metadata={'owner': 'alice'},
        )

        s3_store.copy_object(bucket_container, 'a.txt', bucket_container, 'b.txt')

        assert s3_store.get_metadata(bucket_container, 'b.txt') == {'owner': 'alice'}

    def test_metadata_of_missing_key(self, mock_s3, s3_store, bucket_container):
        """Test reading metadata of a missing key raises ObjectStoreError."""
        with pytest.raises(ObjectStoreError):
            s3_store.get_metadata(bucket_container, 'missing.txt')

    def test_engine_restores_recorded_path(
        self,
        mock_s3,
        s3_store,
        bucket_container,
    ):
        """Test restore follows the original path stored on S3."""
        mock_s3.Object('relocation-test', '.trash/a.txt').put(
            Body=b'data',
            Metadata={'original-path': 'docs/a.txt'},
        )
        engine = RelocationEngine(s3_store, bucket_container, trash_enabled=True)

        result = engine.restore([ObjectRef.from_key('.trash/a.txt', size=4)])

        assert result.succeeded == ['a.txt']
        assert _keys(mock_s3) == ['docs/a.txt']

    def test_unknown_connection(self, mock_s3, s3_store):
        """Test containers of other connections are rejected."""
        with pytest.raises(ObjectStoreError, match='Unknown connection'):
            s3_store.list_objects(Container(connection_id=999, bucket='x'), '')

    def test_missing_bucket(self, mock_s3, s3_store, connection):
        """Test provider errors surface as ObjectStoreError."""
        container = Container(connection_id=connection.id, bucket='no-such-bucket')

        with pytest.raises(ObjectStoreError):
            s3_store.list_objects(container, '')

    def test_engine_move_and_restore(self, mock_s3, s3_store, bucket_container):
        """Test the engine against S3: trash then restore a folder."""
        _put(mock_s3, 'docs/a.txt')
        _put(mock_s3, 'docs/b.txt')
        engine = RelocationEngine(s3_store, bucket_container, trash_enabled=True)

        deleted = engine.delete([ObjectRef.from_key('docs/')])
        assert deleted.succeeded == ['docs']
        assert _keys(mock_s3) == ['.trash/docs/a.txt', '.trash/docs/b.txt']

        restored = engine.restore([ObjectRef.from_key('.trash/docs/')])
        assert restored.succeeded == ['docs']
        assert _keys(mock_s3) == ['docs/a.txt', 'docs/b.txt']

    def test_engine_copy_failure(self, mock_s3, s3_store, bucket_container):
        """Test a missing source fails the copy step only."""
        engine = RelocationEngine(s3_store, bucket_container)

        result = engine.move([ObjectRef.from_key('ghost.txt')], 'docs/')

        assert result.failed[0].reason == FailureReason.COPY_FAILURE
