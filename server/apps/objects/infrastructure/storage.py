"""S3-compatible storage backend for relocation containers."""

import logging
import threading
from collections.abc import Iterable
from typing import Any, Final, final, override

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from storages.backends.s3 import S3Storage

from server.apps.objects.exceptions import ObjectStoreError
from server.apps.objects.logic.types import (
    FOLDER_SUFFIX,
    Container,
    ObjectRef,
    ProgressCallback,
)
from server.apps.objects.models import Connection

logger = logging.getLogger(__name__)

# DeleteObjects accepts at most this many keys per request
_DELETE_BATCH_SIZE: Final = 1000

_STORE_ERRORS: Final = (BotoCoreError, ClientError)


def build_client_config(endpoint_url: str = '') -> Config:
    """Build the botocore client config applied to every store call.

    Timeouts and the retry budget come from settings so that no single
    call can hang a batch indefinitely.

    Args:
        endpoint_url: Custom endpoint; non-AWS providers need path-style
            addressing.

    Returns:
        botocore Config with timeouts and retries.
    """
    return Config(
        connect_timeout=getattr(settings, 'OBJECT_STORE_CONNECT_TIMEOUT', 10),
        read_timeout=getattr(settings, 'OBJECT_STORE_READ_TIMEOUT', 60),
        retries={
            'max_attempts': getattr(settings, 'OBJECT_STORE_MAX_ATTEMPTS', 3),
            'mode': 'standard',
        },
        signature_version='s3v4',
        s3={'addressing_style': 'path' if endpoint_url else 'auto'},
    )


@final
class ContainerStorage(S3Storage):
    """S3 storage bound to one bucket of one connection.

    Extends django-storages S3Storage with:
    - Prefix listings that report folders once
    - Server-side or streamed copies, recursive for folder keys
    - Client-enumerated recursive deletes
    - Folder markers and user metadata reads
    - Enhanced error logging
    """

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save object to S3 with error handling and logging.

        Args:
            name: Object key.
            content: File content (file-like object).
            max_length: Optional maximum length for the key.

        Returns:
            Key the content was written to.

        Raises:
            ObjectStoreError: If the upload fails.
        """
        try:
            logger.info('Uploading object: %s/%s', self.bucket_name, name)
            saved_name = super().save(name, content, max_length)
        except _STORE_ERRORS as error:
            logger.exception('Failed to upload object: %s', name)
            raise ObjectStoreError('upload', name, str(error)) from error
        logger.info('Uploaded object: %s/%s', self.bucket_name, saved_name)
        return saved_name

    def list_objects(self, prefix: str, recursive: bool = False) -> list[ObjectRef]:
        """List objects under a prefix.

        Args:
            prefix: Key prefix ('' for the whole bucket).
            recursive: Return every key instead of one level.

        Returns:
            Folder refs first, then files, each in key order.

        Raises:
            ObjectStoreError: If the listing fails.
        """
        params = {'Bucket': self.bucket_name, 'Prefix': prefix}
        if not recursive:
            params['Delimiter'] = FOLDER_SUFFIX

        folders: list[ObjectRef] = []
        files: list[ObjectRef] = []
        try:
            paginator = self._client.get_paginator('list_objects_v2')
            for page in paginator.paginate(**params):
                for common_prefix in page.get('CommonPrefixes', []):
                    folders.append(ObjectRef.from_key(common_prefix['Prefix']))
                for entry in page.get('Contents', []):
                    key = entry['Key']
                    # A folder marker is not a child of itself
                    if not recursive and key == prefix:
                        continue
                    ref = ObjectRef(
                        key=key,
                        size=entry.get('Size', 0),
                        last_modified=entry.get('LastModified'),
                        is_folder=key.endswith(FOLDER_SUFFIX),
                    )
                    (folders if ref.is_folder else files).append(ref)
        except _STORE_ERRORS as error:
            logger.exception('Failed to list objects: %s/%s', self.bucket_name, prefix)
            raise ObjectStoreError('list', prefix, str(error)) from error

        logger.debug(
            'Listed %s/%s: %d folders, %d files',
            self.bucket_name,
            prefix,
            len(folders),
            len(files),
        )
        return folders + files

    def copy_to(  # noqa: WPS211
        self,
        src_key: str,
        destination: 'ContainerStorage',
        dest_key: str,
        server_side: bool = True,
        on_progress: ProgressCallback | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Copy an object, or a whole folder, to another storage.

        S3 has no folder copy, so folder keys are expanded into one copy
        per object under the prefix, preserving relative paths.

        Args:
            src_key: Source key; a trailing slash copies the subtree.
            destination: Storage receiving the copy.
            dest_key: Destination key (trailing slash for folders).
            server_side: Copy inside the provider instead of streaming
                the bytes through this process.
            on_progress: Called with byte increments as data moves.
            metadata: User metadata replacing the source's on every copy.

        Raises:
            ObjectStoreError: If the source is missing or a copy fails.
        """
        if not src_key.endswith(FOLDER_SUFFIX):
            self._copy_one(
                src_key,
                destination,
                dest_key,
                server_side,
                on_progress,
                metadata,
            )
            return

        members = self.list_objects(src_key, recursive=True)
        if not members:
            raise ObjectStoreError('copy', src_key, 'Folder does not exist')

        logger.info(
            'Copying folder %s/%s -> %s/%s (%d objects)',
            self.bucket_name,
            src_key,
            destination.bucket_name,
            dest_key,
            len(members),
        )
        for member in members:
            relative_key = member.key[len(src_key):]
            self._copy_one(
                member.key,
                destination,
                dest_key + relative_key,
                server_side,
                on_progress,
                metadata,
            )

    def delete_key(self, key: str) -> None:
        """Delete an object, or every object under a folder key.

        Recursion is enumerated here (list, then batched DeleteObjects)
        rather than assumed of the provider.

        Args:
            key: Object key; a trailing slash deletes the subtree.

        Raises:
            ObjectStoreError: If any delete fails.
        """
        if not key.endswith(FOLDER_SUFFIX):
            logger.info('Deleting object: %s/%s', self.bucket_name, key)
            try:
                self._client.delete_object(Bucket=self.bucket_name, Key=key)
            except _STORE_ERRORS as error:
                logger.exception('Failed to delete object: %s', key)
                raise ObjectStoreError('delete', key, str(error)) from error
            return

        keys = [member.key for member in self.list_objects(key, recursive=True)]
        logger.info(
            'Deleting folder %s/%s (%d objects)',
            self.bucket_name,
            key,
            len(keys),
        )
        for start in range(0, len(keys), _DELETE_BATCH_SIZE):
            self._delete_batch(keys[start:start + _DELETE_BATCH_SIZE])

    def create_marker(self, key: str) -> None:
        """Write a zero-byte folder marker.

        Django's ``save`` refuses names without a file part, so the
        marker is written with the client directly.

        Args:
            key: Folder key ending with a slash.

        Raises:
            ObjectStoreError: If the write fails.
        """
        logger.info('Creating folder marker: %s/%s', self.bucket_name, key)
        try:
            self._client.put_object(Bucket=self.bucket_name, Key=key, Body=b'')
        except _STORE_ERRORS as error:
            logger.exception('Failed to create folder marker: %s', key)
            raise ObjectStoreError('create', key, str(error)) from error

    def get_metadata(self, key: str) -> dict[str, str]:
        """Read the user metadata of an object.

        Args:
            key: Object key.

        Returns:
            Metadata with lowercase keys, as S3 returns them.

        Raises:
            ObjectStoreError: If the object cannot be read.
        """
        try:
            response = self._client.head_object(Bucket=self.bucket_name, Key=key)
        except _STORE_ERRORS as error:
            logger.exception('Failed to read metadata: %s', key)
            raise ObjectStoreError('head', key, str(error)) from error
        return response.get('Metadata', {})

    @property
    def _client(self) -> Any:
        return self.connection.meta.client

    def _copy_one(  # noqa: WPS211
        self,
        src_key: str,
        destination: 'ContainerStorage',
        dest_key: str,
        server_side: bool,
        on_progress: ProgressCallback | None,
        metadata: dict[str, str] | None,
    ) -> None:
        logger.debug(
            'Copying object: %s/%s -> %s/%s',
            self.bucket_name,
            src_key,
            destination.bucket_name,
            dest_key,
        )
        extra_args = None
        if metadata is not None:
            extra_args = {'Metadata': metadata}
        try:
            if server_side:
                copy_source = {
                    'Bucket': self.bucket_name,
                    'Key': src_key,
                }
                if extra_args is not None:
                    extra_args['MetadataDirective'] = 'REPLACE'
                destination.bucket.copy(
                    copy_source,
                    dest_key,
                    ExtraArgs=extra_args,
                    Callback=on_progress,
                    SourceClient=self._client,
                )
            else:
                source_object = self.bucket.Object(src_key).get()
                if extra_args is None:
                    extra_args = {'Metadata': source_object.get('Metadata', {})}
                destination.bucket.upload_fileobj(
                    source_object['Body'],
                    dest_key,
                    ExtraArgs=extra_args,
                    Callback=on_progress,
                )
        except _STORE_ERRORS as error:
            logger.exception('Copy failed: %s -> %s', src_key, dest_key)
            raise ObjectStoreError('copy', src_key, str(error)) from error

    def _delete_batch(self, keys: list[str]) -> None:
        try:
            response = self._client.delete_objects(
                Bucket=self.bucket_name,
                Delete={
                    'Objects': [{'Key': key} for key in keys],
                    'Quiet': True,
                },
            )
        except _STORE_ERRORS as error:
            logger.exception('Batch delete failed: %d keys', len(keys))
            raise ObjectStoreError('delete', keys[0], str(error)) from error

        errors = response.get('Errors', [])
        if errors:
            first = errors[0]
            logger.error(
                'Batch delete left %d keys behind, first: %s',
                len(errors),
                first.get('Key'),
            )
            raise ObjectStoreError(
                'delete',
                first.get('Key', keys[0]),
                first.get('Message', 'Delete rejected'),
            )


def open_container_storage(connection: Connection, bucket: str) -> ContainerStorage:
    """Create a storage bound to ``bucket`` with the connection's credentials.

    Args:
        connection: Connection record holding endpoint and credentials.
        bucket: Bucket name.

    Returns:
        ContainerStorage instance.
    """
    endpoint_url = connection.endpoint_url or None
    return ContainerStorage(
        bucket_name=bucket,
        access_key=connection.access_key_id,
        secret_key=connection.secret_access_key,
        endpoint_url=endpoint_url,
        region_name=connection.region,
        file_overwrite=True,  # Conflicts are resolved before writing
        default_acl=None,  # Inherit bucket ACL
        client_config=build_client_config(connection.endpoint_url),
    )


@final
class S3ObjectStore:
    """Object store spanning every container of the given connections.

    Connection rows are captured at construction, so the store can be
    used from worker threads without touching the database.
    """

    def __init__(self, connections: Iterable[Connection]) -> None:
        """Initialize the store.

        Args:
            connections: Connections whose containers may be addressed.
        """
        self._connections = {connection.id: connection for connection in connections}
        self._storages: dict[Container, ContainerStorage] = {}
        self._lock = threading.Lock()

    def list_objects(
        self,
        container: Container,
        prefix: str,
        recursive: bool = False,
    ) -> list[ObjectRef]:
        """List objects under a prefix of a container."""
        return self.storage_for(container).list_objects(prefix, recursive)

    def copy_object(  # noqa: WPS211
        self,
        src_container: Container,
        src_key: str,
        dest_container: Container,
        dest_key: str,
        on_progress: ProgressCallback | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Copy an object between (or within) containers.

        Copies stay server-side when both containers share an endpoint
        and credentials; otherwise bytes are streamed through.
        """
        source = self._connection(src_container)
        target = self._connection(dest_container)
        self.storage_for(src_container).copy_to(
            src_key,
            self.storage_for(dest_container),
            dest_key,
            server_side=source.shares_endpoint_with(target),
            on_progress=on_progress,
            metadata=metadata,
        )

    def delete_object(self, container: Container, key: str) -> None:
        """Delete an object, or a folder subtree, from a container."""
        self.storage_for(container).delete_key(key)

    def upload_object(self, container: Container, key: str, content: Any) -> int:
        """Upload content to a key and return the bytes written."""
        size = get_content_size(content)
        self.storage_for(container).save(key, content)
        return size

    def create_folder(self, container: Container, key: str) -> None:
        """Write an empty folder marker in a container."""
        self.storage_for(container).create_marker(key)

    def get_metadata(self, container: Container, key: str) -> dict[str, str]:
        """Read the user metadata of an object in a container."""
        return self.storage_for(container).get_metadata(key)

    def storage_for(self, container: Container) -> ContainerStorage:
        """Get (or open) the storage for a container.

        Args:
            container: Target container.

        Returns:
            ContainerStorage for the container's bucket.
        """
        with self._lock:
            storage = self._storages.get(container)
            if storage is None:
                storage = open_container_storage(
                    self._connection(container),
                    container.bucket,
                )
                self._storages[container] = storage
            return storage

    def _connection(self, container: Container) -> Connection:
        try:
            return self._connections[container.connection_id]
        except KeyError as error:
            raise ObjectStoreError(
                'connect',
                str(container),
                'Unknown connection',
            ) from error


def get_content_size(content: Any) -> int:
    """Get content size from a file-like object.

    Args:
        content: File-like object.

    Returns:
        Size in bytes.
    """
    if hasattr(content, 'size'):
        return content.size
    size = len(content.read())
    content.seek(0)
    return size
