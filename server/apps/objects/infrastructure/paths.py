"""Key and prefix utilities for objects."""

from typing import Final

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from server.apps.objects.logic.types import FOLDER_SUFFIX, ObjectRef

_DEFAULT_TRASH_PREFIX = '.trash/'

# User metadata written on soft-deleted copies
ORIGINAL_PATH_METADATA: Final = 'original-path'
DELETED_AT_METADATA: Final = 'deleted-at'


def get_trash_prefix() -> str:
    """Get the reserved prefix holding soft-deleted objects.

    Returns:
        Trash prefix from settings, always ending with a slash.
    """
    prefix = getattr(settings, 'TRASH_PREFIX', _DEFAULT_TRASH_PREFIX)
    return normalize_prefix(prefix)


def normalize_prefix(prefix: str) -> str:
    """Normalize a folder prefix to the trailing-slash form.

    Args:
        prefix: Prefix with or without a trailing slash ('' is the root).

    Returns:
        '' for the root, otherwise the prefix ending with exactly one slash.
    """
    stripped = prefix.strip(FOLDER_SUFFIX)
    if not stripped:
        return ''
    return stripped + FOLDER_SUFFIX


def parent_prefix(key: str) -> str:
    """Extract the prefix an object is listed under.

    Example: 'docs/reports/q1.pdf' -> 'docs/reports/', 'docs/' -> ''.

    Args:
        key: Full object key.

    Returns:
        Parent prefix, '' for top-level keys.
    """
    trimmed = key.rstrip(FOLDER_SUFFIX)
    if FOLDER_SUFFIX not in trimmed:
        return ''
    return trimmed.rsplit(FOLDER_SUFFIX, 1)[0] + FOLDER_SUFFIX


def split_extension(filename: str) -> tuple[str, str]:
    """Split a filename into base and extension at the last dot.

    Example: 'archive.tar.gz' -> ('archive.tar', '.gz'), 'README' ->
    ('README', '').

    Args:
        filename: Single path segment.

    Returns:
        Tuple of base name and extension (with its dot, or '').
    """
    base, dot, extension = filename.rpartition('.')
    if not dot:
        return filename, ''
    return base, f'.{extension}'


def is_trashed(key: str) -> bool:
    """Check if a key lives under the trash prefix.

    Args:
        key: Object key.

    Returns:
        True for keys under the trash prefix (and the prefix itself).
    """
    return key.startswith(get_trash_prefix())


def to_trash_key(key: str) -> str:
    """Map a key to its soft-deleted location.

    Args:
        key: Original object key.

    Returns:
        Key under the trash prefix.
    """
    return get_trash_prefix() + key


def from_trash_key(key: str) -> str:
    """Map a soft-deleted key back to its original location.

    Args:
        key: Key under the trash prefix.

    Returns:
        Original key.

    Raises:
        ValidationError: If the key is not under the trash prefix.
    """
    prefix = get_trash_prefix()
    if not key.startswith(prefix) or key == prefix:
        raise ValidationError(f'Not a trash item: {key}')
    return key[len(prefix):]


def trash_metadata(key: str) -> dict[str, str]:
    """Build the metadata stored on the trash copy of an object.

    Args:
        key: Original object key.

    Returns:
        Metadata recording the original key and the deletion time.
    """
    return {
        ORIGINAL_PATH_METADATA: key,
        DELETED_AT_METADATA: timezone.now().isoformat(),
    }


def restore_key(trash_key: str, metadata: dict[str, str]) -> str:
    """Pick the key a trashed object is restored to.

    The recorded original path wins when it is a usable key of the same
    kind (file or folder) outside the trash; otherwise the trash prefix
    is stripped.

    Example: '.trash/a.txt' with {'original-path': 'docs/a.txt'} ->
    'docs/a.txt', with no metadata -> 'a.txt'.

    Args:
        trash_key: Key under the trash prefix.
        metadata: User metadata of the trashed object.

    Returns:
        Original key.

    Raises:
        ValidationError: If the key is not under the trash prefix.
    """
    stripped = from_trash_key(trash_key)
    lowered = {name.lower(): value for name, value in metadata.items()}
    recorded = lowered.get(ORIGINAL_PATH_METADATA, '')
    if not recorded.strip(FOLDER_SUFFIX) or is_trashed(recorded):
        return stripped
    if recorded.endswith(FOLDER_SUFFIX) != trash_key.endswith(FOLDER_SUFFIX):
        return stripped
    return recorded


def validate_destination(item: ObjectRef, dest_key: str) -> None:
    """Validate that an object may be relocated to ``dest_key``.

    Runs before any store call. A folder cannot land on itself or inside
    its own subtree; a file cannot land on itself or under a path that
    uses its key as a folder.

    Args:
        item: Object being relocated.
        dest_key: Computed destination key.

    Raises:
        ValidationError: If the destination is illegal.
    """
    if not dest_key or dest_key == FOLDER_SUFFIX:
        raise ValidationError('Destination key cannot be empty')

    if dest_key == item.key:
        raise ValidationError('Cannot move to the same location')

    if item.is_folder:
        if dest_key.startswith(item.key):
            raise ValidationError(
                'Cannot move a folder into itself or one of its subfolders',
            )
    elif dest_key.startswith(item.key + FOLDER_SUFFIX):
        raise ValidationError('Cannot move a file into itself')
