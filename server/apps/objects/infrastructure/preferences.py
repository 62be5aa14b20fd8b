"""Key-value persistence for UI state (favourites, trash toggle)."""

import logging
from typing import Any, Final, Protocol, final

from server.apps.objects.logic.types import Container, ObjectRef
from server.apps.objects.models import Connection, Preference

logger = logging.getLogger(__name__)

_FAVOURITES_KEY: Final = 'favourites'
_TRASH_KEY_TEMPLATE: Final = 'trash_enabled:{connection_id}'


class PreferenceStore(Protocol):
    """Injected persistence port with get/set semantics."""

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under ``key`` or ``default``."""

    def set(self, key: str, value: Any) -> None:  # noqa: WPS125
        """Store ``value`` under ``key``."""


@final
class DatabasePreferenceStore:
    """PreferenceStore backed by the Preference model."""

    def get(self, key: str, default: Any = None) -> Any:
        """Get a stored preference.

        Args:
            key: Preference key.
            default: Returned when nothing is stored.

        Returns:
            Stored JSON value or default.
        """
        preference = Preference.objects.filter(key=key).first()
        if preference is None:
            return default
        return preference.value

    def set(self, key: str, value: Any) -> None:  # noqa: WPS125
        """Create or replace a stored preference.

        Args:
            key: Preference key.
            value: JSON-serializable value.
        """
        Preference.objects.update_or_create(key=key, defaults={'value': value})
        logger.debug('Preference stored: %s', key)


def is_trash_enabled(
    connection: Connection,
    preferences: PreferenceStore | None = None,
) -> bool:
    """Check if deletes on a connection go to trash.

    A stored per-connection toggle wins over the connection default.

    Args:
        connection: Connection being operated on.
        preferences: Optional preference store holding an override.

    Returns:
        True when deletes should be soft deletes.
    """
    if preferences is not None:
        key = _TRASH_KEY_TEMPLATE.format(connection_id=connection.id)
        override = preferences.get(key)
        if override is not None:
            return bool(override)
    return connection.enable_trash


def set_trash_enabled(
    preferences: PreferenceStore,
    connection: Connection,
    enabled: bool,
) -> None:
    """Store the per-connection trash toggle.

    Args:
        preferences: Preference store.
        connection: Connection the toggle applies to.
        enabled: Whether deletes go to trash.
    """
    key = _TRASH_KEY_TEMPLATE.format(connection_id=connection.id)
    preferences.set(key, enabled)


def list_favourites(preferences: PreferenceStore) -> list[dict[str, Any]]:
    """List favourite objects.

    Args:
        preferences: Preference store.

    Returns:
        Favourite entries with connection id, bucket, key, name, is_folder.
    """
    return list(preferences.get(_FAVOURITES_KEY, []))


def add_favourite(
    preferences: PreferenceStore,
    container: Container,
    item: ObjectRef,
) -> bool:
    """Add an object to favourites.

    Args:
        preferences: Preference store.
        container: Container holding the object.
        item: Object to remember.

    Returns:
        True if added, False if it was already a favourite.
    """
    favourites = list_favourites(preferences)
    entry = {
        'connection_id': container.connection_id,
        'bucket': container.bucket,
        'key': item.key,
        'name': item.name,
        'is_folder': item.is_folder,
    }
    if any(_same_favourite(existing, entry) for existing in favourites):
        return False
    favourites.append(entry)
    preferences.set(_FAVOURITES_KEY, favourites)
    return True


def remove_favourite(
    preferences: PreferenceStore,
    container: Container,
    key: str,
) -> bool:
    """Remove an object from favourites.

    Args:
        preferences: Preference store.
        container: Container holding the object.
        key: Object key.

    Returns:
        True if an entry was removed.
    """
    favourites = list_favourites(preferences)
    wanted = {
        'connection_id': container.connection_id,
        'bucket': container.bucket,
        'key': key,
    }
    remaining = [
        entry for entry in favourites if not _same_favourite(entry, wanted)
    ]
    if len(remaining) == len(favourites):
        return False
    preferences.set(_FAVOURITES_KEY, remaining)
    return True


def _same_favourite(left: dict[str, Any], right: dict[str, Any]) -> bool:
    return (
        left['connection_id'] == right['connection_id']
        and left['bucket'] == right['bucket']
        and left['key'] == right['key']
    )
