"""Shared fixtures for activity app tests."""

import pytest

from server.apps.objects.models import Connection


@pytest.fixture
def connection(db):
    """Create a connection with activity logging enabled.

    Returns:
        Connection instance.
    """
    return Connection.objects.create(
        name='Logged',
        bucket_name='photos',
        access_key_id='testing',
        secret_access_key='testing',
        enable_activity_log=True,
    )


@pytest.fixture
def silent_connection(db):
    """Create a connection with activity logging disabled.

    Returns:
        Connection instance.
    """
    return Connection.objects.create(
        name='Silent',
        bucket_name='photos',
        access_key_id='testing',
        secret_access_key='testing',
    )
