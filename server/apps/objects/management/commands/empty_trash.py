"""Management command to permanently delete a container's trash."""

import logging
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from server.apps.objects.exceptions import (
    NoActiveContainerError,
    ObjectStoreError,
    ReadOnlyConnectionError,
)
from server.apps.objects.infrastructure.paths import get_trash_prefix
from server.apps.objects.logic.operations import empty_trash, open_session
from server.apps.objects.models import Connection

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Permanently delete everything under a container's trash prefix."""

    help = 'Empty the trash of a connection bucket'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--connection',
            type=int,
            required=True,
            help='ID of the connection',
        )
        parser.add_argument(
            '--bucket',
            default=None,
            help='Bucket to empty (default: the connection bucket)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without deleting',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the empty trash command.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If the container cannot be emptied.
        """
        try:
            connection = Connection.objects.get(id=options['connection'])
        except Connection.DoesNotExist as exc:
            raise CommandError(
                f'Connection {options["connection"]} does not exist',
            ) from exc

        try:
            session = open_session(connection, options['bucket'], source='command')
        except NoActiveContainerError as exc:
            raise CommandError(str(exc)) from exc

        trash_prefix = get_trash_prefix()
        self.stdout.write(
            f'Looking for objects under {session.container.bucket}/{trash_prefix}',
        )

        if options['dry_run']:
            self._report(session.store.list_objects(
                session.container,
                trash_prefix,
                recursive=True,
            ))
            return

        try:
            outcome = empty_trash(session)
        except (ObjectStoreError, ReadOnlyConnectionError) as exc:
            logger.exception('Failed to empty trash of %s', session.container)
            raise CommandError(str(exc)) from exc

        if outcome.result.failed:
            raise CommandError(outcome.message)
        self.stdout.write(self.style.SUCCESS(outcome.message))

    def _report(self, objects: list[Any]) -> None:
        total = 0
        for obj in objects:
            self.stdout.write(f'Would delete: {obj.key} ({obj.size} bytes)')
            total += obj.size
        self.stdout.write(
            self.style.SUCCESS(
                f'Would purge {len(objects)} objects ({total} bytes) from trash',
            ),
        )
