"""Management command to export the activity log."""

from pathlib import Path
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from server.apps.activity.logic.activity_log import ActivityFilters, export_log


class Command(BaseCommand):
    """Export activity log entries as CSV or JSON."""

    help = 'Export the activity log as CSV or JSON'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--format',
            choices=['csv', 'json'],
            default='csv',
            help='Output format (default: csv)',
        )
        parser.add_argument(
            '--output',
            default=None,
            help='File to write (default: stdout)',
        )
        parser.add_argument(
            '--connection',
            type=int,
            default=None,
            help='Only export entries of this connection ID',
        )
        parser.add_argument(
            '--action',
            default=None,
            help='Only export entries of this action type',
        )
        parser.add_argument(
            '--status',
            choices=['success', 'failed'],
            default=None,
            help='Only export entries with this status',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the export command.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If the output file cannot be written.
        """
        filters = ActivityFilters(
            connection_id=options['connection'],
            action_type=options['action'],
            status=options['status'],
        )
        exported = export_log(options['format'], filters)

        output = options['output']
        if output is None:
            self.stdout.write(exported, ending='')
            return

        try:
            Path(output).write_text(exported, encoding='utf-8')
        except OSError as exc:
            raise CommandError(f'Cannot write {output}: {exc}') from exc
        self.stdout.write(self.style.SUCCESS(f'Activity log written to {output}'))
