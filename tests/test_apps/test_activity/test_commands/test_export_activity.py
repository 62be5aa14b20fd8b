"""Tests for export_activity management command."""

import json
from io import StringIO

import pytest
from django.core.management import call_command

from server.apps.activity.logic.activity_log import make_recorder
from server.apps.objects.logic.types import (
    ActivityAction,
    ActivityEvent,
    ActivityStatus,
)


@pytest.fixture
def logged(connection):
    """Record two events for the connection."""
    record = make_recorder(connection, 'photos')
    record(ActivityEvent(
        action_type=ActivityAction.UPLOAD,
        path_before='a.txt',
        status=ActivityStatus.SUCCESS,
    ))
    record(ActivityEvent(
        action_type=ActivityAction.DELETE,
        path_before='b.txt',
        status=ActivityStatus.FAILED,
        error_message='AccessDenied',
    ))


@pytest.mark.django_db
class TestExportActivityCommand:
    """Tests for export_activity management command."""

    def test_csv_to_stdout(self, logged):
        """Test the default export is CSV on stdout."""
        out = StringIO()
        call_command('export_activity', stdout=out)

        lines = out.getvalue().splitlines()
        assert lines[0].startswith('id,timestamp,connection_id')
        assert len(lines) == 3

    def test_json_with_filter(self, logged):
        """Test JSON export honours the status filter."""
        out = StringIO()
        call_command('export_activity', '--format', 'json', '--status', 'failed', stdout=out)

        exported = json.loads(out.getvalue())
        assert [row['object_path_before'] for row in exported] == ['b.txt']
        assert exported[0]['error_message'] == 'AccessDenied'

    def test_output_file(self, logged, tmp_path):
        """Test export to a file."""
        target = tmp_path / 'activity.json'
        out = StringIO()

        call_command(
            'export_activity',
            '--format',
            'json',
            '--output',
            str(target),
            stdout=out,
        )

        assert len(json.loads(target.read_text(encoding='utf-8'))) == 2
        assert 'Activity log written' in out.getvalue()
