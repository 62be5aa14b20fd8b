"""Django admin configuration for activity app."""

from django.contrib import admin
from django.http import HttpRequest

from server.apps.activity.models import ActivityLogEntry


@admin.register(ActivityLogEntry)
class ActivityLogEntryAdmin(admin.ModelAdmin[ActivityLogEntry]):
    """Read-only admin interface for the activity log."""

    list_display = [
        'timestamp',
        'action_type',
        'status',
        'bucket_name',
        'object_path_before',
        'object_path_after',
        'actor',
    ]

    list_filter = [
        'action_type',
        'status',
        'provider',
        'source',
    ]

    search_fields = [
        'object_path_before',
        'object_path_after',
        'error_message',
    ]

    date_hierarchy = 'timestamp'

    def has_add_permission(self, request: HttpRequest) -> bool:
        """Entries are only written by operations.

        Args:
            request: HTTP request.

        Returns:
            Always False.
        """
        return False

    def has_change_permission(
        self,
        request: HttpRequest,
        obj: ActivityLogEntry | None = None,
    ) -> bool:
        """Entries are immutable.

        Args:
            request: HTTP request.
            obj: Entry being edited.

        Returns:
            Always False.
        """
        return False
