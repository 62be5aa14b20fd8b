"""Django admin configuration for objects app."""

from django.contrib import admin

from server.apps.objects.models import Connection, Preference


@admin.register(Connection)
class ConnectionAdmin(admin.ModelAdmin[Connection]):
    """Admin interface for Connection model."""

    list_display = [
        'name',
        'provider',
        'bucket_name',
        'access_mode',
        'enable_trash',
        'enable_activity_log',
        'created_at',
    ]

    list_filter = [
        'provider',
        'access_mode',
        'enable_trash',
    ]

    search_fields = [
        'name',
        'bucket_name',
        'endpoint_url',
    ]

    readonly_fields = ['created_at']

    fieldsets = (
        ('Connection', {
            'fields': ('name', 'provider', 'endpoint_url', 'region'),
        }),
        ('Credentials', {
            'fields': ('access_key_id', 'secret_access_key'),
        }),
        ('Container', {
            'fields': ('bucket_name', 'access_mode'),
        }),
        ('Features', {
            'fields': ('enable_trash', 'enable_activity_log'),
        }),
        ('Timestamps', {
            'fields': ('created_at',),
        }),
    )


@admin.register(Preference)
class PreferenceAdmin(admin.ModelAdmin[Preference]):
    """Admin interface for Preference model."""

    list_display = ['key', 'modified_at']
    search_fields = ['key']
    readonly_fields = ['modified_at']
