"""Django app configuration for objects app."""

from django.apps import AppConfig


class ObjectsConfig(AppConfig):
    """Configuration for objects app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.objects'
    verbose_name = 'Objects'
