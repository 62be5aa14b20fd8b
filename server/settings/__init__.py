"""Django settings for the object relocation server.

Settings are split into components and assembled with
django-split-settings. Values that differ between environments are read
from the environment (or a ``config/.env`` file) with python-decouple.
"""

import django_stubs_ext
from split_settings.tools import include

# Makes generic admin and queryset classes subscriptable at runtime
django_stubs_ext.monkeypatch()

include(
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/relocation.py',
)
