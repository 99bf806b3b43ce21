"""
ASGI config for the billing service.

Serves HTTP through Django. The Channels layer is used for publishing
account updates only; websocket consumers live in the client-facing
service, so no websocket route is mounted here.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Initialize Django before importing Channels components
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter  # noqa: E402

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
    }
)
