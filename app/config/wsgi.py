"""
WSGI config for the billing service.

Fallback entry point for WSGI servers; the service is normally run
through config.asgi.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
