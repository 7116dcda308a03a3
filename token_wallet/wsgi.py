"""WSGI entry point for the token wallet service."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "token_wallet.settings")

application = get_wsgi_application()
